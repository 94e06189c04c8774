"""
Provider interfaces and shared adapter plumbing.

Defines the narrow interfaces the pipeline consumes (segmentation, vision,
speech synthesis, blob storage) and the HTTP error classification every
adapter uses to tell retryable failures from terminal ones.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from narrator.models.schemas import AnalysisResult, Segment, Unit
from narrator.services.errors import (
    ProviderError,
    RetryableProviderError,
    TerminalProviderError,
)

# 408 and 429 are throttling/timeouts reported by the service itself
RETRYABLE_STATUS_CODES = frozenset({408, 429})


@dataclass
class ProviderConfig:
    """
    Configuration for provider adapter instances.

    Attributes:
        base_url: API endpoint URL
        timeout: Request timeout in seconds
        api_key: Optional API key for authenticated services
    """

    base_url: str
    timeout: float = 120.0
    api_key: str | None = None


@runtime_checkable
class SegmentationProvider(Protocol):
    """Cuts a video into shots."""

    async def segment(self, media_ref: str) -> list[Segment]:
        ...


@runtime_checkable
class VisionProvider(Protocol):
    """Describes one unit (time-coded clip reference or image)."""

    async def analyze(self, unit: Unit) -> AnalysisResult:
        ...


@runtime_checkable
class SynthesisProvider(Protocol):
    """Turns text into speech audio.

    Attributes:
        max_input_chars: Largest text accepted by a single call
    """

    max_input_chars: int

    async def synthesize(self, text: str) -> bytes:
        ...


@runtime_checkable
class BlobStore(Protocol):
    """Opaque storage for media and produced audio."""

    async def put(self, data: bytes, suffix: str = "") -> str:
        ...

    async def get(self, ref: str) -> bytes:
        ...


def is_retryable_status(status_code: int) -> bool:
    """Throttling, request timeouts and server errors are retryable."""
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


def classify_http_error(
    error: httpx.HTTPError,
    provider: str,
    operation: str,
) -> ProviderError:
    """
    Map an httpx exception to a retryable or terminal provider error.

    Args:
        error: Exception raised by httpx
        provider: Provider name for diagnostics
        operation: Operation name used in the message ("analyze", ...)

    Returns:
        RetryableProviderError for timeouts, dropped connections,
        429/408 and 5xx responses; TerminalProviderError otherwise
    """
    if isinstance(error, httpx.TimeoutException):
        return RetryableProviderError(
            f"{operation} timeout",
            provider=provider,
            original_error=error,
        )

    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        error_class = (
            RetryableProviderError
            if is_retryable_status(status_code)
            else TerminalProviderError
        )
        return error_class(
            f"{operation} failed: HTTP {status_code}",
            provider=provider,
            status_code=status_code,
            original_error=error,
        )

    if isinstance(error, httpx.TransportError):
        return RetryableProviderError(
            f"{operation} connection error",
            provider=provider,
            original_error=error,
        )

    return TerminalProviderError(
        f"{operation} failed: {type(error).__name__}",
        provider=provider,
        original_error=error,
    )


class BaseProviderClient:
    """
    Base class for HTTP provider adapters.

    Owns the httpx client and the async context manager protocol.
    Subclasses implement their provider operation.
    """

    provider_name = "provider"

    def __init__(
        self,
        config: ProviderConfig,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize adapter with configuration.

        Args:
            config: Provider configuration with URL, timeout, etc.
            http_client: Optional preconfigured client (tests inject
                one backed by httpx.MockTransport)
        """
        self.config = config
        headers = {}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self.http_client = http_client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
            headers=headers,
        )

    async def _post_json(self, path: str, payload: dict, operation: str) -> httpx.Response:
        """POST JSON and convert transport/status failures to provider errors."""
        try:
            response = await self.http_client.post(path, json=payload)
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            raise classify_http_error(e, self.provider_name, operation) from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def __aenter__(self) -> "BaseProviderClient":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()
