"""
Vision provider HTTP adapter.

Sends one unit (time-coded clip reference or image reference) to the
vision service and returns its description.
"""

import logging

import httpx
from pydantic import ValidationError

from narrator.config import Settings
from narrator.models.schemas import AnalysisResult, Unit
from narrator.services.errors import TerminalProviderError
from narrator.services.providers.base import BaseProviderClient, ProviderConfig

logger = logging.getLogger(__name__)


class HttpVisionClient(BaseProviderClient):
    """
    Async HTTP client for the vision description service.

    Example:
        async with HttpVisionClient.from_settings(settings) as client:
            result = await client.analyze(unit)
            print(result.text)
    """

    provider_name = "vision"

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> "HttpVisionClient":
        """Create client from application settings."""
        config = ProviderConfig(
            base_url=settings.vision_url,
            timeout=settings.provider_call_timeout_seconds,
        )
        return cls(config, http_client=http_client)

    async def analyze(self, unit: Unit) -> AnalysisResult:
        """
        Describe one unit.

        Args:
            unit: Unit with source_ref and (for video) its time window

        Returns:
            AnalysisResult with text, confidence (0-1) and attributes

        Raises:
            RetryableProviderError: Throttling, timeout, 5xx
            TerminalProviderError: Rejected input or malformed response
        """
        payload = {
            "source_ref": unit.source_ref,
            "kind": "clip" if unit.start_time is not None else "image",
            "start_time": unit.start_time,
            "end_time": unit.end_time,
        }

        response = await self._post_json("/v1/describe", payload, operation="analyze")

        try:
            data = response.json()
            result = AnalysisResult(
                text=data["description"],
                confidence=data.get("confidence", 1.0),
                attributes=data.get("attributes") or {},
            )
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise TerminalProviderError(
                "analyze returned malformed response",
                provider=self.provider_name,
                original_error=e,
            ) from e

        logger.debug(f"Unit {unit.index} described: {len(result.text)} chars")
        return result
