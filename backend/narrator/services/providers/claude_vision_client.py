"""
Claude vision adapter.

Describes image units with Anthropic's Messages API. Image bytes are read
from the blob store and sent inline as base64. Video clip units are not
supported by this provider and fail terminally.
"""

import base64
import logging
import os

import httpx
from anthropic import APIConnectionError, APIStatusError, APITimeoutError, AsyncAnthropic

from narrator.config import Settings
from narrator.models.schemas import AnalysisResult, Unit
from narrator.services.errors import RetryableProviderError, TerminalProviderError
from narrator.services.providers.base import BlobStore, ProviderConfig, is_retryable_status

logger = logging.getLogger(__name__)

DEFAULT_CLAUDE_MODEL = "claude-sonnet-4-5"

SYSTEM_PROMPT = (
    "You write audio descriptions for blind and low-vision audiences. "
    "Describe what is visible in plain, concrete language, in two to four "
    "sentences. Do not speculate about things that are not shown."
)

MEDIA_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


class ClaudeVisionClient:
    """
    Vision provider backed by Claude.

    Example:
        async with ClaudeVisionClient.from_settings(settings, blob_store) as client:
            result = await client.analyze(image_unit)
    """

    provider_name = "claude"

    def __init__(
        self,
        config: ProviderConfig,
        blob_store: BlobStore,
        model: str = DEFAULT_CLAUDE_MODEL,
        max_tokens: int = 512,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize Claude vision client.

        Args:
            config: Provider configuration with API key
            blob_store: Store holding the image bytes
            model: Claude model to use
            max_tokens: Max tokens per description
            http_client: Optional preconfigured httpx client

        Raises:
            ValueError: If API key is not provided
        """
        if not config.api_key:
            raise ValueError(
                "ClaudeVisionClient requires API key. "
                "Set ANTHROPIC_API_KEY environment variable."
            )

        self.config = config
        self.blob_store = blob_store
        self.model = model
        self.max_tokens = max_tokens
        # Retries are owned by the pipeline retry policy
        self.client = AsyncAnthropic(
            api_key=config.api_key,
            timeout=config.timeout,
            max_retries=0,
            http_client=http_client,
        )

    @classmethod
    def from_settings(cls, settings: Settings, blob_store: BlobStore) -> "ClaudeVisionClient":
        """
        Create ClaudeVisionClient from application settings.

        Raises:
            ValueError: If ANTHROPIC_API_KEY not set
        """
        config = ProviderConfig(
            base_url="https://api.anthropic.com",
            api_key=os.getenv("ANTHROPIC_API_KEY"),
            timeout=settings.provider_call_timeout_seconds,
        )
        return cls(config, blob_store, model=settings.claude_vision_model)

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self) -> "ClaudeVisionClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def analyze(self, unit: Unit) -> AnalysisResult:
        """
        Describe one image unit.

        Raises:
            TerminalProviderError: Clip unit, unsupported image type or
                rejected request
            RetryableProviderError: Timeout, connection error, 429/5xx
        """
        if unit.start_time is not None:
            raise TerminalProviderError(
                "video clips are not supported by this provider",
                provider=self.provider_name,
            )

        extension = unit.source_ref.rsplit(".", 1)[-1].lower()
        media_type = MEDIA_TYPES.get(extension)
        if media_type is None:
            raise TerminalProviderError(
                f"unsupported image type: {extension}",
                provider=self.provider_name,
            )

        try:
            image_bytes = await self.blob_store.get(unit.source_ref)
        except FileNotFoundError as e:
            raise TerminalProviderError(
                "image blob not found",
                provider=self.provider_name,
                original_error=e,
            ) from e

        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": base64.b64encode(image_bytes).decode("ascii"),
                },
            },
            {"type": "text", "text": "Describe this image."},
        ]

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": content}],
            )

        except APITimeoutError as e:
            raise RetryableProviderError(
                "analyze timeout",
                provider=self.provider_name,
                original_error=e,
            ) from e

        except APIConnectionError as e:
            raise RetryableProviderError(
                "analyze connection error",
                provider=self.provider_name,
                original_error=e,
            ) from e

        except APIStatusError as e:
            error_class = (
                RetryableProviderError
                if is_retryable_status(e.status_code)
                else TerminalProviderError
            )
            raise error_class(
                f"analyze failed: HTTP {e.status_code}",
                provider=self.provider_name,
                status_code=e.status_code,
                original_error=e,
            ) from e

        text = "".join(block.text for block in response.content if block.type == "text")
        logger.info(
            f"Claude described unit {unit.index}: {len(text)} chars, "
            f"tokens: {response.usage.input_tokens} in / {response.usage.output_tokens} out"
        )
        return AnalysisResult(text=text.strip(), attributes={"model": self.model})
