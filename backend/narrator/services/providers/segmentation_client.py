"""
Segmentation provider HTTP adapter.

Asks the segmentation service to cut a video into shots. Used by the
segmentation backend before units are built.
"""

import logging

import httpx
from pydantic import ValidationError

from narrator.config import Settings
from narrator.models.schemas import Segment
from narrator.services.errors import TerminalProviderError
from narrator.services.providers.base import BaseProviderClient, ProviderConfig

logger = logging.getLogger(__name__)


class HttpSegmentationClient(BaseProviderClient):
    """
    Async HTTP client for the shot segmentation service.

    Example:
        async with HttpSegmentationClient.from_settings(settings) as client:
            segments = await client.segment("blob://uploads/lecture.mp4")
    """

    provider_name = "segmentation"

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> "HttpSegmentationClient":
        """Create client from application settings."""
        config = ProviderConfig(
            base_url=settings.segmentation_url,
            timeout=settings.provider_call_timeout_seconds,
        )
        return cls(config, http_client=http_client)

    async def segment(self, media_ref: str) -> list[Segment]:
        """
        Request shot boundaries for a video.

        Args:
            media_ref: Blob reference of the whole video

        Returns:
            Segments in provider order (start, end, confidence 0-100)

        Raises:
            RetryableProviderError: Throttling, timeout, 5xx
            TerminalProviderError: Rejected request or malformed response
        """
        logger.debug(f"Segmenting {media_ref}")

        response = await self._post_json(
            "/v1/segment",
            {"media_ref": media_ref},
            operation="segment",
        )

        try:
            data = response.json()
            segments = [Segment.model_validate(item) for item in data["segments"]]
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise TerminalProviderError(
                "segment returned malformed response",
                provider=self.provider_name,
                original_error=e,
            ) from e

        logger.debug(f"Segmentation returned {len(segments)} shots for {media_ref}")
        return segments
