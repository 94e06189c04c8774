"""
Provider wiring from settings.

Builds the set of adapters the pipeline needs and owns their lifecycle.
"""

import logging
from dataclasses import dataclass

from narrator.config import Settings
from narrator.services.providers.base import (
    BlobStore,
    SegmentationProvider,
    SynthesisProvider,
    VisionProvider,
)
from narrator.services.providers.blob_store import FileBlobStore
from narrator.services.providers.claude_vision_client import ClaudeVisionClient
from narrator.services.providers.segmentation_client import HttpSegmentationClient
from narrator.services.providers.synthesis_client import HttpSynthesisClient
from narrator.services.providers.vision_client import HttpVisionClient

logger = logging.getLogger(__name__)


@dataclass
class ProviderSet:
    """
    Adapters used by one orchestrator.

    Attributes:
        segmentation: Shot segmentation provider
        vision: Unit description provider
        synthesis: Speech synthesis provider
        blob_store: Storage for media and produced audio
    """

    segmentation: SegmentationProvider
    vision: VisionProvider
    synthesis: SynthesisProvider
    blob_store: BlobStore

    async def close(self) -> None:
        """Close adapters that hold network clients."""
        for provider in (self.segmentation, self.vision, self.synthesis):
            close = getattr(provider, "close", None)
            if close is not None:
                await close()


def create_providers(settings: Settings, blob_store: BlobStore | None = None) -> ProviderSet:
    """
    Create adapters from settings.

    settings.vision_provider selects the vision backend:
    - "http": HttpVisionClient at settings.vision_url
    - "claude": ClaudeVisionClient (images only)

    Raises:
        ValueError: Unknown vision provider or missing API key
    """
    blob_store = blob_store or FileBlobStore.from_settings(settings)

    if settings.vision_provider == "claude":
        vision: VisionProvider = ClaudeVisionClient.from_settings(settings, blob_store)
    elif settings.vision_provider == "http":
        vision = HttpVisionClient.from_settings(settings)
    else:
        raise ValueError(f"Unknown vision provider: {settings.vision_provider}")

    logger.info(f"Providers created: vision={settings.vision_provider}")

    return ProviderSet(
        segmentation=HttpSegmentationClient.from_settings(settings),
        vision=vision,
        synthesis=HttpSynthesisClient.from_settings(settings),
        blob_store=blob_store,
    )
