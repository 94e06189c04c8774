"""
Provider adapters package.

Interfaces consumed by the pipeline and their implementations:
- HttpSegmentationClient: shot segmentation service
- HttpVisionClient / ClaudeVisionClient: unit descriptions
- HttpSynthesisClient: text-to-speech
- InMemoryBlobStore / FileBlobStore: media and audio storage

Usage:
    from narrator.services.providers import create_providers

    providers = create_providers(settings)
    result = await providers.vision.analyze(unit)
    await providers.close()
"""

from narrator.services.providers.base import (
    BaseProviderClient,
    BlobStore,
    ProviderConfig,
    SegmentationProvider,
    SynthesisProvider,
    VisionProvider,
    classify_http_error,
    is_retryable_status,
)
from narrator.services.providers.blob_store import FileBlobStore, InMemoryBlobStore
from narrator.services.providers.claude_vision_client import ClaudeVisionClient
from narrator.services.providers.factory import ProviderSet, create_providers
from narrator.services.providers.segmentation_client import HttpSegmentationClient
from narrator.services.providers.synthesis_client import HttpSynthesisClient
from narrator.services.providers.vision_client import HttpVisionClient

__all__ = [
    # Interfaces
    "SegmentationProvider",
    "VisionProvider",
    "SynthesisProvider",
    "BlobStore",
    "BaseProviderClient",
    "ProviderConfig",
    "classify_http_error",
    "is_retryable_status",
    # Implementations
    "HttpSegmentationClient",
    "HttpVisionClient",
    "ClaudeVisionClient",
    "HttpSynthesisClient",
    "InMemoryBlobStore",
    "FileBlobStore",
    # Wiring
    "ProviderSet",
    "create_providers",
]
