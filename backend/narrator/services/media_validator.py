"""
Submission-time media validation.

Rejects unsupported formats, oversized, empty and corrupt media before a
job is created, so invalid media never reaches chunking.
"""

import logging
import math

from narrator.config import Settings
from narrator.models.schemas import (
    BatchMedia,
    ImageMedia,
    JobOptions,
    Media,
    MediaFeatures,
    VideoMedia,
)
from narrator.services.errors import MediaValidationError

logger = logging.getLogger(__name__)


def media_format(source_ref: str, declared: str | None) -> str:
    """Declared format, else the extension of the blob ref."""
    if declared:
        return declared.lower().lstrip(".")
    base = source_ref.split("#", 1)[0]
    if "." not in base.rsplit("/", 1)[-1]:
        return ""
    return base.rsplit(".", 1)[-1].lower()


class MediaValidator:
    """
    Validate media against configured formats and limits.

    Example:
        validator = MediaValidator(settings)
        validator.validate(video)  # raises MediaValidationError
        features = validator.features(video, options)
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def validate(self, media: Media) -> None:
        """
        Raises:
            MediaValidationError: reason is one of EMPTY_MEDIA,
                FILE_TOO_LARGE, INVALID_FILE_FORMAT, INVALID_DURATION,
                EMPTY_BATCH
        """
        if isinstance(media, VideoMedia):
            self._validate_video(media)
        elif isinstance(media, ImageMedia):
            self._validate_image(media)
        elif isinstance(media, BatchMedia):
            if not media.items:
                raise MediaValidationError("Batch contains no images", reason="EMPTY_BATCH")
            for item in media.items:
                self._validate_image(item)
        else:
            raise MediaValidationError(f"Unsupported media kind: {type(media).__name__}")

    def features(self, media: Media, options: JobOptions) -> MediaFeatures:
        """Selection inputs for validated media."""
        duration = media.duration_seconds if isinstance(media, VideoMedia) else None
        return MediaFeatures(
            size_bytes=media.size_bytes,
            duration_seconds=duration,
            explicit_override=options.pipeline_override,
            priority=options.priority,
        )

    def _validate_video(self, media: VideoMedia) -> None:
        self._check_common(
            media.source_ref,
            media.size_bytes,
            media_format(media.source_ref, media.format),
            self.settings.supported_video_formats,
            self.settings.max_video_size_bytes,
        )
        duration = media.duration_seconds
        if duration is not None and (math.isnan(duration) or math.isinf(duration) or duration <= 0):
            raise MediaValidationError(
                f"Video duration must be positive, got {duration}",
                reason="INVALID_DURATION",
            )

    def _validate_image(self, media: ImageMedia) -> None:
        self._check_common(
            media.source_ref,
            media.size_bytes,
            media_format(media.source_ref, media.format),
            self.settings.supported_image_formats,
            self.settings.max_image_size_bytes,
        )

    @staticmethod
    def _check_common(
        source_ref: str,
        size_bytes: int,
        fmt: str,
        supported: list[str],
        max_bytes: int,
    ) -> None:
        if size_bytes <= 0:
            raise MediaValidationError("Media file is empty", reason="EMPTY_MEDIA")

        if size_bytes > max_bytes:
            raise MediaValidationError(
                f"File size {size_bytes / (1024 * 1024):.1f}MB exceeds limit of "
                f"{max_bytes / (1024 * 1024):.0f}MB",
                reason="FILE_TOO_LARGE",
            )

        if fmt not in supported:
            raise MediaValidationError(
                f"Unsupported format '{fmt or 'unknown'}'. Supported: {', '.join(supported)}",
                reason="INVALID_FILE_FORMAT",
            )

        logger.debug(f"Validated {source_ref}: {size_bytes} bytes, format={fmt}")
