"""
Media chunker: splits media into ordered units of work.

Video with known duration is cut into fixed windows with overlap:
    step = window - overlap, unit k covers [k*step, min(k*step + window, duration)]
and emission stops once a unit reaches the end of the media. Boundaries are
computed from k, never accumulated, so the same (duration, params) always
yields the same units.

Video with unknown duration is cut into contiguous byte ranges.
Images produce one unit each; a batch produces one unit per item.

Segmentation backend: units_from_segments() groups provider shots into
units no longer than the window, then closes gaps so the whole media is
covered.

Configuration:
    MIN_UNIT_DURATION: Floor for byte-budget derived windows (seconds)
"""

import logging
import math

from narrator.models.schemas import (
    BatchMedia,
    ChunkingParams,
    ImageMedia,
    Media,
    Segment,
    Unit,
    VideoMedia,
)
from narrator.services.errors import MediaValidationError

logger = logging.getLogger(__name__)

MIN_UNIT_DURATION = 10.0
BOUNDARY_PRECISION = 3


def _round(value: float) -> float:
    return round(value, BOUNDARY_PRECISION)


def _fmt(value: float) -> str:
    return f"{value:g}"


def time_ref(source_ref: str, start: float, end: float) -> str:
    """Media-fragment reference to a time window: 'ref#t=28,58'."""
    return f"{source_ref}#t={_fmt(start)},{_fmt(end)}"


def byte_ref(source_ref: str, first: int, last: int) -> str:
    """Media-fragment reference to an inclusive byte range: 'ref#bytes=0-99'."""
    return f"{source_ref}#bytes={first}-{last}"


class MediaChunker:
    """
    Split media into units.

    Example:
        chunker = MediaChunker()
        units = chunker.chunk(video, ChunkingParams(max_unit_duration=30, overlap_seconds=2))
        for unit in units:
            print(unit.index, unit.start_time, unit.end_time)
    """

    def chunk(self, media: Media, params: ChunkingParams) -> list[Unit]:
        """
        Split media into ordered units.

        Args:
            media: Video, image or batch
            params: Window, byte budget, overlap and keyframe settings

        Returns:
            Units ordered by index

        Raises:
            MediaValidationError: Non-positive or NaN duration, empty
                media, overlap not smaller than the window, or unknown
                duration without a byte budget
        """
        if isinstance(media, ImageMedia):
            self._check_size(media.size_bytes, media.source_ref)
            return [Unit(index=0, source_ref=media.source_ref, size_bytes=media.size_bytes)]

        if isinstance(media, BatchMedia):
            if not media.items:
                raise MediaValidationError("Batch contains no images", reason="EMPTY_BATCH")
            for item in media.items:
                self._check_size(item.size_bytes, item.source_ref)
            return [
                Unit(index=i, source_ref=item.source_ref, size_bytes=item.size_bytes)
                for i, item in enumerate(media.items)
            ]

        return self._chunk_video(media, params)

    def effective_window(self, media: VideoMedia, params: ChunkingParams) -> float:
        """
        Window length after applying the byte budget.

        With a byte budget and a known byte rate the window shrinks to
        max_unit_bytes / bytes_per_second, never below MIN_UNIT_DURATION
        (unless max_unit_duration itself is smaller).
        """
        window = params.max_unit_duration
        duration = media.duration_seconds
        if params.max_unit_bytes and duration and media.size_bytes > 0:
            bytes_per_second = media.size_bytes / duration
            by_bytes = params.max_unit_bytes / bytes_per_second
            window = min(window, max(by_bytes, MIN_UNIT_DURATION))
        return window

    # ═══════════════════════════════════════════════════════════════════════════
    # Video
    # ═══════════════════════════════════════════════════════════════════════════

    def _chunk_video(self, media: VideoMedia, params: ChunkingParams) -> list[Unit]:
        self._validate_params(params)
        self._check_size(media.size_bytes, media.source_ref)

        duration = media.duration_seconds
        if duration is None:
            if not params.max_unit_bytes:
                raise MediaValidationError(
                    "Video duration is unknown and no byte budget is configured",
                    reason="UNKNOWN_DURATION",
                )
            return self._chunk_by_bytes(media, params.max_unit_bytes)

        if math.isnan(duration) or math.isinf(duration) or duration <= 0:
            raise MediaValidationError(
                f"Video duration must be positive, got {duration}",
                reason="INVALID_DURATION",
            )

        window = self.effective_window(media, params)

        # Shorter than one unit: single unit, no overlap
        if duration <= window:
            units = [
                Unit(
                    index=0,
                    source_ref=time_ref(media.source_ref, 0.0, _round(duration)),
                    start_time=0.0,
                    end_time=_round(duration),
                    size_bytes=media.size_bytes,
                )
            ]
            logger.info(f"Chunked {media.source_ref}: 1 unit ({duration:.1f}s)")
            return units

        overlap = params.overlap_seconds
        if overlap >= window:
            raise MediaValidationError(
                f"Overlap {overlap}s must be smaller than unit window {window:.1f}s",
                reason="INVALID_OVERLAP",
            )

        step = window - overlap
        keyframe_interval = media.keyframe_interval_seconds if params.keyframe_align else None

        units: list[Unit] = []
        previous_start = -1.0
        k = 0
        while True:
            nominal_start = k * step
            last = _round(nominal_start + window) >= _round(duration)
            end = _round(duration) if last else _round(nominal_start + window)
            start = _round(nominal_start)
            if keyframe_interval:
                start = self._snap_to_keyframe(start, keyframe_interval, previous_start)

            units.append(
                Unit(
                    index=k,
                    source_ref=time_ref(media.source_ref, start, end),
                    start_time=start,
                    end_time=end,
                    size_bytes=int(media.size_bytes * (end - start) / duration),
                )
            )

            if last:
                break
            previous_start = start
            k += 1

        logger.info(
            f"Chunked {media.source_ref}: {len(units)} units "
            f"(window={window:.1f}s, overlap={overlap}s, duration={duration:.1f}s)"
        )
        return units

    @staticmethod
    def _snap_to_keyframe(start: float, interval: float, previous_start: float) -> float:
        """
        Move start down to the previous keyframe; never onto or before the previous unit.

        The end stays at the nominal boundary, so a snapped unit can exceed
        the window by up to one keyframe interval. Clamping the end instead
        would open gaps whenever the interval is larger than the overlap.
        """
        snapped = _round(math.floor(start / interval) * interval)
        if snapped <= previous_start:
            return start
        return snapped

    def _chunk_by_bytes(self, media: VideoMedia, max_unit_bytes: int) -> list[Unit]:
        count = math.ceil(media.size_bytes / max_unit_bytes)
        units = []
        for i in range(count):
            first = i * max_unit_bytes
            last = min(first + max_unit_bytes, media.size_bytes) - 1
            units.append(
                Unit(
                    index=i,
                    source_ref=byte_ref(media.source_ref, first, last),
                    size_bytes=last - first + 1,
                )
            )

        logger.info(
            f"Chunked {media.source_ref} by bytes: {count} units "
            f"({max_unit_bytes} bytes each, duration unknown)"
        )
        return units

    # ═══════════════════════════════════════════════════════════════════════════
    # Segmentation backend
    # ═══════════════════════════════════════════════════════════════════════════

    def units_from_segments(
        self,
        media: VideoMedia,
        segments: list[Segment],
        params: ChunkingParams,
    ) -> list[Unit]:
        """
        Build units from provider shots.

        Shots under params.min_segment_confidence are dropped. Consecutive
        shots are grouped while the group fits in max_unit_duration. Gaps
        are closed (each unit starts where the previous ended), the first
        unit starts at 0 and the last ends at the media end. Groups longer
        than the window (one very long shot) are split evenly.

        Falls back to chunk() when no usable shots remain.

        Args:
            media: Segmented video
            segments: Shots from the segmentation provider
            params: Chunking parameters of the plan

        Returns:
            Contiguous units ordered by index
        """
        self._validate_params(params)

        usable = sorted(
            (
                s for s in segments
                if s.confidence >= params.min_segment_confidence and s.end > s.start
            ),
            key=lambda s: s.start,
        )

        duration = media.duration_seconds
        if duration is None and usable:
            duration = max(s.end for s in usable)

        if not usable or not duration or duration <= 0:
            logger.warning(
                f"No usable segments for {media.source_ref} "
                f"({len(segments)} received), falling back to fixed windows"
            )
            return self.chunk(media, params)

        window = params.max_unit_duration

        groups: list[tuple[float, float]] = []
        group_start, group_end = usable[0].start, usable[0].end
        for segment in usable[1:]:
            if segment.end - group_start <= window:
                group_end = max(group_end, segment.end)
            else:
                groups.append((group_start, group_end))
                group_start, group_end = segment.start, segment.end
        groups.append((group_start, group_end))

        # Close gaps and pin both ends to the media
        bounds: list[tuple[float, float]] = []
        for _, group_end in groups:
            start = bounds[-1][1] if bounds else 0.0
            end = min(group_end, duration)
            if end <= start:
                continue
            bounds.append((start, end))

        if not bounds:
            return self.chunk(media, params)
        bounds[-1] = (bounds[-1][0], duration)

        units: list[Unit] = []
        for start, end in bounds:
            pieces = max(1, math.ceil(_round(end - start) / window))
            piece_length = (end - start) / pieces
            for p in range(pieces):
                piece_start = _round(start + p * piece_length)
                piece_end = _round(end if p == pieces - 1 else start + (p + 1) * piece_length)
                units.append(
                    Unit(
                        index=len(units),
                        source_ref=time_ref(media.source_ref, piece_start, piece_end),
                        start_time=piece_start,
                        end_time=piece_end,
                        size_bytes=int(media.size_bytes * (piece_end - piece_start) / duration),
                    )
                )

        logger.info(
            f"Grouped {len(usable)}/{len(segments)} shots of {media.source_ref} "
            f"into {len(units)} units"
        )
        return units

    # ═══════════════════════════════════════════════════════════════════════════
    # Validation
    # ═══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def _validate_params(params: ChunkingParams) -> None:
        if params.max_unit_duration <= 0:
            raise MediaValidationError(
                f"Unit window must be positive, got {params.max_unit_duration}",
                reason="INVALID_CHUNKING",
            )
        if params.overlap_seconds < 0 or params.overlap_seconds >= params.max_unit_duration:
            raise MediaValidationError(
                f"Overlap {params.overlap_seconds}s must be in [0, {params.max_unit_duration})",
                reason="INVALID_OVERLAP",
            )
        if params.max_unit_bytes is not None and params.max_unit_bytes <= 0:
            raise MediaValidationError(
                f"Byte budget must be positive, got {params.max_unit_bytes}",
                reason="INVALID_CHUNKING",
            )

    @staticmethod
    def _check_size(size_bytes: int, source_ref: str) -> None:
        if size_bytes <= 0:
            logger.warning(f"Rejected empty media: {source_ref}")
            raise MediaValidationError("Media is empty", reason="EMPTY_MEDIA")
