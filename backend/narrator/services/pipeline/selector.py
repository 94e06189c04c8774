"""
Pipeline selection.

Picks the backend for a job from its media features:
1. An explicit override wins.
2. size >= size threshold or duration >= duration threshold -> segmentation.
3. Otherwise -> holistic.
Ties at a threshold go to segmentation.

select() is a pure function of (features, config). The resulting plan is
stored on the job and never re-selected mid-job.
"""

import logging
from dataclasses import dataclass

from narrator.config import Settings, load_pipelines_config
from narrator.models.schemas import (
    ChunkingParams,
    MediaFeatures,
    PipelineBackend,
    PipelinePlan,
    Priority,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

MB = 1024 * 1024


@dataclass
class BackendProfile:
    """
    Parameters a backend runs with.

    Attributes:
        chunking: Unit boundaries configuration
        concurrency_limit: Per-job in-flight units
        high_priority_concurrency: Per-job in-flight units for high priority
        retry: Retry policy for provider calls
        max_size_bytes: Largest media the backend accepts (None = no limit)
        max_duration_seconds: Longest media the backend accepts
    """

    chunking: ChunkingParams
    concurrency_limit: int
    high_priority_concurrency: int
    retry: RetryPolicy
    max_size_bytes: int | None = None
    max_duration_seconds: float | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "BackendProfile":
        limits = data.get("limits") or {}
        max_size_mb = limits.get("max_size_mb")
        concurrency = data.get("concurrency_limit", 3)
        return cls(
            chunking=ChunkingParams(**(data.get("chunking") or {})),
            concurrency_limit=concurrency,
            high_priority_concurrency=data.get("high_priority_concurrency", concurrency),
            retry=RetryPolicy(**(data.get("retry") or {})),
            max_size_bytes=int(max_size_mb * MB) if max_size_mb is not None else None,
            max_duration_seconds=limits.get("max_duration_seconds"),
        )


@dataclass
class SelectorConfig:
    """
    Thresholds and backend profiles used by select().

    Example:
        config = SelectorConfig.from_settings(settings)
        plan = select(MediaFeatures(size_bytes=40 * MB), config)
        assert plan.backend == PipelineBackend.SEGMENTATION
    """

    size_threshold_bytes: int
    duration_threshold_seconds: float
    profiles: dict[PipelineBackend, BackendProfile]

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        pipelines: dict | None = None,
    ) -> "SelectorConfig":
        """
        Build from settings thresholds and config/pipelines.yaml profiles.

        Args:
            settings: Application settings
            pipelines: Already loaded pipelines config (loads YAML if None)
        """
        if pipelines is None:
            pipelines = load_pipelines_config(settings)

        backends = pipelines.get("backends", {})
        profiles = {
            backend: BackendProfile.from_dict(backends.get(backend.value, {}))
            for backend in PipelineBackend
        }
        return cls(
            size_threshold_bytes=settings.segmentation_size_threshold_bytes,
            duration_threshold_seconds=settings.segmentation_duration_threshold_seconds,
            profiles=profiles,
        )


def select(features: MediaFeatures, config: SelectorConfig) -> PipelinePlan:
    """
    Choose the backend and its parameters for a job.

    Args:
        features: Size, duration, override and priority of the media
        config: Thresholds and backend profiles

    Returns:
        Frozen PipelinePlan with a human-readable reason
    """
    if features.explicit_override is not None:
        backend = features.explicit_override
        reason = f"explicit override: {backend.value}"
    elif features.size_bytes >= config.size_threshold_bytes:
        backend = PipelineBackend.SEGMENTATION
        reason = (
            f"size {features.size_bytes / MB:.1f}MB >= "
            f"{config.size_threshold_bytes / MB:.1f}MB"
        )
    elif (
        features.duration_seconds is not None
        and features.duration_seconds >= config.duration_threshold_seconds
    ):
        backend = PipelineBackend.SEGMENTATION
        reason = (
            f"duration {features.duration_seconds:.1f}s >= "
            f"{config.duration_threshold_seconds:.1f}s"
        )
    else:
        backend = PipelineBackend.HOLISTIC
        reason = "below segmentation thresholds"

    profile = config.profiles[backend]
    concurrency = (
        profile.high_priority_concurrency
        if features.priority == Priority.HIGH
        else profile.concurrency_limit
    )

    return PipelinePlan(
        backend=backend,
        chunking=profile.chunking,
        concurrency_limit=concurrency,
        retry=profile.retry,
        reason=reason,
    )


def validate_plan(
    plan: PipelinePlan,
    features: MediaFeatures,
    config: SelectorConfig,
) -> list[str]:
    """
    Check the media against the chosen backend's limits.

    Returns:
        Human-readable violations (empty when the backend can handle it)
    """
    profile = config.profiles[plan.backend]
    violations = []

    if profile.max_size_bytes is not None and features.size_bytes > profile.max_size_bytes:
        violations.append(
            f"size {features.size_bytes / MB:.1f}MB exceeds {plan.backend.value} "
            f"limit of {profile.max_size_bytes / MB:.0f}MB"
        )

    if (
        profile.max_duration_seconds is not None
        and features.duration_seconds is not None
        and features.duration_seconds > profile.max_duration_seconds
    ):
        violations.append(
            f"duration {features.duration_seconds:.0f}s exceeds {plan.backend.value} "
            f"limit of {profile.max_duration_seconds:.0f}s"
        )

    return violations
