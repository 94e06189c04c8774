"""
Pydantic models for the narration pipeline.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


class JobKind(str, Enum):
    """Kind of media a job narrates."""
    VIDEO = "video"
    IMAGE = "image"
    BATCH = "batch"


class ProcessingStatus(str, Enum):
    """Status of a narration job."""
    PENDING = "pending"
    CHUNKING = "chunking"
    ANALYZING = "analyzing"
    COMPILING = "compiling"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"
    PARTIAL_COMPLETED = "partial_completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ProcessingStatus.COMPLETED,
    ProcessingStatus.PARTIAL_COMPLETED,
    ProcessingStatus.FAILED,
})


class ProcessingStep(str, Enum):
    """Last stage the job entered (kept after failure for diagnostics)."""
    QUEUED = "queued"
    CHUNKING = "chunking"
    ANALYZING = "analyzing"
    COMPILING = "compiling"
    SYNTHESIZING = "synthesizing"
    DONE = "done"


class PipelineBackend(str, Enum):
    """Pipeline backend.

    - segmentation: provider cuts video into shots, shots grouped into units
    - holistic: fixed overlapping windows, each analysed whole
    """
    SEGMENTATION = "segmentation"
    HOLISTIC = "holistic"


class Priority(str, Enum):
    """Caller-supplied job priority."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


# ═══════════════════════════════════════════════════════════════════════════
# Media
# ═══════════════════════════════════════════════════════════════════════════


class VideoMedia(BaseModel):
    """Uploaded video referenced by blob ref."""

    kind: Literal["video"] = "video"
    source_ref: str
    size_bytes: int
    duration_seconds: float | None = None
    format: str | None = None
    keyframe_interval_seconds: float | None = None


class ImageMedia(BaseModel):
    """Single uploaded image."""

    kind: Literal["image"] = "image"
    source_ref: str
    size_bytes: int
    format: str | None = None
    item_id: str | None = None


class BatchMedia(BaseModel):
    """Batch of images narrated as one job, in submission order."""

    kind: Literal["batch"] = "batch"
    items: list[ImageMedia]

    @property
    def size_bytes(self) -> int:
        return sum(item.size_bytes for item in self.items)


Media = Annotated[Union[VideoMedia, ImageMedia, BatchMedia], Field(discriminator="kind")]


class MediaFeatures(BaseModel):
    """Inputs of pipeline selection."""

    size_bytes: int
    duration_seconds: float | None = None
    explicit_override: PipelineBackend | None = None
    priority: Priority = Priority.NORMAL


# ═══════════════════════════════════════════════════════════════════════════
# Plan
# ═══════════════════════════════════════════════════════════════════════════


class ChunkingParams(BaseModel):
    """Unit boundaries configuration.

    Attributes:
        max_unit_duration: Window length in seconds
        max_unit_bytes: Byte budget per unit (None = no byte limit)
        overlap_seconds: Overlap between adjacent windows
        keyframe_align: Snap window starts down to keyframes
        min_segment_confidence: Minimum shot confidence (0-100) on the
            segmentation backend
    """

    model_config = ConfigDict(frozen=True)

    max_unit_duration: float = 30.0
    max_unit_bytes: int | None = None
    overlap_seconds: float = 0.0
    keyframe_align: bool = False
    min_segment_confidence: float = 80.0


class RetryPolicy(BaseModel):
    """Exponential backoff policy for retryable provider errors."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    jitter: float = Field(default=0.0, ge=0)


class PipelinePlan(BaseModel):
    """Chosen backend with its parameters. Produced once per job."""

    model_config = ConfigDict(frozen=True)

    backend: PipelineBackend
    chunking: ChunkingParams
    concurrency_limit: int = Field(ge=1)
    retry: RetryPolicy
    reason: str = ""


# ═══════════════════════════════════════════════════════════════════════════
# Units and results
# ═══════════════════════════════════════════════════════════════════════════


class ErrorInfo(BaseModel):
    """Stable error summary exposed to callers."""

    code: str
    message: str


class AnalysisResult(BaseModel):
    """Description of one unit. Immutable once written."""

    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float = Field(default=1.0, ge=0, le=1)
    attributes: dict[str, Any] = Field(default_factory=dict)


class Segment(BaseModel):
    """Shot reported by the segmentation provider (confidence 0-100)."""

    start: float
    end: float
    confidence: float = 100.0


class Unit(BaseModel):
    """Unit of work dispatched to a provider."""

    index: int
    source_ref: str
    start_time: float | None = None
    end_time: float | None = None
    size_bytes: int | None = None
    result: AnalysisResult | None = None
    error: ErrorInfo | None = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.result is not None

    @property
    def failed(self) -> bool:
        return self.result is None and self.error is not None

    @property
    def duration(self) -> float | None:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time


class DescriptionMetadata(BaseModel):
    """Summary of a compiled description."""

    total_units: int = 0
    total_duration: float = 0.0
    average_confidence: float = 0.0
    word_count: int = 0


class CompiledDescription(BaseModel):
    """Unified narrative produced from ordered unit results."""

    text: str
    timestamped_text: str | None = None
    metadata: DescriptionMetadata = Field(default_factory=DescriptionMetadata)


# ═══════════════════════════════════════════════════════════════════════════
# Job
# ═══════════════════════════════════════════════════════════════════════════


class JobOptions(BaseModel):
    """Caller options attached at submission."""

    generate_audio: bool = True
    pipeline_override: PipelineBackend | None = None
    priority: Priority = Priority.NORMAL


class Job(BaseModel):
    """Narration job record."""

    id: str
    kind: JobKind
    media: Media
    options: JobOptions = Field(default_factory=JobOptions)
    status: ProcessingStatus = ProcessingStatus.PENDING
    step: ProcessingStep = ProcessingStep.QUEUED
    progress: float = Field(default=0.0, ge=0, le=100)
    message: str = ""
    plan: PipelinePlan | None = None
    units: list[Unit] = Field(default_factory=list)
    compiled_text: str | None = None
    timestamped_text: str | None = None
    description_metadata: DescriptionMetadata | None = None
    audio_ref: str | None = None
    error: ErrorInfo | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    deadline_at: datetime | None = None

    @property
    def pipeline(self) -> PipelineBackend | None:
        return self.plan.backend if self.plan else None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def succeeded_units(self) -> int:
        return sum(1 for unit in self.units if unit.succeeded)

    @property
    def failed_units(self) -> int:
        return sum(1 for unit in self.units if unit.failed)


class PartialResult(BaseModel):
    """Per-unit text exposed in the status payload."""

    index: int
    start_time: float | None = None
    end_time: float | None = None
    text: str


class StatusPayload(BaseModel):
    """Job status as returned by the status API."""

    job_id: str
    kind: JobKind
    status: ProcessingStatus
    step: ProcessingStep
    progress: float
    message: str
    pipeline: PipelineBackend | None = None
    total_units: int = 0
    succeeded_units: int = 0
    failed_units: int = 0
    partial_results: list[PartialResult] | None = None
    compiled_text: str | None = None
    audio_ref: str | None = None
    error: ErrorInfo | None = None

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """True once the job reached a terminal status."""
        return self.status.is_terminal


class SystemHealth(BaseModel):
    """Aggregate health derived from job counts."""

    status: Literal["healthy", "degraded", "unhealthy"]
    total_jobs: int
    active_jobs: int
    completed_jobs: int
    failed_jobs: int
