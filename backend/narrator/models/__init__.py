"""
Pydantic models for the narration pipeline.

Exports the job record, media union, plan and status payload models.
"""

from narrator.models.schemas import (
    AnalysisResult,
    BatchMedia,
    ChunkingParams,
    CompiledDescription,
    ErrorInfo,
    ImageMedia,
    Job,
    JobKind,
    JobOptions,
    Media,
    MediaFeatures,
    PipelineBackend,
    PipelinePlan,
    Priority,
    ProcessingStatus,
    ProcessingStep,
    RetryPolicy,
    Segment,
    StatusPayload,
    Unit,
    VideoMedia,
)

__all__ = [
    # Job
    "Job",
    "JobKind",
    "JobOptions",
    "ProcessingStatus",
    "ProcessingStep",
    "StatusPayload",
    "ErrorInfo",
    # Media
    "Media",
    "VideoMedia",
    "ImageMedia",
    "BatchMedia",
    "MediaFeatures",
    "Priority",
    # Plan
    "PipelineBackend",
    "PipelinePlan",
    "ChunkingParams",
    "RetryPolicy",
    # Units
    "Unit",
    "Segment",
    "AnalysisResult",
    "CompiledDescription",
]
