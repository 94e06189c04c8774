"""
Error taxonomy for the narration pipeline.

Every error carries a stable code. to_error_info() produces the summary
stored on the job and returned by the status API: a fixed human message
per code, never a stack trace, provider URL or credential.

Hierarchy:
    PipelineError
    ├── MediaValidationError      VALIDATION_ERROR (at submission)
    ├── ProviderError
    │   ├── RetryableProviderError  PROVIDER_RETRYABLE
    │   └── TerminalProviderError   PROVIDER_TERMINAL
    ├── JobTimeoutError           TIMEOUT
    ├── JobCancelledError         CANCELLED
    ├── PartialFailure            PARTIAL_FAILURE
    ├── AllUnitsFailedError       ALL_UNITS_FAILED
    └── InternalPipelineError     INTERNAL_ERROR
"""

from enum import Enum

from narrator.models.schemas import ErrorInfo, ProcessingStatus


class ErrorCode(str, Enum):
    """Stable error codes exposed to callers."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROVIDER_RETRYABLE = "PROVIDER_RETRYABLE"
    PROVIDER_TERMINAL = "PROVIDER_TERMINAL"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    ALL_UNITS_FAILED = "ALL_UNITS_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


PUBLIC_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_ERROR: "The uploaded media is invalid",
    ErrorCode.PROVIDER_RETRYABLE: "A processing service was temporarily unavailable",
    ErrorCode.PROVIDER_TERMINAL: "A processing service rejected the request",
    ErrorCode.TIMEOUT: "Processing did not finish within the time limit",
    ErrorCode.CANCELLED: "Processing was cancelled",
    ErrorCode.PARTIAL_FAILURE: "Some parts of the media could not be described",
    ErrorCode.ALL_UNITS_FAILED: "No part of the media could be described",
    ErrorCode.INTERNAL_ERROR: "An internal error occurred",
}


class PipelineError(Exception):
    """
    Pipeline error with context.

    Attributes:
        code: Stable error code
        message: Internal error description (logged, not exposed)
        stage: Processing stage where error occurred
        cause: Original exception (if any)
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        stage: ProcessingStatus | None = None,
        cause: Exception | None = None,
    ):
        self.message = message
        self.stage = stage
        self.cause = cause
        if stage is not None:
            super().__init__(f"[{stage.value}] {message}")
        else:
            super().__init__(message)

    @property
    def public_message(self) -> str:
        return PUBLIC_MESSAGES[self.code]

    def to_error_info(self) -> ErrorInfo:
        """Build the non-leaking summary stored on jobs and units."""
        return ErrorInfo(code=self.code.value, message=self.public_message)


class MediaValidationError(PipelineError):
    """Raised at submission for unsupported, oversized or corrupt media."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, reason: str = "INVALID_MEDIA", **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason

    @property
    def public_message(self) -> str:
        return f"{PUBLIC_MESSAGES[self.code]} ({self.reason})"


class ProviderError(PipelineError):
    """
    Base exception for provider adapter errors.

    Attributes:
        provider: Provider name (segmentation, vision, synthesis, claude)
        status_code: HTTP status code if available
        original_error: Underlying exception if available
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        original_error: Exception | None = None,
        **kwargs,
    ):
        super().__init__(message, cause=original_error, **kwargs)
        self.provider = provider
        self.status_code = status_code
        self.original_error = original_error

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return " | ".join(parts)


class RetryableProviderError(ProviderError):
    """Transient failure: throttling, timeout, 5xx, dropped connection."""

    code = ErrorCode.PROVIDER_RETRYABLE


class TerminalProviderError(ProviderError):
    """Permanent failure: bad input, auth, unsupported format."""

    code = ErrorCode.PROVIDER_TERMINAL


class JobTimeoutError(PipelineError):
    """Raised when the job deadline is exceeded."""

    code = ErrorCode.TIMEOUT


class JobCancelledError(PipelineError):
    """Raised when the job was cancelled by the caller."""

    code = ErrorCode.CANCELLED


class PartialFailure(PipelineError):
    """Job-level summary when some, but not all, units failed."""

    code = ErrorCode.PARTIAL_FAILURE

    def __init__(self, failed: int, total: int, **kwargs):
        super().__init__(f"{failed} of {total} units failed", **kwargs)
        self.failed = failed
        self.total = total

    @property
    def public_message(self) -> str:
        return f"{PUBLIC_MESSAGES[self.code]} ({self.failed} of {self.total})"


class AllUnitsFailedError(PipelineError):
    """Raised when every unit failed permanently."""

    code = ErrorCode.ALL_UNITS_FAILED


class InternalPipelineError(PipelineError):
    """Unexpected failure inside the engine (invariant violation, bug)."""

    code = ErrorCode.INTERNAL_ERROR
