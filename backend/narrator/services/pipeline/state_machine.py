"""
Job status transitions.

Video:        pending -> chunking -> analyzing -> compiling -> synthesizing -> completed
Image/batch:  pending -> analyzing -> compiling -> synthesizing -> completed

- failed is reachable from any non-terminal status
- partial_completed is reachable only from compiling or synthesizing
- synthesizing is skipped when audio is not requested
- re-entering the current status is a no-op (idempotent restart)
- terminal statuses are final
"""

from narrator.models.schemas import JobKind, ProcessingStatus, ProcessingStep
from narrator.services.errors import InternalPipelineError

S = ProcessingStatus

_FORWARD: dict[JobKind, dict[ProcessingStatus, frozenset[ProcessingStatus]]] = {
    JobKind.VIDEO: {
        S.PENDING: frozenset({S.CHUNKING}),
        S.CHUNKING: frozenset({S.ANALYZING}),
        S.ANALYZING: frozenset({S.COMPILING}),
        S.COMPILING: frozenset({S.SYNTHESIZING, S.COMPLETED, S.PARTIAL_COMPLETED}),
        S.SYNTHESIZING: frozenset({S.COMPLETED, S.PARTIAL_COMPLETED}),
    },
    JobKind.IMAGE: {
        S.PENDING: frozenset({S.ANALYZING}),
        S.ANALYZING: frozenset({S.COMPILING}),
        S.COMPILING: frozenset({S.SYNTHESIZING, S.COMPLETED, S.PARTIAL_COMPLETED}),
        S.SYNTHESIZING: frozenset({S.COMPLETED, S.PARTIAL_COMPLETED}),
    },
}
_FORWARD[JobKind.BATCH] = _FORWARD[JobKind.IMAGE]

STATUS_TO_STEP = {
    S.PENDING: ProcessingStep.QUEUED,
    S.CHUNKING: ProcessingStep.CHUNKING,
    S.ANALYZING: ProcessingStep.ANALYZING,
    S.COMPILING: ProcessingStep.COMPILING,
    S.SYNTHESIZING: ProcessingStep.SYNTHESIZING,
    S.COMPLETED: ProcessingStep.DONE,
    S.PARTIAL_COMPLETED: ProcessingStep.DONE,
}


def first_stage(kind: JobKind) -> ProcessingStatus:
    """Stage a job of this kind starts with after pending."""
    return S.CHUNKING if kind == JobKind.VIDEO else S.ANALYZING


def can_transition(kind: JobKind, current: ProcessingStatus, target: ProcessingStatus) -> bool:
    if current == target:
        return True
    if current.is_terminal:
        return False
    if target == S.FAILED:
        return True
    return target in _FORWARD[kind].get(current, frozenset())


def check_transition(kind: JobKind, current: ProcessingStatus, target: ProcessingStatus) -> None:
    """
    Raise unless current -> target is allowed.

    Raises:
        InternalPipelineError: Invalid transition
    """
    if not can_transition(kind, current, target):
        raise InternalPipelineError(
            f"Invalid transition for {kind.value} job: {current.value} -> {target.value}",
            stage=current,
        )


def step_for(status: ProcessingStatus, previous: ProcessingStep) -> ProcessingStep:
    """Step shown for a status; failure keeps the step it failed in."""
    return STATUS_TO_STEP.get(status, previous)
