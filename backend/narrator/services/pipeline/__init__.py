"""
Pipeline module for narration jobs.

This package contains the job engine components:
- orchestrator: Runs a job through its stages
- selector: Picks the backend and its parameters per job
- state_machine: Allowed status transitions
- progress_manager: Weighted progress calculation
- job_store: Job persistence (in-memory and file)

Example:
    from narrator.services.pipeline import PipelineOrchestrator, InMemoryJobStore

    store = InMemoryJobStore()
    orchestrator = PipelineOrchestrator(store, providers)
    job = await orchestrator.run(job_id)

    # Backend selection
    from narrator.services.pipeline import SelectorConfig, select

    plan = select(features, SelectorConfig.from_settings(settings))
"""

from .job_store import (
    FileJobStore,
    InMemoryJobStore,
    JobNotFoundError,
    JobStore,
    get_job_store,
)
from .orchestrator import PipelineOrchestrator
from .progress_manager import ProgressManager
from .selector import BackendProfile, SelectorConfig, select, validate_plan
from .state_machine import can_transition, check_transition, first_stage

__all__ = [
    # Main orchestrator
    "PipelineOrchestrator",
    # Selection
    "select",
    "validate_plan",
    "SelectorConfig",
    "BackendProfile",
    # State and progress
    "ProgressManager",
    "can_transition",
    "check_transition",
    "first_stage",
    # Persistence
    "JobStore",
    "InMemoryJobStore",
    "FileJobStore",
    "JobNotFoundError",
    "get_job_store",
]
