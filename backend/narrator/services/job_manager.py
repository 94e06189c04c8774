"""
Job manager for narration jobs.

Entry point of the engine: validates submissions, selects the pipeline,
persists the job and runs one orchestrating task per job. Exposes the
status API, cancellation and restart of incomplete jobs.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta

from narrator.config import Settings, get_settings
from narrator.models.schemas import (
    Job,
    JobKind,
    JobOptions,
    Media,
    PartialResult,
    ProcessingStatus,
    StatusPayload,
    SystemHealth,
)
from narrator.services.chunker import MediaChunker
from narrator.services.concurrency import CancellationToken, CancelReason, ProviderGate
from narrator.services.errors import MediaValidationError
from narrator.services.media_validator import MediaValidator
from narrator.services.pipeline import (
    PipelineOrchestrator,
    SelectorConfig,
    get_job_store,
    select,
    validate_plan,
)
from narrator.services.pipeline.job_store import JobStore
from narrator.services.providers import ProviderSet, create_providers

logger = logging.getLogger(__name__)

# Active jobs above this count mark the system degraded
DEGRADED_ACTIVE_JOBS = 10


class JobManager:
    """
    Manager for narration jobs.

    Example:
        manager = JobManager.from_settings(settings)
        job = await manager.submit(VideoMedia(source_ref=ref, size_bytes=size, duration_seconds=125))

        status = await manager.get_status(job.id)
        print(status.status, status.progress)

        job = await manager.wait(job.id)
    """

    def __init__(
        self,
        store: JobStore,
        orchestrator: PipelineOrchestrator,
        settings: Settings | None = None,
        selector_config: SelectorConfig | None = None,
    ):
        """
        Initialize job manager.

        Args:
            store: Job store shared with the orchestrator
            orchestrator: Runs jobs to completion
            settings: Application settings (uses defaults if None)
            selector_config: Thresholds and backend profiles (loaded from
                config/pipelines.yaml if None)
        """
        self.settings = settings or get_settings()
        self.store = store
        self.orchestrator = orchestrator
        self.selector_config = selector_config or SelectorConfig.from_settings(self.settings)
        self.validator = MediaValidator(self.settings)
        self.chunker = MediaChunker()
        self._tasks: dict[str, asyncio.Task] = {}
        self._tokens: dict[str, CancellationToken] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        providers: ProviderSet | None = None,
    ) -> "JobManager":
        """Wire store, providers and orchestrator from settings."""
        store = get_job_store(settings)
        providers = providers or create_providers(settings)
        gate = ProviderGate(settings.global_max_in_flight, settings.provider_call_timeout_seconds)
        orchestrator = PipelineOrchestrator(store, providers, settings, gate=gate)
        return cls(store, orchestrator, settings)

    # ═══════════════════════════════════════════════════════════════════════════
    # Submission
    # ═══════════════════════════════════════════════════════════════════════════

    async def submit(self, media: Media, options: JobOptions | None = None) -> Job:
        """
        Validate media, select the pipeline, persist and start the job.

        Args:
            media: Video, image or batch
            options: Audio, pipeline override and priority

        Returns:
            Created job (status pending)

        Raises:
            MediaValidationError: Media rejected; no job is created
        """
        options = options or JobOptions()

        self.validator.validate(media)
        features = self.validator.features(media, options)
        plan = select(features, self.selector_config)

        violations = validate_plan(plan, features, self.selector_config)
        if violations:
            raise MediaValidationError("; ".join(violations), reason="PIPELINE_LIMIT")

        # Dry run: media that cannot be chunked never becomes a job
        self.chunker.chunk(media, plan.chunking)

        now = datetime.now()
        job = Job(
            id=str(uuid.uuid4())[:8],
            kind=JobKind(media.kind),
            media=media,
            options=options,
            plan=plan,
            message="Queued",
            created_at=now,
            updated_at=now,
            deadline_at=now + timedelta(seconds=self.settings.job_deadline_seconds),
        )
        await self.store.put(job)

        logger.info(
            f"Created job {job.id}: kind={job.kind.value}, "
            f"pipeline={plan.backend.value} ({plan.reason})"
        )

        self.start(job.id)
        return job

    def start(self, job_id: str) -> asyncio.Task:
        """Spawn the orchestrating task for a job (one task per job)."""
        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing

        token = CancellationToken()
        task = asyncio.create_task(self.orchestrator.run(job_id, token))
        self._tasks[job_id] = task
        self._tokens[job_id] = token

        def cleanup(done: asyncio.Task) -> None:
            if self._tasks.get(job_id) is done:
                del self._tasks[job_id]
                self._tokens.pop(job_id, None)

        task.add_done_callback(cleanup)
        return task

    async def cancel(self, job_id: str) -> bool:
        """
        Request cancellation of a running job.

        The job ends as failed with code CANCELLED once in-flight provider
        calls have drained.

        Returns:
            True if a running job was signalled
        """
        token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel(CancelReason.CANCELLED)
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    async def wait(self, job_id: str) -> Job | None:
        """Wait for the job's task (if running) and return the job."""
        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return await self.store.get(job_id)

    async def resume_incomplete(self) -> list[str]:
        """
        Restart orchestration for non-terminal jobs in the store.

        Used at startup with a durable store. Stages are idempotent, so a
        job resumes from its stored status and skips described units.

        Returns:
            Ids of restarted jobs
        """
        resumed = []
        for job in await self.store.list_jobs():
            if job.is_terminal or job.id in self._tokens:
                continue
            self.start(job.id)
            resumed.append(job.id)

        if resumed:
            logger.info(f"Resumed {len(resumed)} incomplete jobs: {', '.join(resumed)}")
        return resumed

    async def shutdown(self) -> None:
        """Cancel running jobs and wait for their tasks."""
        for token in list(self._tokens.values()):
            token.cancel(CancelReason.CANCELLED)
        tasks = [task for task in self._tasks.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks)

    # ═══════════════════════════════════════════════════════════════════════════
    # Status API
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_job(self, job_id: str) -> Job | None:
        return await self.store.get(job_id)

    async def list_jobs(self) -> list[Job]:
        return await self.store.list_jobs()

    async def get_status(self, job_id: str) -> StatusPayload | None:
        """
        Build the status payload of a job.

        Args:
            job_id: Job identifier

        Returns:
            StatusPayload or None if the job does not exist
        """
        job = await self.store.get(job_id)
        if job is None:
            return None

        partial_results = [
            PartialResult(
                index=unit.index,
                start_time=unit.start_time,
                end_time=unit.end_time,
                text=unit.result.text,
            )
            for unit in job.units
            if unit.result is not None
        ]

        return StatusPayload(
            job_id=job.id,
            kind=job.kind,
            status=job.status,
            step=job.step,
            progress=round(job.progress, 1),
            message=job.message,
            pipeline=job.pipeline,
            total_units=len(job.units),
            succeeded_units=job.succeeded_units,
            failed_units=job.failed_units,
            partial_results=partial_results or None,
            compiled_text=job.compiled_text,
            audio_ref=job.audio_ref,
            error=job.error,
        )

    async def system_health(self) -> SystemHealth:
        """
        Derive health from job counts.

        unhealthy: more failed than active jobs (and at least one failure)
        degraded: any failure, or more than DEGRADED_ACTIVE_JOBS active
        """
        jobs = await self.store.list_jobs()
        active = sum(1 for job in jobs if not job.is_terminal)
        completed = sum(
            1 for job in jobs
            if job.status in (ProcessingStatus.COMPLETED, ProcessingStatus.PARTIAL_COMPLETED)
        )
        failed = sum(1 for job in jobs if job.status == ProcessingStatus.FAILED)

        if failed > 0 and failed > active:
            status = "unhealthy"
        elif failed > 0 or active > DEGRADED_ACTIVE_JOBS:
            status = "degraded"
        else:
            status = "healthy"

        return SystemHealth(
            status=status,
            total_jobs=len(jobs),
            active_jobs=active,
            completed_jobs=completed,
            failed_jobs=failed,
        )


_job_manager: JobManager | None = None


def get_job_manager() -> JobManager:
    """Get global job manager instance (created from settings on first use)."""
    global _job_manager
    if _job_manager is None:
        _job_manager = JobManager.from_settings(get_settings())
    return _job_manager
