"""
Pipeline orchestrator for narration jobs.

Drives one job through its stages, persisting every transition and every
settled unit through the job store:

    video:        chunking -> analyzing -> compiling -> synthesizing
    image/batch:  analyzing -> compiling -> synthesizing

Stages are idempotent: run() picks up from the stored status, reuses
stored units and skips units that already have a result, so a job can be
restarted after a crash.
"""

import asyncio
import logging
import time
from datetime import datetime

from narrator.config import Settings, get_settings
from narrator.logging_config import bind_job
from narrator.models.schemas import (
    Job,
    PipelineBackend,
    ProcessingStatus,
    Unit,
    VideoMedia,
)
from narrator.services.chunker import MediaChunker
from narrator.services.compiler import DescriptionCompiler
from narrator.services.concurrency import (
    CancellationToken,
    CancelReason,
    ConcurrencyController,
    Outcome,
    ProviderGate,
    cancellation_error,
)
from narrator.services.errors import (
    AllUnitsFailedError,
    InternalPipelineError,
    PartialFailure,
    PipelineError,
)
from narrator.services.narration_synthesizer import NarrationSynthesizer
from narrator.services.providers.factory import ProviderSet
from narrator.services.retry import with_retry

from .job_store import JobNotFoundError, JobStore
from .progress_manager import ProgressManager
from .state_machine import first_stage

logger = logging.getLogger(__name__)
perf_logger = logging.getLogger("narrator.perf")


class PipelineOrchestrator:
    """
    Runs narration jobs stored in a JobStore.

    Example:
        orchestrator = PipelineOrchestrator(store, providers, settings)
        token = CancellationToken()
        job = await orchestrator.run(job_id, token)
        print(job.status, job.compiled_text)
    """

    def __init__(
        self,
        store: JobStore,
        providers: ProviderSet,
        settings: Settings | None = None,
        gate: ProviderGate | None = None,
        chunker: MediaChunker | None = None,
        compiler: DescriptionCompiler | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Job store (only mutated through update())
            providers: Segmentation, vision, synthesis and blob adapters
            settings: Application settings (uses defaults if None)
            gate: Process-wide provider gate shared by all jobs
            chunker: Media chunker
            compiler: Description compiler
        """
        self.settings = settings or get_settings()
        self.store = store
        self.providers = providers
        self.gate = gate or ProviderGate(
            self.settings.global_max_in_flight,
            self.settings.provider_call_timeout_seconds,
        )
        self.chunker = chunker or MediaChunker()
        self.compiler = compiler or DescriptionCompiler()
        self.progress_manager = ProgressManager()
        self.synthesizer = NarrationSynthesizer(
            providers.synthesis,
            providers.blob_store,
            self.gate,
            max_chars=self.settings.synthesis_max_chars,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Full Pipeline
    # ═══════════════════════════════════════════════════════════════════════════

    async def run(self, job_id: str, token: CancellationToken | None = None) -> Job:
        """
        Run a job to a terminal status.

        Never raises for pipeline failures: they end the job as failed with
        a stable error code. The job deadline is enforced by a watcher task
        that cancels the token with reason TIMEOUT.

        Args:
            job_id: Job identifier
            token: Cancellation token (caller keeps it to cancel the job)

        Returns:
            Terminal job snapshot

        Raises:
            JobNotFoundError: Unknown job id
        """
        token = token or CancellationToken()
        bind_job(job_id)
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.is_terminal:
            return job

        # Resumed after its deadline: fail at the next stage boundary
        if job.deadline_at is not None and job.deadline_at <= datetime.now():
            token.cancel(CancelReason.TIMEOUT)

        watcher = asyncio.create_task(self._watch_deadline(job, token))
        started = time.perf_counter()

        try:
            job = await self._run_stages(job, token)
        except PipelineError as e:
            job = await self._fail(job_id, e)
        except Exception as e:
            logger.exception(f"Job {job_id} crashed: {e}")
            job = await self._fail(job_id, InternalPipelineError(str(e), cause=e))
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)

        elapsed = time.perf_counter() - started
        perf_logger.info(
            f"PERF | job | id={job.id} | kind={job.kind.value} | "
            f"pipeline={job.pipeline.value if job.pipeline else '-'} | "
            f"units={len(job.units)} | failed={job.failed_units} | "
            f"status={job.status.value} | time={elapsed:.1f}s"
        )
        return job

    async def _run_stages(self, job: Job, token: CancellationToken) -> Job:
        if job.plan is None:
            raise InternalPipelineError(f"Job {job.id} has no pipeline plan")

        if job.status == ProcessingStatus.PENDING:
            job = await self._enter(job, first_stage(job.kind))

        if job.status == ProcessingStatus.CHUNKING:
            self._check_token(token, ProcessingStatus.CHUNKING)
            job = await self._chunk(job, token)
            job = await self._enter(job, ProcessingStatus.ANALYZING)

        if job.status == ProcessingStatus.ANALYZING:
            if not job.units:
                units = self.chunker.chunk(job.media, job.plan.chunking)
                job = await self.store.update(job.id, lambda j: setattr(j, "units", units))
            job = await self._analyze(job, token)
            job = await self._enter(job, ProcessingStatus.COMPILING)

        if job.status == ProcessingStatus.COMPILING:
            self._check_token(token, ProcessingStatus.COMPILING)
            job = await self._compile(job)
            if job.options.generate_audio and job.compiled_text:
                job = await self._enter(job, ProcessingStatus.SYNTHESIZING)
            else:
                return await self._finish(job)

        if job.status == ProcessingStatus.SYNTHESIZING:
            self._check_token(token, ProcessingStatus.SYNTHESIZING)
            job = await self._synthesize(job, token)
            return await self._finish(job)

        raise InternalPipelineError(
            f"Job {job.id} stopped in unexpected status {job.status.value}",
            stage=job.status,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Stages
    # ═══════════════════════════════════════════════════════════════════════════

    async def _chunk(self, job: Job, token: CancellationToken) -> Job:
        """Build units for a video; reuses stored units on restart."""
        if job.units:
            logger.info(f"Job {job.id}: reusing {len(job.units)} stored units")
            return job

        media = job.media
        if not isinstance(media, VideoMedia):
            raise InternalPipelineError(
                f"Chunking stage reached for {job.kind.value} job",
                stage=ProcessingStatus.CHUNKING,
            )

        plan = job.plan
        if plan.backend == PipelineBackend.SEGMENTATION:
            # All-units-required precondition: a failure here fails the job
            segments = await with_retry(
                lambda: self.gate.call(lambda: self.providers.segmentation.segment(media.source_ref)),
                plan.retry,
                sleep=token.sleep,
                should_stop=lambda: token.cancelled,
                label=f"job {job.id} segment",
            )
            self._check_token(token, ProcessingStatus.CHUNKING)
            units = self.chunker.units_from_segments(media, segments, plan.chunking)
        else:
            units = self.chunker.chunk(media, plan.chunking)

        progress = self.progress_manager.get_stage_end_percent(job.kind, ProcessingStatus.CHUNKING)

        def store_units(j: Job) -> None:
            j.units = units
            j.progress = progress
            j.message = f"Split into {len(units)} units"

        return await self.store.update(job.id, store_units)

    async def _analyze(self, job: Job, token: CancellationToken) -> Job:
        """Describe every unit without a result, at most concurrency_limit at a time."""
        plan = job.plan
        total = len(job.units)
        pending = [unit for unit in job.units if unit.result is None]
        settled = total - len(pending)
        attempts: dict[int, int] = {unit.index: unit.attempts for unit in pending}

        logger.info(
            f"Job {job.id}: analyzing {len(pending)}/{total} units "
            f"(concurrency={plan.concurrency_limit}, backend={plan.backend.value})"
        )

        async def analyze_unit(unit: Unit):
            async def attempt():
                attempts[unit.index] += 1
                return await self.gate.call(lambda: self.providers.vision.analyze(unit))

            return await with_retry(
                attempt,
                plan.retry,
                sleep=token.sleep,
                should_stop=lambda: token.cancelled,
                label=f"job {job.id} unit {unit.index}",
            )

        async def record(outcome: Outcome) -> None:
            nonlocal settled
            settled += 1
            index = outcome.item.index

            if outcome.error is None:
                result, error = outcome.value, None
            elif isinstance(outcome.error, PipelineError):
                result, error = None, outcome.error.to_error_info()
                logger.warning(f"Job {job.id}: unit {index} failed: {outcome.error}")
            else:
                result = None
                error = InternalPipelineError(str(outcome.error)).to_error_info()
                logger.error(
                    f"Job {job.id}: unit {index} crashed: {outcome.error}",
                    exc_info=outcome.error,
                )

            progress = self.progress_manager.fraction_progress(
                job.kind, ProcessingStatus.ANALYZING, settled, total
            )

            def store_unit(j: Job) -> None:
                j.units[index] = j.units[index].model_copy(
                    update={"result": result, "error": error, "attempts": attempts[index]}
                )
                j.progress = progress
                j.message = f"Described {settled} of {total} units"

            await self.store.update(job.id, store_unit)

        controller = ConcurrencyController(plan.concurrency_limit)
        await controller.run_all(pending, analyze_unit, token, record)
        self._check_token(token, ProcessingStatus.ANALYZING)

        job = await self.store.get(job.id)
        if job.succeeded_units == 0:
            raise AllUnitsFailedError(
                f"All {total} units failed",
                stage=ProcessingStatus.ANALYZING,
            )
        return job

    async def _compile(self, job: Job) -> Job:
        compiled = self.compiler.compile(job.units)
        progress = self.progress_manager.get_stage_end_percent(job.kind, ProcessingStatus.COMPILING)

        def store_compiled(j: Job) -> None:
            j.compiled_text = compiled.text
            j.timestamped_text = compiled.timestamped_text
            j.description_metadata = compiled.metadata
            j.progress = progress
            j.message = f"Compiled narration: {compiled.metadata.word_count} words"

        return await self.store.update(job.id, store_compiled)

    async def _synthesize(self, job: Job, token: CancellationToken) -> Job:
        kind = job.kind

        async def report(settled: int, total: int) -> None:
            progress = self.progress_manager.fraction_progress(
                kind, ProcessingStatus.SYNTHESIZING, settled, total
            )

            def store_progress(j: Job) -> None:
                j.progress = progress
                j.message = f"Synthesized {settled} of {total} audio segments"

            await self.store.update(job.id, store_progress)

        audio_ref = await self.synthesizer.synthesize(
            job.compiled_text,
            job.plan.retry,
            job.plan.concurrency_limit,
            token,
            on_progress=report,
        )
        return await self.store.update(job.id, lambda j: setattr(j, "audio_ref", audio_ref))

    # ═══════════════════════════════════════════════════════════════════════════
    # Transitions
    # ═══════════════════════════════════════════════════════════════════════════

    STAGE_MESSAGES = {
        ProcessingStatus.CHUNKING: "Splitting media into units",
        ProcessingStatus.ANALYZING: "Describing units",
        ProcessingStatus.COMPILING: "Compiling narration",
        ProcessingStatus.SYNTHESIZING: "Synthesizing audio",
    }

    async def _enter(self, job: Job, status: ProcessingStatus) -> Job:
        progress = self.progress_manager.get_stage_start_percent(job.kind, status)

        def mutate(j: Job) -> None:
            j.status = status
            j.progress = progress
            j.message = self.STAGE_MESSAGES[status]

        logger.info(f"Job {job.id}: {job.status.value} -> {status.value}")
        return await self.store.update(job.id, mutate)

    async def _finish(self, job: Job) -> Job:
        """Mark completed, or partial_completed when some units failed."""
        total = len(job.units)
        failed = job.failed_units

        def mutate(j: Job) -> None:
            j.progress = 100.0
            if failed == 0:
                j.status = ProcessingStatus.COMPLETED
                j.message = "Completed"
            else:
                partial = PartialFailure(failed, total)
                j.status = ProcessingStatus.PARTIAL_COMPLETED
                j.error = partial.to_error_info()
                j.message = f"Completed with {failed} of {total} units missing"

        job = await self.store.update(job.id, mutate)
        logger.info(f"Job {job.id} {job.status.value}: {total - failed}/{total} units described")
        return job

    async def _fail(self, job_id: str, error: PipelineError) -> Job:
        def mutate(j: Job) -> None:
            j.status = ProcessingStatus.FAILED
            j.error = error.to_error_info()
            j.message = error.public_message

        job = await self.store.update(job_id, mutate)
        logger.error(f"Job {job_id} failed: {error}")
        return job

    @staticmethod
    def _check_token(token: CancellationToken, stage: ProcessingStatus) -> None:
        if token.cancelled:
            raise cancellation_error(token, stage=stage)

    async def _watch_deadline(self, job: Job, token: CancellationToken) -> None:
        if job.deadline_at is not None:
            remaining = (job.deadline_at - datetime.now()).total_seconds()
        else:
            remaining = self.settings.job_deadline_seconds

        await asyncio.sleep(max(remaining, 0))
        if not token.cancelled:
            logger.warning(f"Job {job.id}: deadline exceeded, cancelling")
            token.cancel(CancelReason.TIMEOUT)
