"""
Job store: persistence of job records.

update() is the only way to change a stored job. It is an atomic
read-modify-write under a per-job lock (no global lock), and it enforces
the record invariants:
- status changes follow the state machine
- progress never decreases
- terminal jobs are immutable

Backends:
- InMemoryJobStore: dict of deep copies (tests, single process)
- FileJobStore: one JSON document per job, written to a temp file and
  atomically renamed into place
"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Callable

from narrator.config import Settings
from narrator.models.schemas import Job
from narrator.services.errors import InternalPipelineError
from narrator.services.pipeline.state_machine import check_transition, step_for

logger = logging.getLogger(__name__)

JobMutator = Callable[[Job], None]


class JobNotFoundError(KeyError):
    """Raised by update() for an unknown job id."""

    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


class JobStore(ABC):
    """
    Abstract job store.

    Example:
        store = InMemoryJobStore()
        await store.put(job)
        job = await store.update(job.id, lambda j: setattr(j, "message", "Analyzing"))
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        return self._locks.setdefault(job_id, asyncio.Lock())

    @abstractmethod
    async def put(self, job: Job) -> None:
        """Insert or replace a job."""
        pass

    @abstractmethod
    async def get(self, job_id: str) -> Job | None:
        """Return a snapshot of the job, or None."""
        pass

    @abstractmethod
    async def list_jobs(self) -> list[Job]:
        """Return snapshots of all jobs, oldest first."""
        pass

    @abstractmethod
    async def _read(self, job_id: str) -> Job | None:
        pass

    @abstractmethod
    async def _write(self, job: Job) -> None:
        pass

    async def update(self, job_id: str, mutator: JobMutator) -> Job:
        """
        Atomically apply mutator to the stored job.

        The mutator receives a private copy and changes it in place. The
        result is validated against the record invariants before it is
        written.

        Args:
            job_id: Job identifier
            mutator: Function changing the job copy in place

        Returns:
            Snapshot of the updated job

        Raises:
            JobNotFoundError: Unknown job id
            InternalPipelineError: Invariant violation (terminal job,
                invalid transition)
        """
        async with self._lock_for(job_id):
            current = await self._read(job_id)
            if current is None:
                raise JobNotFoundError(job_id)

            updated = self._apply(current, mutator)
            await self._write(updated)
            return updated.model_copy(deep=True)

    @staticmethod
    def _apply(current: Job, mutator: JobMutator) -> Job:
        if current.is_terminal:
            raise InternalPipelineError(
                f"Job {current.id} is {current.status.value} and can no longer change"
            )

        updated = current.model_copy(deep=True)
        mutator(updated)

        if updated.status != current.status:
            check_transition(current.kind, current.status, updated.status)
            updated.step = step_for(updated.status, current.step)

        updated.progress = max(current.progress, min(updated.progress, 100.0))
        updated.updated_at = datetime.now()
        # Revalidate: mutators assign fields without pydantic validation
        return Job.model_validate(updated.model_dump())


class InMemoryJobStore(JobStore):
    """Dict-backed store holding deep copies."""

    def __init__(self):
        super().__init__()
        self._jobs: dict[str, Job] = {}

    async def put(self, job: Job) -> None:
        async with self._lock_for(job.id):
            self._jobs[job.id] = job.model_copy(deep=True)

    async def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(self) -> list[Job]:
        jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        return sorted(jobs, key=lambda j: j.created_at)

    async def _read(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def _write(self, job: Job) -> None:
        self._jobs[job.id] = job


class FileJobStore(JobStore):
    """
    Durable store: one JSON file per job.

    Example:
        store = FileJobStore(Path("/data/jobs"))
        await store.put(job)
        # after a restart
        job = await store.get(job_id)
    """

    def __init__(self, root: Path):
        super().__init__()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, job_id: str) -> Path:
        return self.root / f"{job_id}.json"

    async def put(self, job: Job) -> None:
        async with self._lock_for(job.id):
            await self._write(job)

    async def get(self, job_id: str) -> Job | None:
        return await self._read(job_id)

    async def list_jobs(self) -> list[Job]:
        paths = sorted(self.root.glob("*.json"))
        jobs = []
        for path in paths:
            job = await self._read(path.stem)
            if job is not None:
                jobs.append(job)
        return sorted(jobs, key=lambda j: j.created_at)

    async def _read(self, job_id: str) -> Job | None:
        path = self._path(job_id)
        if not path.exists():
            return None
        data = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return Job.model_validate_json(data)

    async def _write(self, job: Job) -> None:
        await asyncio.to_thread(self._write_atomic, self._path(job.id), job)

    @staticmethod
    def _write_atomic(path: Path, job: Job) -> None:
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(job.model_dump(mode="json"), f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)


def get_job_store(settings: Settings) -> JobStore:
    """
    Create the job store named by settings.job_store_backend.

    Raises:
        ValueError: Unknown backend name
    """
    if settings.job_store_backend == "memory":
        return InMemoryJobStore()
    if settings.job_store_backend == "file":
        logger.info(f"Using file job store at {settings.job_store_dir}")
        return FileJobStore(settings.job_store_dir)
    raise ValueError(f"Unknown job store backend: {settings.job_store_backend}")
