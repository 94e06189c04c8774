"""
Engine lifecycle for the narration pipeline.

Hosts embed the engine with lifespan(): it configures logging, wires the
job manager from settings, restarts incomplete jobs found in a durable
store, and on exit cancels running jobs and closes provider clients.

Example:
    async with lifespan() as manager:
        job = await manager.submit(media)
        job = await manager.wait(job.id)
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from narrator.config import Settings, get_settings
from narrator.logging_config import setup_logging
from narrator.services.job_manager import JobManager
from narrator.services.providers import ProviderSet

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
    providers: ProviderSet | None = None,
) -> AsyncIterator[JobManager]:
    """
    Run the engine for the duration of the context.

    Args:
        settings: Application settings (cached settings if None)
        providers: Adapters to use (built from settings if None)

    Yields:
        Ready JobManager
    """
    settings = settings or get_settings()
    setup_logging(settings)

    logger.info("Starting narration engine")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Job store: {settings.job_store_backend}")

    manager = JobManager.from_settings(settings, providers=providers)
    await manager.resume_incomplete()

    try:
        yield manager
    finally:
        logger.info("Shutting down narration engine")
        await manager.shutdown()
        await manager.orchestrator.providers.close()
