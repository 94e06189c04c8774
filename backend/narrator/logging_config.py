"""
Logging configuration for the narration engine.

Every record emitted while a job runs is tagged with the job id (set by
the orchestrator through bind_job()), so interleaved output of concurrent
jobs can be told apart.

Environment variables:
- LOG_LEVEL: Global log level (default: INFO)
- LOG_FORMAT: simple or structured (default: structured)
- LOG_LEVEL_<MODULE>: Per-module override (e.g., LOG_LEVEL_CONCURRENCY=DEBUG)
"""

import logging
import sys
from contextvars import ContextVar
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from narrator.config import Settings


# Settings field suffix -> logger name
MODULE_LOGGERS = {
    "orchestrator": "narrator.services.pipeline",
    "concurrency": "narrator.services.concurrency",
    "providers": "narrator.services.providers",
    "job_store": "narrator.services.pipeline.job_store",
    "chunker": "narrator.services.chunker",
}

QUIET_LOGGERS = ("httpx", "httpcore", "anthropic")

_current_job: ContextVar[str | None] = ContextVar("narrator_job_id", default=None)


def bind_job(job_id: str | None) -> None:
    """
    Tag log records of the current task (and tasks it spawns) with a job id.

    asyncio copies the context into each new task, so unit workers started
    by the orchestrator inherit the binding.
    """
    _current_job.set(job_id)


class JobContextFilter(logging.Filter):
    """Adds `job_id` ("-" outside a job) to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = _current_job.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """
    Pipe-separated format for grep and log shippers.

    Format: timestamp | level | logger | job | message
    """

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        for prefix in ("narrator.services.", "narrator."):
            if name.startswith(prefix):
                name = name[len(prefix):]
                break

        line = (
            f"{self.formatTime(record, '%Y-%m-%d %H:%M:%S')} | "
            f"{record.levelname:8} | "
            f"{name:22} | "
            f"{getattr(record, 'job_id', '-'):8} | "
            f"{record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level(name: str | None, default: int) -> int:
    if not name:
        return default
    return getattr(logging, name.upper(), default)


def setup_logging(settings: "Settings") -> None:
    """
    Install a stdout handler on the root logger.

    Replaces existing root handlers, so calling it twice does not
    duplicate output.

    Args:
        settings: Application settings with log configuration
    """
    root_level = _level(settings.log_level, logging.INFO)

    if settings.log_format == "structured":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - [%(job_id)s] %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(JobContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(root_level)
    root_logger.addHandler(handler)

    for suffix, logger_name in MODULE_LOGGERS.items():
        override = getattr(settings, f"log_level_{suffix}", None)
        if override:
            logging.getLogger(logger_name).setLevel(_level(override, root_level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
