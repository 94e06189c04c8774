"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

# backend/config holds the YAML pipeline profiles
DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Providers
    segmentation_url: str = "http://localhost:8101"
    vision_url: str = "http://localhost:8102"
    synthesis_url: str = "http://localhost:8103"
    vision_provider: str = "http"  # "http" or "claude"
    claude_vision_model: str = "claude-sonnet-4-5"
    synthesis_voice: str = "default"
    provider_call_timeout_seconds: float = 120.0
    synthesis_max_chars: int = 2500

    # Pipeline selection thresholds (tie goes to segmentation)
    segmentation_size_threshold_mb: float = 25.0
    segmentation_duration_threshold_seconds: float = 180.0

    # Media limits
    max_video_size_mb: float = 500.0
    max_image_size_mb: float = 50.0
    supported_video_formats: list[str] = ["mp4", "mov", "avi", "mkv", "webm"]
    supported_image_formats: list[str] = ["jpg", "jpeg", "png", "gif", "webp", "bmp"]

    # Orchestration
    job_deadline_seconds: float = 1800.0
    global_max_in_flight: int = 16

    # Storage
    job_store_backend: str = "memory"  # "memory" or "file"
    job_store_dir: Path = Path("/data/jobs")
    blob_store_dir: Path = Path("/data/blobs")
    config_dir: Path = DEFAULT_CONFIG_DIR

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_orchestrator: str | None = None
    log_level_concurrency: str | None = None
    log_level_providers: str | None = None
    log_level_job_store: str | None = None
    log_level_chunker: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def segmentation_size_threshold_bytes(self) -> int:
        return int(self.segmentation_size_threshold_mb * 1024 * 1024)

    @property
    def max_video_size_bytes(self) -> int:
        return int(self.max_video_size_mb * 1024 * 1024)

    @property
    def max_image_size_bytes(self) -> int:
        return int(self.max_image_size_mb * 1024 * 1024)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_pipelines_config(settings: Settings | None = None) -> dict:
    """
    Load backend profiles from config/pipelines.yaml.

    Each profile defines chunking parameters, concurrency limits and
    the retry policy for one pipeline backend (segmentation, holistic).

    Args:
        settings: Optional settings instance

    Returns:
        Pipelines configuration dictionary
    """
    if settings is None:
        settings = get_settings()

    pipelines_path = settings.config_dir / "pipelines.yaml"
    with open(pipelines_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)
