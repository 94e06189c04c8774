"""
Shared fixtures and provider fakes.

Async code is driven with asyncio.run() inside plain test functions.
"""

import asyncio
import random

import pytest

from narrator.config import Settings
from narrator.models.schemas import AnalysisResult, RetryPolicy, Segment, Unit
from narrator.services.concurrency import ProviderGate
from narrator.services.errors import RetryableProviderError, TerminalProviderError
from narrator.services.pipeline import InMemoryJobStore, PipelineOrchestrator, SelectorConfig
from narrator.services.providers import InMemoryBlobStore, ProviderSet

FAST_RETRY = {"max_retries": 3, "base_delay": 0.0, "max_delay": 0.0, "jitter": 0.0}

TEST_PIPELINES = {
    "backends": {
        "segmentation": {
            "chunking": {
                "max_unit_duration": 30,
                "max_unit_bytes": None,
                "overlap_seconds": 0,
                "keyframe_align": False,
                "min_segment_confidence": 80,
            },
            "concurrency_limit": 3,
            "high_priority_concurrency": 5,
            "retry": FAST_RETRY,
            "limits": {"max_size_mb": 500, "max_duration_seconds": 3600},
        },
        "holistic": {
            "chunking": {
                "max_unit_duration": 30,
                "max_unit_bytes": None,
                "overlap_seconds": 2,
                "keyframe_align": False,
            },
            "concurrency_limit": 3,
            "high_priority_concurrency": 6,
            "retry": FAST_RETRY,
            "limits": {"max_size_mb": 25, "max_duration_seconds": 180},
        },
    }
}


class FakeVision:
    """
    Vision fake.

    Args:
        latency: Seconds per call, or (min, max) for random latency
        failures: unit index -> list of exceptions raised on successive
            calls (then succeeds)
        always_fail: unit indexes failing terminally on every call
    """

    def __init__(self, latency=0.0, failures=None, always_fail=(), seed=7):
        self.latency = latency
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.always_fail = set(always_fail)
        self.calls: list[int] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self._random = random.Random(seed)

    async def analyze(self, unit: Unit) -> AnalysisResult:
        self.calls.append(unit.index)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if isinstance(self.latency, tuple):
                await asyncio.sleep(self._random.uniform(*self.latency))
            elif self.latency:
                await asyncio.sleep(self.latency)

            if unit.index in self.always_fail:
                raise TerminalProviderError("unsupported clip", provider="fake")
            pending = self.failures.get(unit.index)
            if pending:
                raise pending.pop(0)

            return AnalysisResult(
                text=f"Unit {unit.index} shows a distinct event number {unit.index}.",
                confidence=0.9,
            )
        finally:
            self.in_flight -= 1


class FakeSegmentation:
    def __init__(self, segments=None, error=None):
        self.segments = segments or []
        self.error = error
        self.calls = 0

    async def segment(self, media_ref: str) -> list[Segment]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.segments)


class FakeSynthesis:
    def __init__(self, max_input_chars=2500, error=None):
        self.max_input_chars = max_input_chars
        self.error = error
        self.calls: list[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return f"<{len(text)}>".encode()


def retryable(message="throttled"):
    return RetryableProviderError(message, provider="fake", status_code=429)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        job_store_backend="memory",
        job_store_dir=tmp_path / "jobs",
        blob_store_dir=tmp_path / "blobs",
        job_deadline_seconds=30,
        provider_call_timeout_seconds=5,
        global_max_in_flight=16,
    )


@pytest.fixture
def selector_config(settings):
    return SelectorConfig.from_settings(settings, pipelines=TEST_PIPELINES)


@pytest.fixture
def fast_retry():
    return RetryPolicy(**FAST_RETRY)


@pytest.fixture
def vision():
    return FakeVision()


@pytest.fixture
def segmentation():
    return FakeSegmentation()


@pytest.fixture
def synthesis():
    return FakeSynthesis()


@pytest.fixture
def providers(vision, segmentation, synthesis):
    return ProviderSet(
        segmentation=segmentation,
        vision=vision,
        synthesis=synthesis,
        blob_store=InMemoryBlobStore(),
    )


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def orchestrator(store, providers, settings):
    gate = ProviderGate(settings.global_max_in_flight, settings.provider_call_timeout_seconds)
    return PipelineOrchestrator(store, providers, settings, gate=gate)
