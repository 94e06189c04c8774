"""
Speech synthesis stage.

Splits the compiled narrative into provider-sized segments, synthesizes
them with bounded concurrency and retry, concatenates the audio in text
order and stores it in the blob store.
"""

import logging
from typing import Awaitable, Callable

from narrator.models.schemas import ProcessingStatus, RetryPolicy
from narrator.services.concurrency import (
    CancellationToken,
    ConcurrencyController,
    Outcome,
    ProviderGate,
    cancellation_error,
)
from narrator.services.errors import InternalPipelineError, PipelineError
from narrator.services.providers.base import BlobStore, SynthesisProvider
from narrator.services.retry import with_retry
from narrator.services.text_splitter import SYNTHESIS_MAX_CHARS, TextSplitter

logger = logging.getLogger(__name__)

# (settled_segments, total_segments) -> None
SegmentProgressCallback = Callable[[int, int], Awaitable[None]]


class NarrationSynthesizer:
    """
    Turn narrative text into a stored audio file.

    Example:
        synthesizer = NarrationSynthesizer(providers.synthesis, providers.blob_store, gate)
        audio_ref = await synthesizer.synthesize(text, plan.retry, plan.concurrency_limit, token)
    """

    def __init__(
        self,
        provider: SynthesisProvider,
        blob_store: BlobStore,
        gate: ProviderGate,
        max_chars: int = SYNTHESIS_MAX_CHARS,
        splitter: TextSplitter | None = None,
        audio_suffix: str = ".mp3",
    ):
        self.provider = provider
        self.blob_store = blob_store
        self.gate = gate
        self.max_chars = min(max_chars, provider.max_input_chars)
        self.splitter = splitter or TextSplitter()
        self.audio_suffix = audio_suffix

    async def synthesize(
        self,
        text: str,
        policy: RetryPolicy,
        concurrency_limit: int,
        token: CancellationToken,
        on_progress: SegmentProgressCallback | None = None,
    ) -> str:
        """
        Synthesize text and store the audio.

        Args:
            text: Compiled narrative
            policy: Retry policy of the job plan
            concurrency_limit: Segments synthesized in parallel
            token: Job cancellation token
            on_progress: Called after each settled segment

        Returns:
            Blob reference of the concatenated audio

        Raises:
            ProviderError: A segment failed permanently
            JobTimeoutError / JobCancelledError: Token cancelled
        """
        segments = self.splitter.split_for_synthesis(text, self.max_chars)
        if not segments:
            raise InternalPipelineError("Nothing to synthesize", stage=ProcessingStatus.SYNTHESIZING)

        total = len(segments)
        settled = 0

        async def synthesize_segment(segment: str) -> bytes:
            return await with_retry(
                lambda: self.gate.call(lambda: self.provider.synthesize(segment)),
                policy,
                sleep=token.sleep,
                should_stop=lambda: token.cancelled,
                label="synthesize",
            )

        async def report(outcome: Outcome) -> None:
            nonlocal settled
            settled += 1
            if on_progress is not None:
                await on_progress(settled, total)

        controller = ConcurrencyController(concurrency_limit)
        outcomes = await controller.run_all(segments, synthesize_segment, token, report)

        if token.cancelled:
            raise cancellation_error(token, stage=ProcessingStatus.SYNTHESIZING)

        for outcome in outcomes:
            if outcome.error is None:
                continue
            if isinstance(outcome.error, PipelineError):
                raise outcome.error
            raise InternalPipelineError(
                f"Segment {outcome.index} synthesis crashed: {outcome.error}",
                stage=ProcessingStatus.SYNTHESIZING,
                cause=outcome.error,
            ) from outcome.error

        audio = b"".join(outcome.value for outcome in outcomes)
        audio_ref = await self.blob_store.put(audio, suffix=self.audio_suffix)

        logger.info(f"Synthesized {total} segments ({len(text)} chars) -> {audio_ref}")
        return audio_ref
