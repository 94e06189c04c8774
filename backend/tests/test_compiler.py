"""Tests for description compilation, text splitting and speech synthesis."""

import asyncio

import pytest

from narrator.models.schemas import AnalysisResult, ErrorInfo, RetryPolicy, Unit
from narrator.services.compiler import (
    DescriptionCompiler,
    clean_description,
    connector_for,
    format_timestamp,
    sentence_similarity,
)
from narrator.services.concurrency import CancellationToken, ProviderGate
from narrator.services.errors import TerminalProviderError
from narrator.services.narration_synthesizer import NarrationSynthesizer
from narrator.services.providers import InMemoryBlobStore
from narrator.services.text_splitter import TextSplitter

from conftest import FakeSynthesis, retryable


def unit(index, text, start=None, end=None, confidence=0.9):
    return Unit(
        index=index,
        source_ref=f"blob://v.mp4#{index}",
        start_time=start,
        end_time=end,
        result=AnalysisResult(text=text, confidence=confidence),
    )


class TestCleanDescription:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("The scene shows a man walking a dog.", "A man walking a dog."),
            ("In this clip, children play football", "Children play football."),
            ("We can see a red car parked outside.", "A red car parked outside."),
            ("A cat appears to be sleeping on a sofa.", "A cat is sleeping on a sofa."),
            ("   ", ""),
        ],
    )
    def test_cleanup(self, raw, expected):
        assert clean_description(raw) == expected

    def test_similarity(self):
        assert sentence_similarity("He stops at a bench.", "he stops at a bench") == 1.0
        assert sentence_similarity("A dog runs.", "The sky is blue.") == 0.0
        assert sentence_similarity("", "anything") == 0.0


class TestFormatting:
    @pytest.mark.parametrize(
        "seconds, expected",
        [(0, "00:00.00"), (28, "00:28.00"), (61.5, "01:01.50"), (125.25, "02:05.25")],
    )
    def test_format_timestamp(self, seconds, expected):
        assert format_timestamp(seconds) == expected

    def test_connectors(self):
        assert connector_for(4, 5) == "Finally,"
        assert connector_for(2, 5) == "Midway through,"
        assert connector_for(1, 5) == "Then,"


class TestDescriptionCompiler:
    def test_compiles_in_index_order_and_drops_repeats(self):
        units = [
            unit(2, "We can see the sun setting.", 56, 70, confidence=0.7),
            unit(0, "The scene shows a man walking a dog. He stops at a bench.", 0, 30),
            unit(1, "He stops at a bench. A woman approaches him.", 28, 58, confidence=0.8),
        ]

        compiled = DescriptionCompiler().compile(units)

        assert compiled.text == (
            "A man walking a dog. He stops at a bench. "
            "Midway through, a woman approaches him. "
            "Finally, the sun setting."
        )
        assert compiled.text.count("bench") == 1
        assert compiled.timestamped_text.splitlines()[0].startswith("[00:00.00 - 00:30.00]")
        assert "[00:56.00 - 01:10.00] The sun setting." in compiled.timestamped_text

    def test_metadata_counts_overlap_once(self):
        units = [
            unit(0, "First event.", 0, 30, confidence=1.0),
            unit(1, "Second event.", 28, 58, confidence=0.5),
            unit(2, "Third event.", 56, 70, confidence=0.6),
        ]

        metadata = DescriptionCompiler().compile(units).metadata

        assert metadata.total_units == 3
        assert metadata.total_duration == 70.0
        assert metadata.average_confidence == 0.7
        assert metadata.word_count == len(DescriptionCompiler().compile(units).text.split())

    def test_failed_units_are_skipped(self):
        failed = Unit(
            index=1,
            source_ref="blob://v.mp4#1",
            start_time=30,
            end_time=60,
            error=ErrorInfo(code="PROVIDER_TERMINAL", message="rejected"),
        )
        units = [unit(0, "A door opens.", 0, 30), failed, unit(2, "A bird lands.", 60, 90)]

        compiled = DescriptionCompiler().compile(units)

        assert compiled.text == "A door opens. Finally, a bird lands."
        assert compiled.metadata.total_units == 2
        assert compiled.metadata.total_duration == 60.0

    def test_images_have_no_timestamped_text(self):
        compiled = DescriptionCompiler().compile([unit(0, "A red kite."), unit(1, "A blue kite.")])

        assert compiled.timestamped_text is None
        assert compiled.text == "A red kite. Finally, a blue kite."

    def test_nothing_to_compile(self):
        compiled = DescriptionCompiler().compile([])

        assert compiled.text == ""
        assert compiled.metadata.total_units == 0


class TestTextSplitter:
    def test_sentences(self):
        assert TextSplitter().split_sentences("One. Two!  Three?") == ["One.", "Two!", "Three?"]

    def test_segments_respect_limit_and_keep_words(self):
        text = " ".join(f"Sentence number {i} describes the scene." for i in range(200))

        segments = TextSplitter().split_for_synthesis(text, max_chars=300)

        assert len(segments) > 1
        assert all(len(s) <= 300 for s in segments)
        assert " ".join(segments).split() == text.split()

    def test_long_sentence_and_long_word(self):
        text = "word " * 50 + "x" * 45 + "."

        segments = TextSplitter().split_for_synthesis(text, max_chars=20)

        assert all(len(s) <= 20 for s in segments)
        assert "".join(segments).replace(" ", "") == text.replace(" ", "")

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            TextSplitter().split_for_synthesis("text", max_chars=0)


class TestNarrationSynthesizer:
    def make(self, provider, max_chars=40):
        blob_store = InMemoryBlobStore()
        gate = ProviderGate(max_in_flight=4)
        return NarrationSynthesizer(provider, blob_store, gate, max_chars=max_chars), blob_store

    def test_audio_concatenated_in_text_order(self):
        provider = FakeSynthesis()
        synthesizer, blob_store = self.make(provider)
        text = "First sentence is here. Second one follows now. Third closes it all."
        progress = []

        async def on_progress(settled, total):
            progress.append((settled, total))

        async def scenario():
            ref = await synthesizer.synthesize(
                text, RetryPolicy(max_retries=0), 3, CancellationToken(), on_progress
            )
            return await blob_store.get(ref)

        audio = asyncio.run(scenario())

        segments = TextSplitter().split_for_synthesis(text, 40)
        assert audio == b"".join(f"<{len(s)}>".encode() for s in segments)
        assert progress[-1] == (len(segments), len(segments))

    def test_limit_follows_provider(self):
        synthesizer, _ = self.make(FakeSynthesis(max_input_chars=25), max_chars=2500)

        assert synthesizer.max_chars == 25

    def test_retryable_failure_is_retried(self):
        class FlakySynthesis(FakeSynthesis):
            def __init__(self):
                super().__init__()
                self.failures = 2

            async def synthesize(self, text):
                if self.failures:
                    self.failures -= 1
                    raise retryable()
                return await super().synthesize(text)

        provider = FlakySynthesis()
        synthesizer, _ = self.make(provider)
        policy = RetryPolicy(max_retries=3, base_delay=0, max_delay=0)

        ref = asyncio.run(synthesizer.synthesize("Short text.", policy, 1, CancellationToken()))

        assert ref.endswith(".mp3")
        assert provider.calls == ["Short text."]

    def test_terminal_failure_raises(self):
        provider = FakeSynthesis(error=TerminalProviderError("bad voice", provider="fake"))
        synthesizer, _ = self.make(provider)

        with pytest.raises(TerminalProviderError):
            asyncio.run(
                synthesizer.synthesize("Short text.", RetryPolicy(), 1, CancellationToken())
            )
