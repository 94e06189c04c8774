"""
Description compiler: unit results -> one narrative.

Steps over succeeded units in index order:
1. Strip boilerplate model phrasing ("The scene shows", "We can see", ...)
2. Drop sentences near-identical to one of the previous unit's sentences
   (repeated openers and overlap regions described twice)
3. Bridge adjacent units with connectors into a single narrative
4. Build a timestamped variant for time-coded units
5. Compute metadata (units, covered duration, confidence, words)

Configuration:
    SENTENCE_SIMILARITY_THRESHOLD: Jaccard word similarity at which two
        sentences count as the same
"""

import logging
import re

from narrator.models.schemas import CompiledDescription, DescriptionMetadata, Unit
from narrator.services.text_splitter import TextSplitter

logger = logging.getLogger(__name__)

SENTENCE_SIMILARITY_THRESHOLD = 0.8

BOILERPLATE_PATTERNS = [
    re.compile(
        r"\b(?:the|this) (?:scene|clip|image|frame|video|segment|picture) (?:shows|depicts|features)\s*",
        re.IGNORECASE,
    ),
    re.compile(
        r"\bin this (?:scene|clip|image|frame|video|segment|picture),?\s*",
        re.IGNORECASE,
    ),
    re.compile(r"\bwe (?:can )?see\s*", re.IGNORECASE),
]
HEDGE_PATTERN = re.compile(r"\b(?:appears|seems) to be\b", re.IGNORECASE)

CONNECTORS = [
    "Next,",
    "Then,",
    "Subsequently,",
    "Following this,",
    "Meanwhile,",
    "At this point,",
    "Continuing,",
    "Later,",
]
MIDWAY_CONNECTOR = "Midway through,"
FINAL_CONNECTOR = "Finally,"

_WORD = re.compile(r"[a-z0-9']+")


def clean_description(text: str) -> str:
    """
    Remove boilerplate phrasing and normalize a single description.

    Returns:
        Capitalized text ending with punctuation, or "" if nothing remains
    """
    for pattern in BOILERPLATE_PATTERNS:
        text = pattern.sub("", text)
    text = HEDGE_PATTERN.sub("is", text)
    text = re.sub(r"\s+", " ", text).strip()
    text = re.sub(r"^[,;:]\s*", "", text)
    text = re.sub(r"\s*[,;:]$", "", text)
    text = re.sub(r"\s+([.!?,;])", r"\1", text)

    if not text:
        return ""

    text = text[0].upper() + text[1:]
    if text[-1] not in ".!?":
        text += "."
    return text


def sentence_similarity(a: str, b: str) -> float:
    """Jaccard similarity of lowercase word sets."""
    words_a = set(_WORD.findall(a.lower()))
    words_b = set(_WORD.findall(b.lower()))
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def format_timestamp(seconds: float) -> str:
    """Format seconds as mm:ss.cc."""
    minutes = int(seconds // 60)
    remaining = int(seconds % 60)
    centiseconds = int(round((seconds % 1) * 100)) % 100
    return f"{minutes:02d}:{remaining:02d}.{centiseconds:02d}"


def connector_for(index: int, total: int) -> str:
    """Connector placed before the part at `index` (index >= 1)."""
    if index == total - 1:
        return FINAL_CONNECTOR
    if index == total // 2:
        return MIDWAY_CONNECTOR
    return CONNECTORS[index % len(CONNECTORS)]


def _lower_first(text: str) -> str:
    # Keep acronyms and "I" as written
    first_word = text.split(" ", 1)[0]
    if first_word == "I" or first_word.startswith("I'"):
        return text
    if len(first_word) > 1 and first_word.isupper():
        return text
    return text[:1].lower() + text[1:]


class DescriptionCompiler:
    """
    Merge ordered unit results into one narrative.

    Example:
        compiler = DescriptionCompiler()
        compiled = compiler.compile(job.units)
        print(compiled.text)
        print(compiled.timestamped_text)
    """

    def __init__(
        self,
        similarity_threshold: float = SENTENCE_SIMILARITY_THRESHOLD,
        splitter: TextSplitter | None = None,
    ):
        self.similarity_threshold = similarity_threshold
        self.splitter = splitter or TextSplitter()

    def compile(self, units: list[Unit]) -> CompiledDescription:
        """
        Compile succeeded units into a narrative.

        Units without a result are skipped. Order follows unit index.

        Args:
            units: Units of the job (any order, failed units allowed)

        Returns:
            CompiledDescription with text, timestamped text and metadata
        """
        succeeded = sorted((u for u in units if u.result is not None), key=lambda u: u.index)

        parts: list[tuple[Unit, str]] = []
        previous_sentences: list[str] = []
        dropped = 0

        for unit in succeeded:
            sentences = self.splitter.split_sentences(clean_description(unit.result.text))
            kept = [
                s for s in sentences
                if not self._is_repeat(s, previous_sentences)
            ]
            dropped += len(sentences) - len(kept)
            previous_sentences = sentences
            if kept:
                parts.append((unit, " ".join(kept)))

        text = self._bridge([part for _, part in parts])
        timestamped = self._timestamped(parts)
        metadata = self._metadata(succeeded, text)

        logger.info(
            f"Compiled {len(succeeded)} units into {metadata.word_count} words "
            f"({dropped} repeated sentences dropped)"
        )
        return CompiledDescription(text=text, timestamped_text=timestamped, metadata=metadata)

    def _is_repeat(self, sentence: str, previous: list[str]) -> bool:
        return any(
            sentence_similarity(sentence, earlier) >= self.similarity_threshold
            for earlier in previous
        )

    @staticmethod
    def _bridge(parts: list[str]) -> str:
        if not parts:
            return ""
        pieces = [parts[0]]
        for i, part in enumerate(parts[1:], start=1):
            pieces.append(f"{connector_for(i, len(parts))} {_lower_first(part)}")
        return " ".join(pieces)

    @staticmethod
    def _timestamped(parts: list[tuple[Unit, str]]) -> str | None:
        if not parts or any(unit.start_time is None for unit, _ in parts):
            return None
        return "\n\n".join(
            f"[{format_timestamp(unit.start_time)} - {format_timestamp(unit.end_time)}] {text}"
            for unit, text in parts
        )

    @staticmethod
    def _metadata(units: list[Unit], text: str) -> DescriptionMetadata:
        if not units:
            return DescriptionMetadata()

        # Union of unit windows; overlap is counted once
        covered = 0.0
        span_start = span_end = None
        for unit in units:
            if unit.start_time is None or unit.end_time is None:
                continue
            if span_end is None or unit.start_time > span_end:
                if span_end is not None:
                    covered += span_end - span_start
                span_start, span_end = unit.start_time, unit.end_time
            else:
                span_end = max(span_end, unit.end_time)
        if span_end is not None:
            covered += span_end - span_start

        confidence = sum(u.result.confidence for u in units) / len(units)
        return DescriptionMetadata(
            total_units=len(units),
            total_duration=round(covered, 1),
            average_confidence=round(confidence, 2),
            word_count=len(text.split()),
        )
