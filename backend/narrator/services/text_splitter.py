"""
Sentence-aware text splitting.

Used by the compiler (sentence-level deduplication) and by speech synthesis,
whose provider accepts a limited number of characters per call.

Configuration:
    SYNTHESIS_MAX_CHARS: Default segment size for synthesis (~2500 chars,
        below the usual 3000-char TTS request limit)
"""

import logging
import re

logger = logging.getLogger(__name__)

SYNTHESIS_MAX_CHARS = 2500

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


class TextSplitter:
    """
    Split text on sentence boundaries.

    Example:
        splitter = TextSplitter()
        segments = splitter.split_for_synthesis(narrative, max_chars=2500)
        assert all(len(s) <= 2500 for s in segments)
    """

    def split_sentences(self, text: str) -> list[str]:
        """Split text into sentences, keeping end punctuation."""
        text = text.strip()
        if not text:
            return []
        return [s.strip() for s in SENTENCE_BOUNDARY.split(text) if s.strip()]

    def split_for_synthesis(self, text: str, max_chars: int = SYNTHESIS_MAX_CHARS) -> list[str]:
        """
        Split text into segments no longer than max_chars.

        Whole sentences are packed greedily. A sentence longer than
        max_chars is split at word boundaries; a single word longer than
        max_chars is cut.

        Args:
            text: Narrative text
            max_chars: Provider input limit

        Returns:
            Segments in text order; joining them with spaces restores the
            words of the original text
        """
        if max_chars < 1:
            raise ValueError(f"max_chars must be positive, got {max_chars}")

        segments: list[str] = []
        current = ""

        for sentence in self.split_sentences(text):
            if len(sentence) > max_chars:
                if current:
                    segments.append(current)
                    current = ""
                segments.extend(self._split_long(sentence, max_chars))
                continue

            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) <= max_chars:
                current = candidate
            else:
                segments.append(current)
                current = sentence

        if current:
            segments.append(current)

        logger.debug(f"Split {len(text)} chars into {len(segments)} synthesis segments")
        return segments

    @staticmethod
    def _split_long(sentence: str, max_chars: int) -> list[str]:
        pieces: list[str] = []
        current = ""
        for word in sentence.split():
            while len(word) > max_chars:
                if current:
                    pieces.append(current)
                    current = ""
                pieces.append(word[:max_chars])
                word = word[max_chars:]
            if not word:
                continue
            candidate = f"{current} {word}" if current else word
            if len(candidate) <= max_chars:
                current = candidate
            else:
                pieces.append(current)
                current = word
        if current:
            pieces.append(current)
        return pieces
