"""Paragraph- and sentence-aware text chunking with word overlap.

Sizes are token estimates (see estimate_tokens), not exact counts.
"""
import math
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

import structlog

logger = structlog.get_logger()

TokenEstimator = Callable[[str], int]

_CRLF = re.compile(r"\r\n?")
_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")
_PARAGRAPH_BREAK = re.compile(r"\n\n+")
# A run ending in terminators, or an unterminated tail at the end of the paragraph
_SENTENCE = re.compile(r"[^.!?]*[.!?]+|[^.!?]+$")
_WORD = re.compile(r"\S+")


def estimate_tokens(text: str) -> int:
    """Roughly 4 characters per token for English text."""
    return math.ceil(len(text) / 4)


@dataclass
class TextChunk:
    """A bounded unit of text and its estimated token count."""

    content: str
    token_count: int


def normalize_text(text: str) -> str:
    """Unify line endings, collapse runs of blank lines and trim."""
    text = _CRLF.sub("\n", text)
    text = _EXCESS_BLANK_LINES.sub("\n\n", text)
    return text.strip()


def split_sentences(paragraph: str) -> List[str]:
    """Split on . ! ? runs; the whole paragraph if there is no terminator."""
    sentences = _SENTENCE.findall(paragraph)
    return sentences or [paragraph]


def overlap_words(overlap_tokens: int) -> int:
    """Number of trailing words carried into the next chunk."""
    return math.floor(overlap_tokens / 1.5)


class TextChunker:
    """Accumulates paragraphs (or sentences of long paragraphs) into chunks."""

    def __init__(
        self,
        max_tokens: int,
        overlap_tokens: int,
        token_estimator: Optional[TokenEstimator] = None,
    ):
        """Initialize the text chunker.

        Args:
            max_tokens: Token budget per chunk
            overlap_tokens: Overlap budget; carried over as floor(overlap/1.5) words.
                Values >= max_tokens are accepted and may give degenerate overlap.
            token_estimator: Function from text to an estimated token count
        """
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens
        self.estimate = token_estimator or estimate_tokens

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into ordered, overlapping chunks.

        Args:
            text: Raw extracted text

        Returns:
            List of TextChunk in input order
        """
        chunks: List[TextChunk] = []
        current = ""
        current_tokens = 0

        def emit() -> None:
            content = current.strip()
            if content:
                chunks.append(TextChunk(content=content, token_count=current_tokens))

        for paragraph in _PARAGRAPH_BREAK.split(normalize_text(text)):
            paragraph_tokens = self.estimate(paragraph)

            if paragraph_tokens > self.max_tokens:
                if current:
                    emit()
                    current = ""
                    current_tokens = 0

                for sentence in split_sentences(paragraph):
                    sentence_tokens = self.estimate(sentence)

                    if current and current_tokens + sentence_tokens > self.max_tokens:
                        emit()
                        current = self._carry_over(current, " ")
                        current_tokens = self.estimate(current)

                    current += sentence
                    current_tokens += sentence_tokens

            elif current and current_tokens + paragraph_tokens > self.max_tokens:
                emit()
                current = self._carry_over(current, "\n\n") + paragraph
                current_tokens = self.estimate(current)

            else:
                current += ("\n\n" if current else "") + paragraph
                current_tokens += paragraph_tokens

        if current.strip():
            emit()

        if chunks:
            logger.debug(
                "text_chunked",
                text_length=len(text),
                chunk_count=len(chunks),
                max_tokens=self.max_tokens,
            )

        return chunks

    def _carry_over(self, emitted: str, separator: str) -> str:
        """Trailing words of the emitted text, ready to prefix the next unit."""
        count = overlap_words(self.overlap_tokens)
        if count <= 0:
            return ""

        words = list(_WORD.finditer(emitted))
        if not words:
            return ""

        start = words[max(len(words) - count, 0)].start()
        return emitted[start:].rstrip() + separator

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks."""
        if not chunks:
            return {
                "chunk_count": 0,
                "total_tokens": 0,
                "avg_tokens": 0,
                "min_tokens": 0,
                "max_tokens": 0,
                "overlap_words": overlap_words(self.overlap_tokens),
            }

        sizes = [c.token_count for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_tokens": sum(sizes),
            "avg_tokens": sum(sizes) // len(chunks),
            "min_tokens": min(sizes),
            "max_tokens": max(sizes),
            "overlap_words": overlap_words(self.overlap_tokens),
        }


def chunk_text(
    text: str,
    max_tokens: int,
    overlap_tokens: int,
    token_estimator: Optional[TokenEstimator] = None,
) -> List[TextChunk]:
    """Chunk text with the given policy (convenience function)."""
    return TextChunker(max_tokens, overlap_tokens, token_estimator).chunk_text(text)
