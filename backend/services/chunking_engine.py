"""Chunking engine with heading-aware section splitting."""
import logging
import re
from typing import Iterator, List, Optional

from models.chunk import Chunk
from config import (
    HEADING_CHUNK_SIZE,
    HEADING_CHUNK_OVERLAP,
    PLAIN_CHUNK_SIZE,
    PLAIN_CHUNK_OVERLAP,
)

logger = logging.getLogger(__name__)

# Markdown headings (`#` .. `######` followed by whitespace) at a line start
HEADING_PATTERN = re.compile(r"^#{1,6}\s", re.MULTILINE)
# Split before every line that starts a heading
HEADING_SPLIT_PATTERN = re.compile(r"\n(?=#{1,6}\s)")
# Blank line (possibly containing whitespace) between paragraphs
PARAGRAPH_SPLIT_PATTERN = re.compile(r"\n\s*\n")


class ChunkStream:
    """
    Lazy, restartable sequence of chunk texts.

    Every iteration re-runs the splitter over the same input, so the stream
    can be consumed more than once and always yields the same chunks.
    """

    def __init__(self, engine: "ChunkingEngine", text: str, heading_aware: bool):
        self._engine = engine
        self._text = text
        self.heading_aware = heading_aware

    def __iter__(self) -> Iterator[str]:
        return self._engine._iter_chunks(self._text, self.heading_aware)

    def to_list(self) -> List[str]:
        return list(self)


class ChunkingEngine:
    """Segments corpus text into bounded, overlapping passages."""

    def __init__(
        self,
        heading_chunk_size: int = HEADING_CHUNK_SIZE,
        heading_chunk_overlap: int = HEADING_CHUNK_OVERLAP,
        plain_chunk_size: int = PLAIN_CHUNK_SIZE,
        plain_chunk_overlap: int = PLAIN_CHUNK_OVERLAP
    ):
        """
        Initialize ChunkingEngine.

        Args:
            heading_chunk_size: Word budget for text with headings
            heading_chunk_overlap: Overlap in words for text with headings
            plain_chunk_size: Word budget for heading-less prose
            plain_chunk_overlap: Overlap in words for heading-less prose

        Raises:
            ValueError: If a budget is not positive or an overlap is negative
        """
        if heading_chunk_size <= 0 or plain_chunk_size <= 0:
            raise ValueError("Chunk size must be positive")
        if heading_chunk_overlap < 0 or plain_chunk_overlap < 0:
            raise ValueError("Chunk overlap cannot be negative")

        self.heading_chunk_size = heading_chunk_size
        self.heading_chunk_overlap = heading_chunk_overlap
        self.plain_chunk_size = plain_chunk_size
        self.plain_chunk_overlap = plain_chunk_overlap

    @staticmethod
    def has_headings(text: str) -> bool:
        """Return True if the text contains markdown-style section headings."""
        return bool(HEADING_PATTERN.search(text))

    def budget(self, heading_aware: bool) -> int:
        return self.heading_chunk_size if heading_aware else self.plain_chunk_size

    def overlap(self, heading_aware: bool) -> int:
        return self.heading_chunk_overlap if heading_aware else self.plain_chunk_overlap

    def chunk(self, text: str, heading_aware: Optional[bool] = None) -> ChunkStream:
        """
        Split text into chunk texts.

        Args:
            text: Unit text to split
            heading_aware: Force heading or paragraph mode; None detects it

        Returns:
            Restartable stream of non-empty chunk texts
        """
        text = text or ""
        if heading_aware is None:
            heading_aware = self.has_headings(text)
        return ChunkStream(self, text, heading_aware)

    def chunk_unit(self, unit_id: str, text: str, heading_aware: Optional[bool] = None) -> List[Chunk]:
        """
        Chunk one unit's text into Chunk records with stable indices.

        Args:
            unit_id: Identifier of the owning corpus unit
            text: Unit text
            heading_aware: Force heading or paragraph mode; None detects it

        Returns:
            List of Chunk objects in document order
        """
        chunks = [
            Chunk(
                unit_id=unit_id,
                chunk_index=idx,
                text=chunk_text,
                word_count=len(chunk_text.split())
            )
            for idx, chunk_text in enumerate(self.chunk(text, heading_aware))
        ]
        logger.debug(f"Created {len(chunks)} chunks for {unit_id}")
        return chunks

    def _split_sections(self, text: str, heading_aware: bool) -> List[str]:
        if heading_aware:
            return HEADING_SPLIT_PATTERN.split(text)
        return PARAGRAPH_SPLIT_PATTERN.split(text)

    def _iter_chunks(self, text: str, heading_aware: bool) -> Iterator[str]:
        max_words = self.budget(heading_aware)
        stride = max(1, max_words - self.overlap(heading_aware))

        for section in self._split_sections(text, heading_aware):
            trimmed = section.strip()
            if not trimmed:
                continue

            # Short sections keep their original formatting
            words = trimmed.split()
            if len(words) <= max_words:
                yield trimmed
                continue

            # Long sections become overlapping word windows
            for start in range(0, len(words), stride):
                part = " ".join(words[start:start + max_words])
                if part:
                    yield part
                if start + max_words >= len(words):
                    break
