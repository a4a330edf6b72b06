"""Chunking utilities for breaking document text into retrieval-sized units."""
from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from typing import Iterator, List, Sequence

from .models import PAGE_SEPARATOR, ParsedChunk, ParsedPage

LOGGER = logging.getLogger(__name__)

DEFAULT_CHUNK_CHARS = 1000
DEFAULT_OVERLAP_CHARS = 200


@dataclass(slots=True)
class ChunkingConfig:
    chunk_chars: int = DEFAULT_CHUNK_CHARS
    overlap_chars: int = DEFAULT_OVERLAP_CHARS

    def __post_init__(self) -> None:
        if self.chunk_chars < 1:
            raise ValueError("chunk_chars must be positive")
        if self.overlap_chars < 0:
            raise ValueError("overlap_chars must not be negative")
        if self.overlap_chars >= self.chunk_chars:
            raise ValueError("overlap_chars must be smaller than chunk_chars")


@dataclass(slots=True)
class TextChunk:
    """A chunk together with its ``[start, end)`` span in the source text."""

    text: str
    start: int
    end: int


class TextChunker:
    """Sliding-window splitter that prefers sentence and line boundaries.

    Chunks are exact slices of the input. A window that stops short of the end
    of the text is cut just after the last ``.`` or newline inside it when that
    point lies beyond half the window, and the next window starts ``overlap``
    characters before the cut.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, text: str) -> List[str]:
        return [piece.text for piece in self.split(text)]

    def split(self, text: str) -> List[TextChunk]:
        return list(self._iter_spans(text))

    def _iter_spans(self, text: str) -> Iterator[TextChunk]:
        size = self.config.chunk_chars
        overlap = self.config.overlap_chars
        length = len(text)
        start = 0
        while start < length:
            end = self._find_cut(text, start, size)
            piece = text[start:end]
            if piece.strip():
                yield TextChunk(text=piece, start=start, end=end)
            if end >= length:
                break
            next_start = max(end - overlap, 0)
            start = next_start if next_start > start else end

    @staticmethod
    def _find_cut(text: str, start: int, size: int) -> int:
        window_end = start + size
        if window_end >= len(text):
            return len(text)
        window = text[start:window_end]
        break_point = max(window.rfind("."), window.rfind("\n"))
        if break_point > size * 0.5:
            return start + break_point + 1
        return window_end


def chunk_pages(pages: Sequence[ParsedPage], chunker: TextChunker) -> List[ParsedChunk]:
    """Chunk the assembled document text and attribute each chunk to a page.

    Pages are joined with a blank line, the same way the document's full text
    is rendered. A chunk belongs to the page holding its first non-blank
    character.
    """

    full_text = PAGE_SEPARATOR.join(page.content for page in pages)
    starts: List[int] = []
    cursor = 0
    for page in pages:
        starts.append(cursor)
        cursor += len(page.content) + len(PAGE_SEPARATOR)

    chunks: List[ParsedChunk] = []
    for index, piece in enumerate(chunker.split(full_text)):
        page_number = None
        if pages:
            anchor = piece.start + len(piece.text) - len(piece.text.lstrip())
            position = bisect.bisect_right(starts, anchor) - 1
            page_number = pages[max(position, 0)].page_number
        chunks.append(
            ParsedChunk(
                chunk_index=index,
                text=piece.text,
                page_number=page_number,
                char_start=piece.start,
                char_end=piece.end,
            )
        )
    LOGGER.debug("Generated %s chunks from %s pages", len(chunks), len(pages))
    return chunks


__all__ = ["ChunkingConfig", "TextChunk", "TextChunker", "chunk_pages"]
