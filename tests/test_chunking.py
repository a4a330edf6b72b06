from __future__ import annotations

import pytest

from docrag.ingest.chunking import ChunkingConfig, TextChunker, chunk_pages
from docrag.ingest.models import ParsedPage

SAMPLE = (
    "Boilers need an annual service. The engineer checks the flue and the seals.\n"
    "Low pressure usually means a leak or a faulty pressure relief valve. "
    "Top up the system through the filling loop until the gauge reads 1.5 bar.\n"
    "If the pressure keeps dropping, call a registered engineer. Do not open the casing yourself."
) * 3


def _reconstruct(text: str, chunker: TextChunker) -> str:
    spans = chunker.split(text)
    rebuilt = spans[0].text
    previous_end = spans[0].end
    for span in spans[1:]:
        rebuilt += span.text[previous_end - span.start :]
        previous_end = span.end
    return rebuilt


@pytest.mark.parametrize(("size", "overlap"), [(50, 10), (120, 30), (200, 0), (333, 100)])
def test_chunks_reconstruct_text_and_respect_size(size: int, overlap: int) -> None:
    chunker = TextChunker(ChunkingConfig(chunk_chars=size, overlap_chars=overlap))

    chunks = chunker.chunk(SAMPLE)

    assert chunks
    assert all(len(chunk) <= size for chunk in chunks)
    assert _reconstruct(SAMPLE, chunker) == SAMPLE


def test_cut_prefers_sentence_boundary_past_half_window() -> None:
    chunker = TextChunker(ChunkingConfig(chunk_chars=20, overlap_chars=5))

    chunks = chunker.chunk("Hello world. This is a test of chunking.")

    assert chunks[0] == "Hello world."
    assert chunks[1].startswith("orld.")


def test_cut_falls_back_to_window_edge_without_boundary() -> None:
    chunker = TextChunker(ChunkingConfig(chunk_chars=10, overlap_chars=2))

    chunks = chunker.chunk("abcdefghijklmnopqrstuvwxyz")

    assert chunks[0] == "abcdefghij"
    assert chunks[1] == "ijklmnopqr"


def test_chunking_is_deterministic_and_skips_blank_input() -> None:
    chunker = TextChunker(ChunkingConfig(chunk_chars=80, overlap_chars=20))

    assert chunker.chunk(SAMPLE) == chunker.chunk(SAMPLE)
    assert chunker.chunk("") == []
    assert chunker.chunk("   \n\n   ") == []


def test_overlap_must_be_smaller_than_chunk_size() -> None:
    with pytest.raises(ValueError):
        ChunkingConfig(chunk_chars=100, overlap_chars=100)
    with pytest.raises(ValueError):
        ChunkingConfig(chunk_chars=0, overlap_chars=0)


def test_chunk_pages_attributes_chunks_to_pages() -> None:
    pages = [
        ParsedPage(page_number=1, content="Alpha section text."),
        ParsedPage(page_number=3, content="Beta section text."),
    ]
    chunker = TextChunker(ChunkingConfig(chunk_chars=20, overlap_chars=0))

    chunks = chunk_pages(pages, chunker)

    assert [chunk.chunk_index for chunk in chunks] == list(range(len(chunks)))
    assert chunks[0].page_number == 1
    assert "Alpha" in chunks[0].text
    assert chunks[-1].page_number == 3
    assert "Beta" in chunks[-1].text
