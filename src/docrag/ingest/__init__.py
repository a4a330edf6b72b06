"""Document validation, parsing and chunking."""
from __future__ import annotations

from .chunking import ChunkingConfig, TextChunk, TextChunker, chunk_pages
from .format_detection import DocumentFormatDetector, ParserFamily
from .models import FileInfo, ParsedChunk, ParsedDocument, ParsedPage
from .pdf import PdfParser, PdfParserConfig
from .pipeline import DocumentParser, ParserConfig
from .signature import detect_signature, validate_pdf, validate_signature
from .text import TextFormat, TextParser, TextParserConfig

__all__ = [
    "ChunkingConfig",
    "DocumentFormatDetector",
    "DocumentParser",
    "FileInfo",
    "ParsedChunk",
    "ParsedDocument",
    "ParsedPage",
    "ParserConfig",
    "ParserFamily",
    "PdfParser",
    "PdfParserConfig",
    "TextChunk",
    "TextChunker",
    "TextFormat",
    "TextParser",
    "TextParserConfig",
    "chunk_pages",
    "detect_signature",
    "validate_pdf",
    "validate_signature",
]
