"""High level parsing entry point: validate, classify, parse and chunk."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ..errors import SignatureMismatchError
from .chunking import ChunkingConfig, TextChunker, chunk_pages
from .format_detection import DocumentFormatDetector, ParserFamily
from .language import LanguageDetector
from .models import FileInfo, ParsedDocument
from .pdf import PdfParser, PdfParserConfig
from .signature import validate_signature
from .text import TextParser, TextParserConfig

LOGGER = logging.getLogger(__name__)


class DocumentParserBackend(Protocol):
    name: str
    version: str

    def parse(self, data: bytes, file_info: FileInfo) -> ParsedDocument:
        ...


@dataclass(slots=True)
class ParserConfig:
    chunk_chars: int = 1000
    overlap_chars: int = 200
    text_page_chars: int = 2000
    csv_rows_per_page: int = 100
    pdf_max_bytes: int = 40 * 1024 * 1024
    pdf_max_pages: int = 2000

    @classmethod
    def from_settings(cls, settings) -> "ParserConfig":
        return cls(
            chunk_chars=settings.chunk_chars,
            overlap_chars=settings.chunk_overlap_chars,
            text_page_chars=settings.text_page_chars,
            csv_rows_per_page=settings.csv_rows_per_page,
            pdf_max_bytes=settings.pdf_max_bytes,
            pdf_max_pages=settings.pdf_max_pages,
        )


class DocumentParser:
    """Routes bytes to the right parser and attaches language and chunks."""

    def __init__(self, config: Optional[ParserConfig] = None) -> None:
        self.config = config or ParserConfig()
        self.pdf_parser = PdfParser(
            PdfParserConfig(max_bytes=self.config.pdf_max_bytes, max_pages=self.config.pdf_max_pages)
        )
        self.text_parser = TextParser(
            TextParserConfig(
                page_chars=self.config.text_page_chars,
                csv_rows_per_page=self.config.csv_rows_per_page,
            )
        )
        self.chunker = TextChunker(
            ChunkingConfig(chunk_chars=self.config.chunk_chars, overlap_chars=self.config.overlap_chars)
        )
        self.language_detector = LanguageDetector()

    def select_parser(self, data: bytes, file_info: FileInfo) -> DocumentParserBackend:
        """Validate the signature and return the parser for ``data``.

        Raises :class:`SignatureMismatchError` or
        :class:`~docrag.errors.UnsupportedFileTypeError` before any parsing.
        """

        signature = validate_signature(data, file_info.content_type)
        if not signature.is_valid:
            raise SignatureMismatchError(signature.message, details=signature.to_dict())
        family = DocumentFormatDetector.detect(data, file_info, detected_type=signature.detected_type)
        return self.pdf_parser if family is ParserFamily.PDF else self.text_parser

    def parse(self, data: bytes, file_info: FileInfo) -> ParsedDocument:
        parser = self.select_parser(data, file_info)
        LOGGER.info("Parsing %s with %s parser", file_info.filename, parser.name)
        document = parser.parse(data, file_info)
        document.language = self.language_detector.detect(document.full_text)
        document.metadata["language"] = document.language
        document.chunks = chunk_pages(document.pages, self.chunker)
        LOGGER.info(
            "Parsed %s: format=%s pages=%s chunks=%s language=%s",
            file_info.filename,
            document.format,
            len(document.pages),
            len(document.chunks),
            document.language,
        )
        return document


__all__ = ["DocumentParser", "DocumentParserBackend", "ParserConfig"]
