"""PDF text and metadata extraction."""
from __future__ import annotations

import io
import logging
import math
import re
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from PyPDF2 import PdfReader

from ..errors import (
    InvalidPdfError,
    NoContentError,
    ParseError,
    PdfCorruptedError,
    PdfEncryptedError,
    PdfTooLargeError,
)
from .models import FileInfo, ParsedDocument, ParsedPage
from .normalization import build_structure, extract_headers, page_metadata, sanitize_text
from .signature import validate_pdf

LOGGER = logging.getLogger(__name__)

PARSER_NAME = "pdf"
PARSER_VERSION = "3.1"

_INFO_KEYS = ("Title", "Author", "Subject", "Creator", "Producer", "Keywords", "CreationDate", "ModDate")
_PDF_DATE_RE = re.compile(
    r"^(?:D:)?(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?\s*(?:([Zz])|([+\-])(\d{2})'?(\d{2})?'?)?"
)


@dataclass(slots=True)
class PdfParserConfig:
    max_bytes: int = 40 * 1024 * 1024
    max_pages: int = 2000


@dataclass(slots=True)
class PdfExtraction:
    pages: List[str]
    info: Dict[str, str]
    page_count: int
    method: str
    warnings: List[str] = field(default_factory=list)


def parse_pdf_date(value: Optional[str]) -> Optional[str]:
    """Convert a PDF date string (``D:YYYYMMDDHHmmSS+HH'mm'``) to ISO-8601 UTC."""

    if not value:
        return None
    match = _PDF_DATE_RE.match(value.strip())
    if not match:
        return None
    year, month, day, hour, minute, second, zulu, sign, tz_hours, tz_minutes = match.groups()
    try:
        moment = datetime(
            int(year),
            int(month or 1),
            int(day or 1),
            int(hour or 0),
            int(minute or 0),
            int(second or 0),
            tzinfo=timezone.utc,
        )
    except ValueError:
        LOGGER.debug("Ignoring malformed PDF date %r", value)
        return None
    if sign and not zulu:
        offset = timedelta(hours=int(tz_hours), minutes=int(tz_minutes or 0))
        moment = moment - offset if sign == "+" else moment + offset
    return moment.isoformat().replace("+00:00", "Z")


def split_keywords(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [keyword.strip() for keyword in re.split(r"[,;]", value) if keyword.strip()]


class PdfTextScanner:
    """Regex extraction of text-showing operators from raw PDF bytes.

    Used when the structural reader cannot open the file or returns no text.
    Every loop is bounded so adversarial input cannot stall a worker.
    """

    MAX_STREAMS = 5000
    MAX_TEXT_OBJECTS = 50000
    MAX_TEXT_OBJECT_CHARS = 512 * 1024
    MAX_OPERATORS_PER_OBJECT = 10000
    MAX_INFLATED_BYTES = 20 * 1024 * 1024
    DICT_LOOKBEHIND = 512

    # Repetition bounds keep every match attempt constant-cost, so a scan is
    # linear in the block size even on unterminated arrays or strings.
    _STRING = r"(?:\\.|[^\\()]){0,8192}"
    _HEX = r"[0-9A-Fa-f\s]{0,8192}"
    _NUMBER = r"-?(?:\d{1,32}(?:\.\d{0,32})?|\.\d{1,32})"

    _STREAM_RE = re.compile(rb"(?<!end)stream\r?\n")
    _BT_RE = re.compile(r"(?<![A-Za-z0-9])BT(?![A-Za-z0-9])")
    _ET_RE = re.compile(r"(?<![A-Za-z0-9])ET(?![A-Za-z0-9])")
    _OPERATOR_RE = re.compile(
        rf"\[((?:\({_STRING}\)|<{_HEX}>|[^\[\]()<]){{0,4096}})\]\s{{0,64}}TJ"
        rf"|\(({_STRING})\)\s{{0,64}}(Tj|'|\")"
        rf"|<({_HEX})>\s{{0,64}}Tj"
        rf"|({_NUMBER})\s{{1,64}}({_NUMBER})\s{{1,64}}T[dD]"
        r"|(T\*)",
        re.DOTALL,
    )
    _ARRAY_ITEM_RE = re.compile(
        rf"\(({_STRING})\)|<({_HEX})>|({_NUMBER})",
        re.DOTALL,
    )
    _PAGE_OBJECT_RE = re.compile(rb"/Type\s*/Page[^s]")
    _INFO_RE = re.compile(
        r"/(" + "|".join(_INFO_KEYS) + r")\s*\(((?:\\.|[^\\()])*)\)",
        re.DOTALL,
    )
    _ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "b": "\b", "f": "\f", "(": "(", ")": ")", "\\": "\\"}
    _ESCAPE_RE = re.compile(r"\\([0-7]{1,3}|\r\n|[\s\S])")
    _KERNING_SPACE = -250.0

    def extract(self, data: bytes) -> PdfExtraction:
        warnings: List[str] = []
        sources = self._content_sources(data, warnings)
        text = "".join(self._scan_text_objects(source) for source in sources)
        page_count = self.count_pages(data)
        info = self._scan_info(data.decode("latin-1"))
        return PdfExtraction(
            pages=self.split_pages(text, page_count),
            info=info,
            page_count=page_count,
            method="regex",
            warnings=warnings,
        )

    def count_pages(self, data: bytes) -> int:
        return max(len(self._PAGE_OBJECT_RE.findall(data)), 1)

    def _content_sources(self, data: bytes, warnings: List[str]) -> List[str]:
        sources: List[str] = []
        inflated_total = 0
        for index, match in enumerate(self._STREAM_RE.finditer(data)):
            if index >= self.MAX_STREAMS:
                warnings.append("stream limit reached")
                break
            start = match.end()
            end = data.find(b"endstream", start)
            if end == -1:
                break
            raw = data[start:end]
            dictionary = data[max(0, match.start() - self.DICT_LOOKBEHIND) : match.start()]
            dictionary = dictionary[dictionary.rfind(b"<<") :] if b"<<" in dictionary else dictionary
            if b"/FlateDecode" in dictionary:
                budget = self.MAX_INFLATED_BYTES - inflated_total
                if budget <= 0:
                    warnings.append("inflate budget exhausted")
                    continue
                try:
                    inflated = zlib.decompressobj().decompress(raw, budget)
                except zlib.error:
                    LOGGER.debug("Skipping undecodable Flate stream at offset %s", start)
                    continue
                inflated_total += len(inflated)
                sources.append(inflated.decode("latin-1"))
            elif b"/Filter" not in dictionary:
                sources.append(raw.decode("latin-1"))
        if not sources:
            sources.append(data.decode("latin-1"))
        return sources

    def _scan_text_objects(self, content: str) -> str:
        pieces: List[str] = []
        position = 0
        for _ in range(self.MAX_TEXT_OBJECTS):
            begin = self._BT_RE.search(content, position)
            if begin is None:
                break
            finish = self._ET_RE.search(content, begin.end())
            if finish is None:
                break
            block_end = min(finish.start(), begin.end() + self.MAX_TEXT_OBJECT_CHARS)
            pieces.append(self._scan_operators(content[begin.end() : block_end]))
            pieces.append("\n")
            position = finish.end()
        return "".join(pieces)

    def _scan_operators(self, block: str) -> str:
        parts: List[str] = []
        for count, match in enumerate(self._OPERATOR_RE.finditer(block)):
            if count >= self.MAX_OPERATORS_PER_OBJECT:
                break
            array, literal, operator, hex_literal, _tx, ty, next_line = match.groups()
            if array is not None:
                parts.append(self._decode_array(array))
            elif literal is not None:
                if operator in ("'", '"'):
                    parts.append("\n")
                parts.append(self.decode_literal(literal))
            elif hex_literal is not None:
                parts.append(self._decode_hex(hex_literal))
            elif ty is not None:
                parts.append("\n" if float(ty) != 0 else " ")
            elif next_line:
                parts.append("\n")
        return "".join(parts)

    def _decode_array(self, array: str) -> str:
        parts: List[str] = []
        for item in self._ARRAY_ITEM_RE.finditer(array):
            literal, hex_literal, number = item.groups()
            if literal is not None:
                parts.append(self.decode_literal(literal))
            elif hex_literal is not None:
                parts.append(self._decode_hex(hex_literal))
            elif number is not None and float(number) <= self._KERNING_SPACE:
                parts.append(" ")
        return "".join(parts)

    @classmethod
    def decode_literal(cls, literal: str) -> str:
        """Resolve backslash and octal escapes inside a PDF string literal."""

        def replace(match: re.Match[str]) -> str:
            token = match.group(1)
            if token[0] in "01234567":
                return chr(int(token, 8) & 0xFF)
            if token in ("\n", "\r", "\r\n"):
                return ""
            return cls._ESCAPES.get(token, token)

        return cls._ESCAPE_RE.sub(replace, literal)

    @staticmethod
    def _decode_hex(value: str) -> str:
        digits = re.sub(r"\s+", "", value)
        if len(digits) % 2:
            digits += "0"
        try:
            return bytes.fromhex(digits).decode("latin-1")
        except ValueError:
            return ""

    def _scan_info(self, content: str) -> Dict[str, str]:
        info: Dict[str, str] = {}
        for match in self._INFO_RE.finditer(content):
            key, value = match.group(1), match.group(2)
            info.setdefault(key, self.decode_literal(value))
        return info

    @staticmethod
    def split_pages(text: str, page_count: int) -> List[str]:
        """Split extracted text into pages using the best structural cue available.

        Form feeds win, then a sequential run of ``Page N`` footer lines, then
        equal character slices sized by the page object count.
        """

        if "\f" in text:
            return text.split("\f")

        markers = list(re.finditer(r"(?im)^[ \t]*page[ \t]+(\d+)(?:[ \t]+of[ \t]+\d+)?[ \t]*$", text))
        numbers = [int(marker.group(1)) for marker in markers]
        if len(markers) >= 2 and numbers == list(range(1, len(numbers) + 1)):
            pages: List[str] = []
            cursor = 0
            for marker in markers:
                pages.append(text[cursor : marker.end()])
                cursor = marker.end()
            if text[cursor:].strip():
                pages.append(text[cursor:])
            return pages

        if page_count <= 1 or not text:
            return [text]
        slice_size = max(math.ceil(len(text) / page_count), 1)
        return [text[offset : offset + slice_size] for offset in range(0, len(text), slice_size)]


class PdfParser:
    """Parses PDF bytes into pages using PyPDF2 with a regex fallback."""

    name = PARSER_NAME
    version = PARSER_VERSION

    def __init__(self, config: Optional[PdfParserConfig] = None) -> None:
        self.config = config or PdfParserConfig()
        self.scanner = PdfTextScanner()

    def parse(self, data: bytes, file_info: FileInfo) -> ParsedDocument:
        if len(data) > self.config.max_bytes:
            raise PdfTooLargeError(
                f"PDF is too large to process ({len(data)} bytes, limit {self.config.max_bytes}).",
                details={"size": len(data), "limit": self.config.max_bytes},
            )

        validation = validate_pdf(data)
        if not validation.has_header:
            raise InvalidPdfError(validation.message)
        if not validation.is_valid:
            raise PdfCorruptedError(validation.message, details={"version": validation.version})
        if validation.encrypted:
            raise PdfEncryptedError(
                "This PDF is password protected. Remove the password and upload it again."
            )

        extraction = self._extract(data)
        pages: List[ParsedPage] = []
        sections: List[Dict[str, Any]] = []
        for number, raw_text in enumerate(extraction.pages, start=1):
            content = sanitize_text(raw_text)
            if not content:
                continue
            pages.append(ParsedPage(page_number=number, content=content, metadata=page_metadata(content)))
            sections.extend({"title": header, "pageNumber": number} for header in extract_headers(content))

        if not pages:
            raise NoContentError(
                "No readable text was found in this PDF. Scanned documents are not supported.",
                details={"page_count": extraction.page_count, "method": extraction.method},
            )

        metadata = self._build_metadata(extraction, validation.version)
        LOGGER.info(
            "Parsed PDF %s: %s/%s pages with text via %s",
            file_info.filename,
            len(pages),
            extraction.page_count,
            extraction.method,
        )
        return ParsedDocument(
            format=PARSER_NAME,
            pages=pages,
            metadata=metadata,
            structure=build_structure((page.content for page in pages), sections),
            parser=self.name,
            parser_version=self.version,
            parse_timestamp=datetime.now(timezone.utc).isoformat(),
        )

    def _extract(self, data: bytes) -> PdfExtraction:
        structural_error: Optional[Exception] = None
        try:
            extraction = self._extract_structural(data)
        except (PdfEncryptedError, PdfTooLargeError):
            raise
        except Exception as error:  # PyPDF2 raises many unrelated types on malformed input
            LOGGER.warning("Structural PDF extraction failed, using regex fallback: %s", error)
            structural_error = error
            extraction = None

        if extraction is not None and any(page.strip() for page in extraction.pages):
            return extraction

        page_count = self.scanner.count_pages(data)
        self._check_page_limit(page_count)
        fallback = self.scanner.extract(data)
        if extraction is not None:
            fallback.info = extraction.info or fallback.info
            fallback.page_count = extraction.page_count
            if extraction.page_count > 1 and len(fallback.pages) == 1:
                fallback.pages = self.scanner.split_pages(fallback.pages[0], extraction.page_count)
        if structural_error is not None and not any(page.strip() for page in fallback.pages):
            raise ParseError(
                "The PDF could not be read. It may be damaged or use an unsupported encoding.",
                details={"reason": str(structural_error)},
                cause=structural_error,
            )
        return fallback

    def _extract_structural(self, data: bytes) -> PdfExtraction:
        reader = PdfReader(io.BytesIO(data), strict=False)
        if reader.is_encrypted:
            raise PdfEncryptedError(
                "This PDF is password protected. Remove the password and upload it again."
            )
        page_count = len(reader.pages)
        self._check_page_limit(page_count)

        pages: List[str] = []
        for index, page in enumerate(reader.pages, start=1):
            try:
                pages.append(page.extract_text() or "")
            except Exception as error:  # pragma: no cover - depends on PyPDF2 internals
                LOGGER.warning("Failed to extract text from PDF page %s: %s", index, error)
                pages.append("")
        return PdfExtraction(
            pages=pages,
            info=self._reader_info(reader),
            page_count=page_count,
            method="structure",
        )

    def _check_page_limit(self, page_count: int) -> None:
        if page_count > self.config.max_pages:
            raise PdfTooLargeError(
                f"PDF has too many pages ({page_count}, limit {self.config.max_pages}).",
                details={"page_count": page_count, "limit": self.config.max_pages},
            )

    @staticmethod
    def _reader_info(reader: PdfReader) -> Dict[str, str]:
        try:
            raw = reader.metadata
        except Exception as error:  # pragma: no cover - malformed info dictionaries
            LOGGER.debug("Unable to read PDF info dictionary: %s", error)
            return {}
        if not raw:
            return {}
        info: Dict[str, str] = {}
        for key in _INFO_KEYS:
            value = raw.get(f"/{key}")
            if value is None:
                continue
            if hasattr(value, "get_object"):
                value = value.get_object()
            text = str(value).strip()
            if text:
                info[key] = text
        return info

    @staticmethod
    def _build_metadata(extraction: PdfExtraction, version: Optional[str]) -> Dict[str, Any]:
        info = extraction.info

        def clean(key: str) -> Optional[str]:
            value = sanitize_text(info.get(key, ""))
            return value or None

        metadata: Dict[str, Any] = {
            "title": clean("Title"),
            "author": clean("Author"),
            "subject": clean("Subject"),
            "creator": clean("Creator"),
            "producer": clean("Producer"),
            "keywords": split_keywords(clean("Keywords")),
            "creationDate": parse_pdf_date(info.get("CreationDate")),
            "modificationDate": parse_pdf_date(info.get("ModDate")),
            "pdfVersion": version,
            "encrypted": False,
            "pageCount": extraction.page_count,
            "extractionMethod": extraction.method,
        }
        if extraction.warnings:
            metadata["warnings"] = list(extraction.warnings)
        return metadata


__all__ = [
    "PdfParser",
    "PdfParserConfig",
    "PdfTextScanner",
    "parse_pdf_date",
    "split_keywords",
]
