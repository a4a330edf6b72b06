"""Parsers for the text family: plain, markdown, JSON, CSV, XML, HTML and YAML."""
from __future__ import annotations

import csv
import html
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import NoContentError, TextParseError
from .models import FileInfo, ParsedDocument, ParsedPage
from .normalization import build_structure, count_words, page_metadata, sanitize_text

LOGGER = logging.getLogger(__name__)

PARSER_NAME = "text"
PARSER_VERSION = "2.0"

_SNIFF_CHARS = 1000
_BINARY_SAMPLE_BYTES = 8192
_MAX_CONTROL_RATIO = 0.1
_STRICT_ENCODINGS = ("utf-8-sig", "cp1252")
_UTF16_BOMS = (b"\xff\xfe", b"\xfe\xff")

_MD_HEADER_RE = re.compile(r"^#{1,6}\s+", re.MULTILINE)
_MD_BOLD_RE = re.compile(r"\*\*[^*\n]+?\*\*")
_MD_LINK_RE = re.compile(r"\[[^\]\n]*\]\([^)\n]*\)")
_MD_LIST_RE = re.compile(r"^[-*+]\s+", re.MULTILINE)
_MD_SECTION_RE = re.compile(r"^(#{1,2})\s+(.+)$", re.MULTILINE)
_TAG_RE = re.compile(r"<[a-zA-Z][^>]*>")
_HTML_HINT_RE = re.compile(r"<!doctype\s+html|<html[\s>]", re.IGNORECASE)
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_BLOCK_TAG_RE = re.compile(
    r"</?(?:p|div|br|li|ul|ol|tr|table|h[1-6]|section|article|header|footer|title|pre|blockquote)\b[^>]*>",
    re.IGNORECASE,
)
_ANY_TAG_RE = re.compile(r"<[^>]+>")
_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title\s*>", re.IGNORECASE | re.DOTALL)


class TextFormat(str, Enum):
    TXT = "txt"
    MARKDOWN = "markdown"
    JSON = "json"
    CSV = "csv"
    XML = "xml"
    HTML = "html"
    YAML = "yaml"


EXTENSION_FORMATS: Dict[str, TextFormat] = {
    "txt": TextFormat.TXT,
    "text": TextFormat.TXT,
    "log": TextFormat.TXT,
    "md": TextFormat.MARKDOWN,
    "markdown": TextFormat.MARKDOWN,
    "json": TextFormat.JSON,
    "csv": TextFormat.CSV,
    "xml": TextFormat.XML,
    "html": TextFormat.HTML,
    "htm": TextFormat.HTML,
    "yaml": TextFormat.YAML,
    "yml": TextFormat.YAML,
}


@dataclass(slots=True)
class TextParserConfig:
    page_chars: int = 2000
    csv_rows_per_page: int = 100


@dataclass(slots=True)
class DecodedText:
    text: str
    encoding: str
    warning: Optional[str] = None


@dataclass(slots=True)
class RawPage:
    content: str
    header: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


def decode_bytes(data: bytes) -> DecodedText:
    """Decode ``data`` trying each candidate encoding strictly, then lossily.

    Raises :class:`TextParseError` when the bytes look like binary data rather
    than text in any encoding.
    """

    if data.startswith(_UTF16_BOMS):
        try:
            return DecodedText(text=data.decode("utf-16"), encoding="utf-16")
        except UnicodeDecodeError:
            LOGGER.debug("UTF-16 BOM present but payload does not decode")

    if b"\x00" in data[:_BINARY_SAMPLE_BYTES]:
        raise TextParseError(
            "The file looks like binary data, not text.",
            details={"reason": "null bytes"},
        )

    for encoding in _STRICT_ENCODINGS:
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError:
            continue
        return DecodedText(text=_reject_control_heavy(text), encoding=encoding)

    text = _reject_control_heavy(data.decode("utf-8", errors="replace"))
    LOGGER.warning("No strict decoding succeeded; decoded with replacement characters")
    return DecodedText(
        text=text,
        encoding="utf-8",
        warning="The file is not valid UTF-8 or Windows-1252; some characters were replaced.",
    )


def _reject_control_heavy(text: str) -> str:
    sample = text[:_BINARY_SAMPLE_BYTES]
    if sample:
        controls = sum(1 for char in sample if ord(char) < 32 and char not in "\n\r\t\f")
        if controls / len(sample) > _MAX_CONTROL_RATIO:
            raise TextParseError(
                "The file contains too many control characters to be read as text.",
                details={"reason": "control characters"},
            )
    return text


def detect_text_format(text: str, file_info: FileInfo) -> TextFormat:
    """Classify decoded text, trusting an exact extension match first."""

    by_extension = EXTENSION_FORMATS.get(file_info.extension)
    if by_extension is not None and by_extension is not TextFormat.TXT:
        return by_extension

    sample = text[:_SNIFF_CHARS]
    stripped = sample.strip()

    if (
        _MD_HEADER_RE.search(sample)
        or _MD_BOLD_RE.search(sample)
        or _MD_LINK_RE.search(sample)
        or _MD_LIST_RE.search(sample)
    ) and not stripped.startswith(("{", "<")):
        return TextFormat.MARKDOWN

    if stripped.startswith(("{", "[")):
        try:
            json.loads(text)
        except ValueError:
            pass
        else:
            return TextFormat.JSON

    lines = [line for line in sample.split("\n") if line.strip()][:5]
    if len(lines) > 1:
        counts = [line.count(",") for line in lines]
        if counts[0] > 0 and all(count == counts[0] for count in counts):
            return TextFormat.CSV

    if "<?xml" in sample:
        return TextFormat.XML
    if _HTML_HINT_RE.search(sample) or _TAG_RE.search(sample):
        return TextFormat.HTML

    return TextFormat.TXT


def split_plain(text: str, page_chars: int) -> List[RawPage]:
    """Split text into pages of about ``page_chars`` characters.

    Prefers a paragraph break in the second half of the window, then the last
    line break, then a hard cut.
    """

    pages: List[RawPage] = []
    start = 0
    length = len(text)
    while start < length:
        end = start + page_chars
        if end >= length:
            pages.append(RawPage(text[start:]))
            break
        window = text[start:end]
        paragraph = window.rfind("\n\n")
        if paragraph > page_chars * 0.5:
            end = start + paragraph + 2
        else:
            line = window.rfind("\n")
            if line > 0:
                end = start + line + 1
        pages.append(RawPage(text[start:end]))
        start = end
    return pages


def split_markdown(text: str, page_chars: int) -> List[RawPage]:
    matches = list(_MD_SECTION_RE.finditer(text))
    if not matches:
        return split_plain(text, page_chars)

    pages: List[RawPage] = []
    preamble = text[: matches[0].start()]
    if preamble.strip():
        pages.append(RawPage(preamble))
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        pages.append(
            RawPage(
                text[match.start() : end],
                header=match.group(2).strip(),
                extra={"level": len(match.group(1))},
            )
        )
    return pages


def split_json(text: str, page_chars: int) -> Tuple[List[RawPage], Optional[str]]:
    try:
        data = json.loads(text)
    except ValueError as error:
        LOGGER.info("Invalid JSON content, splitting as plain text: %s", error)
        return split_plain(text, page_chars), str(error)

    if isinstance(data, list):
        return [
            RawPage(
                json.dumps(item, indent=2, ensure_ascii=False),
                header=f"Item {index}",
                extra={"itemType": type(item).__name__},
            )
            for index, item in enumerate(data, start=1)
        ], None
    if isinstance(data, dict) and data:
        return [
            RawPage(
                json.dumps({key: value}, indent=2, ensure_ascii=False),
                header=str(key),
                extra={"key": str(key)},
            )
            for key, value in data.items()
        ], None
    return [RawPage(json.dumps(data, indent=2, ensure_ascii=False))], None


def split_csv(text: str, rows_per_page: int) -> List[RawPage]:
    lines = [line for line in text.split("\n") if line.strip()]
    if not lines:
        return []
    header = lines[0]
    columns = next(csv.reader([header]), [])
    rows = lines[1:]
    if not rows:
        return [RawPage(header, extra={"columns": columns})]
    pages: List[RawPage] = []
    for offset in range(0, len(rows), rows_per_page):
        group = rows[offset : offset + rows_per_page]
        pages.append(
            RawPage(
                "\n".join([header, *group]),
                extra={
                    "columns": columns,
                    "rowRange": {"start": offset + 1, "end": offset + len(group)},
                },
            )
        )
    return pages


def strip_markup(text: str) -> str:
    without_scripts = _SCRIPT_STYLE_RE.sub(" ", text)
    without_comments = _COMMENT_RE.sub(" ", without_scripts)
    with_breaks = _BLOCK_TAG_RE.sub("\n", without_comments)
    return html.unescape(_ANY_TAG_RE.sub(" ", with_breaks))


class TextParser:
    """Decodes text-family files and splits them into format-aware pages."""

    name = PARSER_NAME
    version = PARSER_VERSION

    def __init__(self, config: Optional[TextParserConfig] = None) -> None:
        self.config = config or TextParserConfig()

    def parse(self, data: bytes, file_info: FileInfo) -> ParsedDocument:
        decoded = decode_bytes(data)
        text = decoded.text.replace("\r\n", "\n").replace("\r", "\n")
        if not text.strip():
            raise NoContentError("The file does not contain any text.")

        text_format = detect_text_format(text, file_info)
        metadata: Dict[str, Any] = {
            "title": self._title(text, text_format, file_info),
            "encoding": decoded.encoding,
            "size": len(data),
            "contentType": file_info.content_type,
        }
        raw_pages = self._split(text, text_format, metadata)

        pages: List[ParsedPage] = []
        sections: List[Dict[str, Any]] = []
        for raw in raw_pages:
            content = sanitize_text(raw.content, preserve_indentation=text_format is TextFormat.JSON)
            if not content:
                continue
            number = len(pages) + 1
            extra = dict(raw.extra or {})
            extra["format"] = text_format.value
            page_meta = page_metadata(content, **extra)
            if raw.header:
                page_meta["headers"] = [raw.header]
                sections.append({"title": raw.header, "pageNumber": number, **(raw.extra or {})})
            pages.append(ParsedPage(page_number=number, content=content, metadata=page_meta))

        if not pages:
            raise NoContentError(
                "The file does not contain any readable text.",
                details={"format": text_format.value},
            )

        LOGGER.info(
            "Parsed %s as %s (%s pages, %s words)",
            file_info.filename,
            text_format.value,
            len(pages),
            sum(count_words(page.content) for page in pages),
        )
        return ParsedDocument(
            format=text_format.value,
            pages=pages,
            metadata=metadata,
            structure=build_structure((page.content for page in pages), sections),
            parser=self.name,
            parser_version=self.version,
            parse_timestamp=datetime.now(timezone.utc).isoformat(),
            encoding_warning=decoded.warning,
        )

    def _split(self, text: str, text_format: TextFormat, metadata: Dict[str, Any]) -> List[RawPage]:
        if text_format is TextFormat.MARKDOWN:
            return split_markdown(text, self.config.page_chars)
        if text_format is TextFormat.JSON:
            pages, error = split_json(text, self.config.page_chars)
            if error:
                metadata["jsonError"] = error
            return pages
        if text_format is TextFormat.CSV:
            return split_csv(text, self.config.csv_rows_per_page)
        if text_format in (TextFormat.HTML, TextFormat.XML):
            return split_plain(strip_markup(text), self.config.page_chars)
        return split_plain(text, self.config.page_chars)

    @staticmethod
    def _title(text: str, text_format: TextFormat, file_info: FileInfo) -> str:
        if text_format is TextFormat.MARKDOWN:
            match = _MD_SECTION_RE.search(text)
            if match:
                return sanitize_text(match.group(2))
        if text_format is TextFormat.HTML:
            match = _TITLE_RE.search(text[:_BINARY_SAMPLE_BYTES])
            if match and match.group(1).strip():
                return sanitize_text(html.unescape(match.group(1)))
        name = file_info.filename.rsplit("/", 1)[-1]
        return name.rsplit(".", 1)[0] if "." in name else name


__all__ = [
    "TextFormat",
    "TextParser",
    "TextParserConfig",
    "decode_bytes",
    "detect_text_format",
    "split_csv",
    "split_json",
    "split_markdown",
    "split_plain",
    "strip_markup",
]
