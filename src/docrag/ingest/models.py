"""Data models used by the ingestion pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

PAGE_SEPARATOR = "\n\n"


@dataclass(slots=True)
class FileInfo:
    """What the caller told us about an upload."""

    filename: str
    content_type: Optional[str] = None
    size: Optional[int] = None

    @property
    def extension(self) -> str:
        name = self.filename.rsplit("/", 1)[-1]
        if "." not in name:
            return ""
        return name.rsplit(".", 1)[-1].lower()


@dataclass(slots=True)
class ParsedPage:
    """Represents text extracted from one logical page of the source document."""

    page_number: int
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ParsedChunk:
    """A retrieval-sized slice of the assembled document text."""

    chunk_index: int
    text: str
    page_number: Optional[int]
    char_start: int
    char_end: int


@dataclass(slots=True)
class ParsedDocument:
    """Result of running a parser over an uploaded file."""

    format: str
    pages: List[ParsedPage]
    metadata: Dict[str, Any]
    structure: Dict[str, Any]
    parser: str
    parser_version: str
    parse_timestamp: str
    language: str = "unknown"
    chunks: List[ParsedChunk] = field(default_factory=list)
    encoding_warning: Optional[str] = None

    @property
    def full_text(self) -> str:
        return PAGE_SEPARATOR.join(page.content for page in self.pages)

    @property
    def word_count(self) -> int:
        return int(self.structure.get("wordCount", 0))

    @property
    def character_count(self) -> int:
        return int(self.structure.get("characterCount", 0))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "format": self.format,
            "parser": self.parser,
            "parserVersion": self.parser_version,
            "parseTimestamp": self.parse_timestamp,
            "language": self.language,
            "metadata": self.metadata,
            "structure": self.structure,
            "pages": [
                {
                    "pageNumber": page.page_number,
                    "content": page.content,
                    "metadata": page.metadata,
                }
                for page in self.pages
            ],
            "fullText": self.full_text,
        }
        if self.encoding_warning:
            payload["encodingWarning"] = self.encoding_warning
        return payload
