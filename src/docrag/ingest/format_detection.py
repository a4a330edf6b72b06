"""Utilities for deciding which parser handles an uploaded document."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from ..errors import UnsupportedFileTypeError
from .models import FileInfo
from .signature import describe_type, detect_signature, normalize_content_type

LOGGER = logging.getLogger(__name__)


class ParserFamily(str, Enum):
    """Parser families the pipeline can dispatch to."""

    PDF = "pdf"
    TEXT = "text"


PDF_MIME_TYPES = frozenset({"application/pdf", "application/x-pdf"})
PDF_EXTENSIONS = frozenset({"pdf"})

TEXT_MIME_TYPES = frozenset(
    {
        "text/plain",
        "text/markdown",
        "text/x-markdown",
        "application/json",
        "text/json",
        "text/csv",
        "application/csv",
        "text/xml",
        "application/xml",
        "text/html",
        "application/xhtml+xml",
        "text/yaml",
        "text/x-yaml",
        "application/yaml",
        "application/x-yaml",
    }
)
TEXT_EXTENSIONS = frozenset(
    {"txt", "text", "log", "md", "markdown", "json", "csv", "xml", "html", "htm", "yaml", "yml"}
)


class DocumentFormatDetector:
    """Detects the parser family from sniffed bytes, declared type and file name."""

    @classmethod
    def detect(
        cls,
        data: bytes,
        file_info: FileInfo,
        detected_type: Optional[str] = None,
    ) -> ParserFamily:
        """Return the parser family for ``data``.

        A sniffed binary signature overrides anything the caller declared.
        Without one, the declared MIME type or the file extension must match
        an allow-list exactly; unrecognised content defaults to the text
        parser, which rejects binary data on its own.
        """

        sniffed = detected_type if detected_type is not None else detect_signature(data)
        declared = normalize_content_type(file_info.content_type)
        extension = file_info.extension

        if sniffed == "pdf":
            return ParserFamily.PDF
        if sniffed is not None:
            raise UnsupportedFileTypeError(
                f"{describe_type(sniffed)} files are not supported. "
                "Upload a PDF or a text document instead.",
                details={"detected_type": sniffed, "declared_type": declared},
            )

        if declared in PDF_MIME_TYPES or extension in PDF_EXTENSIONS:
            return ParserFamily.PDF
        if declared in TEXT_MIME_TYPES or extension in TEXT_EXTENSIONS:
            return ParserFamily.TEXT

        LOGGER.debug(
            "No format match for %s (declared %s); defaulting to text", file_info.filename, declared
        )
        return ParserFamily.TEXT


__all__ = ["DocumentFormatDetector", "ParserFamily", "PDF_MIME_TYPES", "TEXT_MIME_TYPES"]
