from __future__ import annotations

import pytest

from docrag.errors import ErrorCode, SignatureMismatchError, UnsupportedFileTypeError
from docrag.ingest.format_detection import DocumentFormatDetector, ParserFamily
from docrag.ingest.models import FileInfo
from docrag.ingest.pipeline import DocumentParser


def test_declared_pdf_routes_to_pdf_parser_without_sniffed_signature() -> None:
    family = DocumentFormatDetector.detect(
        b"garbage that is not sniffable",
        FileInfo(filename="report.pdf", content_type="application/pdf"),
    )

    assert family is ParserFamily.PDF


def test_json_extension_wins_over_incompatible_mime_type() -> None:
    family = DocumentFormatDetector.detect(
        b'{"a": 1}',
        FileInfo(filename="data.json", content_type="application/x-unknown"),
    )

    assert family is ParserFamily.TEXT


def test_sniffed_pdf_overrides_declared_text(pdf_factory) -> None:
    family = DocumentFormatDetector.detect(
        pdf_factory(["Hello"]),
        FileInfo(filename="notes.txt", content_type="text/plain"),
    )

    assert family is ParserFamily.PDF


def test_mime_match_is_exact_not_substring() -> None:
    family = DocumentFormatDetector.detect(
        b"plain words",
        FileInfo(filename="upload", content_type="application/pdf-like"),
    )

    assert family is ParserFamily.TEXT


@pytest.mark.parametrize(
    ("data", "detected"),
    [
        (b"\x89PNG\r\n\x1a\n" + b"\x00" * 16, "png"),
        (b"PK\x03\x04" + b"\x00" * 16, "zip"),
        (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 16, "ole2"),
    ],
)
def test_recognised_binary_types_are_unsupported(data: bytes, detected: str) -> None:
    with pytest.raises(UnsupportedFileTypeError) as excinfo:
        DocumentFormatDetector.detect(data, FileInfo(filename="file.bin"))

    assert excinfo.value.code is ErrorCode.UNSUPPORTED_FILE_TYPE
    assert excinfo.value.details["detected_type"] == detected


def test_parser_selection_rejects_signature_mismatch() -> None:
    parser = DocumentParser()
    jpeg = b"\xff\xd8\xff\xe0" + b"\x00" * 32

    with pytest.raises(SignatureMismatchError) as excinfo:
        parser.select_parser(jpeg, FileInfo(filename="scan.pdf", content_type="application/pdf"))

    assert excinfo.value.details["detectedType"] == "jpeg"
    assert excinfo.value.details["declaredType"] == "application/pdf"


def test_parser_selection_picks_text_parser_for_markdown() -> None:
    parser = DocumentParser()

    selected = parser.select_parser(b"# Title\n\nBody", FileInfo(filename="readme.md", content_type="text/markdown"))

    assert selected is parser.text_parser
