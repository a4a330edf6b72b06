"""Exception hierarchy shared by the ingestion, storage and retrieval layers."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Who is at fault, as reported to API callers."""

    INVALID_INPUT = "invalid_input"
    PROCESSING_FAILED = "processing_failed"
    UNAVAILABLE = "unavailable"


class ErrorCode(str, Enum):
    """Machine readable error codes surfaced to callers and persisted on failure."""

    EMPTY_FILE = "EMPTY_FILE"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    MISSING_FILENAME = "MISSING_FILENAME"
    INVALID_REQUEST = "INVALID_REQUEST"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    INVALID_PDF = "INVALID_PDF"
    PDF_ENCRYPTED = "PDF_ENCRYPTED"
    PDF_CORRUPTED = "PDF_CORRUPTED"
    PDF_TOO_LARGE = "PDF_TOO_LARGE"
    NO_CONTENT = "NO_CONTENT"
    TEXT_PARSE_ERROR = "TEXT_PARSE_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    PARSE_TIMEOUT = "PARSE_TIMEOUT"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    STORAGE_ERROR = "STORAGE_ERROR"
    VECTOR_INDEX_UNAVAILABLE = "VECTOR_INDEX_UNAVAILABLE"


class DocumentError(Exception):
    """Base class for every failure that carries a code and a user-facing message.

    ``code`` and ``message`` are independent: the message is written for humans
    and may change, the code is the stable contract.
    """

    default_code: ErrorCode = ErrorCode.PARSE_ERROR
    kind: ErrorKind = ErrorKind.PROCESSING_FAILED

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details: Dict[str, Any] = dict(details or {})
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "kind": self.kind.value,
            "details": self.details,
        }

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class InputValidationError(DocumentError):
    """The request was rejected before any I/O happened."""

    default_code = ErrorCode.INVALID_REQUEST
    kind = ErrorKind.INVALID_INPUT


class SignatureMismatchError(DocumentError):
    """The bytes do not match the declared content type."""

    default_code = ErrorCode.SIGNATURE_MISMATCH
    kind = ErrorKind.INVALID_INPUT


class UnsupportedFileTypeError(DocumentError):
    """The content was recognised but no parser handles it."""

    default_code = ErrorCode.UNSUPPORTED_FILE_TYPE
    kind = ErrorKind.INVALID_INPUT


class ParseError(DocumentError):
    """A parser could not turn the bytes into pages."""

    default_code = ErrorCode.PARSE_ERROR
    kind = ErrorKind.PROCESSING_FAILED


class InvalidPdfError(ParseError):
    default_code = ErrorCode.INVALID_PDF
    kind = ErrorKind.INVALID_INPUT


class PdfEncryptedError(ParseError):
    default_code = ErrorCode.PDF_ENCRYPTED
    kind = ErrorKind.INVALID_INPUT


class PdfCorruptedError(ParseError):
    default_code = ErrorCode.PDF_CORRUPTED
    kind = ErrorKind.INVALID_INPUT


class PdfTooLargeError(ParseError):
    default_code = ErrorCode.PDF_TOO_LARGE
    kind = ErrorKind.INVALID_INPUT


class NoContentError(ParseError):
    default_code = ErrorCode.NO_CONTENT


class TextParseError(ParseError):
    default_code = ErrorCode.TEXT_PARSE_ERROR


class ParseTimeoutError(ParseError):
    default_code = ErrorCode.PARSE_TIMEOUT


class DocumentNotFoundError(DocumentError):
    default_code = ErrorCode.DOCUMENT_NOT_FOUND
    kind = ErrorKind.INVALID_INPUT

    def __init__(self, document_id: str) -> None:
        super().__init__(
            f"Document {document_id} not found",
            details={"document_id": document_id},
        )
        self.document_id = document_id


class BlobMissingError(DocumentError):
    """The document row exists but its stored bytes are gone."""

    default_code = ErrorCode.FILE_NOT_FOUND
    kind = ErrorKind.PROCESSING_FAILED


class StorageError(DocumentError):
    """The blob store or relational store failed underneath us."""

    default_code = ErrorCode.STORAGE_ERROR
    kind = ErrorKind.UNAVAILABLE


__all__ = [
    "BlobMissingError",
    "DocumentError",
    "DocumentNotFoundError",
    "ErrorCode",
    "ErrorKind",
    "InputValidationError",
    "InvalidPdfError",
    "NoContentError",
    "ParseError",
    "ParseTimeoutError",
    "PdfCorruptedError",
    "PdfEncryptedError",
    "PdfTooLargeError",
    "SignatureMismatchError",
    "StorageError",
    "TextParseError",
    "UnsupportedFileTypeError",
]
