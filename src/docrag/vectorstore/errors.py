"""Common exceptions for vector store integrations."""
from __future__ import annotations

from ..errors import DocumentError, ErrorCode, ErrorKind


class VectorStoreUnavailableError(DocumentError):
    """Raised when the vector store backend cannot be initialised or queried."""

    default_code = ErrorCode.VECTOR_INDEX_UNAVAILABLE
    kind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message, cause=cause)
