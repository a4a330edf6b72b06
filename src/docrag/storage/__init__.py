"""Persistence for documents: blobs, relational rows and the lexical index."""
from __future__ import annotations

from .blobs import BlobNotFoundError, BlobStore, FilesystemBlobStore, InMemoryBlobStore, create_blob_store
from .database import (
    ChunkRecord,
    DocumentRecord,
    DocumentStatus,
    PageRecord,
    create_db_engine,
    create_schema,
    create_session_factory,
)
from .documents import DocumentStore, ProcessResult, StoredFile, UploadResult
from .lexical import LexicalHealth, LexicalHit, LexicalIndex, extract_keywords
from .repository import DocumentRepository

__all__ = [
    "BlobNotFoundError",
    "BlobStore",
    "ChunkRecord",
    "DocumentRecord",
    "DocumentRepository",
    "DocumentStatus",
    "DocumentStore",
    "FilesystemBlobStore",
    "InMemoryBlobStore",
    "LexicalHealth",
    "LexicalHit",
    "LexicalIndex",
    "PageRecord",
    "ProcessResult",
    "UploadResult",
    "create_blob_store",
    "create_db_engine",
    "create_schema",
    "create_session_factory",
    "extract_keywords",
]
