"""Document lifecycle: upload, process, read and delete."""
from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import (
    BlobMissingError,
    DocumentError,
    DocumentNotFoundError,
    ErrorCode,
    InputValidationError,
    ParseError,
    ParseTimeoutError,
    StorageError,
)
from ..ingest.models import PAGE_SEPARATOR, FileInfo, ParsedChunk, ParsedDocument
from ..ingest.pipeline import DocumentParser
from ..logging_config import AUDIT_LOGGER_NAME
from ..telemetry import emit_document_event, emit_exception
from .blobs import BlobNotFoundError, BlobStore, sanitize_filename
from .database import ChunkRecord, DocumentRecord, DocumentStatus, PageRecord
from .lexical import LexicalIndex
from .repository import DocumentRepository

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from ..vectorstore import VectorIndexClient

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)

DEFAULT_CATEGORY = "general"
PLACEHOLDER_TEMPLATE = "Document: {filename} (text extraction pending)"


@dataclass(slots=True)
class UploadResult:
    id: str
    filename: str
    status: str
    page_count: int
    byte_size: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class ProcessResult:
    id: str
    status: str
    format: str
    page_count: int
    word_count: int
    chunk_count: int
    language: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class StoredFile:
    filename: str
    content_type: Optional[str]
    data: bytes


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _document_to_dict(record: DocumentRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "filename": record.filename,
        "original_filename": record.original_filename,
        "content_type": record.content_type,
        "byte_size": record.byte_size,
        "uploaded_at": _isoformat(record.uploaded_at),
        "category": record.category,
        "tags": list(record.tags or []),
        "status": record.status,
        "format": record.format,
        "language": record.language,
        "page_count": record.page_count,
        "word_count": record.word_count,
        "character_count": record.character_count,
        "parser_version": record.parser_version,
        "parse_timestamp": record.parse_timestamp,
        "metadata": record.parsed_metadata or {},
        "structure": record.parsed_structure or {},
    }


class DocumentStore:
    """Owns the blob, the relational rows and the lexical index of every document.

    Every status change is the last write of its transaction, so a document
    left in ``processing`` by a crash can simply be processed again.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        blob_store: BlobStore,
        lexical_index: LexicalIndex,
        parser: DocumentParser,
        *,
        max_upload_bytes: int,
        parse_timeout_seconds: Optional[float] = None,
        vector_client: Optional["VectorIndexClient"] = None,
    ) -> None:
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.lexical_index = lexical_index
        self.parser = parser
        self.max_upload_bytes = max_upload_bytes
        self.parse_timeout_seconds = parse_timeout_seconds
        self.vector_client = vector_client

    # ------------------------------------------------------------------ upload
    def upload(
        self,
        data: bytes,
        filename: Optional[str],
        content_type: Optional[str] = None,
        *,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> UploadResult:
        """Validate and store an upload; the document starts in ``uploaded``."""

        if not filename or not filename.strip():
            raise InputValidationError("A filename is required", code=ErrorCode.MISSING_FILENAME)
        if not data:
            raise InputValidationError("The uploaded file is empty", code=ErrorCode.EMPTY_FILE)
        if len(data) > self.max_upload_bytes:
            raise InputValidationError(
                f"File exceeds the maximum upload size of {self.max_upload_bytes} bytes",
                code=ErrorCode.FILE_TOO_LARGE,
                details={"size": len(data), "max_size": self.max_upload_bytes},
            )
        tag_list = self._validate_tags(tags)

        file_info = FileInfo(filename=filename, content_type=content_type, size=len(data))
        self.parser.select_parser(data, file_info)

        document_id = f"doc_{uuid.uuid4().hex}"
        blob_key = f"documents/{document_id}"
        safe_name = sanitize_filename(filename)
        started = time.perf_counter()

        self.blob_store.put(blob_key, data, content_type)
        try:
            with self.session_factory.begin() as session:
                repository = DocumentRepository(session)
                record = DocumentRecord(
                    id=document_id,
                    filename=safe_name,
                    original_filename=filename,
                    content_type=content_type,
                    byte_size=len(data),
                    category=(category or "").strip() or DEFAULT_CATEGORY,
                    tags=tag_list,
                    blob_key=blob_key,
                    status=DocumentStatus.UPLOADED.value,
                    page_count=1,
                )
                placeholder = PageRecord(
                    document_id=document_id,
                    page_number=1,
                    content=PLACEHOLDER_TEMPLATE.format(filename=safe_name),
                    page_metadata={"placeholder": True},
                )
                repository.add(record, [placeholder])
                self.lexical_index.index_pages(session, [placeholder], safe_name)
        except Exception as error:
            self._discard_blob(blob_key, document_id)
            if isinstance(error, DocumentError):
                raise
            raise StorageError("Failed to record the upload", cause=error) from error

        emit_document_event(
            "document.upload",
            document_id=document_id,
            filename=safe_name,
            size_bytes=len(data),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        AUDIT_LOGGER.info(
            {"event": "upload", "document_id": document_id, "filename": safe_name, "size_bytes": len(data)}
        )
        return UploadResult(
            id=document_id,
            filename=safe_name,
            status=DocumentStatus.UPLOADED.value,
            page_count=1,
            byte_size=len(data),
        )

    @staticmethod
    def _validate_tags(tags: Optional[Sequence[str]]) -> List[str]:
        if tags is None:
            return []
        if isinstance(tags, (str, bytes)) or not all(isinstance(tag, str) for tag in tags):
            raise InputValidationError("Tags must be a list of strings", details={"tags": repr(tags)})
        return [tag.strip() for tag in tags if tag.strip()]

    def _discard_blob(self, blob_key: str, document_id: str) -> None:
        try:
            self.blob_store.delete(blob_key)
        except Exception as error:  # orphaned blob is logged, never fatal
            LOGGER.warning("Failed to delete orphaned blob %s for %s: %s", blob_key, document_id, error)

    # ----------------------------------------------------------------- process
    def process(self, document_id: str) -> ProcessResult:
        """Parse the stored bytes and replace all pages and chunks of the document.

        Safe to call repeatedly. On failure the document is marked ``error``
        with the structured error and the typed error is re-raised.
        """

        started = time.perf_counter()
        with self._transaction() as session:
            record = DocumentRepository(session).get(document_id)
            if record is None:
                raise DocumentNotFoundError(document_id)
            record.status = DocumentStatus.PROCESSING.value
            file_info = FileInfo(
                filename=record.original_filename or record.filename,
                content_type=record.content_type,
                size=record.byte_size,
            )
            filename = record.filename
            blob_key = record.blob_key
        emit_document_event("document.process.start", document_id=document_id, filename=filename)

        try:
            try:
                data = self.blob_store.get(blob_key)
            except BlobNotFoundError as error:
                raise BlobMissingError(
                    f"Stored file for document {document_id} is missing",
                    details={"blob_key": blob_key},
                    cause=error,
                ) from error
            parsed = self._parse(data, file_info)
            chunk_count = self._store_parsed(document_id, filename, parsed)
        except DocumentError as error:
            self._mark_error(document_id, error)
            emit_document_event(
                "document.process.error",
                document_id=document_id,
                filename=filename,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                error_code=error.code.value,
            )
            AUDIT_LOGGER.info(
                {"event": "process", "document_id": document_id, "status": "error", "code": error.code.value}
            )
            raise

        emit_document_event(
            "document.process.complete",
            document_id=document_id,
            filename=filename,
            size_bytes=file_info.size,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            file_format=parsed.format,
            language=parsed.language,
            pages=len(parsed.pages),
            chunks=chunk_count,
        )
        AUDIT_LOGGER.info(
            {
                "event": "process",
                "document_id": document_id,
                "status": DocumentStatus.PROCESSED.value,
                "format": parsed.format,
                "pages": len(parsed.pages),
                "chunks": chunk_count,
            }
        )
        return ProcessResult(
            id=document_id,
            status=DocumentStatus.PROCESSED.value,
            format=parsed.format,
            page_count=len(parsed.pages),
            word_count=parsed.word_count,
            chunk_count=chunk_count,
            language=parsed.language,
        )

    def _parse(self, data: bytes, file_info: FileInfo) -> ParsedDocument:
        try:
            if not self.parse_timeout_seconds:
                return self.parser.parse(data, file_info)
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="docrag-parse")
            try:
                future = executor.submit(self.parser.parse, data, file_info)
                return future.result(timeout=self.parse_timeout_seconds)
            except FutureTimeoutError as error:
                raise ParseTimeoutError(
                    f"Parsing did not finish within {self.parse_timeout_seconds} seconds",
                    details={"timeout_seconds": self.parse_timeout_seconds},
                    cause=error,
                ) from error
            finally:
                executor.shutdown(wait=False, cancel_futures=True)
        except DocumentError:
            raise
        except MemoryError as error:
            raise ParseError("Ran out of memory while parsing the document", cause=error) from error
        except Exception as error:
            emit_exception(module=f"{__name__}.parse", error=error)
            raise ParseError(f"Failed to parse {file_info.filename}", cause=error) from error

    def _store_parsed(self, document_id: str, filename: str, parsed: ParsedDocument) -> int:
        pages = [
            PageRecord(
                document_id=document_id,
                page_number=page.page_number,
                content=page.content,
                page_metadata=page.metadata,
            )
            for page in parsed.pages
        ]
        chunks = [
            ChunkRecord(
                document_id=document_id,
                page_number=chunk.page_number,
                chunk_index=chunk.chunk_index,
                chunk_text=chunk.text,
            )
            for chunk in parsed.chunks
        ]
        metadata = dict(parsed.metadata)
        if parsed.encoding_warning:
            metadata["encodingWarning"] = parsed.encoding_warning

        with self._transaction() as session:
            repository = DocumentRepository(session)
            record = repository.get(document_id)
            if record is None:
                raise DocumentNotFoundError(document_id)
            self.lexical_index.remove_document(session, document_id)
            repository.replace_content(document_id, pages, chunks)
            self.lexical_index.index_pages(session, pages, filename)
            self.lexical_index.index_chunks(session, chunks, filename)

            record.format = parsed.format
            record.language = parsed.language
            record.page_count = len(pages)
            record.word_count = parsed.word_count
            record.character_count = parsed.character_count
            record.parser_version = parsed.parser_version
            record.parse_timestamp = parsed.parse_timestamp
            record.parsed_metadata = metadata
            record.parsed_structure = parsed.structure
            record.status = DocumentStatus.PROCESSED.value
        return len(chunks)

    def _mark_error(self, document_id: str, error: DocumentError) -> None:
        try:
            with self._transaction() as session:
                record = DocumentRepository(session).get(document_id)
                if record is None:
                    return
                record.status = DocumentStatus.ERROR.value
                record.parsed_metadata = {"error": error.to_dict()}
        except StorageError as storage_error:
            LOGGER.error("Could not record failure for %s: %s", document_id, storage_error)

    # ------------------------------------------------------------------ delete
    def delete(self, document_id: str) -> None:
        """Remove the blob, then the row with its pages, chunks and index entries."""

        with self._transaction() as session:
            record = DocumentRepository(session).get(document_id)
            if record is None:
                raise DocumentNotFoundError(document_id)
            blob_key = record.blob_key

        try:
            self.blob_store.delete(blob_key)
        except Exception as error:  # metadata deletion must still happen
            LOGGER.warning("Failed to delete blob %s for %s: %s", blob_key, document_id, error)

        with self._transaction() as session:
            repository = DocumentRepository(session)
            record = repository.get(document_id)
            if record is None:
                raise DocumentNotFoundError(document_id)
            self.lexical_index.remove_document(session, document_id)
            repository.delete(record)

        if self.vector_client is not None:
            try:
                self.vector_client.delete_document(document_id)
            except DocumentError as error:
                LOGGER.warning("Failed to delete vectors for %s: %s", document_id, error)

        emit_document_event("document.delete", document_id=document_id)
        AUDIT_LOGGER.info({"event": "delete", "document_id": document_id})

    # ------------------------------------------------------------------- reads
    def get(self, document_id: str) -> Dict[str, Any]:
        with self._transaction() as session:
            repository = DocumentRepository(session)
            record = repository.get(document_id)
            if record is None:
                raise DocumentNotFoundError(document_id)
            payload = _document_to_dict(record)
            payload["pages"] = [
                {
                    "page_number": page.page_number,
                    "content": page.content,
                    "metadata": page.page_metadata or {},
                }
                for page in repository.pages(document_id)
            ]
        return payload

    def get_json(self, document_id: str) -> Dict[str, Any]:
        """Return the structured parse result as stored for the document."""

        document = self.get(document_id)
        contents = [page["content"] for page in document["pages"]]
        return {
            "id": document["id"],
            "filename": document["filename"],
            "status": document["status"],
            "format": document["format"],
            "language": document["language"],
            "parserVersion": document["parser_version"],
            "parseTimestamp": document["parse_timestamp"],
            "metadata": document["metadata"],
            "structure": document["structure"],
            "pages": [
                {
                    "pageNumber": page["page_number"],
                    "content": page["content"],
                    "metadata": page["metadata"],
                }
                for page in document["pages"]
            ],
            "fullText": PAGE_SEPARATOR.join(contents),
        }

    def list(self, category: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        with self._transaction() as session:
            records = DocumentRepository(session).list(category, max(limit, 0), max(offset, 0))
            return [_document_to_dict(record) for record in records]

    def get_file(self, document_id: str) -> StoredFile:
        """Return the originally uploaded bytes with their filename and content type."""

        with self._transaction() as session:
            record = DocumentRepository(session).get(document_id)
            if record is None:
                raise DocumentNotFoundError(document_id)
            filename = record.filename
            content_type = record.content_type
            blob_key = record.blob_key
        try:
            data = self.blob_store.get(blob_key)
        except BlobNotFoundError as error:
            raise BlobMissingError(
                f"Stored file for document {document_id} is missing",
                details={"blob_key": blob_key},
                cause=error,
            ) from error
        return StoredFile(filename=filename, content_type=content_type, data=data)

    # ------------------------------------------------------------ conveniences
    def ingest_text(
        self,
        text: str,
        filename: Optional[str] = None,
        *,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        content_type: str = "text/plain",
    ) -> ProcessResult:
        """Store raw text as a ``.txt`` upload and process it immediately."""

        if not isinstance(text, str) or not text.strip():
            raise InputValidationError("Text content is required", code=ErrorCode.EMPTY_FILE)
        name = (filename or "").strip() or f"text-upload-{int(time.time() * 1000)}.txt"
        if "." not in name.rsplit("/", 1)[-1]:
            name = f"{name}.txt"
        uploaded = self.upload(
            text.encode("utf-8"),
            name,
            content_type,
            category=category,
            tags=tags,
        )
        return self.process(uploaded.id)

    def index_vectors(self, document_id: str) -> int:
        """Push the stored chunks of a processed document to the vector index."""

        if self.vector_client is None:
            return 0
        with self._transaction() as session:
            repository = DocumentRepository(session)
            record = repository.get(document_id)
            if record is None or record.status != DocumentStatus.PROCESSED.value:
                LOGGER.info("Skipping vector indexing for %s: not processed", document_id)
                return 0
            filename, category = record.filename, record.category
            chunks = [
                ParsedChunk(
                    chunk_index=chunk.chunk_index,
                    text=chunk.chunk_text,
                    page_number=chunk.page_number,
                    char_start=0,
                    char_end=len(chunk.chunk_text),
                )
                for chunk in repository.chunks(document_id)
            ]
        try:
            self.vector_client.delete_document(document_id)
        except DocumentError as error:
            LOGGER.warning("Skipping vector indexing for %s: %s", document_id, error)
            return 0
        return self.vector_client.upsert_document(document_id, filename, category, chunks)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """``session_factory.begin()`` with SQLAlchemy failures raised as :class:`StorageError`."""

        try:
            with self.session_factory.begin() as session:
                yield session
        except SQLAlchemyError as error:
            raise StorageError("Database transaction failed", cause=error) from error


__all__ = ["DocumentStore", "ProcessResult", "StoredFile", "UploadResult"]
