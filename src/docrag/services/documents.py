from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from docrag.config import Settings, get_settings
from docrag.ingest.pipeline import DocumentParser, ParserConfig
from docrag.logging_config import AUDIT_LOGGER_NAME
from docrag.retrieval import QueryEngine, RetrievedChunk
from docrag.storage.blobs import BlobStore, create_blob_store
from docrag.storage.database import create_db_engine, create_schema, create_session_factory
from docrag.storage.documents import DocumentStore, ProcessResult, StoredFile, UploadResult
from docrag.storage.lexical import LexicalHealth, LexicalHit, LexicalIndex
from docrag.telemetry import traced_duration
from docrag.vectorstore import VectorIndexClient, VectorStoreUnavailableError, get_vector_client

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)


@dataclass(slots=True)
class ServiceStatus:
    """Readiness snapshot used by the ``/readyz`` probe."""

    database: bool
    lexical: LexicalHealth | None
    vector_index: str
    errors: List[str]

    @property
    def ready(self) -> bool:
        return self.database and not self.errors


class DocumentService:
    """Facade wiring the document store, the lexical index and the query engine."""

    def __init__(
        self,
        *,
        engine: Engine,
        session_factory: sessionmaker,
        blob_store: BlobStore,
        parser: DocumentParser,
        max_upload_bytes: int,
        parse_timeout_seconds: Optional[float] = None,
        vector_client: Optional[VectorIndexClient] = None,
        max_keywords: int = 5,
        default_limit: int = 8,
    ) -> None:
        self.engine = engine
        self.session_factory = session_factory
        self.lexical_index = LexicalIndex(engine, max_keywords=max_keywords)
        self.vector_client = vector_client

        create_schema(engine)
        self.lexical_index.create_schema()

        self.store = DocumentStore(
            session_factory,
            blob_store,
            self.lexical_index,
            parser,
            max_upload_bytes=max_upload_bytes,
            parse_timeout_seconds=parse_timeout_seconds,
            vector_client=vector_client,
        )
        self.query_engine = QueryEngine(
            session_factory,
            self.lexical_index,
            vector_client,
            default_limit=default_limit,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        blob_store: Optional[BlobStore] = None,
        vector_client: Optional[VectorIndexClient] = None,
    ) -> "DocumentService":
        engine = create_db_engine(settings.database_url)
        return cls(
            engine=engine,
            session_factory=create_session_factory(engine),
            blob_store=blob_store or create_blob_store(settings.blob_store, settings.blob_store_dir),
            parser=DocumentParser(ParserConfig.from_settings(settings)),
            max_upload_bytes=settings.max_upload_bytes,
            parse_timeout_seconds=settings.parse_timeout_seconds,
            vector_client=vector_client,
            max_keywords=settings.search_max_keywords,
            default_limit=settings.search_default_limit,
        )

    def upload(
        self,
        data: bytes,
        filename: Optional[str],
        content_type: Optional[str] = None,
        *,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> UploadResult:
        return self.store.upload(data, filename, content_type, category=category, tags=tags)

    def process(self, document_id: str) -> ProcessResult:
        return self.store.process(document_id)

    def ingest_text(
        self,
        text: str,
        filename: Optional[str] = None,
        *,
        category: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        content_type: str = "text/plain",
    ) -> ProcessResult:
        return self.store.ingest_text(
            text, filename, category=category, tags=tags, content_type=content_type
        )

    def index_vectors(self, document_id: str) -> int:
        return self.store.index_vectors(document_id)

    def delete(self, document_id: str) -> None:
        self.store.delete(document_id)

    def get(self, document_id: str) -> Dict[str, Any]:
        return self.store.get(document_id)

    def get_json(self, document_id: str) -> Dict[str, Any]:
        return self.store.get_json(document_id)

    def get_file(self, document_id: str) -> StoredFile:
        return self.store.get_file(document_id)

    def list_documents(
        self, category: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> List[Dict[str, Any]]:
        return self.store.list(category, limit, offset)

    def search(self, query: str, limit: Optional[int] = None) -> List[RetrievedChunk]:
        return self.query_engine.retrieve(query, limit)

    def search_pages(self, query: str, limit: Optional[int] = None) -> List[LexicalHit]:
        return self.lexical_index.search_pages(query, limit or self.query_engine.default_limit)

    def index_health(self) -> LexicalHealth:
        return self.lexical_index.health()

    def rebuild_index(self) -> LexicalHealth:
        with traced_duration("index.rebuild", logger=LOGGER):
            health = self.lexical_index.rebuild()
        AUDIT_LOGGER.info({"event": "rebuild", **health.to_dict()})
        return health

    def status(self) -> ServiceStatus:
        errors: List[str] = []
        lexical: LexicalHealth | None = None
        try:
            lexical = self.lexical_index.health()
            database = True
        except Exception as exc:  # reported through the readiness probe
            database = False
            errors.append(f"database_unavailable: {exc}")

        vector_index = "disabled"
        if self.vector_client is not None:
            try:
                self.vector_client.query("__readyz__", k=1)
                vector_index = "ok"
            except VectorStoreUnavailableError as exc:
                vector_index = "unavailable"
                errors.append(f"vector_index_unavailable: {exc}")
        return ServiceStatus(database=database, lexical=lexical, vector_index=vector_index, errors=errors)


@lru_cache()
def get_document_service() -> DocumentService:
    """FastAPI dependency returning the shared :class:`DocumentService` instance."""

    settings = get_settings()
    return DocumentService.from_settings(settings, vector_client=get_vector_client())


def reset_document_service_cache() -> None:
    """Clear the cached service (primarily for testing)."""

    get_document_service.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "DocumentService",
    "ServiceStatus",
    "get_document_service",
    "reset_document_service_cache",
]
