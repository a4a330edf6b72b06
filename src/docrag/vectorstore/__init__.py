"""Vector index client backed by pluggable stores."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Sequence

from ..telemetry import emit_vectorstore_event
from .errors import VectorStoreUnavailableError
from .mock_store import MockQueryResult, MockVectorStore

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from ..embeddings import EmbeddingModel
    from ..ingest.models import ParsedChunk

LOGGER = logging.getLogger(__name__)

DEFAULT_COLLECTION_NAME = "document_chunks"
DEFAULT_DISTANCE_METRIC = "cosine"


class Embedder(Protocol):
    def embed(self, text: str) -> List[float]:
        ...


def vector_record_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}::{chunk_index}"


@dataclass(slots=True)
class VectorMatch:
    """One neighbour returned by :meth:`VectorIndexClient.query`."""

    id: str
    document_id: str
    chunk_index: int
    distance: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    document: str = ""


class VectorIndexClient:
    """Embed chunks one by one and keep them in a vector collection."""

    def __init__(
        self,
        store: Any,
        embedding_model: Embedder,
        *,
        collection_name: str = DEFAULT_COLLECTION_NAME,
        distance_metric: str = DEFAULT_DISTANCE_METRIC,
    ) -> None:
        self._store = store
        self.embedding_model = embedding_model
        self.collection_name = collection_name
        self.distance_metric = distance_metric

        try:
            self._store.create_collection(
                self.collection_name,
                metadata={"hnsw:space": self.distance_metric},
            )
        except VectorStoreUnavailableError:
            raise
        except Exception as exc:  # pragma: no cover - unexpected backend failure
            raise VectorStoreUnavailableError(
                "Failed to initialise vector store collection",
                cause=exc,
            ) from exc

    def upsert_document(
        self,
        document_id: str,
        filename: str,
        category: str,
        chunks: Sequence["ParsedChunk"],
    ) -> int:
        """Embed and upsert every non-empty chunk; return how many were written.

        Failures are logged and reported as ``0``: the lexical index keeps the
        document searchable without vectors.
        """

        ids: List[str] = []
        documents: List[str] = []
        embeddings: List[List[float]] = []
        metadatas: List[Dict[str, Any]] = []

        try:
            for chunk in chunks:
                if not chunk.text.strip():
                    continue
                embeddings.append(self.embedding_model.embed(chunk.text))
                ids.append(vector_record_id(document_id, chunk.chunk_index))
                documents.append(chunk.text)
                metadatas.append(
                    {
                        "document_id": document_id,
                        "filename": filename,
                        "category": category,
                        "page_number": chunk.page_number,
                        "chunk_index": chunk.chunk_index,
                    }
                )
            if ids:
                self._store.add(
                    self.collection_name,
                    ids=ids,
                    embeddings=embeddings,
                    documents=documents,
                    metadatas=metadatas,
                )
        except Exception as exc:  # embedding or store failure must not fail processing
            LOGGER.warning("Vector upsert failed for %s: %s", document_id, exc)
            emit_vectorstore_event(
                "vectorstore.upsert",
                collection=self.collection_name,
                count=0,
                document_id=document_id,
                error=exc,
            )
            return 0

        emit_vectorstore_event(
            "vectorstore.upsert",
            collection=self.collection_name,
            count=len(ids),
            document_id=document_id,
        )
        return len(ids)

    def query(self, text: str, k: int = 5) -> List[VectorMatch]:
        if not text.strip() or k <= 0:
            return []

        try:
            embedding = self.embedding_model.embed(text)
            neighbours = self._store.query(self.collection_name, query_embedding=embedding, k=k)
        except VectorStoreUnavailableError:
            raise
        except Exception as exc:
            raise VectorStoreUnavailableError("Vector store query failed", cause=exc) from exc

        matches: List[VectorMatch] = []
        for neighbour in neighbours:
            if isinstance(neighbour, MockQueryResult):
                record_id, document, metadata, distance = (
                    neighbour.id,
                    neighbour.document,
                    dict(neighbour.metadata),
                    neighbour.distance,
                )
            else:
                record_id = str(neighbour.get("id", ""))
                document = str(neighbour.get("document") or "")
                metadata = dict(neighbour.get("metadata") or {})
                distance = neighbour.get("distance", 0.0)

            document_id = metadata.get("document_id")
            chunk_index = metadata.get("chunk_index")
            if document_id is None or chunk_index is None:
                LOGGER.debug("Skipping vector record %s without chunk metadata", record_id)
                continue
            matches.append(
                VectorMatch(
                    id=record_id,
                    document_id=str(document_id),
                    chunk_index=int(chunk_index),
                    distance=float(distance),
                    metadata=metadata,
                    document=document,
                )
            )
        return matches

    def delete_document(self, document_id: str) -> None:
        try:
            self._store.delete(self.collection_name, where={"document_id": document_id})
        except Exception as exc:
            raise VectorStoreUnavailableError("Vector store delete failed", cause=exc) from exc
        emit_vectorstore_event(
            "vectorstore.delete",
            collection=self.collection_name,
            count=0,
            document_id=document_id,
        )


@lru_cache()
def get_vector_client() -> Optional[VectorIndexClient]:
    """Return the configured vector client, or ``None`` when vectors are disabled."""

    from ..config import get_settings
    from ..embeddings import get_embedding_model

    settings = get_settings()
    backend = settings.vector_store

    if backend in ("", "none"):
        LOGGER.info("Vector index disabled; retrieval uses the lexical index only.")
        return None

    if backend in ("memory", "mock"):
        store: Any = MockVectorStore()
    elif backend == "chroma":
        from .chroma_store import ChromaStore

        try:
            store = ChromaStore(settings.chroma_persist_dir)
        except VectorStoreUnavailableError as exc:
            LOGGER.warning("Vector index unavailable, retrieval uses the lexical index only: %s", exc)
            return None
    else:
        raise ValueError(f"Unsupported VECTOR_STORE backend: {backend!r}")

    return VectorIndexClient(
        store,
        get_embedding_model(),
        collection_name=settings.vector_collection,
        distance_metric=settings.chroma_distance_metric,
    )


def reset_vector_client_cache() -> None:
    """Clear the cached vector client (primarily for testing)."""

    get_vector_client.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "MockQueryResult",
    "MockVectorStore",
    "VectorIndexClient",
    "VectorMatch",
    "VectorStoreUnavailableError",
    "get_vector_client",
    "reset_vector_client_cache",
    "vector_record_id",
]
