"""Chroma vector store adapter."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import VectorStoreUnavailableError

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from chromadb.api import ClientAPI
    from chromadb.api.models.Collection import Collection


class ChromaStore:
    """Adapter around a Chroma vector database."""

    def __init__(
        self,
        persist_dir: str | Path,
        *,
        client: Optional["ClientAPI"] = None,
    ) -> None:
        self.persist_dir = Path(persist_dir)
        self.persist_dir.mkdir(parents=True, exist_ok=True)

        if client is None:
            try:
                import chromadb  # type: ignore
            except ImportError as exc:  # pragma: no cover - depends on optional dependency
                raise VectorStoreUnavailableError(
                    "VECTOR_STORE=chroma requires the 'chromadb' package to be installed",
                    cause=exc,
                ) from exc
            try:
                client = chromadb.PersistentClient(path=str(self.persist_dir))
            except Exception as exc:  # pragma: no cover - depends on chromadb runtime
                raise VectorStoreUnavailableError(
                    "Failed to initialise Chroma persistent client",
                    cause=exc,
                ) from exc

        self._client = client
        self._collections: Dict[str, "Collection"] = {}

    def create_collection(self, name: str, *, metadata: Optional[Dict[str, Any]] = None) -> "Collection":
        """Return an existing collection or create a new one."""

        collection = self._collections.get(name)
        if collection is None:
            collection = self._client.get_or_create_collection(name=name, metadata=metadata)
            self._collections[name] = collection
        return collection

    def add(
        self,
        name: str,
        *,
        ids: Iterable[str],
        embeddings: Iterable[Sequence[float]],
        documents: Iterable[str],
        metadatas: Iterable[Dict[str, Any] | None] | None = None,
    ) -> None:
        """Upsert embeddings and corresponding documents into a collection."""

        collection = self.create_collection(name)

        id_list = list(ids)
        embedding_list = [list(map(float, embedding)) for embedding in embeddings]
        document_list = list(documents)
        metadata_source = list(metadatas) if metadatas is not None else [None] * len(id_list)

        if not (len(id_list) == len(embedding_list) == len(document_list) == len(metadata_source)):
            raise ValueError("All inputs must be of the same length")

        # Chroma rejects None metadata values.
        metadata_list: List[Dict[str, Any]] = [
            {key: value for key, value in (metadata or {}).items() if value is not None}
            for metadata in metadata_source
        ]
        collection.upsert(
            ids=id_list,
            embeddings=embedding_list,
            documents=document_list,
            metadatas=metadata_list,
        )

    def query(self, name: str, query_embedding: Sequence[float], k: int = 5) -> List[Dict[str, Any]]:
        """Query the underlying Chroma collection for the nearest neighbours."""

        if k <= 0:
            return []

        collection = self.create_collection(name)
        available = collection.count()
        if available == 0:
            return []
        result = collection.query(
            query_embeddings=[list(map(float, query_embedding))],
            n_results=min(k, available),
        )

        ids = (result.get("ids") or [[]])[0]
        documents = (result.get("documents") or [[]])[0]
        metadatas = (result.get("metadatas") or [[]])[0]
        distances = (result.get("distances") or [[]])[0]

        return [
            {
                "id": idx,
                "document": doc,
                "metadata": metadata or {},
                "distance": float(distance) if distance is not None else 0.0,
            }
            for idx, doc, metadata, distance in zip(ids, documents, metadatas, distances)
        ]

    def delete(self, name: str, *, where: Mapping[str, Any]) -> None:
        collection = self.create_collection(name)
        collection.delete(where=dict(where))

    def count(self, name: str) -> int:
        return int(self.create_collection(name).count())


__all__ = ["ChromaStore"]
