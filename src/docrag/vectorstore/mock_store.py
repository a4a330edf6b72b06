"""Simple in-memory vector store for tests and single-process deployments."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MockQueryResult:
    """Container for similarity search results."""

    id: str
    document: str
    metadata: dict
    distance: float


@dataclass(slots=True)
class _MockStoredItem:
    """Internal representation of a stored vector."""

    id: str
    embedding: np.ndarray
    document: str
    metadata: dict


class MockVectorStore:
    """A minimal in-memory vector store mirroring the subset of the Chroma API we use."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, _MockStoredItem]] = {}
        self._lock = threading.Lock()

    def create_collection(self, name: str, *, metadata: Optional[Dict[str, object]] = None) -> None:
        """Create a new collection if it does not exist yet."""

        with self._lock:
            self._collections.setdefault(name, {})

    def add(
        self,
        name: str,
        *,
        ids: Iterable[str],
        embeddings: Iterable[Sequence[float]],
        documents: Iterable[str],
        metadatas: Iterable[dict | None] | None = None,
    ) -> None:
        """Insert or replace records by id."""

        id_list = list(ids)
        embedding_list = [np.asarray(embedding, dtype=np.float32) for embedding in embeddings]
        document_list = list(documents)
        metadata_list = list(metadatas) if metadatas is not None else [None] * len(id_list)

        if not (len(id_list) == len(embedding_list) == len(document_list) == len(metadata_list)):
            raise ValueError("All inputs must be of the same length")

        with self._lock:
            if name not in self._collections:
                raise KeyError(f"Collection '{name}' does not exist")
            collection = self._collections[name]
            for item_id, embedding, document, metadata in zip(
                id_list, embedding_list, document_list, metadata_list
            ):
                collection[item_id] = _MockStoredItem(
                    id=item_id,
                    embedding=embedding,
                    document=document,
                    metadata=dict(metadata or {}),
                )

    def query(self, name: str, query_embedding: Sequence[float], k: int = 5) -> List[MockQueryResult]:
        """Return the *k* closest records by cosine distance."""

        if k <= 0:
            return []
        with self._lock:
            if name not in self._collections:
                raise KeyError(f"Collection '{name}' does not exist")
            items = list(self._collections[name].values())
        if not items:
            return []

        query = np.asarray(query_embedding, dtype=np.float32)
        matrix = np.vstack([item.embedding for item in items])
        if matrix.shape[1] != query.shape[0]:
            raise ValueError("Vectors must be of the same dimension")
        norms = np.linalg.norm(matrix, axis=1) * (np.linalg.norm(query) or 1.0)
        norms[norms == 0] = 1.0
        distances = 1.0 - (matrix @ query) / norms

        order = np.argsort(distances, kind="stable")[:k]
        return [
            MockQueryResult(
                id=items[index].id,
                document=items[index].document,
                metadata=dict(items[index].metadata),
                distance=float(distances[index]),
            )
            for index in order
        ]

    def delete(self, name: str, *, where: Mapping[str, Any]) -> int:
        """Remove records whose metadata matches every key in ``where``."""

        with self._lock:
            collection = self._collections.get(name, {})
            doomed = [
                item_id
                for item_id, item in collection.items()
                if all(item.metadata.get(key) == value for key, value in where.items())
            ]
            for item_id in doomed:
                del collection[item_id]
        return len(doomed)

    def count(self, name: str) -> int:
        with self._lock:
            return len(self._collections.get(name, {}))


__all__ = ["MockQueryResult", "MockVectorStore"]
