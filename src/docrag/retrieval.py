"""Hybrid retrieval: vector similarity first, lexical keyword search as fallback."""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from .storage.lexical import LexicalIndex
from .storage.repository import DocumentRepository
from .telemetry import emit_retriever_event

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from .vectorstore import VectorIndexClient, VectorMatch

LOGGER = logging.getLogger(__name__)

SOURCE_VECTOR = "vector"
SOURCE_LEXICAL = "lexical"


@dataclass(slots=True)
class RetrievedChunk:
    """One ranked excerpt returned to the caller."""

    text: str
    document_id: str
    page_number: Optional[int]
    chunk_index: Optional[int]
    filename: str
    category: str
    score: float
    source: str
    snippet: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class QueryEngine:
    """Answer free-text queries against the stored chunks."""

    def __init__(
        self,
        session_factory: sessionmaker,
        lexical_index: LexicalIndex,
        vector_client: Optional["VectorIndexClient"] = None,
        *,
        default_limit: int = 8,
    ) -> None:
        self.session_factory = session_factory
        self.lexical_index = lexical_index
        self.vector_client = vector_client
        self.default_limit = default_limit

    def retrieve(self, query: str, limit: Optional[int] = None) -> List[RetrievedChunk]:
        """Return up to ``limit`` chunks ranked by relevance to ``query``.

        The vector index is consulted when configured; when it is missing,
        empty or failing the lexical index answers instead.
        """

        limit = limit if limit and limit > 0 else self.default_limit
        if not query or not query.strip():
            return []

        started = time.perf_counter()
        results = self._vector_results(query, limit)
        source = SOURCE_VECTOR
        if not results:
            results = self._lexical_results(query, limit)
            source = SOURCE_LEXICAL

        emit_retriever_event(
            query=query,
            limit=limit,
            source=source,
            results=[
                {
                    "document_id": item.document_id,
                    "chunk_index": item.chunk_index,
                    "score": round(item.score, 4),
                }
                for item in results
            ],
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return results

    def _vector_results(self, query: str, limit: int) -> List[RetrievedChunk]:
        if self.vector_client is None:
            return []
        try:
            matches = self.vector_client.query(query, k=limit)
        except Exception as error:  # vector failures degrade to lexical search
            LOGGER.warning("Vector query failed, falling back to lexical search: %s", error)
            return []
        if not matches:
            return []
        return self._hydrate(matches)

    def _hydrate(self, matches: List["VectorMatch"]) -> List[RetrievedChunk]:
        """Resolve vector matches against the chunks table, dropping stale records."""

        with self.session_factory() as session:
            rows = DocumentRepository(session).chunks_by_key(
                (match.document_id, match.chunk_index) for match in matches
            )

        results: List[RetrievedChunk] = []
        for match in matches:
            row = rows.get((match.document_id, match.chunk_index))
            if row is None:
                LOGGER.debug("Dropping stale vector record %s", match.id)
                continue
            chunk, document = row
            results.append(
                RetrievedChunk(
                    text=chunk.chunk_text,
                    document_id=chunk.document_id,
                    page_number=chunk.page_number,
                    chunk_index=chunk.chunk_index,
                    filename=document.filename,
                    category=document.category,
                    score=1.0 - match.distance,
                    source=SOURCE_VECTOR,
                )
            )
        return results

    def _lexical_results(self, query: str, limit: int) -> List[RetrievedChunk]:
        return [
            RetrievedChunk(
                text=hit.text,
                document_id=hit.document_id,
                page_number=hit.page_number,
                chunk_index=hit.chunk_index,
                filename=hit.filename,
                category=hit.category,
                score=hit.score,
                source=SOURCE_LEXICAL,
                snippet=hit.snippet,
            )
            for hit in self.lexical_index.search_chunks(query, limit)
        ]


__all__ = ["QueryEngine", "RetrievedChunk"]
