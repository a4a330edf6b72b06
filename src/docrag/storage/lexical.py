"""SQLite FTS5 full-text index derived from the page and chunk tables."""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import StorageError
from ..telemetry import emit_lexical_event
from .database import ChunkRecord, PageRecord

LOGGER = logging.getLogger(__name__)

PAGES_FTS = "pages_fts"
CHUNKS_FTS = "chunks_fts"
SNIPPET_TOKENS = 64

STOP_WORDS = frozenset(
    {
        "what", "is", "the", "for", "and", "or", "a", "an", "to", "of", "in", "on", "at",
        "from", "does", "do", "be", "are", "am", "i", "you", "we", "they", "it", "this",
        "that", "these", "those", "tell", "me", "about", "please", "maximum", "minimum",
        "length",
    }
)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
MIN_KEYWORD_LENGTH = 3


def extract_keywords(query: str, max_keywords: int = 5) -> List[str]:
    """Reduce free text to at most ``max_keywords`` distinct content words."""

    cleaned = _NON_ALNUM_RE.sub(" ", query.lower())
    keywords: List[str] = []
    for token in cleaned.split():
        if len(token) < MIN_KEYWORD_LENGTH or token in STOP_WORDS or token in keywords:
            continue
        keywords.append(token)
        if len(keywords) >= max_keywords:
            break
    return keywords


def build_match_expression(keywords: Iterable[str]) -> str:
    return " OR ".join(f'"{keyword}"' for keyword in keywords)


@dataclass(slots=True)
class IndexHealth:
    table: str
    source_rows: int
    index_rows: int

    @property
    def healthy(self) -> bool:
        return self.source_rows == self.index_rows

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "source_rows": self.source_rows,
            "index_rows": self.index_rows,
            "healthy": self.healthy,
        }


@dataclass(slots=True)
class LexicalHealth:
    pages: IndexHealth
    chunks: IndexHealth

    @property
    def healthy(self) -> bool:
        return self.pages.healthy and self.chunks.healthy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "pages": self.pages.to_dict(),
            "chunks": self.chunks.to_dict(),
        }


@dataclass(slots=True)
class LexicalHit:
    document_id: str
    filename: str
    category: str
    page_number: Optional[int]
    chunk_index: Optional[int]
    text: str
    snippet: str
    score: float


class LexicalIndex:
    """Keyword index over pages and chunks.

    Rows share their ``rowid`` with the source row they mirror. The write
    path keeps the two in step inside the caller's transaction; :meth:`rebuild`
    repairs any drift from the source tables.
    """

    def __init__(self, engine: Engine, max_keywords: int = 5) -> None:
        self.engine = engine
        self.max_keywords = max_keywords

    def create_schema(self) -> None:
        with self.engine.begin() as connection:
            for table in (PAGES_FTS, CHUNKS_FTS):
                connection.execute(
                    text(
                        f"CREATE VIRTUAL TABLE IF NOT EXISTS {table} USING fts5("
                        "document_id UNINDEXED, filename, content, "
                        "tokenize='porter unicode61')"
                    )
                )

    def index_pages(self, session: Session, pages: Iterable[PageRecord], filename: str) -> int:
        rows = [
            {"rowid": page.id, "document_id": page.document_id, "filename": filename, "content": page.content}
            for page in pages
        ]
        return self._insert(session, PAGES_FTS, rows)

    def index_chunks(self, session: Session, chunks: Iterable[ChunkRecord], filename: str) -> int:
        rows = [
            {
                "rowid": chunk.id,
                "document_id": chunk.document_id,
                "filename": filename,
                "content": chunk.chunk_text,
            }
            for chunk in chunks
        ]
        return self._insert(session, CHUNKS_FTS, rows)

    @staticmethod
    def _insert(session: Session, table: str, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        session.execute(
            text(
                f"INSERT INTO {table} (rowid, document_id, filename, content) "
                "VALUES (:rowid, :document_id, :filename, :content)"
            ),
            rows,
        )
        return len(rows)

    def remove_document(self, session: Session, document_id: str) -> None:
        for table in (PAGES_FTS, CHUNKS_FTS):
            session.execute(text(f"DELETE FROM {table} WHERE document_id = :document_id"), {"document_id": document_id})

    def health(self) -> LexicalHealth:
        try:
            with self.engine.connect() as connection:
                return LexicalHealth(
                    pages=IndexHealth(
                        table=PAGES_FTS,
                        source_rows=connection.execute(text("SELECT count(*) FROM document_pages")).scalar_one(),
                        index_rows=connection.execute(text(f"SELECT count(*) FROM {PAGES_FTS}")).scalar_one(),
                    ),
                    chunks=IndexHealth(
                        table=CHUNKS_FTS,
                        source_rows=connection.execute(text("SELECT count(*) FROM document_chunks")).scalar_one(),
                        index_rows=connection.execute(text(f"SELECT count(*) FROM {CHUNKS_FTS}")).scalar_one(),
                    ),
                )
        except SQLAlchemyError as error:
            raise StorageError("Failed to read lexical index health", cause=error) from error

    def rebuild(self) -> LexicalHealth:
        """Clear both index tables and repopulate them from the source tables."""

        start = time.perf_counter()
        try:
            with self.engine.begin() as connection:
                connection.execute(text(f"DELETE FROM {PAGES_FTS}"))
                connection.execute(
                    text(
                        f"INSERT INTO {PAGES_FTS} (rowid, document_id, filename, content) "
                        "SELECT p.id, p.document_id, d.filename, p.content "
                        "FROM document_pages p JOIN documents d ON d.id = p.document_id"
                    )
                )
                connection.execute(text(f"DELETE FROM {CHUNKS_FTS}"))
                connection.execute(
                    text(
                        f"INSERT INTO {CHUNKS_FTS} (rowid, document_id, filename, content) "
                        "SELECT c.id, c.document_id, d.filename, c.chunk_text "
                        "FROM document_chunks c JOIN documents d ON d.id = c.document_id"
                    )
                )
        except SQLAlchemyError as error:
            raise StorageError("Failed to rebuild lexical index", cause=error) from error

        health = self.health()
        emit_lexical_event(
            "lexical.rebuild",
            details=health.to_dict(),
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return health

    def search_pages(self, query: str, limit: int = 10) -> List[LexicalHit]:
        sql = (
            f"SELECT p.document_id, d.filename, d.category, p.page_number, p.content, "
            f"snippet({PAGES_FTS}, 2, '<mark>', '</mark>', '...', {SNIPPET_TOKENS}) AS snippet, "
            f"bm25({PAGES_FTS}) AS score "
            f"FROM {PAGES_FTS} "
            f"JOIN document_pages p ON p.id = {PAGES_FTS}.rowid "
            f"JOIN documents d ON d.id = p.document_id "
            f"WHERE {PAGES_FTS} MATCH :match ORDER BY score LIMIT :limit"
        )
        return [
            LexicalHit(
                document_id=row.document_id,
                filename=row.filename,
                category=row.category,
                page_number=row.page_number,
                chunk_index=None,
                text=row.content,
                snippet=row.snippet,
                score=-float(row.score),
            )
            for row in self._search(sql, query, limit)
        ]

    def search_chunks(self, query: str, limit: int = 10) -> List[LexicalHit]:
        sql = (
            f"SELECT c.document_id, d.filename, d.category, c.page_number, c.chunk_index, "
            f"c.chunk_text, "
            f"snippet({CHUNKS_FTS}, 2, '<mark>', '</mark>', '...', {SNIPPET_TOKENS}) AS snippet, "
            f"bm25({CHUNKS_FTS}) AS score "
            f"FROM {CHUNKS_FTS} "
            f"JOIN document_chunks c ON c.id = {CHUNKS_FTS}.rowid "
            f"JOIN documents d ON d.id = c.document_id "
            f"WHERE {CHUNKS_FTS} MATCH :match ORDER BY score LIMIT :limit"
        )
        return [
            LexicalHit(
                document_id=row.document_id,
                filename=row.filename,
                category=row.category,
                page_number=row.page_number,
                chunk_index=row.chunk_index,
                text=row.chunk_text,
                snippet=row.snippet,
                score=-float(row.score),
            )
            for row in self._search(sql, query, limit)
        ]

    def _search(self, sql: str, query: str, limit: int) -> List[Any]:
        keywords = extract_keywords(query, self.max_keywords)
        if not keywords:
            LOGGER.info("No searchable keywords in query %r", query[:120])
            return []
        try:
            with self.engine.connect() as connection:
                result = connection.execute(
                    text(sql), {"match": build_match_expression(keywords), "limit": max(limit, 1)}
                )
                return list(result)
        except SQLAlchemyError as error:
            raise StorageError("Lexical search failed", cause=error) from error


__all__ = [
    "IndexHealth",
    "LexicalHealth",
    "LexicalHit",
    "LexicalIndex",
    "STOP_WORDS",
    "build_match_expression",
    "extract_keywords",
]
