"""Repository holding every statement the document store issues."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import StorageError
from .database import ChunkRecord, DocumentRecord, PageRecord

LOGGER = logging.getLogger(__name__)


class DocumentRepository:
    """Thin wrapper around one :class:`~sqlalchemy.orm.Session`.

    The caller owns the transaction; every SQLAlchemy failure surfaces as
    :class:`~docrag.errors.StorageError`.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, document_id: str) -> Optional[DocumentRecord]:
        try:
            return self.session.get(DocumentRecord, document_id)
        except SQLAlchemyError as error:
            LOGGER.error("Error loading document %s: %s", document_id, error)
            raise StorageError("Failed to load document", cause=error) from error

    def add(self, document: DocumentRecord, pages: Sequence[PageRecord] = ()) -> None:
        try:
            self.session.add(document)
            self.session.add_all(list(pages))
            self.session.flush()
        except SQLAlchemyError as error:
            LOGGER.error("Error creating document %s: %s", document.id, error)
            raise StorageError("Failed to create document", cause=error) from error

    def list(self, category: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[DocumentRecord]:
        query = select(DocumentRecord)
        if category:
            query = query.where(DocumentRecord.category == category)
        query = query.order_by(DocumentRecord.uploaded_at.desc(), DocumentRecord.id).offset(offset).limit(limit)
        try:
            return list(self.session.scalars(query))
        except SQLAlchemyError as error:
            LOGGER.error("Error listing documents: %s", error)
            raise StorageError("Failed to list documents", cause=error) from error

    def pages(self, document_id: str) -> List[PageRecord]:
        query = select(PageRecord).where(PageRecord.document_id == document_id).order_by(PageRecord.page_number)
        try:
            return list(self.session.scalars(query))
        except SQLAlchemyError as error:
            raise StorageError("Failed to load pages", cause=error) from error

    def chunks(self, document_id: str) -> List[ChunkRecord]:
        query = (
            select(ChunkRecord).where(ChunkRecord.document_id == document_id).order_by(ChunkRecord.chunk_index)
        )
        try:
            return list(self.session.scalars(query))
        except SQLAlchemyError as error:
            raise StorageError("Failed to load chunks", cause=error) from error

    def chunks_by_key(self, keys: Iterable[Tuple[str, int]]) -> Dict[Tuple[str, int], Tuple[ChunkRecord, DocumentRecord]]:
        """Load chunks and their owning documents for ``(document_id, chunk_index)`` keys."""

        wanted = set(keys)
        if not wanted:
            return {}
        document_ids = {document_id for document_id, _ in wanted}
        query = (
            select(ChunkRecord, DocumentRecord)
            .join(DocumentRecord, DocumentRecord.id == ChunkRecord.document_id)
            .where(ChunkRecord.document_id.in_(document_ids))
            .where(ChunkRecord.chunk_index.in_({index for _, index in wanted}))
        )
        try:
            rows = self.session.execute(query).all()
        except SQLAlchemyError as error:
            raise StorageError("Failed to load chunks", cause=error) from error
        return {
            (chunk.document_id, chunk.chunk_index): (chunk, document)
            for chunk, document in rows
            if (chunk.document_id, chunk.chunk_index) in wanted
        }

    def replace_content(
        self,
        document_id: str,
        pages: Sequence[PageRecord],
        chunks: Sequence[ChunkRecord],
    ) -> None:
        """Delete every page and chunk of the document, then insert the new ones."""

        try:
            self.session.execute(delete(ChunkRecord).where(ChunkRecord.document_id == document_id))
            self.session.execute(delete(PageRecord).where(PageRecord.document_id == document_id))
            self.session.add_all(list(pages))
            self.session.add_all(list(chunks))
            self.session.flush()
        except SQLAlchemyError as error:
            LOGGER.error("Error replacing content of %s: %s", document_id, error)
            raise StorageError("Failed to store parsed content", cause=error) from error

    def delete(self, document: DocumentRecord) -> None:
        try:
            self.session.delete(document)
            self.session.flush()
        except SQLAlchemyError as error:
            LOGGER.error("Error deleting document %s: %s", document.id, error)
            raise StorageError("Failed to delete document", cause=error) from error


__all__ = ["DocumentRepository"]
