"""
PostgreSQL + pgvector repository.

Similarity search runs entirely in SQL:

    SELECT c.*, c.embedding <=> :query AS distance
      FROM document_chunks c JOIN documents d ON d.id = c.document_id
     WHERE <scope predicate on d>
       AND c.embedding <=> :query <= 1 - :threshold
  ORDER BY distance ASC, c.chunk_index ASC
     LIMIT :limit

The scope predicate is built from SearchFilters against the documents
table, never from the chunk metadata JSON, so a stale metadata copy cannot
widen what a caller sees.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Collection

from sqlalchemy import and_, delete, false, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from firm_rag.db.session import session_scope
from firm_rag.models.documents import Chunk, Document
from firm_rag.store.base import (
    ChunkMatch,
    ChunkRecord,
    DocumentRecord,
    DocumentRepository,
    DocumentStatus,
    DocumentType,
    SearchFilters,
)

logger = logging.getLogger(__name__)


def _to_record(row: Document) -> DocumentRecord:
    return DocumentRecord(
        id=row.id,
        title=row.title,
        document_type=DocumentType(row.document_type),
        owner_id=row.owner_id,
        case_id=row.case_id,
        status=DocumentStatus(row.status),
        total_chunks=row.total_chunks,
        error_message=row.error_message,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _scope_predicate(filters: SearchFilters):
    branches = []

    if filters.includes_user_cases:
        conditions = [Document.document_type == DocumentType.USER_CASE.value]
        if filters.owner_id is not None:
            conditions.append(Document.owner_id == filters.owner_id)
        if filters.case_ids:
            conditions.append(Document.case_id.in_(filters.case_ids))
        branches.append(and_(*conditions))

    if filters.include_shared_corpus:
        branches.append(Document.document_type == DocumentType.KNOWLEDGE_BASE.value)

    return or_(*branches) if branches else false()


class PgVectorRepository(DocumentRepository):
    """
    Async SQLAlchemy repository over `documents` / `document_chunks`.

    Each method runs in its own transaction via session_scope().
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine          = engine

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def add_document(self, record: DocumentRecord) -> DocumentRecord:
        row = Document(
            id=record.id,
            owner_id=record.owner_id,
            case_id=record.case_id,
            document_type=record.document_type.value,
            title=record.title,
            status=record.status.value,
            total_chunks=record.total_chunks,
            error_message=record.error_message,
        )
        async with session_scope(self._session_factory) as session:
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return _to_record(row)

    async def get_document(self, document_id: uuid.UUID) -> DocumentRecord | None:
        async with self._session_factory() as session:
            row = await session.get(Document, document_id)
            return _to_record(row) if row is not None else None

    async def update_document(
        self,
        document_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        expected_status: Collection[DocumentStatus] | None = None,
    ) -> DocumentRecord | None:
        values = {
            key: (value.value if isinstance(value, (DocumentStatus, DocumentType)) else value)
            for key, value in changes.items()
        }
        values["updated_at"] = func.now()

        stmt = update(Document).where(Document.id == document_id)
        if expected_status is not None:
            stmt = stmt.where(Document.status.in_([s.value for s in expected_status]))
        stmt = stmt.values(**values).returning(Document)

        async with session_scope(self._session_factory) as session:
            result = await session.execute(stmt)
            row = result.scalars().first()
            return _to_record(row) if row is not None else None

    async def delete_document(self, document_id: uuid.UUID) -> bool:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(Document).where(Document.id == document_id)
            )
            deleted = result.rowcount > 0
        logger.info("Document deleted | doc=%s existed=%s", document_id, deleted)
        return deleted

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def add_chunks(self, chunks: list[ChunkRecord]) -> int:
        if not chunks:
            return 0
        rows = [
            Chunk(
                id=c.id,
                document_id=c.document_id,
                chunk_index=c.chunk_index,
                chunk_text=c.text,
                embedding=c.embedding,
                chunk_metadata=c.metadata,
            )
            for c in chunks
        ]
        async with session_scope(self._session_factory) as session:
            session.add_all(rows)
        return len(rows)

    async def delete_chunks(self, document_id: uuid.UUID) -> int:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(Chunk).where(Chunk.document_id == document_id)
            )
            removed = result.rowcount
        logger.info("Chunks deleted | doc=%s removed=%d", document_id, removed)
        return removed

    async def count_chunks(self, document_id: uuid.UUID) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(Chunk).where(Chunk.document_id == document_id)
            )
            return int(result.scalar_one())

    async def similarity_search(
        self,
        vector: list[float],
        filters: SearchFilters,
        limit: int,
        threshold: float,
    ) -> list[ChunkMatch]:
        if filters.is_empty or limit <= 0:
            return []

        distance = Chunk.embedding.cosine_distance(vector).label("distance")
        stmt = (
            select(Chunk, distance)
            .join(Document, Document.id == Chunk.document_id)
            .where(_scope_predicate(filters))
            .where(Chunk.embedding.cosine_distance(vector) <= 1 - threshold)
            .order_by(distance.asc(), Chunk.chunk_index.asc())
            .limit(limit)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [
            ChunkMatch(
                chunk_id=chunk.id,
                document_id=chunk.document_id,
                chunk_index=chunk.chunk_index,
                text=chunk.chunk_text,
                metadata=dict(chunk.chunk_metadata or {}),
                distance=float(dist),
            )
            for chunk, dist in rows
        ]

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
