"""In-memory implementation of DocumentRepository.

Exact cosine distance over every stored chunk.  Used by the test suite and
for local development without PostgreSQL (STORE_BACKEND=memory).
"""

from __future__ import annotations

import asyncio
import math
import uuid
from dataclasses import replace
from typing import Any, Collection

from firm_rag.store.base import (
    ChunkMatch,
    ChunkRecord,
    DocumentRecord,
    DocumentRepository,
    DocumentStatus,
    DocumentType,
    SearchFilters,
    utcnow,
)


def cosine_distance(a: list[float], b: list[float]) -> float:
    """1 - cos(a, b); a zero vector is treated as maximally unrelated to everything (1.0)."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 1.0
    return 1.0 - dot / (norm_a * norm_b)


def _in_scope(document: DocumentRecord, filters: SearchFilters) -> bool:
    if document.document_type is DocumentType.KNOWLEDGE_BASE:
        return filters.include_shared_corpus

    if not filters.includes_user_cases:
        return False
    if filters.owner_id is not None and document.owner_id != filters.owner_id:
        return False
    if filters.case_ids and document.case_id not in filters.case_ids:
        return False
    return True


class InMemoryRepository(DocumentRepository):
    """In-memory implementation of DocumentRepository."""

    def __init__(self) -> None:
        self._documents: dict[uuid.UUID, DocumentRecord] = {}
        self._chunks: dict[uuid.UUID, list[ChunkRecord]] = {}
        self._lock = asyncio.Lock()

    async def add_document(self, record: DocumentRecord) -> DocumentRecord:
        async with self._lock:
            self._documents[record.id] = replace(record)
            self._chunks.setdefault(record.id, [])
            return replace(record)

    async def get_document(self, document_id: uuid.UUID) -> DocumentRecord | None:
        record = self._documents.get(document_id)
        return replace(record) if record is not None else None

    async def update_document(
        self,
        document_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        expected_status: Collection[DocumentStatus] | None = None,
    ) -> DocumentRecord | None:
        async with self._lock:
            record = self._documents.get(document_id)
            if record is None:
                return None
            if expected_status is not None and record.status not in expected_status:
                return None
            updated = replace(record, **changes, updated_at=utcnow())
            self._documents[document_id] = updated
            return replace(updated)

    async def add_chunks(self, chunks: list[ChunkRecord]) -> int:
        async with self._lock:
            taken = {
                (doc_id, c.chunk_index)
                for doc_id, rows in self._chunks.items()
                for c in rows
            }
            for chunk in chunks:
                if chunk.document_id not in self._documents:
                    raise KeyError(f"Unknown document {chunk.document_id}")
                key = (chunk.document_id, chunk.chunk_index)
                if key in taken:
                    raise ValueError(
                        f"Duplicate chunk_index {chunk.chunk_index} for document {chunk.document_id}"
                    )
                taken.add(key)
            for chunk in chunks:
                self._chunks[chunk.document_id].append(chunk)
            return len(chunks)

    async def delete_document(self, document_id: uuid.UUID) -> bool:
        async with self._lock:
            self._chunks.pop(document_id, None)
            return self._documents.pop(document_id, None) is not None

    async def delete_chunks(self, document_id: uuid.UUID) -> int:
        async with self._lock:
            removed = self._chunks.get(document_id, [])
            if document_id in self._chunks:
                self._chunks[document_id] = []
            return len(removed)

    async def count_chunks(self, document_id: uuid.UUID) -> int:
        return len(self._chunks.get(document_id, []))

    async def similarity_search(
        self,
        vector: list[float],
        filters: SearchFilters,
        limit: int,
        threshold: float,
    ) -> list[ChunkMatch]:
        if filters.is_empty or limit <= 0:
            return []

        matches: list[ChunkMatch] = []
        for document_id, chunks in self._chunks.items():
            document = self._documents[document_id]
            if not _in_scope(document, filters):
                continue
            for chunk in chunks:
                distance = cosine_distance(vector, chunk.embedding)
                if 1.0 - distance < threshold:
                    continue
                matches.append(ChunkMatch(
                    chunk_id=chunk.id,
                    document_id=chunk.document_id,
                    chunk_index=chunk.chunk_index,
                    text=chunk.text,
                    metadata=dict(chunk.metadata),
                    distance=distance,
                ))

        matches.sort(key=lambda m: (m.distance, m.chunk_index))
        return matches[:limit]
