"""
Document Store Service

Owns the document lifecycle on top of a DocumentRepository:

  pending ──► processing ──► completed
                   │
                   └───────► failed   (chunks written so far are deleted)

  • Transitions only move forward.  A terminal document is never resumed;
    re-ingesting a source creates a new document.
  • Each transition is a compare-and-set in the repository, so two workers
    racing on one document cannot both win.
  • Chunks are written in sequential batches of `batch_size` (50).  A batch
    that fails is logged and skipped; the rest still land.  chunk_index is
    the position in the chunker output, so indices stay in source order
    even when a batch is missing.
  • single_flight(document_id) guards one ingestion per document at a time
    inside this process.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Sequence

from firm_rag.core.errors import (
    IngestionInProgressError,
    NotFoundError,
    StatusTransitionError,
    ValidationError,
)
from firm_rag.processing.chunking import detect_section
from firm_rag.store.base import (
    ChunkRecord,
    DocumentRecord,
    DocumentRepository,
    DocumentStatus,
    DocumentType,
)

logger = logging.getLogger(__name__)

CHUNK_BATCH_SIZE = 50

# Longest stored error_message; full text goes to the log
MAX_ERROR_MESSAGE_CHARS = 500

_ALLOWED_FROM: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.PENDING}),
    DocumentStatus.COMPLETED:  frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.FAILED:     frozenset({DocumentStatus.PENDING, DocumentStatus.PROCESSING}),
}


class DocumentStore:
    """
    One instance per process; all state lives in the repository apart from
    the in-flight ingestion registry.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        batch_size: int = CHUNK_BATCH_SIZE,
    ) -> None:
        self._repo       = repository
        self._batch_size = max(1, batch_size)
        self._in_flight: dict[uuid.UUID, asyncio.Lock] = {}

    @property
    def repository(self) -> DocumentRepository:
        return self._repo

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(
        self,
        *,
        title: str,
        document_type: DocumentType = DocumentType.USER_CASE,
        owner_id: uuid.UUID | None = None,
        case_id: uuid.UUID | None = None,
    ) -> DocumentRecord:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Document title is required.")

        document_type = DocumentType(document_type)
        if document_type is DocumentType.USER_CASE and owner_id is None:
            raise ValidationError("owner_id is required for user_case documents.")
        if document_type is DocumentType.KNOWLEDGE_BASE:
            owner_id = None

        record = await self._repo.add_document(DocumentRecord(
            title=title,
            document_type=document_type,
            owner_id=owner_id,
            case_id=case_id,
            status=DocumentStatus.PENDING,
        ))
        logger.info(
            "Document created | doc=%s type=%s owner=%s case=%s",
            record.id, record.document_type.value, owner_id, case_id,
        )
        return record

    async def get_document(self, document_id: uuid.UUID) -> DocumentRecord:
        record = await self._repo.get_document(document_id)
        if record is None:
            raise NotFoundError(f"Document {document_id} not found.")
        return record

    async def delete_document(self, document_id: uuid.UUID) -> None:
        if document_id in self._in_flight and self._in_flight[document_id].locked():
            raise IngestionInProgressError(
                f"Document {document_id} is being ingested; delete it once ingestion finishes."
            )
        if not await self._repo.delete_document(document_id):
            raise NotFoundError(f"Document {document_id} not found.")

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def mark_processing(self, document_id: uuid.UUID) -> DocumentRecord:
        return await self._transition(document_id, DocumentStatus.PROCESSING)

    async def mark_completed(self, document_id: uuid.UUID, total_chunks: int) -> DocumentRecord:
        if total_chunks < 1:
            raise ValidationError("A completed document needs at least one chunk.")
        return await self._transition(
            document_id, DocumentStatus.COMPLETED,
            total_chunks=total_chunks, error_message=None,
        )

    async def mark_failed(self, document_id: uuid.UUID, error: str) -> DocumentRecord:
        """Move to failed and drop any chunks already written, so search never returns them."""
        record = await self._transition(
            document_id, DocumentStatus.FAILED,
            error_message=(error or "Ingestion failed.")[:MAX_ERROR_MESSAGE_CHARS],
        )
        removed = await self._repo.delete_chunks(document_id)
        if removed:
            logger.info("Partial chunks discarded | doc=%s removed=%d", document_id, removed)
        return record

    async def _transition(
        self,
        document_id: uuid.UUID,
        target: DocumentStatus,
        **changes,
    ) -> DocumentRecord:
        allowed = _ALLOWED_FROM[target]
        updated = await self._repo.update_document(
            document_id,
            {"status": target, **changes},
            expected_status=allowed,
        )
        if updated is not None:
            logger.info("Document status | doc=%s status=%s", document_id, target.value)
            return updated

        current = await self._repo.get_document(document_id)
        if current is None:
            raise NotFoundError(f"Document {document_id} not found.")
        raise StatusTransitionError(
            f"Document {document_id} cannot move from {current.status.value} to {target.value}."
        )

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def persist_chunks(
        self,
        document: DocumentRecord,
        chunk_texts: Sequence[str],
        embeddings: Sequence[Sequence[float]],
    ) -> int:
        """
        Write chunks in sequential batches.  Returns the number persisted.

        A failing batch is logged and skipped; CancelledError is not caught.
        """
        if len(chunk_texts) != len(embeddings):
            raise ValidationError(
                f"Got {len(chunk_texts)} chunks but {len(embeddings)} embeddings."
            )

        records = [
            ChunkRecord(
                document_id=document.id,
                chunk_index=index,
                text=text,
                embedding=list(vector),
                metadata=_chunk_metadata(document, text),
            )
            for index, (text, vector) in enumerate(zip(chunk_texts, embeddings))
        ]

        persisted = 0
        for start in range(0, len(records), self._batch_size):
            batch = records[start : start + self._batch_size]
            try:
                persisted += await self._repo.add_chunks(batch)
            except Exception as exc:
                logger.error(
                    "Chunk batch failed | doc=%s batch_start=%d size=%d error=%s",
                    document.id, start, len(batch), exc,
                )
                continue

        logger.info(
            "Chunks persisted | doc=%s persisted=%d of=%d",
            document.id, persisted, len(records),
        )
        return persisted

    # ------------------------------------------------------------------
    # Single-flight guard
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def single_flight(self, document_id: uuid.UUID) -> AsyncIterator[None]:
        """
        Hold the per-document ingestion slot.

        Raises IngestionInProgressError immediately when another ingestion
        of the same document holds it; callers are rejected, not queued.
        """
        lock = self._in_flight.setdefault(document_id, asyncio.Lock())
        if lock.locked():
            raise IngestionInProgressError(
                f"Ingestion already in progress for document {document_id}."
            )
        async with lock:
            try:
                yield
            finally:
                self._in_flight.pop(document_id, None)

    def is_ingesting(self, document_id: uuid.UUID) -> bool:
        lock = self._in_flight.get(document_id)
        return lock is not None and lock.locked()


def _chunk_metadata(document: DocumentRecord, text: str) -> dict:
    metadata = {
        "owner_id":      str(document.owner_id) if document.owner_id else None,
        "case_id":       str(document.case_id) if document.case_id else None,
        "document_id":   str(document.id),
        "document_type": document.document_type.value,
        "source_title":  document.title,
    }
    section = detect_section(text)
    if section:
        metadata["section"] = section
    return metadata
