"""
Document Ingestion Service

Runs the ingestion pipeline for one document:

  1. Create the document row (status=pending)
  2. Take the single-flight slot for the document id
  3. pending → processing
  4. Extract text (bytes) or take the supplied text as-is
  5. Chunk (paragraph accumulation, paragraph overlap)
  6. Embed all chunks (batched, bounded concurrency, retried)
  7. Persist chunks in batches of 50
  8. processing → completed (≥1 chunk persisted) or failed (none)

Any exception in steps 4–7 marks the document failed, dropping any chunks
already written, and is re-raised to the caller.  Cancellation also marks
the document failed (the status update is shielded from the cancellation)
and then propagates.

submit() runs the same pipeline on a background asyncio.Task and returns
the pending document straight away; poll get_status() for the outcome.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Union

from firm_rag.core.errors import FirmRAGError, classify_error, to_user_error
from firm_rag.processing.chunking import SemanticChunker
from firm_rag.processing.embeddings import EmbeddingClient
from firm_rag.processing.extractor import TextExtractor
from firm_rag.services.document_store import DocumentStore
from firm_rag.store.base import DocumentRecord, DocumentStatus, DocumentType

logger = logging.getLogger(__name__)

DocumentContent = Union[bytes, str]


@dataclass
class IngestionResult:
    document_id:  uuid.UUID
    total_chunks: int
    status:       DocumentStatus


class IngestionService:
    """
    Long-lived service; all dependencies are injected.

    Usage:
        service = IngestionService(store, extractor, chunker, embedder)
        result  = await service.ingest(
            owner_id=user_id, case_id=case_id, title="Donoghue v Stevenson",
            content=pdf_bytes,
        )
    """

    def __init__(
        self,
        store:     DocumentStore,
        extractor: TextExtractor,
        chunker:   SemanticChunker,
        embedder:  EmbeddingClient,
    ) -> None:
        self._store     = store
        self._extractor = extractor
        self._chunker   = chunker
        self._embedder  = embedder
        self._tasks: dict[uuid.UUID, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def ingest(
        self,
        *,
        title: str,
        content: DocumentContent,
        owner_id: uuid.UUID | None = None,
        case_id: uuid.UUID | None = None,
        document_type: DocumentType = DocumentType.USER_CASE,
        filename: str | None = None,
    ) -> IngestionResult:
        """Create the document and run the full pipeline in the caller's task."""
        document = await self._store.create_document(
            title=title, document_type=document_type, owner_id=owner_id, case_id=case_id,
        )
        return await self.run(document, content, filename=filename)

    async def submit(
        self,
        *,
        title: str,
        content: DocumentContent,
        owner_id: uuid.UUID | None = None,
        case_id: uuid.UUID | None = None,
        document_type: DocumentType = DocumentType.USER_CASE,
        filename: str | None = None,
    ) -> DocumentRecord:
        """Create the document and schedule the pipeline in the background."""
        document = await self._store.create_document(
            title=title, document_type=document_type, owner_id=owner_id, case_id=case_id,
        )
        task = asyncio.create_task(
            self._run_in_background(document, content, filename),
            name=f"ingest-{document.id}",
        )
        self._tasks[document.id] = task
        task.add_done_callback(lambda _t, doc_id=document.id: self._tasks.pop(doc_id, None))
        logger.info("Ingestion scheduled | doc=%s", document.id)
        return document

    async def get_status(self, document_id: uuid.UUID) -> DocumentRecord:
        return await self._store.get_document(document_id)

    async def wait_for(self, document_id: uuid.UUID) -> None:
        """Wait for a background ingestion, if one is still running."""
        task = self._tasks.get(document_id)
        if task is not None:
            await asyncio.wait({task})

    async def shutdown(self) -> None:
        """Cancel outstanding background ingestions (app shutdown)."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Ingestion shutdown | cancelled=%d", len(tasks))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run(
        self,
        document: DocumentRecord,
        content: DocumentContent,
        *,
        filename: str | None = None,
    ) -> IngestionResult:
        """Run the pipeline for an existing pending document."""
        async with self._store.single_flight(document.id):
            await self._store.mark_processing(document.id)
            t0 = time.monotonic()

            try:
                persisted, total = await self._process(document, content, filename)
            except asyncio.CancelledError:
                logger.warning("Ingestion cancelled | doc=%s", document.id)
                await asyncio.shield(
                    self._store.mark_failed(document.id, "Ingestion was cancelled.")
                )
                raise
            except Exception as exc:
                category = classify_error(exc)
                logger.error(
                    "Ingestion failed | doc=%s category=%s error=%s",
                    document.id, category.value, exc,
                )
                await self._store.mark_failed(document.id, to_user_error(exc).message)
                raise

            if persisted == 0:
                logger.error("Ingestion persisted nothing | doc=%s chunks=%d", document.id, total)
                await self._store.mark_failed(document.id, "No chunks could be stored.")
                return IngestionResult(document.id, 0, DocumentStatus.FAILED)

            await self._store.mark_completed(document.id, persisted)
            logger.info(
                "Ingestion done | doc=%s chunks=%d persisted=%d elapsed_ms=%.0f",
                document.id, total, persisted, (time.monotonic() - t0) * 1000,
            )
            return IngestionResult(document.id, persisted, DocumentStatus.COMPLETED)

    async def _process(
        self,
        document: DocumentRecord,
        content: DocumentContent,
        filename: str | None,
    ) -> tuple[int, int]:
        if isinstance(content, bytes):
            text = (await self._extractor.extract(content, filename=filename)).text
        else:
            text = content

        chunks = self._chunker.chunk(text)
        embeddings = await self._embedder.embed_batch(chunks)
        persisted = await self._store.persist_chunks(document, chunks, embeddings)
        return persisted, len(chunks)

    async def _run_in_background(
        self,
        document: DocumentRecord,
        content: DocumentContent,
        filename: str | None,
    ) -> None:
        try:
            await self.run(document, content, filename=filename)
        except FirmRAGError as exc:
            # Already recorded on the document row
            logger.info(
                "Background ingestion ended with error | doc=%s category=%s",
                document.id, exc.category.value,
            )
        except Exception:
            logger.exception("Background ingestion crashed | doc=%s", document.id)
