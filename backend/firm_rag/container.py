"""
Service Container
═════════════════

Builds every long-lived service once from Settings and exposes the study
operations through a single facade.

  Settings ──► build_services()
                 │
                 ├─ DocumentRepository   (postgres | memory)
                 ├─ DocumentStore        (status machine, chunk batches)
                 ├─ TextExtractor / SemanticChunker / EmbeddingClient
                 ├─ IngestionService     (inline + background pipeline)
                 ├─ RetrievalService     (scoped similarity search)
                 └─ GenerationOrchestrator (remote | local backend)
                 │
                 ▼
             StudyServices  ── app.state.services in the FastAPI app

Tests hand in their own repository, embedder or backend; anything not
supplied is built from settings.
"""

from __future__ import annotations

import logging
import uuid
from typing import Sequence

from firm_rag.core.config import Settings
from firm_rag.llm.backends import GenerationBackend, create_backend
from firm_rag.llm.orchestrator import GenerationOrchestrator
from firm_rag.processing.chunking import SemanticChunker
from firm_rag.processing.embeddings import EmbeddingClient
from firm_rag.processing.extractor import TextExtractor
from firm_rag.rag.retriever import RetrievalService, build_filters
from firm_rag.schemas.generation import (
    CaseSummary,
    Flashcard,
    MockExam,
    QuizQuestion,
    RagOptions,
    TutorContext,
)
from firm_rag.schemas.retrieval import SearchResult
from firm_rag.services.document_store import DocumentStore
from firm_rag.services.ingestion import DocumentContent, IngestionResult, IngestionService
from firm_rag.store.base import DocumentRecord, DocumentRepository, DocumentType
from firm_rag.store.factory import create_repository

logger = logging.getLogger(__name__)


class StudyServices:
    """
    Facade over ingestion, retrieval and generation.

    Usage:
        services = build_services(get_settings())
        result   = await services.ingest(owner_id, case_id, "Smith v Jones", pdf_bytes)
        hits     = await services.search("duty of care", owner_id=owner_id)
        await services.aclose()
    """

    def __init__(
        self,
        *,
        settings:     Settings,
        repository:   DocumentRepository,
        store:        DocumentStore,
        ingestion:    IngestionService,
        retriever:    RetrievalService,
        orchestrator: GenerationOrchestrator,
    ) -> None:
        self.settings     = settings
        self.repository   = repository
        self.store        = store
        self.ingestion    = ingestion
        self.retriever    = retriever
        self.orchestrator = orchestrator

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def ingest(
        self,
        owner_id: uuid.UUID | None,
        case_id: uuid.UUID | None,
        title: str,
        content: DocumentContent,
        document_type: DocumentType = DocumentType.USER_CASE,
        filename: str | None = None,
    ) -> IngestionResult:
        return await self.ingestion.ingest(
            title=title,
            content=content,
            owner_id=owner_id,
            case_id=case_id,
            document_type=document_type,
            filename=filename,
        )

    async def submit(
        self,
        owner_id: uuid.UUID | None,
        case_id: uuid.UUID | None,
        title: str,
        content: DocumentContent,
        document_type: DocumentType = DocumentType.USER_CASE,
        filename: str | None = None,
    ) -> DocumentRecord:
        """Like ingest(), but returns the pending document and runs in the background."""
        return await self.ingestion.submit(
            title=title,
            content=content,
            owner_id=owner_id,
            case_id=case_id,
            document_type=document_type,
            filename=filename,
        )

    async def get_status(self, document_id: uuid.UUID) -> DocumentRecord:
        return await self.ingestion.get_status(document_id)

    async def delete_document(self, document_id: uuid.UUID) -> None:
        await self.store.delete_document(document_id)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def search(
        self,
        query_text: str,
        owner_id: uuid.UUID | None = None,
        case_ids: Sequence[uuid.UUID] | None = None,
        include_shared_corpus: bool = True,
        limit: int | None = None,
        similarity_threshold: float | None = None,
    ) -> list[SearchResult]:
        filters = build_filters(owner_id, case_ids, include_shared_corpus)
        return await self.retriever.search(
            query_text,
            filters,
            limit=self.settings.default_search_limit if limit is None else limit,
            similarity_threshold=(
                self.settings.default_similarity_threshold
                if similarity_threshold is None else similarity_threshold
            ),
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_case_summary(
        self, case_text: str, rag_options: RagOptions | None = None,
    ) -> CaseSummary:
        return await self.orchestrator.generate_case_summary(case_text, rag_options)

    async def generate_quiz(
        self, content: str, num_questions: int = 5, rag_options: RagOptions | None = None,
    ) -> list[QuizQuestion]:
        return await self.orchestrator.generate_quiz(content, num_questions, rag_options)

    async def generate_mock_exam(
        self, topics: Sequence[str], num_questions: int = 10, rag_options: RagOptions | None = None,
    ) -> MockExam:
        return await self.orchestrator.generate_mock_exam(topics, num_questions, rag_options)

    async def tutor_respond(self, message: str, context: TutorContext | None = None) -> str:
        return await self.orchestrator.tutor_respond(message, context)

    async def generate_flashcards(
        self, content: str, num_cards: int = 10, rag_options: RagOptions | None = None,
    ) -> list[Flashcard]:
        return await self.orchestrator.generate_flashcards(content, num_cards, rag_options)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Cancel background ingestions, then release the repository."""
        await self.ingestion.shutdown()
        await self.repository.close()
        logger.info("Services closed")


def build_services(
    settings: Settings,
    *,
    repository: DocumentRepository | None = None,
    embedder: EmbeddingClient | None = None,
    backend: GenerationBackend | None = None,
) -> StudyServices:
    repository = repository or create_repository(settings)
    embedder   = embedder or EmbeddingClient.from_settings(settings)
    backend    = backend or create_backend(settings)

    store = DocumentStore(repository, batch_size=settings.chunk_batch_size)
    ingestion = IngestionService(
        store,
        TextExtractor(),
        SemanticChunker(settings.chunk_target_words, settings.chunk_overlap_words),
        embedder,
    )
    retriever    = RetrievalService(repository, embedder, max_context_chars=settings.max_context_chars)
    orchestrator = GenerationOrchestrator(backend, retriever)

    logger.info(
        "Services built | store=%s backend=%s model=%s embedding_model=%s",
        settings.store_backend, backend.name, backend.model, embedder.model,
    )
    return StudyServices(
        settings=settings,
        repository=repository,
        store=store,
        ingestion=ingestion,
        retriever=retriever,
        orchestrator=orchestrator,
    )
