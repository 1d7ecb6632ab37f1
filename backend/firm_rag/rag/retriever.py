"""
Retrieval Service — filtered semantic search

  query text ──► EmbeddingClient.embed ──► repository.similarity_search
                                              │  (scope filter + threshold)
                                              ▼
                     similarity = 1 - cosine distance, re-sorted
                     (similarity desc, chunk_index asc), cut to limit

Scope (see store.base):
  • user_case chunks of owner_id and/or case_ids
  • knowledge_base chunks when include_shared_corpus
  • neither → empty result, no embedding call

Stateless apart from injected clients; safe under concurrent requests.
"""

from __future__ import annotations

import logging
import time
from typing import Iterable, Sequence
from uuid import UUID

from langchain_core.documents import Document

from firm_rag.core.errors import FirmRAGError, RetrievalError, ValidationError, classify_error
from firm_rag.processing.embeddings import EmbeddingClient
from firm_rag.schemas.retrieval import (
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_SIMILARITY_THRESHOLD,
    SearchResult,
)
from firm_rag.store.base import DocumentRepository, SearchFilters

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTEXT_CHARS = 12_000


def build_filters(
    owner_id: UUID | None = None,
    case_ids: Iterable[UUID] | None = None,
    include_shared_corpus: bool = True,
) -> SearchFilters:
    return SearchFilters(
        owner_id=owner_id,
        case_ids=tuple(case_ids) if case_ids else None,
        include_shared_corpus=include_shared_corpus,
    )


class RetrievalService:

    def __init__(
        self,
        repository: DocumentRepository,
        embedder: EmbeddingClient,
        max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
    ) -> None:
        self._repo              = repository
        self._embedder          = embedder
        self._max_context_chars = max_context_chars

    async def search(
        self,
        query_text: str,
        filters: SearchFilters,
        limit: int = DEFAULT_SEARCH_LIMIT,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ) -> list[SearchResult]:
        """
        Ranked chunks for `query_text` within the filter scope.

        Raises:
            ValidationError  empty query or non-positive limit
            RetrievalError   embedding or store failure; keeps the cause's category
        """
        if not query_text or not query_text.strip():
            raise ValidationError("Search query must not be empty.")
        if limit < 1:
            raise ValidationError("Search limit must be at least 1.")
        if filters.is_empty:
            logger.debug("Retriever | empty scope, skipping search")
            return []

        t0 = time.monotonic()
        try:
            vector = await self._embedder.embed(query_text)
            matches = await self._repo.similarity_search(
                vector, filters, limit, similarity_threshold,
            )
        except Exception as exc:
            category = classify_error(exc)
            logger.error("Retriever failed | category=%s error=%s", category.value, exc)
            if isinstance(exc, FirmRAGError) and not isinstance(exc, RetrievalError):
                raise RetrievalError(exc.message, category=category) from exc
            if isinstance(exc, RetrievalError):
                raise
            raise RetrievalError("Search failed.", category=category) from exc

        results = [
            SearchResult(
                chunk_id=m.chunk_id,
                document_id=m.document_id,
                chunk_index=m.chunk_index,
                text=m.text,
                metadata=m.metadata,
                similarity=1.0 - m.distance,
            )
            for m in matches
        ]
        results = [r for r in results if r.similarity >= similarity_threshold]
        results.sort(key=lambda r: (-r.similarity, r.chunk_index))
        results = results[:limit]

        logger.info(
            "Retriever | owner=%s cases=%d shared=%s results=%d top=%.3f elapsed_ms=%.0f",
            filters.owner_id, len(filters.case_ids or ()), filters.include_shared_corpus,
            len(results), results[0].similarity if results else 0.0,
            (time.monotonic() - t0) * 1000,
        )
        return results

    def format_context(
        self,
        results: Sequence[SearchResult],
        max_chars: int | None = None,
    ) -> str:
        return format_context(results, self._max_context_chars if max_chars is None else max_chars)


def format_source_header(index: int, result: SearchResult) -> str:
    if result.section:
        return f"[Source {index}: {result.source_title} ({result.section})]"
    return f"[Source {index}: {result.source_title}]"


def format_context(results: Sequence[SearchResult], max_chars: int = DEFAULT_MAX_CONTEXT_CHARS) -> str:
    """
    Render results as numbered source blocks separated by blank lines.

    The output never exceeds `max_chars`: blocks that do not fit are dropped
    from the end; a first block that is too long on its own is cut.
    """
    if max_chars <= 0:
        return ""

    blocks: list[str] = []
    used = 0
    for i, result in enumerate(results, start=1):
        block = f"{format_source_header(i, result)}\n{result.text}"
        cost = len(block) + (2 if blocks else 0)
        if used + cost > max_chars:
            if not blocks:
                blocks.append(block[:max_chars])
            break
        blocks.append(block)
        used += cost

    return "\n\n".join(blocks)


def to_documents(results: Sequence[SearchResult]) -> list[Document]:
    """LangChain Documents for callers composing their own chains."""
    return [
        Document(
            page_content=r.text,
            metadata={
                **r.metadata,
                "similarity":  r.similarity,
                "chunk_id":    str(r.chunk_id),
                "chunk_index": r.chunk_index,
            },
        )
        for r in results
    ]
