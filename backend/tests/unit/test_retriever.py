"""
Unit Tests — RetrievalService
═════════════════════════════
Chunks are ingested through the real pipeline; KeywordEmbedder makes the
similarity of every query/chunk pair predictable.

  ✅ Owner scope + shared corpus; other owners never leak in
  ✅ Ranking by similarity (1 - cosine distance), ties by chunk_index
  ✅ Threshold and limit honoured; empty corpus → []
  ✅ Empty scope → [] without an embedding call
  ✅ Empty query / bad limit → ValidationError
  ✅ Embedding or store failure → RetrievalError carrying the cause's category
  ✅ format_context source headers and character budget
  ✅ to_documents keeps metadata for LangChain callers
"""

from __future__ import annotations

import uuid
from unittest.mock import patch

import pytest

from firm_rag.core.errors import ErrorCategory, RetrievalError, ValidationError
from firm_rag.rag.retriever import build_filters, format_context, to_documents
from firm_rag.schemas.retrieval import SearchResult
from firm_rag.store.base import ChunkMatch, DocumentType
from firm_rag.store.inmemory import cosine_distance

ALICE = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
BOB = uuid.UUID("00000000-0000-0000-0000-0000000000b2")
CASE = uuid.UUID("00000000-0000-0000-0000-0000000000c3")


@pytest.fixture
async def corpus(services):
    """Four single-chunk documents across two owners and the shared corpus."""
    await services.ingest(ALICE, CASE, "Donoghue v Stevenson", "Negligence requires a duty and a breach.")
    await services.ingest(BOB, None, "Bob's notes", "Negligence and duty.")
    await services.ingest(
        None, None, "Tort treatise", "Negligence leads to damages.",
        document_type=DocumentType.KNOWLEDGE_BASE,
    )
    await services.ingest(
        None, None, "Contract treatise", "Contract needs consideration.",
        document_type=DocumentType.KNOWLEDGE_BASE,
    )
    return services


def _result(text: str = "text", **metadata) -> SearchResult:
    return SearchResult(
        chunk_id=uuid.uuid4(),
        document_id=uuid.uuid4(),
        chunk_index=0,
        text=text,
        metadata=metadata,
        similarity=0.9,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Scoped search
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestSearchScope:

    async def test_owner_and_shared_corpus(self, corpus):
        results = await corpus.search("negligence duty", owner_id=ALICE)

        assert [r.source_title for r in results] == ["Donoghue v Stevenson", "Tort treatise"]
        assert results[0].similarity == pytest.approx(2 / (2 ** 0.5 * 3 ** 0.5))
        assert results[1].similarity == pytest.approx(0.5)

    async def test_without_shared_corpus(self, corpus):
        results = await corpus.search("negligence duty", owner_id=ALICE, include_shared_corpus=False)
        assert [r.source_title for r in results] == ["Donoghue v Stevenson"]

    async def test_case_filter(self, corpus):
        results = await corpus.search(
            "negligence duty", case_ids=[CASE], include_shared_corpus=False,
        )
        assert [r.metadata["owner_id"] for r in results] == [str(ALICE)]

    async def test_other_owner_never_leaks(self, corpus):
        results = await corpus.search("negligence duty", owner_id=BOB)
        assert "Donoghue v Stevenson" not in [r.source_title for r in results]

    async def test_shared_corpus_only(self, corpus):
        results = await corpus.search("contract consideration")
        assert [r.source_title for r in results] == ["Contract treatise"]
        assert results[0].metadata["document_type"] == "knowledge_base"

    async def test_empty_scope_skips_embedding(self, corpus, embedder):
        calls_before = len(embedder.calls)
        results = await corpus.search("negligence", include_shared_corpus=False)

        assert results == []
        assert len(embedder.calls) == calls_before


@pytest.mark.unit
class TestSearchRanking:

    async def test_threshold_filters_weak_matches(self, corpus):
        results = await corpus.search("negligence duty", owner_id=ALICE, similarity_threshold=0.7)
        assert [r.source_title for r in results] == ["Donoghue v Stevenson"]

    async def test_unrelated_query_finds_nothing(self, corpus):
        assert await corpus.search("murder property", owner_id=ALICE) == []

    async def test_limit(self, corpus):
        results = await corpus.search("negligence duty", owner_id=ALICE, limit=1)
        assert len(results) == 1

    async def test_sorted_by_similarity(self, corpus):
        results = await corpus.search("negligence", owner_id=ALICE, similarity_threshold=0.0)
        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)

    async def test_similarity_is_one_minus_cosine_distance(self, corpus, embedder):
        query = "negligence duty"
        results = await corpus.search(query, owner_id=ALICE, similarity_threshold=0.0)

        assert results
        for r in results:
            expected = 1.0 - cosine_distance(embedder.vector_for(query), embedder.vector_for(r.text))
            assert r.similarity == pytest.approx(expected)

    async def test_ties_ordered_by_chunk_index(self, services, repository):
        document_id = uuid.uuid4()
        matches = [
            ChunkMatch(
                chunk_id=uuid.uuid4(), document_id=document_id, chunk_index=index,
                text=f"chunk {index}", metadata={}, distance=distance,
            )
            for index, distance in [(2, 0.25), (0, 0.25), (3, 0.1), (1, 0.25)]
        ]
        with patch.object(repository, "similarity_search", return_value=matches):
            results = await services.search("duty", owner_id=ALICE, similarity_threshold=0.0)

        assert [r.chunk_index for r in results] == [3, 0, 1, 2]
        assert [r.similarity for r in results] == pytest.approx([0.9, 0.75, 0.75, 0.75])

    async def test_empty_corpus_returns_nothing(self, services):
        assert await services.search("negligence duty", owner_id=ALICE) == []


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestSearchErrors:

    @pytest.mark.parametrize("query", ["", "   "])
    async def test_empty_query(self, services, query):
        with pytest.raises(ValidationError):
            await services.search(query, owner_id=ALICE)

    async def test_non_positive_limit(self, services):
        with pytest.raises(ValidationError):
            await services.search("duty", owner_id=ALICE, limit=0)

    async def test_embedding_failure_keeps_category(self, services, embedder, embedding_outage):
        embedder.fail_with = embedding_outage

        with pytest.raises(RetrievalError) as exc_info:
            await services.search("duty", owner_id=ALICE)

        assert exc_info.value.category is ErrorCategory.SERVICE_UNAVAILABLE
        assert exc_info.value.__cause__ is embedding_outage

    async def test_store_failure_is_wrapped(self, services, repository):
        boom = ConnectionError("connection refused")
        with patch.object(repository, "similarity_search", side_effect=boom):
            with pytest.raises(RetrievalError) as exc_info:
                await services.search("duty", owner_id=ALICE)

        assert exc_info.value.__cause__ is boom
        assert exc_info.value.message == "Search failed."

    def test_build_filters(self):
        filters = build_filters(ALICE, [CASE], include_shared_corpus=False)
        assert filters.owner_id == ALICE
        assert filters.case_ids == (CASE,)
        assert build_filters(case_ids=[]).case_ids is None


# ─────────────────────────────────────────────────────────────────────────────
# Context formatting
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestFormatContext:

    def test_headers_and_separators(self):
        context = format_context([
            _result("The snail.", source_title="Donoghue v Stevenson", section="FACTS"),
            _result("Duty owed."),
        ])
        assert context == (
            "[Source 1: Donoghue v Stevenson (FACTS)]\nThe snail."
            "\n\n"
            "[Source 2: Untitled]\nDuty owed."
        )

    def test_blocks_that_do_not_fit_are_dropped(self):
        first = _result("a" * 20, source_title="One")
        second = _result("b" * 20, source_title="Two")
        first_block = "[Source 1: One]\n" + "a" * 20

        context = format_context([first, second], max_chars=len(first_block) + 10)
        assert context == first_block

    def test_oversized_first_block_is_cut(self):
        context = format_context([_result("x" * 100, source_title="Long")], max_chars=30)
        assert len(context) == 30
        assert context.startswith("[Source 1: Long]")

    def test_zero_budget(self):
        assert format_context([_result()], max_chars=0) == ""

    def test_service_uses_configured_budget(self, services):
        results = [_result("y" * 50_000, source_title="Huge")]
        assert len(services.retriever.format_context(results)) == services.settings.max_context_chars


@pytest.mark.unit
class TestToDocuments:

    def test_metadata_is_carried(self):
        result = _result("Duty owed.", source_title="Caparo", section="Held")
        (document,) = to_documents([result])

        assert document.page_content == "Duty owed."
        assert document.metadata["source_title"] == "Caparo"
        assert document.metadata["similarity"] == 0.9
        assert document.metadata["chunk_id"] == str(result.chunk_id)
        assert document.metadata["chunk_index"] == 0
