"""
Unit Tests — DocumentRepository implementations
════════════════════════════════════════════════
InMemoryRepository is exercised directly; PgVectorRepository's scope
predicate is compiled against the PostgreSQL dialect (no live database).
"""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy.dialects import postgresql

from firm_rag.core.config import Settings
from firm_rag.core.errors import ConfigurationError
from firm_rag.store.base import (
    ChunkRecord,
    DocumentRecord,
    DocumentStatus,
    DocumentType,
    SearchFilters,
)
from firm_rag.store.factory import create_repository
from firm_rag.store.inmemory import InMemoryRepository, cosine_distance
from firm_rag.store.pgvector_store import _scope_predicate

ALICE = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
BOB = uuid.UUID("00000000-0000-0000-0000-0000000000b2")
CASE_1 = uuid.UUID("00000000-0000-0000-0000-0000000000c1")
CASE_2 = uuid.UUID("00000000-0000-0000-0000-0000000000c2")


async def _seed(repo: InMemoryRepository, *, title, document_type, owner_id=None, case_id=None, vector):
    doc = await repo.add_document(DocumentRecord(
        title=title, document_type=document_type, owner_id=owner_id, case_id=case_id,
    ))
    await repo.add_chunks([ChunkRecord(
        document_id=doc.id, chunk_index=0, text=title, embedding=vector,
        metadata={"source_title": title},
    )])
    return doc


@pytest.fixture
async def seeded(repository):
    same = [1.0, 0.0, 0.0]
    await _seed(repository, title="alice case 1", document_type=DocumentType.USER_CASE,
                owner_id=ALICE, case_id=CASE_1, vector=same)
    await _seed(repository, title="alice case 2", document_type=DocumentType.USER_CASE,
                owner_id=ALICE, case_id=CASE_2, vector=same)
    await _seed(repository, title="bob case", document_type=DocumentType.USER_CASE,
                owner_id=BOB, case_id=CASE_1, vector=same)
    await _seed(repository, title="shared treatise", document_type=DocumentType.KNOWLEDGE_BASE,
                vector=same)
    return repository


async def _titles(repo, filters, threshold=0.0, limit=10):
    matches = await repo.similarity_search([1.0, 0.0, 0.0], filters, limit, threshold)
    return sorted(m.text for m in matches)


# ─────────────────────────────────────────────────────────────────────────────
# Scope filtering
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestInMemoryScope:

    async def test_owner_plus_shared(self, seeded):
        titles = await _titles(seeded, SearchFilters(owner_id=ALICE))
        assert titles == ["alice case 1", "alice case 2", "shared treatise"]

    async def test_owner_without_shared(self, seeded):
        titles = await _titles(seeded, SearchFilters(owner_id=ALICE, include_shared_corpus=False))
        assert titles == ["alice case 1", "alice case 2"]

    async def test_owner_and_case_ids(self, seeded):
        filters = SearchFilters(owner_id=ALICE, case_ids=(CASE_1,), include_shared_corpus=False)
        assert await _titles(seeded, filters) == ["alice case 1"]

    async def test_shared_only_never_sees_user_cases(self, seeded):
        assert await _titles(seeded, SearchFilters()) == ["shared treatise"]

    async def test_empty_scope_returns_nothing(self, seeded):
        assert await _titles(seeded, SearchFilters(include_shared_corpus=False)) == []

    async def test_other_owner_is_invisible(self, seeded):
        titles = await _titles(seeded, SearchFilters(owner_id=BOB, include_shared_corpus=False))
        assert titles == ["bob case"]


# ─────────────────────────────────────────────────────────────────────────────
# Ranking & thresholds
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
class TestInMemorySearch:

    def test_cosine_distance(self):
        assert cosine_distance([1.0, 0.0], [1.0, 0.0]) == pytest.approx(0.0)
        assert cosine_distance([1.0, 0.0], [0.0, 1.0]) == pytest.approx(1.0)
        assert cosine_distance([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(2.0)
        assert cosine_distance([0.0, 0.0], [1.0, 0.0]) == 1.0

    async def test_ranked_by_distance_then_chunk_index(self, repository):
        doc = await repository.add_document(DocumentRecord(
            title="kb", document_type=DocumentType.KNOWLEDGE_BASE,
        ))
        vectors = [[0.0, 1.0], [1.0, 1.0], [1.0, 0.0], [1.0, 0.0]]
        await repository.add_chunks([
            ChunkRecord(document_id=doc.id, chunk_index=i, text=f"c{i}", embedding=v, metadata={})
            for i, v in enumerate(vectors)
        ])

        matches = await repository.similarity_search([1.0, 0.0], SearchFilters(), limit=3, threshold=0.5)
        assert [m.chunk_index for m in matches] == [2, 3, 1]

    async def test_duplicate_chunk_index_rejected_atomically(self, repository):
        doc = await repository.add_document(DocumentRecord(title="kb", document_type=DocumentType.KNOWLEDGE_BASE))

        def chunk(i: int) -> ChunkRecord:
            return ChunkRecord(document_id=doc.id, chunk_index=i, text="t", embedding=[1.0], metadata={})

        await repository.add_chunks([chunk(0)])
        with pytest.raises(ValueError):
            await repository.add_chunks([chunk(1), chunk(0)])
        with pytest.raises(ValueError):
            await repository.add_chunks([chunk(2), chunk(2)])
        assert await repository.count_chunks(doc.id) == 1

    async def test_chunks_for_unknown_document_rejected(self, repository):
        with pytest.raises(KeyError):
            await repository.add_chunks([ChunkRecord(
                document_id=uuid.uuid4(), chunk_index=0, text="t", embedding=[1.0], metadata={},
            )])

    async def test_compare_and_set_update(self, repository):
        doc = await repository.add_document(DocumentRecord(title="x", owner_id=ALICE))
        assert await repository.update_document(
            doc.id, {"status": DocumentStatus.COMPLETED},
            expected_status={DocumentStatus.PROCESSING},
        ) is None
        updated = await repository.update_document(
            doc.id, {"status": DocumentStatus.PROCESSING},
            expected_status={DocumentStatus.PENDING},
        )
        assert updated.status is DocumentStatus.PROCESSING

    async def test_returned_records_are_copies(self, repository):
        doc = await repository.add_document(DocumentRecord(title="x", owner_id=ALICE))
        doc.title = "mutated"
        assert (await repository.get_document(doc.id)).title == "x"


# ─────────────────────────────────────────────────────────────────────────────
# PostgreSQL statements
# ─────────────────────────────────────────────────────────────────────────────

def _sql(clause) -> str:
    return str(clause.compile(dialect=postgresql.dialect()))


@pytest.mark.unit
class TestPgVectorScope:

    def test_owner_and_shared_are_ored(self):
        sql = _sql(_scope_predicate(SearchFilters(owner_id=ALICE)))
        assert "documents.owner_id" in sql
        assert " OR " in sql
        assert "documents.document_type" in sql

    def test_case_ids_use_in(self):
        sql = _sql(_scope_predicate(SearchFilters(case_ids=(CASE_1, CASE_2), include_shared_corpus=False)))
        assert "documents.case_id IN" in sql
        assert " OR " not in sql

    def test_empty_scope_is_false(self):
        sql = _sql(_scope_predicate(SearchFilters(include_shared_corpus=False)))
        assert sql.strip().lower() == "false"


@pytest.mark.unit
class TestRepositoryFactory:

    def test_memory_backend(self):
        repo = create_repository(Settings(_env_file=None, store_backend="memory"))
        assert isinstance(repo, InMemoryRepository)

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            create_repository(Settings(_env_file=None, store_backend="sqlite"))
