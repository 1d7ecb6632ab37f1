"""
Unit Tests — Shared corpus seeding
══════════════════════════════════
  ✅ Built-in texts land as ownerless knowledge_base documents
  ✅ Seeded texts are returned by shared-corpus searches
  ✅ A document that fails to ingest is skipped, the rest still land
  ✅ Directory loading picks up supported files only
  ✅ --dry-run lists titles without ingesting
"""

from __future__ import annotations

import pytest

from firm_rag.seed import (
    BUILT_IN_DOCUMENTS,
    SeedDocument,
    documents_from_directory,
    main,
    seed_knowledge_base,
)
from firm_rag.store.base import DocumentStatus, DocumentType


@pytest.mark.unit
class TestSeedKnowledgeBase:

    async def test_built_in_texts_become_shared_corpus(self, services, repository):
        results = await seed_knowledge_base(services)

        assert len(results) == len(BUILT_IN_DOCUMENTS)
        assert all(r.status is DocumentStatus.COMPLETED for r in results)
        for record in repository._documents.values():
            assert record.document_type is DocumentType.KNOWLEDGE_BASE
            assert record.owner_id is None

    async def test_seeded_texts_are_searchable(self, services):
        await seed_knowledge_base(services)

        results = await services.search("negligence duty")

        assert "Tort Law - Negligence Elements" in [r.source_title for r in results]
        assert {r.metadata["document_type"] for r in results} == {"knowledge_base"}

    async def test_failed_document_is_skipped(self, services, repository):
        documents = [
            SeedDocument(title="Unreadable scan", content=b"\x00\x01\x02binary", filename="scan.bin"),
            SeedDocument(title="Torts primer", content="Negligence requires a duty of care."),
        ]
        results = await seed_knowledge_base(services, documents)

        assert len(results) == 1
        assert results[0].status is DocumentStatus.COMPLETED
        statuses = sorted(r.status.value for r in repository._documents.values())
        assert statuses == ["completed", "failed"]


@pytest.mark.unit
class TestSeedSources:

    def test_documents_from_directory(self, tmp_path):
        (tmp_path / "law_of_torts.txt").write_text("Duty of care.")
        (tmp_path / "notes.md").write_text("ignored")
        (tmp_path / "contracts.pdf").write_bytes(b"%PDF-1.4")

        documents = documents_from_directory(tmp_path)

        assert [d.title for d in documents] == ["contracts", "law of torts"]
        assert documents[1].content == b"Duty of care."
        assert documents[1].filename == "law_of_torts.txt"

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            documents_from_directory(tmp_path / "absent")

    def test_dry_run_lists_titles(self, capsys):
        assert main(["--dry-run"]) == 0
        printed = capsys.readouterr().out.splitlines()
        assert printed == [d.title for d in BUILT_IN_DOCUMENTS]
