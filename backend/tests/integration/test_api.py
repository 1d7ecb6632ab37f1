"""
Integration Tests — /api/v1 routes
══════════════════════════════════
These tests exercise the FULL FastAPI routing stack, including:
  - JSON and multipart request parsing
  - Dependency resolution of StudyServices from app.state
  - Response status codes, body schemas and headers
  - Error category → HTTP status mapping

What is mocked vs real
──────────────────────
  ✅ Real: FastAPI routing, Pydantic validation, IngestionService pipeline,
           RetrievalService, GenerationOrchestrator, parsing, error mapping
  🔲 Fake: embeddings   (KeywordEmbedder from conftest.py)
  🔲 Fake: chat model   (ScriptedBackend → LangChain FakeListChatModel)
  🔲 Fake: PostgreSQL   (InMemoryRepository)

How to run
──────────
  pytest -m integration backend/tests/integration/test_api.py -v
"""

from __future__ import annotations

import asyncio
import base64
import io
import json
import uuid
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from firm_rag.core.errors import ConfigurationError
from firm_rag.main import create_app
from firm_rag.store.base import DocumentType

OWNER = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
CASE = uuid.UUID("00000000-0000-0000-0000-0000000000c3")

NO_RAG = {"enabled": False}

QUIZ_BODY = json.dumps([{
    "question":       "What must a claimant show first?",
    "options":        ["A duty of care", "Malice", "A contract", "Intent"],
    "correct_answer": 0,
    "explanation":    "No duty, no negligence.",
}])


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures & helpers
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
async def client(services):
    app = create_app(services=services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _upload(content: bytes, filename: str = "case.txt", **data) -> dict:
    form = {"title": "Donoghue v Stevenson", "owner_id": str(OWNER), **data}
    return {
        "files": [("file", (filename, io.BytesIO(content), "application/octet-stream"))],
        "data":  form,
    }


async def _settle(services, response) -> dict:
    """Wait for the background ingestion behind a 202, then poll its status."""
    document_id = uuid.UUID(response.json()["document_id"])
    await services.ingestion.wait_for(document_id)
    record = await services.get_status(document_id)
    return {"status": record.status.value, "total_chunks": record.total_chunks,
            "error_message": record.error_message}


# ─────────────────────────────────────────────────────────────────────────────
# Documents
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestCreateDocument:
    """POST /api/v1/documents"""

    async def test_text_document_accepted(self, client, services):
        response = await client.post("/api/v1/documents", json={
            "title":    "Donoghue v Stevenson",
            "owner_id": str(OWNER),
            "case_id":  str(CASE),
            "text":     "Negligence requires a duty of care.",
        })

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending"
        assert response.headers["X-Document-ID"] == body["document_id"]
        assert response.headers["Location"] == f"/api/v1/documents/{body['document_id']}/status"
        assert body["status_url"] == response.headers["Location"]

        assert await _settle(services, response) == {
            "status": "completed", "total_chunks": 1, "error_message": None,
        }

    async def test_base64_document_accepted(self, client, services):
        encoded = base64.b64encode(b"Offer and acceptance.\n\nConsideration.").decode()
        response = await client.post("/api/v1/documents", json={
            "title":          "Contract treatise",
            "document_type":  "knowledge_base",
            "content_base64": encoded,
            "filename":       "contract.txt",
        })

        assert response.status_code == 202
        assert (await _settle(services, response))["status"] == "completed"

    async def test_invalid_base64_is_400(self, client):
        response = await client.post("/api/v1/documents", json={
            "title":          "Broken",
            "owner_id":       str(OWNER),
            "content_base64": "not base64!!",
        })

        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "validation"
        assert body["message"] == "content_base64 is not valid base64"

    @pytest.mark.parametrize("payload", [
        {"title": "Both", "owner_id": str(OWNER), "text": "a", "content_base64": "YQ=="},
        {"title": "Neither", "owner_id": str(OWNER)},
        {"title": "No owner", "text": "Duty."},
        {"title": "", "owner_id": str(OWNER), "text": "Duty."},
    ])
    async def test_request_validation_is_422(self, client, payload):
        response = await client.post("/api/v1/documents", json=payload)

        assert response.status_code == 422
        body = response.json()
        assert body["error_code"] == "validation"
        assert body["details"]

    async def test_unreadable_content_fails_in_background(self, client, services):
        encoded = base64.b64encode(b"\x00\x01\x02binary").decode()
        response = await client.post("/api/v1/documents", json={
            "title": "Scan", "owner_id": str(OWNER), "content_base64": encoded,
        })

        assert response.status_code == 202
        outcome = await _settle(services, response)
        assert outcome["status"] == "failed"
        assert outcome["error_message"].startswith("Unable to read text from this document")


@pytest.mark.integration
class TestUploadDocument:
    """POST /api/v1/documents/upload"""

    async def test_txt_upload(self, client, services):
        response = await client.post(
            "/api/v1/documents/upload",
            **_upload(b"Duty of care owed.\n\nBreach established.", case_id=str(CASE)),
        )

        assert response.status_code == 202
        assert "X-Document-ID" in response.headers
        assert await _settle(services, response) == {
            "status": "completed", "total_chunks": 1, "error_message": None,
        }

    async def test_oversized_upload_is_413(self, client, repository):
        with patch("firm_rag.api.v1.documents.MAX_FILE_SIZE_BYTES", 10):
            response = await client.post("/api/v1/documents/upload", **_upload(b"x" * 11))

        assert response.status_code == 413
        assert response.json()["title"] == "File Too Large"
        assert repository._documents == {}

    async def test_missing_title_is_422(self, client):
        upload = _upload(b"Duty.")
        del upload["data"]["title"]
        response = await client.post("/api/v1/documents/upload", **upload)
        assert response.status_code == 422

    async def test_legacy_doc_fails(self, client, services):
        ole = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64
        response = await client.post("/api/v1/documents/upload", **_upload(ole, filename="old.doc"))

        assert response.status_code == 202
        assert (await _settle(services, response))["status"] == "failed"


@pytest.mark.integration
class TestStatusAndDelete:
    """GET /api/v1/documents/{id}/status · DELETE /api/v1/documents/{id}"""

    async def test_status_of_ingested_document(self, client, services):
        result = await services.ingest(OWNER, CASE, "Donoghue v Stevenson", "Duty of care.")

        response = await client.get(f"/api/v1/documents/{result.document_id}/status")

        assert response.status_code == 200
        body = response.json()
        assert body["document_id"] == str(result.document_id)
        assert body["status"] == "completed"
        assert body["total_chunks"] == 1
        assert body["document_type"] == "user_case"

    async def test_unknown_document_is_404(self, client):
        response = await client.get(
            f"/api/v1/documents/{uuid.uuid4()}/status",
            headers={"X-Request-ID": "req-123"},
        )

        assert response.status_code == 404
        body = response.json()
        assert body["error_code"] == "not_found"
        assert body["request_id"] == "req-123"
        assert response.headers["X-Request-ID"] == "req-123"

    async def test_malformed_id_is_422(self, client):
        response = await client.get("/api/v1/documents/not-a-uuid/status")
        assert response.status_code == 422

    async def test_delete(self, client, services, repository):
        result = await services.ingest(OWNER, CASE, "Donoghue v Stevenson", "Duty of care.")

        response = await client.delete(f"/api/v1/documents/{result.document_id}")
        assert response.status_code == 204
        assert await repository.count_chunks(result.document_id) == 0

        again = await client.delete(f"/api/v1/documents/{result.document_id}")
        assert again.status_code == 404

    async def test_delete_while_ingesting_is_409(self, client, services, embedder):
        entered = asyncio.Event()
        release = asyncio.Event()
        original = embedder.embed_batch

        async def embed_batch(texts):
            entered.set()
            await release.wait()
            return await original(texts)

        embedder.embed_batch = embed_batch
        document = await services.submit(OWNER, CASE, "Donoghue v Stevenson", "Duty of care.")
        await entered.wait()

        response = await client.delete(f"/api/v1/documents/{document.id}")

        assert response.status_code == 409
        assert response.json()["error_code"] == "sync_conflict"

        release.set()
        await services.ingestion.wait_for(document.id)


# ─────────────────────────────────────────────────────────────────────────────
# Search
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestSearch:
    """POST /api/v1/search"""

    @pytest.fixture
    async def corpus(self, services):
        await services.ingest(OWNER, CASE, "Donoghue v Stevenson", "Negligence requires a duty of care.")
        await services.ingest(
            None, None, "Contract treatise", "Contract needs consideration.",
            document_type=DocumentType.KNOWLEDGE_BASE,
        )

    async def test_ranked_results(self, client, corpus):
        response = await client.post("/api/v1/search", json={
            "query": "negligence duty", "owner_id": str(OWNER),
        })

        assert response.status_code == 200
        body = response.json()
        assert body["query"] == "negligence duty"
        assert body["count"] == 1
        assert body["results"][0]["metadata"]["source_title"] == "Donoghue v Stevenson"
        assert body["results"][0]["similarity"] == pytest.approx(1.0)

    async def test_empty_scope(self, client, corpus):
        response = await client.post("/api/v1/search", json={
            "query": "negligence", "include_shared_corpus": False,
        })
        assert response.status_code == 200
        assert response.json() == {"query": "negligence", "results": [], "count": 0}

    @pytest.mark.parametrize("payload", [
        {"query": ""},
        {"query": "duty", "limit": 0},
        {"query": "duty", "limit": 51},
    ])
    async def test_invalid_request(self, client, payload):
        response = await client.post("/api/v1/search", json=payload)
        assert response.status_code == 422

    async def test_blank_query_is_400(self, client):
        response = await client.post("/api/v1/search", json={"query": "   "})
        assert response.status_code == 400

    async def test_embedding_outage_is_503(self, client, embedder, embedding_outage):
        embedder.fail_with = embedding_outage

        response = await client.post("/api/v1/search", json={"query": "duty", "owner_id": str(OWNER)})

        assert response.status_code == 503
        body = response.json()
        assert body["error_code"] == "service_unavailable"
        assert body["recoverable"] is True
        assert "(service_unavailable)" not in body["message"]


# ─────────────────────────────────────────────────────────────────────────────
# Generation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestGeneration:

    async def test_case_summary(self, client, backend):
        backend.reply('```json\n{"issue": "Duty?", "rule": "Neighbour principle"}\n```')

        response = await client.post("/api/v1/generate/case-summary", json={
            "case_text": "A snail in a bottle of ginger beer.", "rag": NO_RAG,
        })

        assert response.status_code == 200
        assert response.json() == {
            "issue":      "Duty?",
            "rule":       "Neighbour principle",
            "analysis":   "Analysis pending",
            "conclusion": "Conclusion pending",
        }

    async def test_quiz(self, client, backend):
        backend.reply(QUIZ_BODY)

        response = await client.post("/api/v1/generate/quiz", json={
            "content": "Negligence basics", "num_questions": 2, "rag": NO_RAG,
        })

        assert response.status_code == 200
        (question,) = response.json()["questions"]
        assert question["correct_answer"] == 0
        assert len(question["options"]) == 4

    async def test_mock_exam(self, client, backend):
        backend.reply(json.dumps({"questions": json.loads(QUIZ_BODY)}))

        response = await client.post("/api/v1/generate/mock-exam", json={
            "topics": ["Torts", "  "], "num_questions": 5, "rag": NO_RAG,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "Mock Exam: Torts"
        assert len(body["questions"]) == 1

    async def test_mock_exam_needs_a_topic(self, client):
        response = await client.post("/api/v1/generate/mock-exam", json={"topics": ["  "]})
        assert response.status_code == 422

    async def test_flashcards(self, client, backend):
        backend.reply(QUIZ_BODY)

        response = await client.post("/api/v1/generate/flashcards", json={
            "content": "Negligence basics", "rag": NO_RAG,
        })

        assert response.status_code == 200
        (card,) = response.json()["flashcards"]
        assert card["back"].startswith("Correct Answer: A. A duty of care")

    async def test_tutor(self, client, backend):
        backend.reply("A duty is owed to your neighbour.")

        response = await client.post("/api/v1/tutor", json={
            "message": "What is a duty of care?",
            "context": {
                "case_history": [{"title": "Donoghue v Stevenson", "summary": "Snail"}],
                "study_topic":  "Negligence",
                "rag":          NO_RAG,
            },
        })

        assert response.status_code == 200
        assert response.json() == {"reply": "A duty is owed to your neighbour."}
        assert "Current study focus: Negligence" in backend.last_prompt

    async def test_grounded_on_retrieved_context(self, client, services, backend):
        await services.ingest(OWNER, CASE, "Donoghue v Stevenson", "Negligence requires a duty of care.")

        response = await client.post("/api/v1/tutor", json={
            "message": "Explain duty in negligence",
            "context": {"rag": {"owner_id": str(OWNER)}},
        })

        assert response.status_code == 200
        assert "[Source 1: Donoghue v Stevenson]" in backend.last_prompt

    async def test_missing_api_key_is_503(self, client, backend):
        backend.fail_with = ConfigurationError("AI API key not configured. Set OPENROUTER_API_KEY.")

        response = await client.post("/api/v1/tutor", json={"message": "Hello"})

        assert response.status_code == 503
        body = response.json()
        assert body["error_code"] == "configuration"
        assert body["action"] == "settings"
        assert body["recoverable"] is False

    async def test_rate_limited_is_429(self, client, backend):
        backend.fail_with = RuntimeError("429 Too Many Requests")

        response = await client.post("/api/v1/generate/quiz", json={"content": "Torts", "rag": NO_RAG})

        assert response.status_code == 429
        assert response.json()["error_code"] == "rate_limited"

    async def test_empty_completion_is_503(self, client, backend):
        backend.reply("")

        response = await client.post("/api/v1/generate/case-summary", json={
            "case_text": "Facts.", "rag": NO_RAG,
        })

        assert response.status_code == 503
        assert response.json()["error_code"] == "service_unavailable"


# ─────────────────────────────────────────────────────────────────────────────
# Operations
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.integration
class TestOperations:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "firm-rag-api"}

    async def test_request_id_is_generated(self, client):
        response = await client.get("/health")
        assert uuid.UUID(response.headers["X-Request-ID"])

    async def test_docs_available_outside_production(self, client):
        response = await client.get("/api/openapi.json")
        assert response.status_code == 200
        assert "/api/v1/search" in response.json()["paths"]
