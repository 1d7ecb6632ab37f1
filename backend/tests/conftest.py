"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy (all function-scoped):
  settings         : Settings pinned to the in-memory store, 8-dim vectors
  repository       : InMemoryRepository
  embedder         : KeywordEmbedder (deterministic, no network)
  backend          : ScriptedBackend (canned completions, records every call)
  services         : StudyServices wired from the three fakes above

Environment strategy:
  - No PostgreSQL, no OpenRouter, no Ollama.  The real pipeline code runs
    against fakes injected through build_services().
  - KeywordEmbedder maps text onto a small legal vocabulary, so cosine
    similarity between a query and a chunk is predictable in assertions.
  - ScriptedBackend goes through GenerationBackend.complete() with
    LangChain's FakeListChatModel, so the real timeout / content handling
    is exercised.

How to run:
  pytest                                   # all tests
  pytest -m unit                           # unit tests only
  pytest -m integration                    # ASGI-level API tests
  pytest backend/tests/unit/test_chunking.py
"""

from __future__ import annotations

import uuid
from typing import Sequence

import pytest
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from firm_rag.container import StudyServices, build_services
from firm_rag.core.config import Settings
from firm_rag.core.errors import EmbeddingServiceError, ErrorCategory
from firm_rag.llm.backends import GenerationBackend
from firm_rag.store.inmemory import InMemoryRepository

# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

VOCABULARY = (
    "negligence",
    "contract",
    "duty",
    "breach",
    "damages",
    "murder",
    "property",
    "consideration",
)
TEST_DIMENSIONS = len(VOCABULARY)

OWNER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000a1")
OTHER_OWNER_ID = uuid.UUID("00000000-0000-0000-0000-0000000000b2")
CASE_ID = uuid.UUID("00000000-0000-0000-0000-0000000000c3")


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────

class KeywordEmbedder:
    """
    Stand-in for EmbeddingClient.

    Each dimension counts one vocabulary word, so texts sharing legal terms
    are close and texts sharing none are orthogonal (similarity 0).
    """

    model = "test/keyword-embedder"

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.fail_with: Exception | None = None

    @property
    def dimensions(self) -> int:
        return TEST_DIMENSIONS

    @staticmethod
    def vector_for(text: str) -> list[float]:
        words = [w.strip(".,;:()\"'").lower() for w in text.split()]
        return [float(words.count(term)) for term in VOCABULARY]

    async def embed(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_with is not None:
            raise self.fail_with
        return [self.vector_for(t) for t in texts]


class ScriptedBackend(GenerationBackend):
    """
    GenerationBackend that replies from a script.

    Queue replies with .reply("..."); when the queue is empty the default
    reply is used.  Every call's messages, temperature and max_tokens are
    kept in .calls.
    """

    name = "scripted"

    def __init__(self, default_reply: str = "OK") -> None:
        super().__init__("test/scripted", timeout_seconds=5.0)
        self.default_reply = default_reply
        self.replies: list[str] = []
        self.calls: list[dict] = []
        self.fail_with: Exception | None = None

    def reply(self, *texts: str) -> "ScriptedBackend":
        self.replies.extend(texts)
        return self

    def build_llm(self, temperature: float, max_tokens: int) -> BaseChatModel:
        if self.fail_with is not None:
            raise self.fail_with
        text = self.replies.pop(0) if self.replies else self.default_reply
        return FakeListChatModel(responses=[text])

    async def complete(self, messages, *, temperature: float, max_tokens: int) -> str:
        self.calls.append({
            "messages":    messages,
            "temperature": temperature,
            "max_tokens":  max_tokens,
        })
        return await super().complete(messages, temperature=temperature, max_tokens=max_tokens)

    @property
    def last_prompt(self) -> str:
        """Human message text of the most recent call."""
        return self.calls[-1]["messages"][-1].content


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        store_backend="memory",
        openrouter_api_key="",
        embedding_dimensions=TEST_DIMENSIONS,
        chunk_target_words=500,
        chunk_overlap_words=200,
        app_env="development",
        debug=False,
    )


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
async def services(settings, repository, embedder, backend) -> StudyServices:
    svc = build_services(settings, repository=repository, embedder=embedder, backend=backend)
    yield svc
    await svc.aclose()


@pytest.fixture
def embedding_outage() -> EmbeddingServiceError:
    return EmbeddingServiceError(
        "Embedding request failed (service_unavailable).",
        category=ErrorCategory.SERVICE_UNAVAILABLE,
    )


@pytest.fixture
def paragraphs():
    """Factory: n paragraphs of exactly `words` words, each tagged with its index."""
    def _build(n: int, words: int = 100) -> list[str]:
        return [" ".join([f"p{i}"] + ["word"] * (words - 1)) for i in range(n)]
    return _build
