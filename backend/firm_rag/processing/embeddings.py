"""
Embedding Client  —  Batched Embeddings with Retry
══════════════════════════════════════════════════

Design goals:
  • Batch efficiency: one API call per `batch_size` texts
  • Bounded fan-out: at most `concurrency` calls in flight (semaphore)
  • Retry: RetryPolicy on transient failures only (network, 429, 5xx)
  • Order: output vectors line up 1:1 with input texts, whatever order the
    batches complete in

Endpoint: any OpenAI-compatible /embeddings API through openai.AsyncOpenAI.
The default base URL is OpenRouter, which needs the HTTP-Referer / X-Title
attribution headers on every request.

  model                              dims
  ─────────────────────────────────  ────
  openai/text-embedding-3-small      1536   (default)
  openai/text-embedding-3-large      3072

Failure policy:
  No API key            → ConfigurationError before any network call
  Auth / 400 errors     → EmbeddingServiceError, not retried
  Transient errors      → retried (3 attempts, 1 s / 2 s back-off), then
                          EmbeddingServiceError(retryable category)
  Wrong vector length   → EmbeddingServiceError, not retried
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Sequence

from firm_rag.core.config import Settings
from firm_rag.core.errors import (
    ConfigurationError,
    EmbeddingServiceError,
    ErrorCategory,
    FirmRAGError,
    ValidationError,
    classify_error,
)
from firm_rag.core.retry import DEFAULT_RETRY_POLICY, RetryPolicy

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_EMBEDDING_MODEL  = "openai/text-embedding-3-small"
DEFAULT_DIMENSIONS       = 1536
EMBEDDING_BATCH_SIZE     = 64
MAX_CONCURRENT_BATCHES   = 4
REQUEST_TIMEOUT_SECONDS  = 30.0

# Models whose native width is the default; no `dimensions` parameter is sent
_NATIVE_DIMENSIONS = {
    "openai/text-embedding-3-small": 1536,
    "text-embedding-3-small":        1536,
    "openai/text-embedding-3-large": 3072,
    "text-embedding-3-large":        3072,
}


class EmbeddingClient:
    """
    Async embedding client, safe to share across concurrent requests.

    Usage:
        client  = EmbeddingClient.from_settings(settings)
        vectors = await client.embed_batch(chunk_texts)
        query   = await client.embed("duty of care owed by occupiers")
    """

    def __init__(
        self,
        *,
        api_key:         str = "",
        model:           str = DEFAULT_EMBEDDING_MODEL,
        dimensions:      int = DEFAULT_DIMENSIONS,
        base_url:        str | None = None,
        batch_size:      int = EMBEDDING_BATCH_SIZE,
        concurrency:     int = MAX_CONCURRENT_BATCHES,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
        default_headers: dict[str, str] | None = None,
        retry_policy:    RetryPolicy = DEFAULT_RETRY_POLICY,
        client=None,     # openai.AsyncOpenAI-compatible; built lazily when None
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_key         = api_key
        self._model           = model
        self._dimensions      = dimensions
        self._base_url        = base_url
        self._batch_size      = max(1, batch_size)
        self._semaphore       = asyncio.Semaphore(max(1, concurrency))
        self._timeout         = timeout_seconds
        self._default_headers = default_headers or {}
        self._retry           = retry_policy
        self._client          = client
        self._sleep           = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> "EmbeddingClient":
        kwargs = dict(
            api_key=settings.openrouter_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            base_url=settings.llm_base_url,
            batch_size=settings.embedding_batch_size,
            concurrency=settings.embedding_concurrency,
            timeout_seconds=settings.request_timeout_seconds,
            default_headers=settings.openrouter_headers,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def model(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed one string (query-time)."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Embed many strings; result[i] is the vector for texts[i].

        Batches run concurrently up to the semaphore bound.  If any batch
        fails for good, the remaining batches are cancelled and the failure
        is raised.
        """
        if not texts:
            return []
        if any(not t or not t.strip() for t in texts):
            raise ValidationError("Cannot embed empty text.")

        client = self._get_client()

        batches = [
            list(texts[i : i + self._batch_size])
            for i in range(0, len(texts), self._batch_size)
        ]
        t0 = time.monotonic()
        logger.info(
            "EmbeddingClient | texts=%d batches=%d model=%s",
            len(texts), len(batches), self._model,
        )

        tasks = [
            asyncio.create_task(self._embed_batch_with_retry(client, batch, idx))
            for idx, batch in enumerate(batches)
        ]
        try:
            batch_results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        vectors = [vector for batch in batch_results for vector in batch]

        logger.info(
            "EmbeddingClient done | vectors=%d elapsed_ms=%.0f",
            len(vectors), (time.monotonic() - t0) * 1000,
        )
        return vectors

    # ------------------------------------------------------------------
    # Batch processing with retry
    # ------------------------------------------------------------------

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise ConfigurationError(
                "Embedding API key not configured. Set OPENROUTER_API_KEY."
            )

        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            base_url=self._base_url,
            timeout=self._timeout,
            max_retries=0,   # RetryPolicy owns retries
            default_headers=self._default_headers,
        )
        return self._client

    async def _embed_batch_with_retry(
        self,
        client,
        batch: list[str],
        batch_idx: int,
    ) -> list[list[float]]:
        try:
            return await self._retry.run(
                lambda: self._call_api(client, batch, batch_idx),
                label=f"embeddings batch={batch_idx}",
                sleep=self._sleep,
            )
        except FirmRAGError:
            raise
        except Exception as exc:
            category = classify_error(exc)
            logger.error(
                "Embedding batch failed | batch=%d category=%s error=%s",
                batch_idx, category.value, exc,
            )
            raise EmbeddingServiceError(
                f"Embedding request failed ({category.value}).", category=category,
            ) from exc

    async def _call_api(self, client, batch: list[str], batch_idx: int) -> list[list[float]]:
        kwargs: dict = {"model": self._model, "input": batch}
        if _NATIVE_DIMENSIONS.get(self._model, self._dimensions) != self._dimensions:
            kwargs["dimensions"] = self._dimensions

        async with self._semaphore:
            t_api = time.monotonic()
            response = await asyncio.wait_for(
                client.embeddings.create(**kwargs), timeout=self._timeout,
            )

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(batch):
            raise EmbeddingServiceError(
                f"Embedding response returned {len(data)} vectors for {len(batch)} inputs.",
                category=ErrorCategory.SERVICE_UNAVAILABLE,
            )

        vectors = [list(item.embedding) for item in data]
        for vector in vectors:
            if len(vector) != self._dimensions:
                raise EmbeddingServiceError(
                    f"Embedding dimension mismatch: expected {self._dimensions}, got {len(vector)}.",
                    category=ErrorCategory.CONFIGURATION,
                )

        logger.debug(
            "Embeddings API | batch=%d size=%d api_ms=%.0f",
            batch_idx, len(batch), (time.monotonic() - t_api) * 1000,
        )
        return vectors
