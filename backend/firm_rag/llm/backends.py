"""
Generation Backends

One interface, two implementations, picked once at startup from
settings.generation_backend:

  "remote"  → OpenAICompatibleBackend  (LangChain ChatOpenAI against
               OpenRouter or any OpenAI-compatible base URL)
  "local"   → OllamaBackend            (LangChain ChatOllama, offline use)

The orchestrator calls complete(messages, temperature, max_tokens) and
gets back plain text.  Each call is bounded by asyncio.wait_for; a
cancelled request cancels the underlying HTTP call.  No retries happen
here; SDK-level retries are disabled too.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage

from firm_rag.core.config import Settings
from firm_rag.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def _content_to_text(content) -> str:
    """AIMessage.content is a str, or a list of str / {"type": "text"} parts."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text", "")))
    return "".join(parts)


class GenerationBackend(ABC):
    """Chat-completion service used by GenerationOrchestrator."""

    name: str = "base"

    def __init__(self, model: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._model   = model
        self._timeout = timeout_seconds

    @property
    def model(self) -> str:
        return self._model

    @abstractmethod
    def build_llm(self, temperature: float, max_tokens: int) -> BaseChatModel:
        """Return a LangChain chat model configured for one call."""

    async def complete(
        self,
        messages: list[BaseMessage],
        *,
        temperature: float,
        max_tokens: int,
    ) -> str:
        llm = self.build_llm(temperature, max_tokens)
        t0 = time.monotonic()
        result = await asyncio.wait_for(llm.ainvoke(messages), timeout=self._timeout)
        text = _content_to_text(result.content)
        logger.debug(
            "Completion | backend=%s model=%s chars=%d latency_ms=%.0f",
            self.name, self._model, len(text), (time.monotonic() - t0) * 1000,
        )
        return text


class OpenAICompatibleBackend(GenerationBackend):

    name = "remote"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str | None = None,
        default_headers: dict[str, str] | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(model, timeout_seconds)
        self._api_key         = api_key
        self._base_url        = base_url
        self._default_headers = default_headers or {}

    def build_llm(self, temperature: float, max_tokens: int) -> BaseChatModel:
        if not self._api_key:
            raise ConfigurationError(
                "AI API key not configured. Set OPENROUTER_API_KEY."
            )

        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=self._model,
            api_key=self._api_key,
            base_url=self._base_url,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=self._timeout,
            max_retries=0,
            default_headers=self._default_headers,
        )


class OllamaBackend(GenerationBackend):

    name = "local"

    def __init__(
        self,
        *,
        model: str,
        base_url: str = "http://localhost:11434",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(model, timeout_seconds)
        self._base_url = base_url

    def build_llm(self, temperature: float, max_tokens: int) -> BaseChatModel:
        from langchain_community.chat_models import ChatOllama
        return ChatOllama(
            model=self._model,
            base_url=self._base_url,
            temperature=temperature,
            num_predict=max_tokens,
        )


def create_backend(settings: Settings) -> GenerationBackend:
    backend = settings.generation_backend.lower()

    if backend == "remote":
        return OpenAICompatibleBackend(
            api_key=settings.openrouter_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            default_headers=settings.openrouter_headers,
            timeout_seconds=settings.request_timeout_seconds,
        )

    if backend == "local":
        return OllamaBackend(
            model=settings.ollama_model,
            base_url=settings.ollama_base_url,
            timeout_seconds=settings.request_timeout_seconds,
        )

    raise ConfigurationError(
        f"Unknown generation backend: '{backend}'. Valid options: 'remote', 'local'"
    )
