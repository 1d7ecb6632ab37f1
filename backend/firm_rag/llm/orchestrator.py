"""
Generation Orchestrator
═══════════════════════

  ┌──────────────┐   context    ┌──────────┐  messages  ┌──────────────────┐
  │ RetrievalSvc │ ───────────► │ prompts  │ ─────────► │ GenerationBackend│
  └──────────────┘  (optional)  └──────────┘            └────────┬─────────┘
                                                                 │ text
                                                        ┌────────▼─────────┐
                                                        │ parsing (tolerant)│
                                                        └──────────────────┘

  mode           temperature  max_tokens  retrieval query
  ────────────   ───────────  ──────────  ──────────────────────────────
  case summary   0.3          2000        first 500 chars, limit 5
  quiz           0.5          3000        first 500 chars, limit 3
  mock exam      0.5          4000        each topic, limit 2
  tutor          0.7          1000        the message, limit 3
  flashcards     0.5          3000        as quiz, converted to cards

Failure handling:
  • Retrieval failures are logged and the prompt is built without context.
  • Backend exceptions and empty bodies → GenerationServiceError carrying
    the classified category.  No retries at this layer.
  • Unparseable bodies fall back to defaults (see llm.parsing).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Sequence

from langchain_core.messages import BaseMessage

from firm_rag.core.errors import (
    ErrorCategory,
    FirmRAGError,
    GenerationServiceError,
    ValidationError,
    classify_error,
)
from firm_rag.llm import parsing, prompts
from firm_rag.llm.backends import GenerationBackend
from firm_rag.rag.retriever import RetrievalService, build_filters
from firm_rag.schemas.generation import (
    CaseSummary,
    Flashcard,
    MockExam,
    QuizQuestion,
    RagOptions,
    TutorContext,
)

logger = logging.getLogger(__name__)

SEARCH_QUERY_CHARS = 500


@dataclass(frozen=True)
class ModeParams:
    temperature:  float
    max_tokens:   int
    search_limit: int


CASE_SUMMARY = ModeParams(temperature=0.3, max_tokens=2000, search_limit=5)
QUIZ         = ModeParams(temperature=0.5, max_tokens=3000, search_limit=3)
MOCK_EXAM    = ModeParams(temperature=0.5, max_tokens=4000, search_limit=2)
TUTOR        = ModeParams(temperature=0.7, max_tokens=1000, search_limit=3)


class GenerationOrchestrator:
    """
    Usage:
        orchestrator = GenerationOrchestrator(backend, retriever)
        summary = await orchestrator.generate_case_summary(text, RagOptions(owner_id=uid))
    """

    def __init__(
        self,
        backend: GenerationBackend,
        retriever: RetrievalService | None = None,
    ) -> None:
        self._backend   = backend
        self._retriever = retriever

    # ------------------------------------------------------------------
    # Modes
    # ------------------------------------------------------------------

    async def generate_case_summary(
        self,
        case_text: str,
        rag_options: RagOptions | None = None,
    ) -> CaseSummary:
        _require_text(case_text, "Case text")
        rag = rag_options or RagOptions()

        context = await self._context_for(case_text[:SEARCH_QUERY_CHARS], rag, CASE_SUMMARY.search_limit)
        text = await self._complete(
            "case_summary", prompts.case_summary_messages(case_text, context), CASE_SUMMARY,
        )
        return parsing.parse_case_summary(text)

    async def generate_quiz(
        self,
        content: str,
        num_questions: int = 5,
        rag_options: RagOptions | None = None,
    ) -> list[QuizQuestion]:
        _require_text(content, "Quiz content")
        _require_count(num_questions, "num_questions")
        rag = rag_options or RagOptions()

        context = await self._context_for(content[:SEARCH_QUERY_CHARS], rag, QUIZ.search_limit)
        text = await self._complete(
            "quiz", prompts.quiz_messages(content, num_questions, context), QUIZ,
        )
        return parsing.parse_quiz(text, num_questions)

    async def generate_mock_exam(
        self,
        topics: Sequence[str],
        num_questions: int = 10,
        rag_options: RagOptions | None = None,
    ) -> MockExam:
        topics = [t.strip() for t in topics if t and t.strip()]
        if not topics:
            raise ValidationError("At least one topic is required.")
        _require_count(num_questions, "num_questions")
        rag = rag_options or RagOptions()

        topic_contexts: dict[str, str] = {}
        for topic in topics:
            topic_contexts[topic] = await self._context_for(topic, rag, MOCK_EXAM.search_limit)

        text = await self._complete(
            "mock_exam", prompts.mock_exam_messages(topics, num_questions, topic_contexts), MOCK_EXAM,
        )
        return parsing.parse_mock_exam(text, topics, num_questions)

    async def tutor_respond(
        self,
        message: str,
        context: TutorContext | None = None,
    ) -> str:
        _require_text(message, "Message")
        context = context or TutorContext()

        retrieved = await self._context_for(message, context.rag, TUTOR.search_limit)
        messages = prompts.tutor_messages(
            message,
            case_history=context.case_history,
            study_topic=context.study_topic,
            context=retrieved,
        )
        text = await self._complete("tutor", messages, TUTOR)
        return text.strip()

    async def generate_flashcards(
        self,
        content: str,
        num_cards: int = 10,
        rag_options: RagOptions | None = None,
    ) -> list[Flashcard]:
        questions = await self.generate_quiz(content, num_cards, rag_options)
        return parsing.quiz_to_flashcards(questions)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _context_for(self, query: str, rag: RagOptions, mode_limit: int) -> str:
        """Formatted context for `query`, or "" when disabled, empty or failing."""
        if not rag.enabled or self._retriever is None or not query.strip():
            return ""

        filters = build_filters(rag.owner_id, rag.case_ids, rag.include_shared_corpus)
        try:
            results = await self._retriever.search(
                query,
                filters,
                limit=min(rag.limit, mode_limit),
                similarity_threshold=rag.similarity_threshold,
            )
        except FirmRAGError as exc:
            logger.warning(
                "Context retrieval skipped | category=%s error=%s", exc.category.value, exc.message,
            )
            return ""

        return self._retriever.format_context(results) if results else ""

    async def _complete(self, mode: str, messages: list[BaseMessage], params: ModeParams) -> str:
        t0 = time.monotonic()
        try:
            text = await self._backend.complete(
                messages, temperature=params.temperature, max_tokens=params.max_tokens,
            )
        except FirmRAGError:
            raise
        except Exception as exc:
            category = classify_error(exc)
            logger.error(
                "Generation failed | mode=%s backend=%s category=%s error=%s",
                mode, self._backend.name, category.value, exc,
            )
            raise GenerationServiceError(
                f"Generation request failed ({category.value}).", category=category,
            ) from exc

        if not text or not text.strip():
            logger.error("Generation returned empty body | mode=%s backend=%s", mode, self._backend.name)
            raise GenerationServiceError(
                "The AI service returned an empty response.",
                category=ErrorCategory.SERVICE_UNAVAILABLE,
            )

        logger.info(
            "Generation | mode=%s backend=%s model=%s chars=%d latency_ms=%.0f",
            mode, self._backend.name, self._backend.model, len(text),
            (time.monotonic() - t0) * 1000,
        )
        return text


def _require_text(value: str, label: str) -> None:
    if not value or not value.strip():
        raise ValidationError(f"{label} must not be empty.")


def _require_count(value: int, label: str) -> None:
    if value < 1:
        raise ValidationError(f"{label} must be at least 1.")
