"""
Generation API Router

  POST /api/v1/generate/case-summary  → IRAC summary
  POST /api/v1/generate/quiz          → multiple-choice questions
  POST /api/v1/generate/mock-exam     → titled multi-topic exam
  POST /api/v1/generate/flashcards    → front/back study cards
  POST /api/v1/tutor                  → one tutor reply

Every body carries optional `rag` options; with rag.enabled the prompt is
grounded on retrieved chunks, otherwise it is built from the request alone.
Backend failures come back as ErrorResponse with the classified category.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter

from firm_rag.api.v1.deps import Services
from firm_rag.schemas.documents import ErrorResponse
from firm_rag.schemas.generation import (
    CaseSummary,
    CaseSummaryRequest,
    FlashcardRequest,
    FlashcardResponse,
    MockExam,
    MockExamRequest,
    QuizRequest,
    QuizResponse,
    TutorRequest,
    TutorResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Generation"])

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    429: {"model": ErrorResponse, "description": "AI service rate limited"},
    503: {"model": ErrorResponse, "description": "AI service unavailable or not configured"},
}


@router.post(
    "/generate/case-summary",
    response_model=CaseSummary,
    summary="IRAC summary of a case",
    responses=_ERROR_RESPONSES,
)
async def generate_case_summary(body: CaseSummaryRequest, services: Services) -> CaseSummary:
    return await services.generate_case_summary(body.case_text, body.rag)


@router.post(
    "/generate/quiz",
    response_model=QuizResponse,
    summary="Multiple-choice quiz from legal material",
    responses=_ERROR_RESPONSES,
)
async def generate_quiz(body: QuizRequest, services: Services) -> QuizResponse:
    questions = await services.generate_quiz(body.content, body.num_questions, body.rag)
    if len(questions) < body.num_questions:
        logger.info("Quiz short | requested=%d returned=%d", body.num_questions, len(questions))
    return QuizResponse(questions=questions)


@router.post(
    "/generate/mock-exam",
    response_model=MockExam,
    summary="Mock exam across several topics",
    responses=_ERROR_RESPONSES,
)
async def generate_mock_exam(body: MockExamRequest, services: Services) -> MockExam:
    return await services.generate_mock_exam(body.topics, body.num_questions, body.rag)


@router.post(
    "/generate/flashcards",
    response_model=FlashcardResponse,
    summary="Flashcards from legal material",
    responses=_ERROR_RESPONSES,
)
async def generate_flashcards(body: FlashcardRequest, services: Services) -> FlashcardResponse:
    cards = await services.generate_flashcards(body.content, body.num_cards, body.rag)
    return FlashcardResponse(flashcards=cards)


@router.post(
    "/tutor",
    response_model=TutorResponse,
    summary="Ask the study tutor",
    responses=_ERROR_RESPONSES,
)
async def tutor(body: TutorRequest, services: Services) -> TutorResponse:
    reply = await services.tutor_respond(body.message, body.context)
    return TutorResponse(reply=reply)
