"""
Generation — Pydantic Schemas

Result models for every generation mode, plus the request bodies used by
the /generate and /tutor routes.

Placeholders: a case summary field the model left out is filled with a
fixed "... pending" string rather than failing the whole response.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from firm_rag.schemas.retrieval import DEFAULT_SIMILARITY_THRESHOLD

ISSUE_PLACEHOLDER      = "Issue analysis pending"
RULE_PLACEHOLDER       = "Rule analysis pending"
ANALYSIS_PLACEHOLDER   = "Analysis pending"
CONCLUSION_PLACEHOLDER = "Conclusion pending"

OPTION_LETTERS = "ABCD"
OPTIONS_PER_QUESTION = 4

MAX_QUESTIONS = 50


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class CaseSummary(BaseModel):
    """IRAC breakdown of a case."""
    issue:      str = ISSUE_PLACEHOLDER
    rule:       str = RULE_PLACEHOLDER
    analysis:   str = ANALYSIS_PLACEHOLDER
    conclusion: str = CONCLUSION_PLACEHOLDER


class QuizQuestion(BaseModel):
    question:       str
    options:        list[str] = Field(..., min_length=OPTIONS_PER_QUESTION, max_length=OPTIONS_PER_QUESTION)
    correct_answer: int = Field(..., ge=0, le=OPTIONS_PER_QUESTION - 1)
    explanation:    str = ""

    @property
    def correct_letter(self) -> str:
        return OPTION_LETTERS[self.correct_answer]


class MockExamQuestion(QuizQuestion):
    topic: str = ""


class MockExam(BaseModel):
    title:     str
    questions: list[MockExamQuestion] = Field(default_factory=list)


class Flashcard(BaseModel):
    front: str
    back:  str


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

class RagOptions(BaseModel):
    """How much retrieved context to add to a generation prompt."""
    enabled:               bool = True
    owner_id:              UUID | None = None
    case_ids:              list[UUID] | None = None
    include_shared_corpus: bool = True
    limit:                 int = Field(5, ge=1, le=20)
    similarity_threshold:  float = Field(DEFAULT_SIMILARITY_THRESHOLD, ge=-1.0, le=1.0)


class CaseHistoryEntry(BaseModel):
    title:   str
    summary: str = ""


class TutorContext(BaseModel):
    """What the student has been working on, handed to the tutor."""
    case_history: list[CaseHistoryEntry] = Field(default_factory=list, description="Cases studied so far")
    study_topic:  str | None = None
    rag:          RagOptions = Field(default_factory=RagOptions)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class CaseSummaryRequest(BaseModel):
    case_text: str = Field(..., min_length=1)
    rag:       RagOptions = Field(default_factory=RagOptions)


class QuizRequest(BaseModel):
    content:       str = Field(..., min_length=1)
    num_questions: int = Field(5, ge=1, le=MAX_QUESTIONS)
    rag:           RagOptions = Field(default_factory=RagOptions)


class MockExamRequest(BaseModel):
    topics:        list[str] = Field(..., min_length=1)
    num_questions: int = Field(10, ge=1, le=MAX_QUESTIONS)
    rag:           RagOptions = Field(default_factory=RagOptions)

    @field_validator("topics")
    @classmethod
    def _strip_topics(cls, topics: list[str]) -> list[str]:
        cleaned = [t.strip() for t in topics if t and t.strip()]
        if not cleaned:
            raise ValueError("At least one non-empty topic is required")
        return cleaned


class FlashcardRequest(BaseModel):
    content:   str = Field(..., min_length=1)
    num_cards: int = Field(10, ge=1, le=MAX_QUESTIONS)
    rag:       RagOptions = Field(default_factory=RagOptions)


class TutorRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)
    context: TutorContext = Field(default_factory=TutorContext)


class TutorResponse(BaseModel):
    reply: str


class QuizResponse(BaseModel):
    questions: list[QuizQuestion]


class FlashcardResponse(BaseModel):
    flashcards: list[Flashcard]
