"""
Completion Parsing  —  tolerant JSON extraction
════════════════════════════════════════════════

Models wrap JSON in prose and code fences, truncate arrays, and get
field types wrong.  Parsing is two-stage:

  1. extract_json_payload(text)
       a) a ```json … ``` (or bare ``` … ```) fenced block
       b) the whole body
       c) the outermost balanced {…} / […] span, string-aware
     First candidate that json.loads accepts wins; none → GenerationParseError.

  2. Schema coercion with defaults
       case summary → missing / empty fields get "... pending" placeholders
       quiz item    → needs question text and ≥4 options (extra options
                      dropped); correct_answer coerced to an int in [0, 3]
                      from int, float, digit string or letter A–D; anything
                      else drops the item
       mock exam    → default title "Mock Exam: <topics>"; a question with no
                      topic gets the first requested topic ("General" when
                      none were given)

Parse failures never reach the caller: the parse_* functions log the
GenerationParseError and return the defaults.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence

from firm_rag.core.errors import GenerationParseError
from firm_rag.schemas.generation import (
    ANALYSIS_PLACEHOLDER,
    CONCLUSION_PLACEHOLDER,
    ISSUE_PLACEHOLDER,
    OPTION_LETTERS,
    OPTIONS_PER_QUESTION,
    RULE_PLACEHOLDER,
    CaseSummary,
    Flashcard,
    MockExam,
    MockExamQuestion,
    QuizQuestion,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n(.*?)```", re.DOTALL)

_CLOSERS = {"{": "}", "[": "]"}

DEFAULT_EXAM_TOPIC = "General"

# Opening brackets tried before giving up on the balanced-span strategy
_MAX_SPAN_ATTEMPTS = 20


# ---------------------------------------------------------------------------
# Stage 1: JSON extraction
# ---------------------------------------------------------------------------

def _balanced_span(text: str, start: int) -> str | None:
    """The bracketed span opening at text[start], or None if it never closes."""
    stack: list[str] = []
    in_string = False
    escaped = False

    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return text[start : i + 1]
    return None


def _try_loads(candidate: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return False, None


def extract_json_payload(text: str) -> Any:
    """Parse the JSON value embedded in a completion body."""
    if not text or not text.strip():
        raise GenerationParseError("Empty completion body.")

    for match in _FENCE_RE.finditer(text):
        ok, value = _try_loads(match.group(1).strip())
        if ok:
            return value

    ok, value = _try_loads(text.strip())
    if ok:
        return value

    attempts = 0
    for i, ch in enumerate(text):
        if ch not in _CLOSERS:
            continue
        span = _balanced_span(text, i)
        if span is not None:
            ok, value = _try_loads(span)
            if ok:
                return value
        attempts += 1
        if attempts >= _MAX_SPAN_ATTEMPTS:
            break

    raise GenerationParseError("No JSON payload found in completion.")


# ---------------------------------------------------------------------------
# Stage 2: coercion helpers
# ---------------------------------------------------------------------------

def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return " ".join(v.strip() for v in value if v.strip())
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _coerce_answer(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        answer = value
    elif isinstance(value, float) and value.is_integer():
        answer = int(value)
    elif isinstance(value, str):
        token = value.strip().rstrip(".):").upper()
        if token.isdigit():
            answer = int(token)
        elif len(token) == 1 and token in OPTION_LETTERS:
            answer = OPTION_LETTERS.index(token)
        else:
            return None
    else:
        return None
    return answer if 0 <= answer < OPTIONS_PER_QUESTION else None


def coerce_question(item: Any) -> dict | None:
    """Salvage one quiz item into QuizQuestion fields, or None to drop it."""
    if not isinstance(item, dict):
        return None

    question = _as_text(item.get("question"))
    if not question:
        return None

    raw_options = item.get("options")
    if not isinstance(raw_options, list) or len(raw_options) < OPTIONS_PER_QUESTION:
        return None
    options = [_as_text(o) for o in raw_options[:OPTIONS_PER_QUESTION]]
    if not all(options):
        return None

    answer = _coerce_answer(item.get("correct_answer"))
    if answer is None:
        return None

    return {
        "question":       question,
        "options":        options,
        "correct_answer": answer,
        "explanation":    _as_text(item.get("explanation")),
    }


def _question_items(payload: Any) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("questions"), list):
        return payload["questions"]
    return []


# ---------------------------------------------------------------------------
# Mode parsers
# ---------------------------------------------------------------------------

def parse_case_summary(text: str) -> CaseSummary:
    try:
        payload = extract_json_payload(text)
    except GenerationParseError as exc:
        logger.warning("Parse fallback | mode=case_summary reason=%s", exc.message)
        return CaseSummary()

    if not isinstance(payload, dict):
        logger.warning("Parse fallback | mode=case_summary reason=payload is %s", type(payload).__name__)
        return CaseSummary()

    lowered = {str(k).lower(): v for k, v in payload.items()}
    return CaseSummary(
        issue=_as_text(lowered.get("issue")) or ISSUE_PLACEHOLDER,
        rule=_as_text(lowered.get("rule")) or RULE_PLACEHOLDER,
        analysis=_as_text(lowered.get("analysis")) or ANALYSIS_PLACEHOLDER,
        conclusion=_as_text(lowered.get("conclusion")) or CONCLUSION_PLACEHOLDER,
    )


def parse_quiz(text: str, num_questions: int) -> list[QuizQuestion]:
    try:
        payload = extract_json_payload(text)
    except GenerationParseError as exc:
        logger.warning("Parse fallback | mode=quiz reason=%s", exc.message)
        return []

    items = _question_items(payload)
    questions = [QuizQuestion(**fields) for fields in map(coerce_question, items) if fields]

    dropped = len(items) - len(questions)
    if dropped:
        logger.info("Quiz items dropped | received=%d dropped=%d", len(items), dropped)
    return questions[: max(0, num_questions)]


def default_exam_title(topics: Sequence[str]) -> str:
    return f"Mock Exam: {', '.join(topics)}"


def parse_mock_exam(text: str, topics: Sequence[str], num_questions: int) -> MockExam:
    default_title = default_exam_title(topics)
    try:
        payload = extract_json_payload(text)
    except GenerationParseError as exc:
        logger.warning("Parse fallback | mode=mock_exam reason=%s", exc.message)
        return MockExam(title=default_title, questions=[])

    title = _as_text(payload.get("title")) if isinstance(payload, dict) else ""
    fallback_topic = topics[0] if topics else DEFAULT_EXAM_TOPIC

    questions: list[MockExamQuestion] = []
    for item in _question_items(payload):
        fields = coerce_question(item)
        if fields is None:
            continue
        topic = _as_text(item.get("topic")) or fallback_topic
        questions.append(MockExamQuestion(**fields, topic=topic))

    return MockExam(title=title or default_title, questions=questions[: max(0, num_questions)])


def quiz_to_flashcards(questions: Sequence[QuizQuestion]) -> list[Flashcard]:
    """Question and lettered options on the front, answer and explanation on the back."""
    cards: list[Flashcard] = []
    for q in questions:
        options = "\n".join(f"{OPTION_LETTERS[i]}. {opt}" for i, opt in enumerate(q.options))
        back = f"Correct Answer: {q.correct_letter}. {q.options[q.correct_answer]}"
        if q.explanation:
            back += f"\n\n{q.explanation}"
        cards.append(Flashcard(front=f"{q.question}\n\n{options}", back=back))
    return cards
