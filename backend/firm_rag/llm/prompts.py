"""
Prompt templates for every generation mode.

Each builder returns a [SystemMessage, HumanMessage] pair.  Retrieved
context, when there is any, is appended to the human message under a
mode-specific heading; an empty context string adds nothing.
"""

from __future__ import annotations

from typing import Final, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from firm_rag.schemas.generation import CaseHistoryEntry

# ---------------------------------------------------------------------------
# System prompts
# ---------------------------------------------------------------------------

CASE_SUMMARY_SYSTEM: Final[str] = """\
You are an expert legal AI assistant specializing in IRAC (Issue, Rule, Analysis, Conclusion) case analysis.
Your task is to analyze legal cases and produce IRAC summaries that help law students understand the key legal concepts.

Guidelines:
- Extract the central legal issue clearly and concisely
- Identify the applicable legal rule(s) or principle(s)
- Provide thorough analysis connecting the facts to the rule
- State a clear conclusion based on your analysis
- Use professional legal terminology
- If relevant legal context is provided, use it to strengthen the analysis
- Respond with JSON only, using the keys: issue, rule, analysis, conclusion"""

QUIZ_SYSTEM: Final[str] = """\
You are an expert legal AI assistant specializing in educational quiz questions for law students.
Your task is to write pedagogically sound multiple-choice questions based on legal case content.

Guidelines:
- Test understanding of the key legal concepts, not trivia
- Give exactly 4 options (A, B, C, D) with exactly one correct answer
- Explain why the correct answer is right
- Vary the difficulty
- Use clear, unambiguous language
- Draw on the related legal context when it is provided
- Respond with a JSON array only"""

MOCK_EXAM_SYSTEM: Final[str] = """\
You are an expert legal AI assistant specializing in comprehensive law school mock examinations.
Your task is to write realistic exam questions that test deep understanding of legal principles across several topics.

Guidelines:
- Pitch the questions at law school exam level
- Give exactly 4 options (A, B, C, D) with one clearly correct answer
- Include detailed explanations that aid learning
- Use realistic fact patterns
- Tag every question with the topic it tests
- Respond with a JSON object only"""

TUTOR_SYSTEM: Final[str] = """\
You are an expert legal AI tutor helping law students understand complex legal concepts.
Your role is to explain legal principles clearly, answer questions and guide the student's study.

Guidelines:
- Be conversational and supportive
- Explain legal concepts in accessible language, with examples when they help
- Encourage critical thinking and correct misconceptions gently
- When asked about specific cases, analyse them using standard legal principles
- Use the legal references from the student's library when they are relevant
- Keep answers concise but thorough, and ask a clarifying question when the request is ambiguous"""

_QUIZ_ITEM_SHAPE: Final[str] = """\
  {
    "question": "The question text",
    "options": ["Option A", "Option B", "Option C", "Option D"],
    "correct_answer": 0,
    "explanation": "Why this answer is correct\""""


def _with_context(body: str, heading: str, context: str) -> str:
    return f"{body}\n\n{heading}:\n{context}" if context else body


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def case_summary_messages(case_text: str, context: str = "") -> list[BaseMessage]:
    case_block = _with_context(case_text, "Relevant Legal Context", context)
    user = f"""\
Analyze the following legal case and provide an IRAC summary:

{case_block}

Respond with a JSON object with this structure:
{{
  "issue": "The central legal issue",
  "rule": "The applicable legal rule or principle",
  "analysis": "How the rule applies to the facts",
  "conclusion": "The conclusion that follows from the analysis"
}}"""
    return [SystemMessage(content=CASE_SUMMARY_SYSTEM), HumanMessage(content=user)]


def quiz_messages(content: str, num_questions: int, context: str = "") -> list[BaseMessage]:
    content_block = _with_context(content, "Related Legal Context", context)
    user = f"""\
Based on the following legal material, write {num_questions} multiple-choice quiz questions:

{content_block}

Respond with a JSON array with this structure:
[
{_QUIZ_ITEM_SHAPE}
  }}
]"""
    return [SystemMessage(content=QUIZ_SYSTEM), HumanMessage(content=user)]


def mock_exam_messages(
    topics: Sequence[str],
    num_questions: int,
    topic_contexts: dict[str, str] | None = None,
) -> list[BaseMessage]:
    topic_lines = "\n".join(f"{i}. {t}" for i, t in enumerate(topics, start=1))

    references = ""
    blocks = [f"{topic}:\n{ctx}" for topic, ctx in (topic_contexts or {}).items() if ctx]
    if blocks:
        references = "\n\nLegal References:\n\n" + "\n\n".join(blocks)

    user = f"""\
Create a comprehensive mock law school exam with {num_questions} questions covering these topics:
{topic_lines}{references}

Respond with a JSON object with this structure:
{{
  "title": "Descriptive exam title",
  "questions": [
{_QUIZ_ITEM_SHAPE},
    "topic": "The topic this question tests"
  }}
  ]
}}"""
    return [SystemMessage(content=MOCK_EXAM_SYSTEM), HumanMessage(content=user)]


def tutor_messages(
    message: str,
    case_history: Sequence[CaseHistoryEntry] = (),
    study_topic: str | None = None,
    context: str = "",
) -> list[BaseMessage]:
    user = message

    if case_history:
        studied = "\n".join(f"- {c.title}: {c.summary}" for c in case_history)
        user += f"\n\nContext: The student has been studying the following cases:\n{studied}"

    if study_topic:
        user += f"\n\nCurrent study focus: {study_topic}"

    user = _with_context(user, "Relevant Legal Reference", context)
    return [SystemMessage(content=TUTOR_SYSTEM), HumanMessage(content=user)]
