"""
Error Taxonomy & Classification
════════════════════════════════

Every failure inside the pipeline is mapped onto one ErrorCategory.  The
category, not the raw exception text, drives two decisions:

  1. Retry  — RetryPolicy only retries categories flagged `retryable`
  2. Display — to_user_error() turns the failure into a short title/message
     pair with a recoverable flag and a suggested action

  Category              Retryable   Typical source
  ───────────────────   ─────────   ─────────────────────────────────────
  network               yes         timeouts, connection resets
  rate_limited          yes         HTTP 429 from OpenRouter / OpenAI
  service_unavailable   yes         HTTP 5xx, provider outage
  configuration         no          missing API key, bad credentials
  validation            no          malformed input, HTTP 400/422
  not_found             no          unknown document / model
  sync_conflict         no          illegal status transition, duplicate run
  unknown               no          anything else

Classification order:
  a) our own FirmRAGError subclasses carry their category explicitly
  b) exception class names anywhere in the MRO (openai, httpx, asyncio)
  c) an HTTP status code found on the exception or its response
  d) substrings of the exception message (last resort)

Raw exception text is used for classification and logs only.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    NETWORK             = "network"
    RATE_LIMITED        = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    CONFIGURATION       = "configuration"
    VALIDATION          = "validation"
    NOT_FOUND           = "not_found"
    SYNC_CONFLICT       = "sync_conflict"
    UNKNOWN             = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_CATEGORIES


_RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.RATE_LIMITED,
    ErrorCategory.SERVICE_UNAVAILABLE,
})


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------

class FirmRAGError(Exception):
    """Base class for every error raised by the pipeline."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, *, category: ErrorCategory | None = None) -> None:
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category

    @property
    def retryable(self) -> bool:
        return self.category.retryable


class ExtractionError(FirmRAGError):
    """Content is not a supported format or yields no text. Never retried."""
    category = ErrorCategory.VALIDATION


class ChunkingError(FirmRAGError):
    """Degenerate chunker input (nothing left after cleaning)."""
    category = ErrorCategory.VALIDATION


class EmbeddingServiceError(FirmRAGError):
    """Embedding endpoint failure; transient or permanent depending on category."""


class RetrievalError(FirmRAGError):
    """Similarity search could not be executed."""


class GenerationParseError(FirmRAGError):
    """Completion text held no usable JSON. Recovered locally with defaults."""
    category = ErrorCategory.VALIDATION


class GenerationServiceError(FirmRAGError):
    """The completion call failed or returned an empty body."""


class ConfigurationError(FirmRAGError):
    category = ErrorCategory.CONFIGURATION


class ValidationError(FirmRAGError):
    category = ErrorCategory.VALIDATION


class NotFoundError(FirmRAGError):
    category = ErrorCategory.NOT_FOUND


class SyncConflictError(FirmRAGError):
    category = ErrorCategory.SYNC_CONFLICT


class StatusTransitionError(SyncConflictError):
    """A document status change that would move backwards or leave a terminal state."""


class IngestionInProgressError(SyncConflictError):
    """A second ingestion was requested while one is running for the same document."""


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

# Class names from openai, httpx, asyncio and builtins.  Matched against the
# full MRO so SDK subclasses resolve to their parent's category.
_EXCEPTION_NAME_CATEGORIES: dict[str, ErrorCategory] = {
    # openai
    "RateLimitError":           ErrorCategory.RATE_LIMITED,
    "APITimeoutError":          ErrorCategory.NETWORK,
    "APIConnectionError":       ErrorCategory.NETWORK,
    "InternalServerError":      ErrorCategory.SERVICE_UNAVAILABLE,
    "ServiceUnavailableError":  ErrorCategory.SERVICE_UNAVAILABLE,
    "AuthenticationError":      ErrorCategory.CONFIGURATION,
    "PermissionDeniedError":    ErrorCategory.CONFIGURATION,
    "BadRequestError":          ErrorCategory.VALIDATION,
    "UnprocessableEntityError": ErrorCategory.VALIDATION,
    "NotFoundError":            ErrorCategory.NOT_FOUND,
    "ConflictError":            ErrorCategory.SYNC_CONFLICT,
    # httpx
    "TimeoutException":         ErrorCategory.NETWORK,
    "NetworkError":             ErrorCategory.NETWORK,
    "RemoteProtocolError":      ErrorCategory.NETWORK,
    # builtins / asyncio
    "TimeoutError":             ErrorCategory.NETWORK,
    "ConnectionError":          ErrorCategory.NETWORK,
}

_MESSAGE_PATTERNS: list[tuple[re.Pattern[str], ErrorCategory]] = [
    (re.compile(r"api key|not configured|missing environment|unauthori[sz]ed", re.I),
     ErrorCategory.CONFIGURATION),
    (re.compile(r"rate.?limit|too many requests|\b429\b", re.I),
     ErrorCategory.RATE_LIMITED),
    (re.compile(r"temporarily unavailable|overloaded|\b50[234]\b", re.I),
     ErrorCategory.SERVICE_UNAVAILABLE),
    (re.compile(r"timed? ?out|timeout|network|connection (reset|refused|error)", re.I),
     ErrorCategory.NETWORK),
    (re.compile(r"sync (error|conflict)", re.I),
     ErrorCategory.SYNC_CONFLICT),
    (re.compile(r"validation error|invalid input", re.I),
     ErrorCategory.VALIDATION),
    (re.compile(r"not found", re.I),
     ErrorCategory.NOT_FOUND),
]


def _status_code(exc: BaseException) -> int | None:
    code = getattr(exc, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def _category_for_status(code: int) -> ErrorCategory | None:
    if code == 429:
        return ErrorCategory.RATE_LIMITED
    if code == 408:
        return ErrorCategory.NETWORK
    if code >= 500:
        return ErrorCategory.SERVICE_UNAVAILABLE
    if code in (401, 403):
        return ErrorCategory.CONFIGURATION
    if code == 404:
        return ErrorCategory.NOT_FOUND
    if code == 409:
        return ErrorCategory.SYNC_CONFLICT
    if 400 <= code < 500:
        return ErrorCategory.VALIDATION
    return None


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map any exception onto the error taxonomy."""
    if isinstance(exc, FirmRAGError):
        return exc.category

    for klass in type(exc).__mro__:
        category = _EXCEPTION_NAME_CATEGORIES.get(klass.__name__)
        if category is not None:
            return category

    code = _status_code(exc)
    if code is not None:
        category = _category_for_status(code)
        if category is not None:
            return category

    text = str(exc)
    for pattern, category in _MESSAGE_PATTERNS:
        if pattern.search(text):
            return category

    return ErrorCategory.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    return classify_error(exc).retryable


# ---------------------------------------------------------------------------
# User-facing mapping
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UserFacingError:
    """Short, displayable description of a failure."""
    title:       str
    message:     str
    recoverable: bool
    action:      str


_CATEGORY_MESSAGES: dict[ErrorCategory, UserFacingError] = {
    ErrorCategory.NETWORK: UserFacingError(
        "Connection Error",
        "Unable to reach the AI service. Please check your connection and try again.",
        True, "retry",
    ),
    ErrorCategory.RATE_LIMITED: UserFacingError(
        "Too Many Requests",
        "The AI service is busy right now. Please wait a moment and try again.",
        True, "retry",
    ),
    ErrorCategory.SERVICE_UNAVAILABLE: UserFacingError(
        "AI Service Error",
        "The AI service is temporarily unavailable. Please try again in a moment.",
        True, "retry",
    ),
    ErrorCategory.CONFIGURATION: UserFacingError(
        "Configuration Error",
        "AI features require an API key to be configured. Please check your settings.",
        False, "settings",
    ),
    ErrorCategory.VALIDATION: UserFacingError(
        "Invalid Input",
        "Please check your input and try again.",
        True, "fix",
    ),
    ErrorCategory.NOT_FOUND: UserFacingError(
        "Not Found",
        "The requested item could not be found.",
        False, "refresh",
    ),
    ErrorCategory.SYNC_CONFLICT: UserFacingError(
        "Sync Issue",
        "This document is already being processed or has finished. Start a new ingestion to rebuild it.",
        False, "sync",
    ),
    ErrorCategory.UNKNOWN: UserFacingError(
        "Unexpected Error",
        "An unexpected error occurred. Please try again.",
        True, "retry",
    ),
}

_ACTION_LABELS: dict[str, str] = {
    "retry":    "Try Again",
    "settings": "Open Settings",
    "fix":      "OK",
    "refresh":  "Refresh",
    "sync":     "Sync Now",
}


def to_user_error(exc: BaseException) -> UserFacingError:
    """
    Convert a failure into a short title/message for end users.

    Only ValidationError / ChunkingError messages are surfaced verbatim,
    since those are written by this package for the caller.
    """
    category = classify_error(exc)

    if isinstance(exc, ExtractionError):
        return UserFacingError(
            "Document Error",
            "Unable to read text from this document. Please upload a text-based PDF, DOCX or TXT file.",
            True, "retry",
        )
    if isinstance(exc, (ValidationError, ChunkingError)):
        return UserFacingError("Invalid Input", exc.message, True, "fix")
    if isinstance(exc, RetrievalError) and not category.retryable:
        return UserFacingError(
            "Search Error", "Unable to search at this time. Please try again.", True, "retry",
        )

    return _CATEGORY_MESSAGES[category]


def action_label(action: str | None) -> str:
    """Button text for a suggested action."""
    return _ACTION_LABELS.get(action or "", "OK")
