"""
Document Repository — Abstract Base

Every persistence backend (PostgreSQL + pgvector, in-memory) implements
this interface.  DocumentStore and RetrievalService only speak this
protocol, so backends are swappable without changing service code.

Scope contract (enforced by ALL implementations of similarity_search):
  - user_case chunks are returned only when the caller names an owner_id
    and/or case_ids, and they match every name given.
  - knowledge_base chunks are returned only when include_shared_corpus.
  - No scope at all → no rows.  There is no "search everything" call.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Collection, Optional


class DocumentStatus(str, Enum):
    PENDING    = "pending"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    FAILED     = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


class DocumentType(str, Enum):
    USER_CASE      = "user_case"
    KNOWLEDGE_BASE = "knowledge_base"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class DocumentRecord:
    """Backend-neutral view of one row in `documents`."""
    title:         str
    document_type: DocumentType          = DocumentType.USER_CASE
    owner_id:      Optional[uuid.UUID]   = None
    case_id:       Optional[uuid.UUID]   = None
    status:        DocumentStatus        = DocumentStatus.PENDING
    total_chunks:  int                   = 0
    error_message: Optional[str]         = None
    id:            uuid.UUID             = field(default_factory=uuid.uuid4)
    created_at:    datetime              = field(default_factory=utcnow)
    updated_at:    datetime              = field(default_factory=utcnow)


@dataclass
class ChunkRecord:
    """A single chunk ready to be written."""
    document_id: uuid.UUID
    chunk_index: int              # position in the chunker output (0-based)
    text:        str
    embedding:   list[float]
    metadata:    dict[str, Any]   # owner_id, case_id, document_type, source_title, section?
    id:          uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass(frozen=True)
class SearchFilters:
    owner_id:              Optional[uuid.UUID]             = None
    case_ids:              Optional[tuple[uuid.UUID, ...]] = None
    include_shared_corpus: bool                            = True

    @property
    def includes_user_cases(self) -> bool:
        return self.owner_id is not None or bool(self.case_ids)

    @property
    def is_empty(self) -> bool:
        return not (self.includes_user_cases or self.include_shared_corpus)


@dataclass
class ChunkMatch:
    """One row returned by similarity_search; distance is cosine distance in [0, 2]."""
    chunk_id:    uuid.UUID
    document_id: uuid.UUID
    chunk_index: int
    text:        str
    metadata:    dict[str, Any]
    distance:    float


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class DocumentRepository(ABC):

    @abstractmethod
    async def add_document(self, record: DocumentRecord) -> DocumentRecord:
        """Insert a new document row and return it."""

    @abstractmethod
    async def get_document(self, document_id: uuid.UUID) -> DocumentRecord | None:
        ...

    @abstractmethod
    async def update_document(
        self,
        document_id: uuid.UUID,
        changes: dict[str, Any],
        *,
        expected_status: Collection[DocumentStatus] | None = None,
    ) -> DocumentRecord | None:
        """
        Apply `changes` to a document.

        When `expected_status` is given the update is a compare-and-set: it
        only applies while the stored status is one of those values.
        Returns the updated record, or None when the document is missing or
        the compare-and-set did not match.
        """

    @abstractmethod
    async def add_chunks(self, chunks: list[ChunkRecord]) -> int:
        """
        Write a batch of chunks atomically.  Returns the number written.
        Raises on failure; nothing from the batch is kept in that case.
        """

    @abstractmethod
    async def delete_document(self, document_id: uuid.UUID) -> bool:
        """Delete a document and all its chunks.  False when it did not exist."""

    @abstractmethod
    async def delete_chunks(self, document_id: uuid.UUID) -> int:
        """Delete every chunk of a document, keeping the document row.  Returns the count removed."""

    @abstractmethod
    async def count_chunks(self, document_id: uuid.UUID) -> int:
        ...

    @abstractmethod
    async def similarity_search(
        self,
        vector: list[float],
        filters: SearchFilters,
        limit: int,
        threshold: float,
    ) -> list[ChunkMatch]:
        """
        Nearest chunks within the filter scope whose similarity
        (1 - cosine distance) is at least `threshold`, ordered by
        distance ascending then chunk_index ascending.
        """

    async def close(self) -> None:
        """Release backend resources.  No-op by default."""
