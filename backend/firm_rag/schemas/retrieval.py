"""
Retrieval — Pydantic Schemas

SearchResult is both the RetrievalService return type and the API payload.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

DEFAULT_SEARCH_LIMIT         = 5
DEFAULT_SIMILARITY_THRESHOLD = 0.3
MAX_SEARCH_LIMIT             = 50


class SearchResult(BaseModel):
    """One retrieved chunk."""
    chunk_id:    UUID
    document_id: UUID
    chunk_index: int
    text:        str
    metadata:    dict[str, Any] = Field(default_factory=dict)
    similarity:  float = Field(..., description="1 - cosine distance; higher is closer")

    @property
    def source_title(self) -> str:
        return str(self.metadata.get("source_title") or "Untitled")

    @property
    def section(self) -> str | None:
        section = self.metadata.get("section")
        return str(section) if section else None


class SearchRequest(BaseModel):
    query:                 str = Field(..., min_length=1, max_length=4000)
    owner_id:              UUID | None = None
    case_ids:              list[UUID] | None = None
    include_shared_corpus: bool = True
    limit:                 int = Field(DEFAULT_SEARCH_LIMIT, ge=1, le=MAX_SEARCH_LIMIT)
    similarity_threshold:  float = Field(DEFAULT_SIMILARITY_THRESHOLD, ge=-1.0, le=1.0)


class SearchResponse(BaseModel):
    query:   str
    results: list[SearchResult]
    count:   int
