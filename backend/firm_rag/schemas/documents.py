"""
Document Ingestion — Pydantic Request/Response Schemas

Covers the document lifecycle routes:
  POST   /api/v1/documents            JSON body (text or base64 content)
  POST   /api/v1/documents/upload     multipart file upload
  GET    /api/v1/documents/{id}/status
  DELETE /api/v1/documents/{id}

plus the uniform ErrorResponse envelope used by every route.

Design decisions:
  - document_id is always server-generated (UUID4); never client-supplied.
  - Responses carry the pipeline status, not an HTTP-level status.
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from firm_rag.store.base import DocumentRecord, DocumentStatus, DocumentType

# 50 MB hard ceiling on uploaded content
MAX_FILE_SIZE_BYTES: int = 50 * 1024 * 1024


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class DocumentCreateRequest(BaseModel):
    """
    Exactly one of `text` / `content_base64` must be set.
    Base64 content goes through format detection (PDF, DOCX, plain text).
    """
    title:          str = Field(..., min_length=1, max_length=255)
    document_type:  DocumentType = DocumentType.USER_CASE
    owner_id:       UUID | None = None
    case_id:        UUID | None = None
    text:           str | None = None
    content_base64: str | None = None
    filename:       str | None = Field(None, max_length=255)

    @model_validator(mode="after")
    def _one_content_source(self) -> "DocumentCreateRequest":
        if (self.text is None) == (self.content_base64 is None):
            raise ValueError("Provide exactly one of 'text' or 'content_base64'")
        if self.document_type is DocumentType.USER_CASE and self.owner_id is None:
            raise ValueError("owner_id is required for user_case documents")
        return self

    def decoded_content(self) -> bytes | str:
        if self.text is not None:
            return self.text
        try:
            data = base64.b64decode(self.content_base64 or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("content_base64 is not valid base64") from exc
        if len(data) > MAX_FILE_SIZE_BYTES:
            raise ValueError("Decoded content exceeds the 50 MB limit")
        return data


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class DocumentAcceptedResponse(BaseModel):
    """HTTP 202 — the document exists, ingestion runs in the background."""
    document_id: UUID
    status:      DocumentStatus = DocumentStatus.PENDING
    status_url:  str


class DocumentStatusResponse(BaseModel):
    """Polled by clients to track ingestion."""
    document_id:   UUID
    title:         str
    document_type: DocumentType
    status:        DocumentStatus
    total_chunks:  int = 0
    error_message: str | None = None
    created_at:    datetime
    updated_at:    datetime

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "DocumentStatusResponse":
        return cls(
            document_id=record.id,
            title=record.title,
            document_type=record.document_type,
            status=record.status,
            total_chunks=record.total_chunks,
            error_message=record.error_message,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling and may show
    `title` / `message` to the user as-is.
    """
    error_code:  str = Field(..., description="Stable machine-readable code (the error category)")
    title:       str
    message:     str = Field(..., description="Human-readable summary")
    recoverable: bool
    action:      str | None = Field(None, description="retry | settings | fix | refresh | sync")
    details:     list[ErrorDetail] = Field(default_factory=list)
    request_id:  str | None = Field(None, description="Trace ID for log correlation")
