"""
Document API Router

  POST   /api/v1/documents                JSON body, text or base64 content → 202
  POST   /api/v1/documents/upload         multipart file upload → 202
  GET    /api/v1/documents/{id}/status    poll ingestion status
  DELETE /api/v1/documents/{id}           remove document and its chunks → 204

Request lifecycle (both POST routes):
  ┌──────────────────────────────────────────────────────────┐
  │ 1. Body validation (exactly one content source, size cap) │
  │ 2. Document row created (status=pending)                  │
  │ 3. Pipeline scheduled on a background task                │
  │ 4. 202 + Location header pointing at the status route     │
  └──────────────────────────────────────────────────────────┘

Pipeline failures never surface here; they land on the document as
status=failed with a user-facing error_message.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, Response, UploadFile, status
from fastapi.responses import JSONResponse

from firm_rag.api.v1.deps import Services
from firm_rag.core.errors import ValidationError
from firm_rag.schemas.documents import (
    MAX_FILE_SIZE_BYTES,
    DocumentAcceptedResponse,
    DocumentCreateRequest,
    DocumentStatusResponse,
    ErrorResponse,
)
from firm_rag.store.base import DocumentRecord, DocumentType

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid content or request format"},
    409: {"model": ErrorResponse, "description": "Document is being ingested"},
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


def _accepted(document: DocumentRecord) -> JSONResponse:
    status_url = f"/api/v1/documents/{document.id}/status"
    body = DocumentAcceptedResponse(
        document_id=document.id,
        status=document.status,
        status_url=status_url,
    )
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json"),
        headers={
            "X-Document-ID": str(document.id),
            "Location":      status_url,
        },
    )


# ---------------------------------------------------------------------------
# POST /documents
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=DocumentAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Create a document and ingest it in the background",
    responses={202: {"model": DocumentAcceptedResponse}, **_ERROR_RESPONSES},
)
async def create_document(body: DocumentCreateRequest, services: Services) -> JSONResponse:
    try:
        content = body.decoded_content()
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    document = await services.submit(
        body.owner_id,
        body.case_id,
        body.title,
        content,
        document_type=body.document_type,
        filename=body.filename,
    )
    return _accepted(document)


# ---------------------------------------------------------------------------
# POST /documents/upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=DocumentAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a file for ingestion",
    description=(
        "Accepts PDF, DOCX or TXT files up to 50 MB. "
        "Returns 202 immediately; poll GET /documents/{id}/status for the outcome."
    ),
    responses={
        202: {"model": DocumentAcceptedResponse},
        413: {"model": ErrorResponse, "description": "File exceeds 50 MB limit"},
        **_ERROR_RESPONSES,
    },
)
async def upload_document(
    services:      Services,
    file:          UploadFile = File(..., description="Document file (PDF, DOCX, TXT; max 50 MB)"),
    title:         str = Form(..., min_length=1, max_length=255),
    document_type: DocumentType = Form(DocumentType.USER_CASE),
    owner_id:      Optional[UUID] = Form(None),
    case_id:       Optional[UUID] = Form(None),
) -> JSONResponse:
    data = await file.read(MAX_FILE_SIZE_BYTES + 1)
    if len(data) > MAX_FILE_SIZE_BYTES:
        logger.warning("Upload rejected | filename=%s reason=too_large", file.filename)
        return JSONResponse(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            content=ErrorResponse(
                error_code="validation",
                title="File Too Large",
                message="The uploaded file exceeds the 50 MB limit.",
                recoverable=True,
                action="fix",
            ).model_dump(mode="json"),
        )

    document = await services.submit(
        owner_id,
        case_id,
        title,
        data,
        document_type=document_type,
        filename=file.filename,
    )
    return _accepted(document)


# ---------------------------------------------------------------------------
# GET /documents/{document_id}/status
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusResponse,
    summary="Poll ingestion status",
    responses={404: {"model": ErrorResponse}},
)
async def get_document_status(document_id: UUID, services: Services) -> DocumentStatusResponse:
    record = await services.get_status(document_id)
    return DocumentStatusResponse.from_record(record)


# ---------------------------------------------------------------------------
# DELETE /documents/{document_id}
# ---------------------------------------------------------------------------

@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a document and its chunks",
    responses={
        204: {"description": "Document deleted"},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Document is being ingested"},
    },
)
async def delete_document(document_id: UUID, services: Services) -> Response:
    await services.delete_document(document_id)
    logger.info("Document deleted | doc=%s", document_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
