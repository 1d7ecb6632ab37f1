"""
Search API Router

POST /api/v1/search → ranked chunks within the caller's scope.

Scope: the caller's own cases (owner_id and/or case_ids) plus, unless
include_shared_corpus is false, the shared knowledge base.  A request
with no owner, no cases and no shared corpus returns an empty list.
"""

from __future__ import annotations

from fastapi import APIRouter

from firm_rag.api.v1.deps import Services
from firm_rag.schemas.documents import ErrorResponse
from firm_rag.schemas.retrieval import SearchRequest, SearchResponse

router = APIRouter(prefix="/search", tags=["Search"])


@router.post(
    "",
    response_model=SearchResponse,
    summary="Semantic search over case documents and the knowledge base",
    responses={
        400: {"model": ErrorResponse},
        503: {"model": ErrorResponse, "description": "Embedding service unavailable"},
    },
)
async def search(body: SearchRequest, services: Services) -> SearchResponse:
    results = await services.search(
        body.query,
        owner_id=body.owner_id,
        case_ids=body.case_ids,
        include_shared_corpus=body.include_shared_corpus,
        limit=body.limit,
        similarity_threshold=body.similarity_threshold,
    )
    return SearchResponse(query=body.query, results=results, count=len(results))
