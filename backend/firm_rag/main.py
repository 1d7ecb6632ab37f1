"""
FastAPI Application — Entry Point

Legal case study API: document ingestion, semantic search and study
material generation over a user's cases and the shared knowledge base.

Architecture:
  - All routes are versioned under /api/v1/
  - Services are built once in the lifespan (build_services) and kept on
    app.state; routes resolve them through api.v1.deps
  - Structured JSON error responses on all 4xx/5xx, built from the error
    category, never from raw provider text

Middleware stack (innermost → outermost):
  1. Request ID injection — X-Request-ID header on every response
  2. CORS — open in development, restricted otherwise
  3. Gzip — compress responses > 1 KB

Error mapping:
  validation → 400   not_found → 404   sync_conflict → 409
  rate_limited → 429   network / service_unavailable / configuration → 503
  unknown → 500
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from firm_rag.api.v1.documents import router as documents_router
from firm_rag.api.v1.generation import router as generation_router
from firm_rag.api.v1.search import router as search_router
from firm_rag.container import StudyServices, build_services
from firm_rag.core.config import Settings, get_settings
from firm_rag.core.errors import ErrorCategory, FirmRAGError, UserFacingError, to_user_error
from firm_rag.schemas.documents import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

_STATUS_BY_CATEGORY: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION:          status.HTTP_400_BAD_REQUEST,
    ErrorCategory.NOT_FOUND:           status.HTTP_404_NOT_FOUND,
    ErrorCategory.SYNC_CONFLICT:       status.HTTP_409_CONFLICT,
    ErrorCategory.RATE_LIMITED:        status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCategory.NETWORK:             status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCategory.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCategory.CONFIGURATION:       status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCategory.UNKNOWN:             status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _error_response(
    request: Request,
    status_code: int,
    category: ErrorCategory,
    user_error: UserFacingError,
    *,
    details: list[ErrorDetail] | None = None,
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    body = ErrorResponse(
        error_code=category.value,
        title=user_error.title,
        message=user_error.message,
        recoverable=user_error.recoverable,
        action=user_error.action,
        details=details or [],
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={"X-Request-ID": request_id} if request_id else None,
    )


# ---------------------------------------------------------------------------
# Application lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: build services unless the app was created with them.
    Shutdown: cancel background ingestions and release the repository.
    """
    settings: Settings = app.state.settings
    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = build_services(settings)

    logger.info(
        "Starting FIRM AI API | env=%s store=%s backend=%s",
        settings.app_env, settings.store_backend, settings.generation_backend,
    )

    yield

    logger.info("Shutting down FIRM AI API")
    if owns_services:
        await app.state.services.aclose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    services: StudyServices | None = None,
) -> FastAPI:
    settings = settings or (services.settings if services else get_settings())
    configure_logging(settings)

    app = FastAPI(
        title="FIRM AI Legal Study API",
        description=(
            "Case document ingestion, semantic search over case files and the shared "
            "knowledge base, and IRAC summaries, quizzes, mock exams, flashcards and tutoring."
        ),
        version="1.0.0",
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order: last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    allowed_origins = ["*"] if settings.app_env == "development" else [settings.site_url]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID", "X-Document-ID", "Location"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method, request.url.path, response.status_code, duration_ms, request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(FirmRAGError)
    async def firm_rag_exception_handler(request: Request, exc: FirmRAGError):
        status_code = _STATUS_BY_CATEGORY.get(exc.category, status.HTTP_500_INTERNAL_SERVER_ERROR)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "Request failed | path=%s category=%s status=%d error=%s",
            request.url.path, exc.category.value, status_code, exc.message,
        )
        return _error_response(request, status_code, exc.category, to_user_error(exc))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = [
            ErrorDetail(
                field=".".join(str(part) for part in err["loc"]),
                message=err["msg"],
                code=ErrorCategory.VALIDATION.value,
            )
            for err in exc.errors()
        ]
        return _error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            ErrorCategory.VALIDATION,
            UserFacingError("Invalid Input", "The request body or parameters are invalid.", True, "fix"),
            details=details,
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        """Last resort; the client gets the generic message, the log gets the traceback."""
        logger.exception("Unhandled exception | path=%s", request.url.path)
        return _error_response(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCategory.UNKNOWN, to_user_error(exc),
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(documents_router,  prefix="/api/v1")
    app.include_router(search_router,     prefix="/api/v1")
    app.include_router(generation_router, prefix="/api/v1")

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Liveness probe",
        description="Returns 200 if the process is alive. No external checks.",
    )
    async def health() -> dict:
        return {"status": "ok", "service": "firm-rag-api"}

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "firm_rag.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().debug,
        log_level="debug" if get_settings().debug else "info",
    )
