from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from structlog import contextvars as structlog_contextvars

from .config import Settings, settings as default_settings
from .errors import InvalidGrade, NotFound, StoreUnavailable
from .flows.practice import PracticeService
from .logging import configure_logging, logger
from .models.content import ItemType
from .routers import health, practice
from .store import InMemoryCatalog, build_catalog, create_firestore_stores


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Assign a request id and emit one structured log line per request.

    `request_id` は contextvars に束縛し、処理中の全ログへ付与する。
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:  # type: ignore[override]
        start = time.perf_counter()
        request_id = request.headers.get("x-request-id") or uuid4().hex
        request.state.request_id = request_id
        structlog_contextvars.bind_contextvars(request_id=request_id)
        status_code = 500
        is_error = False
        error_type: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as exc:
            is_error = True
            error_type = exc.__class__.__name__
            raise
        finally:
            log_method = logger.error if is_error or status_code >= 500 else logger.info
            log_method(
                "request_complete",
                path=request.url.path,
                method=request.method,
                status_code=status_code,
                latency_ms=(time.perf_counter() - start) * 1000,
                is_error=is_error,
                error_type=error_type,
            )
            structlog_contextvars.unbind_contextvars("request_id")


async def _not_found(_request: Request, exc: NotFound) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "not_found", "kind": exc.kind, "id": exc.identifier},
    )


async def _invalid_grade(_request: Request, exc: InvalidGrade) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_grade", "outcome": str(exc.outcome)},
    )


async def _store_unavailable(_request: Request, exc: Exception) -> JSONResponse:
    logger.warning(
        "store_unavailable",
        error=str(exc),
        error_class=exc.__class__.__name__,
    )
    return JSONResponse(
        status_code=503,
        content={"error": "store_unavailable", "retryable": True},
    )


def build_service(settings: Settings) -> PracticeService:
    """Wire the Firestore stores and the JSON catalog into a PracticeService.

    カタログファイルが存在しない場合は空のカタログで起動する（出題は empty_pool）。
    """

    stores = create_firestore_stores(settings)
    catalog_path = Path(settings.catalog_path)
    if catalog_path.exists():
        catalog = build_catalog([catalog_path])
    else:
        logger.warning("catalog_missing", path=str(catalog_path))
        catalog = InMemoryCatalog([])
    return PracticeService(
        records=stores.records,
        catalog=catalog,
        settings_store=stores.settings,
        indexed=stores.indexed,
        items_per_session={
            ItemType.flashcard: settings.flashcards_per_session,
            ItemType.grammar: settings.grammar_sentences_per_session,
        },
        upcoming_limit=settings.upcoming_limit,
        exclusion_size=settings.exclusion_ring_size,
        batch_window_ms=settings.batch_window_ms,
        batch_max_size=settings.batch_max_size,
    )


def create_app(service: PracticeService | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    service を渡さない場合は設定から Firestore ベースのサービスを組み立てる。
    uvicorn からは `--factory practice_engine.main:create_app` で起動する。
    """
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.practice_service.aclose()

    app = FastAPI(title="Practice Engine API", version="0.1.0", lifespan=lifespan)
    app.state.practice_service = service if service is not None else build_service(default_settings)

    app.add_middleware(AccessLogMiddleware)
    app.add_exception_handler(NotFound, _not_found)
    app.add_exception_handler(InvalidGrade, _invalid_grade)
    app.add_exception_handler(StoreUnavailable, _store_unavailable)

    app.include_router(practice.router, prefix="/api/practice")
    app.include_router(health.router)
    return app
