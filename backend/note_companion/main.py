"""
Note Companion processing API.

Serve with `uvicorn note_companion.main:app`.

Callers:
  - the scheduler          GET  /api/process-pending-uploads  (CRON_SECRET)
  - web and mobile clients /api/status, /api/uploads, /api/usage, /api/trigger-processing
                           (Clerk session JWT)
  - RevenueCat             POST /api/revenuecat               (webhook secret)

The batch worker runs inside the request that triggered it. Every response
carries X-Request-ID, and every 4xx/5xx body is an ErrorResponse.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from note_companion.api.v1.billing import router as billing_router
from note_companion.api.v1.uploads import router as uploads_router
from note_companion.api.v1.worker import router as worker_router
from note_companion.core.config import settings
from note_companion.db.session import check_db_health, engine
from note_companion.schemas.uploads import ErrorDetail, ErrorResponse, UploadErrors

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

REQUEST_ID_HEADER = "X-Request-ID"
CLIENT_ORIGINS = ["https://app.notecompanion.ai", "https://notecompanion.ai"]


def _request_id(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get(REQUEST_ID_HEADER)
        or str(uuid.uuid4())
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_health = await check_db_health()
    if db_health["status"] != "ok":
        logger.critical("Startup aborted, database unavailable | detail=%s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")

    logger.info(
        "API started | env=%s issuer=%s bucket=%s",
        settings.app_env, settings.clerk_issuer, settings.r2_bucket,
    )
    yield

    await engine.dispose()
    logger.info("API stopped")


def create_app() -> FastAPI:
    docs_enabled = not settings.is_production
    app = FastAPI(
        title="Note Companion Processing API",
        description="OCR and sketch-to-diagram processing of uploaded files, with token usage metering.",
        version="0.1.0",
        docs_url="/api/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/api/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else CLIENT_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )

    @app.middleware("http")
    async def tag_request(request: Request, call_next):
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        start = time.perf_counter()

        response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        logger.info(
            "Request | method=%s path=%s status=%d ms=%.1f request_id=%s",
            request.method, request.url.path, response.status_code,
            (time.perf_counter() - start) * 1000, request.state.request_id,
        )
        return response

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError):
        # loc is ("path" | "query" | "body", name, ...); keep the name part
        details = [
            ErrorDetail(
                field=".".join(str(part) for part in err["loc"][1:]) or None,
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=details,
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body.model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def on_unhandled_error(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.exception("Unhandled error | path=%s request_id=%s", request.url.path, request_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=UploadErrors.internal_error(request_id).model_dump(mode="json"),
            headers={REQUEST_ID_HEADER: request_id},
        )

    for router in (worker_router, uploads_router, billing_router):
        app.include_router(router, prefix="/api")

    @app.get("/health", tags=["Operations"], summary="Liveness probe")
    async def health() -> dict:
        return {"status": "ok", "service": "note-companion-api"}

    @app.get("/ready", tags=["Operations"], summary="Readiness probe")
    async def readiness() -> JSONResponse:
        db_status = await check_db_health()
        ready = db_status["status"] == "ok"
        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "ready" if ready else "not_ready", "database": db_status},
        )

    return app


app = create_app()
