from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from comment_stance.api.routes import router
from comment_stance.dependencies import build_cache_janitor, get_settings, get_telemetry
from comment_stance.logging_config import configure_application_logging
from comment_stance.telemetry import TelemetryEvent

LOGGER = logging.getLogger("comment_stance.http")

ANALYSIS_FAILURE_DETAIL = "Failed to analyze video comments"


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    janitor = build_cache_janitor()
    janitor.start()

    try:
        yield
    finally:
        janitor.stop()


async def _validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    _ = request
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    missing_fields = [
        str(error.get("loc", ("",))[-1])
        for error in errors
        if error.get("type") == "missing"
    ]
    if missing_fields:
        detail = f"Missing required field(s): {', '.join(missing_fields)}"
    else:
        detail = "Invalid request body"
    return JSONResponse(status_code=400, content={"detail": detail})


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.error(
        "unhandled error method=%s path=%s error_type=%s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": ANALYSIS_FAILURE_DETAIL})


def create_app() -> FastAPI:
    app = FastAPI(title="Comment Stance API", version="0.1.0", lifespan=app_lifespan)

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        started_at = perf_counter()
        telemetry.emit(
            TelemetryEvent.HTTP_REQUEST_START,
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            telemetry.emit(
                TelemetryEvent.HTTP_REQUEST_ERROR,
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            raise
        else:
            response.headers["X-Request-ID"] = request_id
            telemetry.emit(
                TelemetryEvent.HTTP_REQUEST_FINISH,
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                duration_ms=int((perf_counter() - started_at) * 1000),
                status_code=response.status_code,
            )
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )

    return app


app = create_app()
