"""FastAPI application entry point for the operations API."""
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator
import uuid

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy.exc import SQLAlchemyError

from relay import __version__
from relay.config import settings
from relay.database import Database
from relay.exceptions import (
    DeadLetterEntryNotFoundError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from relay.middleware.logging import LoggingMiddleware, setup_logging
from relay.middleware.metrics import MetricsMiddleware
from relay.queue.base import JobQueue
from relay.queue.sql import SqlJobQueue
from relay.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail
from relay.services.retry_policy import build_retry_profiles
from relay.tracing import instrument_engine, setup_tracing

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id") or structlog.contextvars.get_contextvars().get(
        "request_id", f"req_{uuid.uuid4().hex[:12]}"
    )


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: list[dict],
    remediation: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Structured error body shared by every exception handler."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details,
            "remediation": remediation,
            "request_id": _request_id(request),
            "timestamp": datetime.utcnow().isoformat() + "Z",
        },
        headers=headers,
    )


def create_app(database: Database | None = None, job_queue: JobQueue | None = None) -> FastAPI:
    """
    Build the operations API.

    Handles passed in are used as-is and left open on shutdown; otherwise
    they are created from settings at startup and closed at shutdown.

    Args:
        database: Database handle
        job_queue: Job queue sharing that database

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager for startup and shutdown events."""
        owned = not hasattr(app.state, "database")
        if owned:
            app.state.database = Database(settings.database_url, echo=settings.debug)
            app.state.job_queue = SqlJobQueue(
                app.state.database.session_factory,
                profiles=build_retry_profiles(settings),
            )
        if settings.otel_enabled:
            instrument_engine(app.state.database.engine)

        logger.info("application_starting", env=settings.app_env)
        yield
        logger.info("application_shutting_down")

        if owned:
            await app.state.job_queue.close()
            await app.state.database.dispose()

    app = FastAPI(
        title="Webhook Relay",
        description="Operations API for the webhook delivery core",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if database is not None:
        app.state.database = database
        app.state.job_queue = job_queue or SqlJobQueue(database.session_factory)

    if settings.otel_enabled:
        setup_tracing(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)

    # Mount Prometheus metrics endpoint
    app.mount("/metrics", make_asgi_app())

    _register_exception_handlers(app)

    @app.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "service": "Webhook Relay",
            "version": __version__,
            "status": "operational",
            "docs": "/docs",
        }

    from relay.api.v1 import dead_letters, health, stats, webhooks

    app.include_router(health.router, tags=["Health"])
    app.include_router(stats.router, prefix="/v1")
    app.include_router(dead_letters.router, prefix="/v1")
    app.include_router(webhooks.router, prefix="/v1")

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 422 with field-level validation errors."""
        details = []
        for error in exc.errors():
            code = {
                "uuid_parsing": ErrorCode.INVALID_UUID,
                "missing": ErrorCode.MISSING_REQUIRED_FIELD,
            }.get(error["type"], ErrorCode.VALIDATION_ERROR)
            details.append(
                ErrorDetail(
                    code=code,
                    message=error["msg"],
                    field=".".join(str(loc) for loc in error["loc"]),
                    value=error.get("input"),
                ).model_dump(mode="json")
            )

        logger.warning("validation_error", path=request.url.path, error_count=len(details))

        return _error_response(
            request,
            422,
            error="ValidationError",
            message="Request validation failed",
            details=details,
            remediation="Check the API documentation for correct request format at /docs",
        )

    @app.exception_handler(NotFoundError)
    async def not_found_exception_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Return 404 for missing webhooks and dead letter entries."""
        if isinstance(exc, DeadLetterEntryNotFoundError):
            code = ErrorCode.DEAD_LETTER_NOT_FOUND
        else:
            code = ErrorCode.WEBHOOK_NOT_FOUND

        logger.info("resource_not_found", path=request.url.path, error=str(exc))

        return _error_response(
            request,
            status.HTTP_404_NOT_FOUND,
            error="NotFound",
            message=str(exc),
            details=[{"code": code, "message": str(exc)}],
            remediation=REMEDIATION_HINTS.get(code),
        )

    @app.exception_handler(InvalidStatusTransitionError)
    async def transition_exception_handler(request: Request, exc: InvalidStatusTransitionError) -> JSONResponse:
        """Return 409 when a status change raced with another writer."""
        logger.warning("invalid_status_transition", path=request.url.path, error=str(exc))

        return _error_response(
            request,
            status.HTTP_409_CONFLICT,
            error="Conflict",
            message=str(exc),
            details=[{"code": ErrorCode.INVALID_STATE_TRANSITION, "message": str(exc)}],
            remediation=REMEDIATION_HINTS.get(ErrorCode.INVALID_STATE_TRANSITION),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        """Return 503 for database errors."""
        logger.error(
            "database_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )

        # Don't expose internal database details in production
        error_message = "Database temporarily unavailable" if settings.app_env == "production" else str(exc)

        return _error_response(
            request,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            error="DatabaseError",
            message="A database error occurred",
            details=[{"code": ErrorCode.DATABASE_ERROR, "message": error_message}],
            remediation=REMEDIATION_HINTS.get(ErrorCode.DATABASE_ERROR),
            headers={"Retry-After": "30"},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Return 500 with a safe message; the stack trace goes to the log."""
        logger.exception(
            "unhandled_exception",
            path=request.url.path,
            exception_type=type(exc).__name__,
        )

        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="InternalServerError",
            message="An unexpected error occurred",
            details=[
                {
                    "code": ErrorCode.INTERNAL_ERROR,
                    "message": str(exc) if settings.debug else "Internal server error",
                }
            ],
            remediation="Please contact support with the request ID",
        )


app = create_app()
