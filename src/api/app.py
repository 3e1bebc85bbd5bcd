"""
FastAPI application factory.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.dependencies import build_services
from src.api.middleware.timeout import TimeoutMiddleware
from src.api.routes import health, notifications, preferences, rule_assignments, webhook, ws_notifications
from src.assignments.errors import NotFoundError, ValidationError
from src.config.settings import get_settings
from src.notifications.worker import WorkerPoolClosed
from src.storage.database import PersistenceUnavailableError

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the routing services on startup and release them on shutdown."""
    logger.info("Alert router API starting up")

    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )

    services = await build_services(settings)
    app.state.services = services

    yield

    logger.info("Alert router API shutting down")
    app.state.services = None
    await services.close()


def _error(status_code: int, detail: str, error_type: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "error_type": error_type, **extra},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors to HTTP responses."""

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, str(exc), "not_found")

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc), "validation", field=exc.field,
        )

    @app.exception_handler(PersistenceUnavailableError)
    async def persistence_handler(request: Request, exc: PersistenceUnavailableError):
        # The alerting engine retries on 5xx; dedup makes the retry safe
        logger.error("Notification store unavailable", error=str(exc), path=request.url.path)
        return _error(
            status.HTTP_503_SERVICE_UNAVAILABLE, "Notification store unavailable", "unavailable",
        )

    @app.exception_handler(WorkerPoolClosed)
    async def worker_pool_handler(request: Request, exc: WorkerPoolClosed):
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc), "unavailable")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "internal")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    openapi_tags = [
        {"name": "health", "description": "Service health checks"},
        {"name": "webhooks", "description": "Inbound alert events"},
        {"name": "rule-assignments", "description": "Who handles which alert rule"},
        {"name": "notifications", "description": "Notification history and read state"},
        {"name": "preferences", "description": "Per-user delivery preferences"},
        {"name": "websocket", "description": "Live notification stream"},
    ]

    app = FastAPI(
        title="Case Alert Router API",
        description="""
Routes alert events to the users responsible for them, stores a
notification per recipient and pushes it live to connected sessions.

## Authentication

Requires `X-API-KEY` header for all requests except `/health`. The live
endpoint takes the key as the `api_key` query parameter.
        """,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=openapi_tags,
    )

    # Add CORS middleware (origins from CORS_ORIGINS env var, comma-separated)
    cors_origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # Added before the logging middleware so the timeout wraps the whole request
    if settings.request_timeout_seconds > 0:
        app.add_middleware(
            TimeoutMiddleware,
            timeout_seconds=settings.request_timeout_seconds,
            webhook_timeout_seconds=settings.webhook_timeout_seconds,
        )

    # Request logging, correlation ID, and tracing middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        from src.observability.tracing import get_tracer, is_tracing_enabled

        request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("X-Correlation-ID")
            or str(uuid.uuid4())
        )
        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()

        try:
            if is_tracing_enabled():
                tracer = get_tracer("case-alert-router.api")
                with tracer.start_as_current_span(
                    f"{request.method} {request.url.path}",
                    attributes={
                        "http.method": request.method,
                        "http.url": str(request.url),
                        "http.route": request.url.path,
                        "http.request_id": request_id,
                    },
                ) as span:
                    response = await call_next(request)
                    duration = time.perf_counter() - start_time
                    span.set_attribute("http.status_code", response.status_code)
                    span.set_attribute("http.duration_ms", round(duration * 1000, 2))
            else:
                response = await call_next(request)
                duration = time.perf_counter() - start_time

            response.headers["X-Request-ID"] = request_id

            logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(webhook.router, tags=["webhooks"])
    app.include_router(rule_assignments.router, tags=["rule-assignments"])
    app.include_router(notifications.router, tags=["notifications"])
    app.include_router(preferences.router, tags=["preferences"])
    app.include_router(ws_notifications.router, tags=["websocket"])

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": "Case Alert Router API",
            "version": "0.1.0",
            "docs": "/docs",
        }

    return app
