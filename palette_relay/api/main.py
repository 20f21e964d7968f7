"""FastAPI application configuration and setup.

Main entry point for the HTTP API with CORS, middleware,
and lifecycle management.
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from palette_relay import __version__
from palette_relay.api.routes import api_router
from palette_relay.exceptions import PaletteRelayError, SessionNotFoundError
from palette_relay.logging_config import configure_logging
from palette_relay.settings import Settings, get_settings
from palette_relay.storage import close_db, init_db

# Context variable for correlation ID (async-safe)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    - Startup: configure logging, initialize the database pool
    - Shutdown: close database connections
    """
    settings = get_settings()

    if settings.environment != "testing":
        configure_logging()
        await init_db()

    yield

    await close_db()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional settings override (uses get_settings() if not provided)

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Palette Relay",
        description="Streams color palettes from several LLMs as Server-Sent Events",
        version=__version__,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        openapi_url="/api/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID"],
    )

    # Add correlation ID middleware (must be before routes)
    app.middleware("http")(_correlation_middleware)

    app.include_router(api_router, prefix="/api/v1")

    _register_exception_handlers(app, settings)

    return app


def _get_allowed_origins(settings: Settings) -> list[str]:
    """Get allowed CORS origins.

    Priority:
    1. Explicit ALLOWED_ORIGINS env var (comma-separated)
    2. ``*`` in development and testing, none otherwise
    """
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]

    if settings.environment in ("development", "testing"):
        return ["*"]
    return []


async def _correlation_middleware(request: Request, call_next):
    """Middleware to generate and propagate correlation IDs.

    Args:
        request: FastAPI request object
        call_next: Next middleware/handler in the chain

    Returns:
        Response with X-Correlation-ID header
    """
    correlation_id = request.headers.get("X-Correlation-ID")
    if not correlation_id:
        correlation_id = str(uuid.uuid4())

    _correlation_id.set(correlation_id)

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id

    return response


def get_correlation_id() -> str | None:
    """Get the current request's correlation ID from context."""
    return _correlation_id.get()


def _error_response(
    status_code: int, message: str, error_type: str, correlation_id: str
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": status_code,
                "message": message,
                "type": error_type,
                "correlation_id": correlation_id,
            }
        },
        headers={"X-Correlation-ID": correlation_id},
    )


def _register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Register custom exception handlers.

    Args:
        app: FastAPI application
        settings: Settings deciding whether messages are sanitized
    """
    logger = structlog.get_logger()

    @app.exception_handler(PaletteRelayError)
    async def palette_relay_error_handler(
        request: Request,
        exc: PaletteRelayError,
    ) -> JSONResponse:
        """Handle application errors with correlation ID."""
        correlation_id = get_correlation_id() or exc.correlation_id
        error_type = exc.__class__.__name__.replace("Error", "_error").lower()

        if isinstance(exc, SessionNotFoundError):
            return _error_response(404, str(exc), error_type, correlation_id)

        logger.error(
            "Palette Relay error",
            error_type=error_type,
            correlation_id=correlation_id,
            exc_info=exc,
        )
        message = (
            str(exc) if settings.debug else f"An error occurred. Correlation ID: {correlation_id}"
        )
        return _error_response(500, message, error_type, correlation_id)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request,
        exc: HTTPException,
    ) -> JSONResponse:
        """Handle HTTP exceptions with consistent format."""
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        return _error_response(exc.status_code, str(exc.detail), "http_error", correlation_id)

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        correlation_id = get_correlation_id() or str(uuid.uuid4())
        logger.exception(
            "Unhandled exception",
            correlation_id=correlation_id,
            exc_info=exc,
        )
        detail = str(exc) if settings.debug else "Internal server error"
        return _error_response(500, detail, "internal_error", correlation_id)


_app: FastAPI | None = None


def get_app() -> FastAPI:
    """Get or create the singleton FastAPI application."""
    global _app
    if _app is None:
        _app = create_app()
    return _app


# For uvicorn: "palette_relay.api.main:app" lazily initializes on first access.
def __getattr__(name: str) -> Any:
    """Create the app only when `app` is accessed, not at import time."""
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
