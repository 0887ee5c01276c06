"""
CardSync Pro Backend — FastAPI Application Factory
===================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app(services) assembles middleware, exception handlers, and
       routers around an explicitly built ServiceContainer.
Who:   uvicorn (`uvicorn cardsync.main:app`), and the tests, which pass
       their own container.

Application Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                        FastAPI App                           │
    │                                                              │
    │  Middleware: RateLimit → RequestID → Logging → GZip → CORS   │
    │                                                              │
    │  Routes: /api/auth  /api/profile  /api/extract               │
    │          /api/contacts  /api/files  /api/billing             │
    │          /api/webhooks/stripe  /health                       │
    │                                                              │
    │  app.state.services: ServiceContainer                        │
    │    Database · Storage · Gemini · Auth · Profiles             │
    │    Contacts · Billing (StripeClient) · Exports               │
    └──────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  validate configuration (log, don't exit), log storage root
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from cardsync import __version__
from cardsync.config import Settings, settings as default_settings
from cardsync.container import ServiceContainer, build_services
from cardsync.exceptions import (
    AuthenticationError,
    CardSyncError,
    CircuitBreakerOpenError,
    DatabaseError,
    ExternalServiceError,
    FileStorageError,
    NotFoundError,
    QuotaExceededError,
    RateLimitExceededError,
    ValidationError,
)
from cardsync.middleware.logging import RequestLoggingMiddleware
from cardsync.middleware.rate_limit import RateLimitMiddleware
from cardsync.middleware.request_id import RequestIDFilter, RequestIDMiddleware, request_id_var
from cardsync.routes import auth, billing, contacts, extract, health, profile

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s

    Every record passes through RequestIDFilter, so lines logged while
    serving a request carry its ID and lines logged outside one show "-".
    """
    handler = logging.StreamHandler(sys.stdout)  # Docker captures stdout
    handler.addFilter(RequestIDFilter())

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    services: ServiceContainer = app.state.services
    settings = services.settings

    logger.info("=" * 60)
    logger.info("CardSync Pro Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks and the error bodies explain the problem
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    logger.info("Storage directory: %s", services.storage.storage_root)
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("API docs: http://%s:%d/docs", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("CardSync Pro Backend shutting down...")
    await services.close()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(error: str, message: str, details: Optional[dict] = None) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Handler hierarchy:
        ValidationError         → 400 Bad Request
        AuthenticationError     → 401 Unauthorized
        QuotaExceededError      → 403 Forbidden
        NotFoundError           → 404 Not Found
        RateLimitExceededError  → 429 Too Many Requests
        ExternalServiceError    → 503 Service Unavailable (LLM, billing, open circuit)
        DatabaseError           → 500 Internal Server Error
        FileStorageError        → 500 Internal Server Error
        CardSyncError (base)    → 500 Internal Server Error
        Exception (fallback)    → 500 Internal Server Error

    Security: 5xx bodies never carry internal details; those are logged.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("Validation error: %s", exc.message)
        return JSONResponse(status_code=400, content=_error_body("validation_error", exc.message, exc.context))

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        # The reason stays in the logs
        logger.info("Authentication failed on %s: %s", request.url.path, exc.context.get("reason", "unknown"))
        return JSONResponse(
            status_code=401,
            content=_error_body("authentication_failed", exc.message),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(QuotaExceededError)
    async def handle_quota_exceeded(request: Request, exc: QuotaExceededError):
        return JSONResponse(status_code=403, content=_error_body("quota_exceeded", exc.message, exc.context))

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=_error_body("not_found", exc.message))

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return JSONResponse(
            status_code=429,
            content=_error_body("rate_limit_exceeded", exc.message, exc.context),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(ExternalServiceError)
    async def handle_external_service_error(request: Request, exc: ExternalServiceError):
        logger.error("External service error (%s): %s | Context: %s", type(exc).__name__, exc.message, exc.context)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else {}
        details = {"retry_after": exc.retry_after} if exc.retry_after else None
        if isinstance(exc, CircuitBreakerOpenError):
            code = "service_unavailable"
        else:
            code = "external_service_error"
        return JSONResponse(status_code=503, content=_error_body(code, exc.message, details), headers=headers)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("Database error: %s | Context: %s", exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error("File storage error: %s | Context: %s", exc.message, exc.context)
        return JSONResponse(status_code=500, content=_error_body("server_error", exc.message))

    @app.exception_handler(CardSyncError)
    async def handle_application_error(request: Request, exc: CardSyncError):
        logger.error("Unhandled application error (%s): %s", type(exc).__name__, exc.message)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unexpected error: %s", str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(services: Optional[ServiceContainer] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Assemble the application.

    Args:
        services: Pre-built container (tests); built from settings if omitted.
        settings: Used only when services is omitted; defaults to the
                  environment-loaded settings.
    """
    if services is None:
        settings = settings or default_settings
        setup_logging(settings.log_level)
        services = build_services(settings)
    settings = services.settings

    app = FastAPI(
        title="CardSync Pro API",
        description=(
            "Business-card contact manager: read contacts off card photos with "
            "Google Gemini, save them within your plan's limit, and export them."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services

    # Middleware executes in REVERSE order of addition:
    # RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,  # session cookie
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After", "Content-Disposition"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        requests=settings.rate_limit_requests,
        window=settings.rate_limit_window,
    )

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(profile.router)
    app.include_router(extract.router)
    app.include_router(contacts.router)
    app.include_router(billing.router)
    app.include_router(health.router)

    return app


app = create_app()
