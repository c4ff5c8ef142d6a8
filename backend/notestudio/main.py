"""
NoteStudio Backend — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       lifespan() builds the long-lived collaborators and tears them down.
Who:   uvicorn (uvicorn notestudio.main:app) and the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware: Rate Limit → Request ID → Access Log        │
    │                                                          │
    │  Routes:                                                 │
    │   /api/projects   /api/drafts   /api/ai   /api/tasks     │
    │   /health                                                │
    │                                                          │
    │  app.state:                                              │
    │   store ─────────────── SqlProjectStore                  │
    │   generation_client ─── GeminiService                    │
    │   generation_manager ── GenerationManager(client, store) │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → config check → tables (SQLite only) → app.state
    Shutdown: cancel running generation tasks → dispose database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from notestudio import __version__
from notestudio.activity import activity_logger
from notestudio.config import settings
from notestudio.database import create_tables, dispose_engine
from notestudio.exceptions import (
    CircuitBreakerOpenError,
    DatabaseError,
    LLMServiceError,
    NotFoundError,
    NoteStudioError,
    ValidationError,
)
from notestudio.middleware.logging import RequestLoggingMiddleware
from notestudio.middleware.rate_limit import RateLimitMiddleware
from notestudio.middleware.request_id import RequestIDMiddleware, request_id_var
from notestudio.routes import ai, drafts, health, projects, tasks
from notestudio.services.gemini_service import gemini_service
from notestudio.services.generation_manager import GenerationManager
from notestudio.services.project_store import SqlProjectStore

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configures the root logger once, before anything else logs.

    Everything goes to stdout (the container runtime collects it). When
    ACTIVITY_LOG_PATH is set, the activity log is also appended to that file.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=_LOG_FORMAT,
        datefmt=_LOG_DATEFMT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    if settings.activity_log_path:
        file_handler = logging.FileHandler(settings.activity_log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT))
        activity_logger.addHandler(file_handler)
        activity_logger.setLevel(logging.INFO)

    # Chatty third-party loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sse_starlette").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("NoteStudio Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: projects, drafts and /health work without Gemini
        logger.error("Configuration error: %s", str(e))

    # PostgreSQL schemas are managed by Alembic; SQLite is for local runs
    if settings.database_url.startswith("sqlite"):
        import notestudio.models.studio  # noqa: F401  (registers tables)
        await create_tables()
        logger.info("SQLite tables ensured")

    store = SqlProjectStore()
    app.state.store = store
    app.state.generation_client = gemini_service
    app.state.generation_manager = GenerationManager(client=gemini_service, store=store)

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("NoteStudio Backend shutting down...")
    await app.state.generation_manager.shutdown()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI) -> None:
    """
    Maps the NoteStudioError hierarchy to JSON error bodies.

        ValidationError          → 400
        NotFoundError            → 404
        CircuitBreakerOpenError  → 503 (+ Retry-After)
        LLMServiceError          → 503 (+ Retry-After when known)
        DatabaseError            → 500, generic message
        NoteStudioError          → 500
        Exception                → 500, generic message

    Stack traces and SQL never reach the response body; they are logged.
    """

    def _body(error: str, message: str, details=None) -> dict:
        content = {"error": error, "message": message, "request_id": request_id_var.get("")}
        if details:
            content["details"] = details
        return content

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=_body("validation_error", exc.message, exc.context),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=_body("not_found", exc.message))

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=503,
            content=_body(
                "service_unavailable",
                exc.message,
                {"recovery_time": exc.recovery_time},
            ),
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(LLMServiceError)
    async def handle_llm_error(request: Request, exc: LLMServiceError):
        logger.error("[%s] LLM service error: %s", request_id_var.get(""), exc.message)
        headers = {}
        if exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(
            status_code=503,
            content=_body("llm_service_error", exc.message, exc.context),
            headers=headers,
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return JSONResponse(
            status_code=500,
            content=_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(NoteStudioError)
    async def handle_app_error(request: Request, exc: NoteStudioError):
        logger.error("[%s] %s: %s", request_id_var.get(""), type(exc).__name__, exc.message)
        return JSONResponse(status_code=500, content=_body("server_error", exc.message))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """
    Assembles the application. Tests call this and populate app.state with
    fakes instead of running the lifespan.
    """
    app = FastAPI(
        title="NoteStudio API",
        description=(
            "Capture notes, rewrite them in several styles with Google Gemini, "
            "and keep drafts and finished projects."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(projects.router)
    app.include_router(drafts.router)
    app.include_router(ai.router)
    app.include_router(tasks.router)
    app.include_router(health.router)

    return app


app = create_app()
