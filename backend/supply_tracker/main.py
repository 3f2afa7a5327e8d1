"""
Supply Tracker Backend: FastAPI Application Factory
=====================================================

What:  Creates and configures the FastAPI application instance.
How:   Factory pattern: create_app(store=None) returns a configured FastAPI
       instance. Tests pass their own `Database`; otherwise the lifespan
       builds one from settings.database_url.
Who:   uvicorn (`uvicorn supply_tracker.main:app`) and the test suite.

Application Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                      FastAPI App                        │
    │                                                         │
    │  Middleware:  RateLimit → RequestID → Logging → CORS    │
    │                                                         │
    │  Routes (/api):                                         │
    │    auth · users · facilities · supplies · patients      │
    │    usage · reports · statistics · health                │
    │                                                         │
    │  Exception Handlers:                                    │
    │    Validation→400  Unauthenticated/InvalidCred→401      │
    │    Forbidden→403   NotFound→404   DependencyBlocked→409 │
    │    RateLimit→429   Database→500   anything else→500     │
    └─────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (production secrets, bootstrap pair)
    3. Construct the store handle unless one was supplied
    4. Create the bootstrap admin if configured

    Shutdown:
    1. Dispose the store handle's engine (close pooled connections)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from supply_tracker import __version__
from supply_tracker.config import settings
from supply_tracker.database import Database
from supply_tracker.exceptions import (
    DatabaseError,
    DependencyBlockedError,
    ForbiddenError,
    InvalidCredentialError,
    NotFoundError,
    RateLimitExceededError,
    SupplyTrackerError,
    UnauthenticatedError,
    ValidationError,
)
from supply_tracker.middleware.logging import RequestLoggingMiddleware
from supply_tracker.middleware.rate_limit import RateLimitMiddleware
from supply_tracker.middleware.request_id import RequestIDMiddleware, request_id_var
from supply_tracker.routes import (
    auth,
    facilities,
    health,
    patients,
    reports,
    statistics,
    supplies,
    usage,
    users,
)
from supply_tracker.services.auth_service import auth_service

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configures the root logger once, before anything else logs.

    Format: 2025-01-15T12:00:00 [INFO] supply_tracker.services.reporter: ...
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party chatter
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Supply Tracker Backend %s starting up (%s)...", __version__, settings.environment)

    # Fail fast: a production deploy with the dev JWT secret must not serve
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        raise

    owns_store = getattr(app.state, "store", None) is None
    if owns_store:
        app.state.store = Database()
    store: Database = app.state.store

    try:
        async with store.session_factory() as session:
            async with session.begin():
                await auth_service.ensure_bootstrap_admin(session)
    except SQLAlchemyError as e:
        # The API can still answer health checks and report the outage
        logger.error("Bootstrap admin step failed: %s", str(e))

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Supply Tracker Backend shutting down...")
    if owns_store:
        await store.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(kind: str, message: str, details: Optional[dict] = None) -> dict:
    return {
        "error": kind,
        "message": message,
        "details": details or None,
        "request_id": request_id_var.get("") or None,
    }


# Status code per error kind; handlers below are registered from this table
ERROR_STATUS = {
    ValidationError: 400,
    UnauthenticatedError: 401,
    InvalidCredentialError: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
    DependencyBlockedError: 409,
}


def register_exception_handlers(app: FastAPI) -> None:
    """
    Maps every exception to the JSON error body
    {"error", "message", "details", "request_id"}.

    Store fault detail reaches the client only outside production; stack
    traces never do.
    """

    async def handle_client_error(request: Request, exc: SupplyTrackerError):
        status = ERROR_STATUS[type(exc)]
        logger.info("[%s] %s: %s", request_id_var.get(""), exc.kind, exc.message)
        return JSONResponse(
            status_code=status,
            content=_error_body(exc.kind, exc.message, exc.context),
        )

    for exc_class in ERROR_STATUS:
        app.add_exception_handler(exc_class, handle_client_error)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        """Body/query schema failures: missing fields, out-of-range day, bad month."""
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or None
        message = first.get("msg", "Validation failed")
        if field:
            message = f"{field}: {message}"
        return JSONResponse(
            status_code=400,
            content=_error_body(
                "validation_error",
                message,
                {"field": field, "errors": [
                    {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg")}
                    for e in errors
                ]},
            ),
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return JSONResponse(
            status_code=429,
            content=_error_body(exc.kind, exc.message, exc.context),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        rid = request_id_var.get("")
        logger.error("[%s] Database error: %s | Context: %s", rid, exc.message, exc.context)
        details = None if settings.is_production else exc.context
        return JSONResponse(
            status_code=500,
            content=_error_body(exc.kind, exc.message, details),
        )

    @app.exception_handler(SQLAlchemyError)
    async def handle_store_fault(request: Request, exc: SQLAlchemyError):
        """Store faults that no service translated."""
        rid = request_id_var.get("")
        logger.error("[%s] Unhandled store fault: %s", rid, str(exc), exc_info=True)
        details = None if settings.is_production else {"detail": str(exc)}
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", DatabaseError().message, details),
        )

    @app.exception_handler(SupplyTrackerError)
    async def handle_app_error(request: Request, exc: SupplyTrackerError):
        rid = request_id_var.get("")
        logger.error("[%s] Application error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
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

def create_app(store: Optional[Database] = None) -> FastAPI:
    """
    Assemble the application.

    Args:
        store: Store handle to serve from. When None, the lifespan constructs
               one at startup and disposes it at shutdown; a supplied store
               belongs to the caller.
    """
    app = FastAPI(
        title="Wound Care Supply Tracker API",
        description=(
            "Facility-scoped tracking of daily wound-care supply usage per patient, "
            "with cost and diagnosis reporting."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.store = store

    # ── Register Middleware ───────────────────────────────────────────────
    # Executes in reverse order of addition: RateLimit → RequestID → Logging → GZip → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After", "Content-Disposition"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(facilities.router)
    app.include_router(supplies.router)
    app.include_router(patients.router)
    app.include_router(usage.router)
    app.include_router(reports.router)
    app.include_router(statistics.router)
    app.include_router(health.router)

    return app


# uvicorn entry point: `uvicorn supply_tracker.main:app`
app = create_app()
