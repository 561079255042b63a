"""FastAPI application factory.

Learn: App factory pattern: create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (logging, database engine).
Middleware, CORS, exception handlers, and routers all registered here.

Every IdentityError a service raises becomes
{"detail": <message>, "code": <code>} with the error's status code.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from expensetracker import __version__
from expensetracker.api import api_router
from expensetracker.config import settings
from expensetracker.errors import IdentityError, InternalError

logger = structlog.get_logger()


def configure_logging() -> None:
    """structlog setup: contextvars (request_id) + timestamps, JSON outside dev."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.environment == "development"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "expensetracker.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        email_delivery="resend" if settings.resend_api_key else "logged",
    )

    yield

    logger.info("expensetracker.shutdown")

    from expensetracker.db.engine import engine
    await engine.dispose()


async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("identity.error", code=exc.code, detail=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("database.error", error=str(exc))
    err = InternalError()
    return JSONResponse(
        status_code=err.status_code,
        content={"detail": err.message, "code": err.code},
    )


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging()

    app = FastAPI(
        title="ExpenseTracker Identity",
        description="Accounts, sign-in, password reset, and team invitations",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → Security → RequestId → handler

    from expensetracker.middleware.request_id import RequestIdMiddleware
    from expensetracker.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(IdentityError, identity_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    # Mount API routes
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: expensetracker.main:app)
app = create_app()
