# ruff: noqa: I001

import logging
import os
from pathlib import Path

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from tradeflow.api.router import api_router
from tradeflow.config import settings
from tradeflow.core.errors import TradeflowError
from tradeflow.core.observability import (
    global_exception_handler,
    request_logging_middleware,
    request_validation_error_handler,
    workflow_error_handler,
)
from tradeflow.database import POOL_CONFIG, engine
from tradeflow.services.verification_worker import VerificationJobRunner

api_prefix = (
    settings.api_prefix
    if settings.api_prefix.startswith("/")
    else f"/{settings.api_prefix}"
    if settings.api_prefix
    else ""
)

logger = logging.getLogger("tradeflow")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = FastAPI(
    title=settings.app_name,
    docs_url="/docs" if settings.enable_docs else None,
    redoc_url="/redoc" if settings.enable_docs else None,
    openapi_url=(f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
    if settings.enable_docs
    else None,
)

# Expose logger for middleware without creating circular imports.
app.state.logger = logger

# Domain errors raised by services -> {"detail", "code", ...}.
app.add_exception_handler(TradeflowError, workflow_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
# Global exception handler - catches all unhandled exceptions and returns structured error
app.add_exception_handler(Exception, global_exception_handler)

# Request-level logging + request correlation id.
app.middleware("http")(request_logging_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=api_prefix)

verification_runner = VerificationJobRunner(poll_seconds=settings.verification_poll_seconds)


def _run_migrations_if_configured() -> None:
    if not settings.run_migrations_on_start:
        return

    # Avoid running migrations during tests.
    if (settings.environment or "").lower() == "test":
        return

    # Import lazily to keep import graph light for non-migration startups.
    from alembic import command
    from alembic.config import Config
    from sqlalchemy import text

    backend_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(backend_root / "alembic.ini"))

    try:
        with engine.connect() as connection:
            dialect = str(connection.dialect.name or "").lower()

            # Best-effort: avoid concurrent migrations across multiple instances.
            lock_acquired = True
            if dialect == "postgresql":
                lock_acquired = bool(
                    connection.execute(
                        text("select pg_try_advisory_lock(:k)"), {"k": 73310021}
                    ).scalar()
                )
            if not lock_acquired:
                logger.info("migrations_skipped_lock_not_acquired")
                return

            try:
                # Reuse this connection inside Alembic env.py (config.attributes['connection']).
                alembic_cfg.attributes["connection"] = connection
                command.upgrade(alembic_cfg, "head")
                logger.info("migrations_applied")
            finally:
                if dialect == "postgresql":
                    connection.execute(text("select pg_advisory_unlock(:k)"), {"k": 73310021})
                    connection.commit()
    except Exception as e:
        # Don't crash the API if migrations fail; surface the issue via logs.
        logger.error("migrations_failed", extra={"error": str(e)})


@app.on_event("startup")
def _startup():
    logger.info(
        "runtime_config",
        extra={
            "pid": os.getpid(),
            "environment": settings.environment,
            "db_pool": POOL_CONFIG,
            "verification_worker_enabled": settings.verification_worker_enabled,
        },
    )
    _run_migrations_if_configured()
    # Avoid running background threads in test context.
    if (settings.environment or "").lower() == "test":
        return
    if not settings.verification_worker_enabled:
        return
    verification_runner.start()


@app.on_event("shutdown")
def _shutdown():
    verification_runner.stop()


@app.get("/", tags=["meta"])
def root():
    docs_path = (
        (f"{api_prefix}/openapi.json" if api_prefix else "/openapi.json")
        if settings.enable_docs
        else None
    )
    return {"message": settings.app_name, "docs": docs_path}
