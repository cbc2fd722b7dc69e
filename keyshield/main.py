"""KeyShield FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - exception handlers — every error leaves as {"error": <message>}
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()                  → app.state.config
  2. SQLiteCredentialStore()        → app.state.store (schema + WAL + 0600)
  3. seed_admin()                   → built-in operator, only when absent
  4. KeyHasher / SessionManager     → secrets injected from config
  5. AuthenticationGate             → app.state.gate
  6. KeyMetrics + AuditSink         → app.state.metrics, app.state.audit
  7. KeyLifecycleManager            → app.state.lifecycle
  8. app.state.ready = True

Shutdown (reverse):
  app.state.ready = False → close store

Uvicorn hardened defaults (see keyshield/run.py):
  uvicorn keyshield.main:app \\
    --host 127.0.0.1 \\
    --port 3000 \\
    --limit-concurrency 100 \\
    --backlog 50 \\
    --timeout-keep-alive 5
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from keyshield import __version__
from keyshield.admin.api import router as admin_router
from keyshield.audit.sink import AuditSink
from keyshield.auth.gate import AuthenticationGate
from keyshield.auth.hashing import KeyHasher, hash_password
from keyshield.auth.router import router as auth_router
from keyshield.auth.sessions import SessionManager
from keyshield.client.api import router as client_router
from keyshield.config import Config, load_config, read_config
from keyshield.constants import API_KEY_HEADER, SERVICE_NAME
from keyshield.errors import KeyShieldError
from keyshield.health import router as health_router
from keyshield.keys.lifecycle import KeyLifecycleManager
from keyshield.metrics import KeyMetrics, router as metrics_router
from keyshield.middleware import REQUEST_ID_HEADER, RequestContextMiddleware
from keyshield.store.sqlite_store import SQLiteCredentialStore
from keyshield.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("keyshield_starting")

    # load_config() raises SystemExit on a bad file or unusable secrets,
    # before ready=True is ever set.
    config: Config = load_config()
    app.state.config = config

    store = SQLiteCredentialStore(config.db_path)
    await store.initialize()
    app.state.store = store

    admin_hash = await asyncio.to_thread(
        hash_password, config.admin.password, config.security.password_bcrypt_rounds
    )
    await store.seed_admin(config.admin.username, admin_hash)

    hasher = KeyHasher(config.security.key_pepper, rounds=config.security.key_bcrypt_rounds)
    sessions = SessionManager(
        config.security.session_secret, ttl_seconds=config.security.session_ttl_seconds
    )
    gate = AuthenticationGate(
        store, hasher, sessions, password_rounds=config.security.password_bcrypt_rounds
    )
    app.state.gate = gate

    metrics = KeyMetrics(store)
    app.state.metrics = metrics
    audit = AuditSink(store, on_failure=metrics.record_audit_failure)
    app.state.audit = audit

    app.state.lifecycle = KeyLifecycleManager(store, hasher, gate, audit)

    app.state.ready = True
    logger.info(
        "keyshield_ready",
        environment=config.environment,
        db_path=store.db_path,
        key_bcrypt_rounds=config.security.key_bcrypt_rounds,
    )

    yield

    logger.info("keyshield_shutting_down")
    app.state.ready = False
    await store.close()
    logger.info("keyshield_shutdown_complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the KeyShield FastAPI application.

    CORS origins are read from the config at construction time; the lifespan
    loads it again to build the runtime components.
    """
    # Swagger UI and ReDoc expose the full API schema; only with DEBUG=true.
    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title=SERVICE_NAME,
        description="API key issuance, rotate-on-use access and audit",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    # /health answers 503 until the lifespan flips this.
    application.state.ready = False

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", API_KEY_HEADER],
        expose_headers=[REQUEST_ID_HEADER],
    )
    # Last added runs first: every log line, including CORS rejections,
    # carries the request id.
    application.add_middleware(RequestContextMiddleware)

    application.include_router(health_router)
    application.include_router(auth_router)
    application.include_router(admin_router)
    application.include_router(client_router)
    application.include_router(metrics_router)

    @application.exception_handler(KeyShieldError)
    async def keyshield_error_handler(request: Request, exc: KeyShieldError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "request_failed",
            status_code=exc.status_code,
            code=exc.code,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @application.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        logger.info("request_validation_failed", path=str(request.url.path), errors=len(errors))
        return JSONResponse(
            status_code=400,
            content={"error": f"{location}: {message}" if location else message},
        )

    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return application


def _cors_origins() -> list[str]:
    """Origins from the config file. Secrets are validated by the lifespan."""
    return read_config().cors.allow_origins


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
