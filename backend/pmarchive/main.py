import hmac
import json
import logging
import re
import sqlite3
import time
import traceback
import uuid
from contextlib import asynccontextmanager

import aiosqlite
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from . import config
from . import database
from .database import init_db, init_pool, close_pool
from .errors import ArchiveError
from .metrics import metrics
from .models.responses import HealthOut
from .routes import archive, messages, projects, users

logger = logging.getLogger("pmarchive")


class JsonFormatter(logging.Formatter):
    """JSON lines log formatter for structured logging."""
    def format(self, record):
        return json.dumps({
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }, default=str)


_start_time = time.time()

# Paths that skip API key authentication
_AUTH_SKIP_PATHS = {"/api/health", "/docs", "/redoc", "/openapi.json"}


class APIKeyMiddleware(BaseHTTPMiddleware):
    """Optional API key check for calls from the auth gateway. Disabled when PMA_API_KEY is empty."""

    async def dispatch(self, request: Request, call_next):
        api_key = config.API_KEY
        if not api_key:
            return await call_next(request)

        path = request.url.path
        if path in _AUTH_SKIP_PATHS or not path.startswith("/api/"):
            return await call_next(request)

        provided_key = None
        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            provided_key = auth_header[7:]
        if not provided_key:
            provided_key = request.headers.get("x-api-key")

        if not provided_key or not hmac.compare_digest(provided_key, api_key):
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid or missing API key"},
            )

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests with method, path, status code, and duration."""

    async def dispatch(self, request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)
        logger.info(
            "%s %s %d %.1fms",
            request.method, request.url.path, response.status_code, duration_ms,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus-compatible request metrics (count, duration histogram)."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith("/api/") or path == "/api/metrics":
            return await call_next(request)
        start = time.monotonic()
        response = await call_next(request)
        metrics.record_request(request.method, path, response.status_code, time.monotonic() - start)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Echo or generate X-Request-ID for log correlation across dashboard and backend."""

    _REQUEST_ID_MAX_LEN = 128
    _REQUEST_ID_RE = re.compile(r"^[a-zA-Z0-9_\-\.]+$")

    async def dispatch(self, request: Request, call_next):
        client_id = request.headers.get("x-request-id", "")
        if (
            client_id
            and len(client_id) <= self._REQUEST_ID_MAX_LEN
            and self._REQUEST_ID_RE.match(client_id)
        ):
            request_id = client_id
        else:
            request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def configure_logging():
    log_level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    if config.LOG_FORMAT == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=log_level, handlers=[handler])
    else:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_db()
    await init_pool()

    logger.info("PM Archive service started")
    if not config.API_KEY and config.HOST != "127.0.0.1":
        logger.warning(
            "SECURITY: API key is empty and HOST=%s; the service trusts the %s header from any client. "
            "Set PMA_API_KEY so only the auth gateway can call it.",
            config.HOST, config.USER_HEADER,
        )
    logger.info(
        "Security: api_key=%s, identity_header=%s, CORS=[%s]",
        "enabled" if config.API_KEY else "disabled",
        config.USER_HEADER,
        ", ".join(config.CORS_ORIGINS),
    )

    yield

    logger.info("PM Archive service shutting down...")
    await close_pool()
    logger.info("PM Archive service shutdown complete")


app = FastAPI(
    title="PM Archive",
    description="Per-user archive ledger for projects, users and messages",
    version=config.APP_VERSION,
    lifespan=lifespan,
)


# --- Global exception handlers ---

@app.exception_handler(ArchiveError)
async def archive_exception_handler(request: Request, exc: ArchiveError):
    """Business-rule rejections: 400 with message and stable error code, no state change."""
    logger.info(
        "Archive request rejected on %s %s: %s (%s)",
        request.method, request.url.path, exc.message, exc.code,
    )
    return JSONResponse(
        status_code=400,
        content={"detail": exc.message, "error": exc.code},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return structured 422 responses for Pydantic/FastAPI validation errors."""
    logger.warning(
        "Validation error on %s %s: %s",
        request.method, request.url.path, exc.errors(),
    )
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation error",
            "errors": [
                {
                    "field": ".".join(str(loc) for loc in err.get("loc", [])),
                    "message": err.get("msg", ""),
                    "type": err.get("type", ""),
                }
                for err in exc.errors()
            ],
        },
    )


@app.exception_handler(sqlite3.OperationalError)
async def db_exception_handler(request: Request, exc: sqlite3.OperationalError):
    """Storage unavailable: 503, caller must assume nothing was written."""
    logger.error(
        "Database error on %s %s: %s",
        request.method, request.url.path, str(exc),
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Database temporarily unavailable", "error": "db_error"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception on %s %s: %s\n%s",
        request.method, request.url.path, str(exc),
        traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# --- Middleware ---

app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(APIKeyMiddleware)
if config.REQUEST_LOG:
    app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(archive.router)
app.include_router(projects.router)
app.include_router(users.router)
app.include_router(messages.router)


@app.get("/api/health", tags=["system"], response_model=HealthOut, summary="Health check")
async def health():
    """Database status, uptime, and version."""
    base = {
        "app": "PM Archive",
        "version": app.version,
        "uptime_seconds": int(time.time() - _start_time),
    }
    try:
        async with aiosqlite.connect(database.DB_PATH) as db:
            await db.execute("SELECT COUNT(*) FROM archives")
        return {**base, "status": "ok", "db": "ok"}
    except (sqlite3.Error, OSError):
        logger.warning("Health check failed to reach the database", exc_info=True)
        return JSONResponse(
            status_code=503,
            content={**base, "status": "degraded", "db": "error"},
        )


@app.get("/api/metrics", tags=["system"], summary="Prometheus-compatible metrics",
         response_class=Response)
async def prometheus_metrics():
    return Response(
        content=metrics.export(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
