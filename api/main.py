"""
api/main.py -- FastAPI application entry point for TripDesk.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency per request
  2. route_guard           -- public-path allowlist; redirects page requests
                              without a valid session to /login?callbackUrl=
  3. SlowAPIMiddleware     -- per-route limits from core.limiter
  4. CORSMiddleware        -- CORS headers for allowed browser origins
  5. TrustedHostMiddleware -- rejects unexpected Host headers

Lifespan owns every process-wide resource: the UserStore (database handle),
the Mailer, the PasswordResetManager, and the periodic reset-token purge task.
They live on app.state; nothing is a module-level singleton.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from core.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.agencies import router as agencies_router
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, Forbidden, InternalError
from auth.guard import route_guard
from auth.reset import PasswordResetManager
from auth.store import UserStore
from core.config import get_settings
from core.mailer import Mailer

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tripdesk.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired password-reset tokens on a fixed interval.

    consume() already refuses expired tokens; this sweep removes the ones
    nobody ever comes back for. CancelledError from task.cancel() at shutdown
    propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.reset_manager.purge_expired)
        except Exception:
            logger.exception("Reset token purge failed; retrying next interval")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create process-wide resources on startup and release them on shutdown.

    Startup order: store first (everything else reads it), then mailer and
    reset manager, then one immediate purge, then the periodic purge task.
    """
    settings = get_settings()
    logger.info("TripDesk API starting up")
    app.state.user_store = UserStore(settings.database_url)
    app.state.mailer = Mailer(settings)
    app.state.reset_manager = PasswordResetManager(app.state.user_store, app.state.mailer, settings)
    app.state.reset_manager.purge_expired()
    logger.info("Auth initialized (smtp_enabled=%s)", app.state.mailer.enabled)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.reset_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    try:
        await app.state.purge_task
    except asyncio.CancelledError:
        pass
    app.state.user_store.close()
    logger.info("TripDesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="TripDesk API",
    description="Authentication, session, and tenant authorization for the TripDesk travel-agency platform.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware both wrap the current stack, so the
# last registration is the outermost layer.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

app.middleware("http")(route_guard)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    # Path only: query strings may carry reset tokens.
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(agencies_router, prefix="/api/v1", tags=["Agencies"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves the process as ErrorResponse {code, message}. Nothing
# below this boundary may put a stack trace or store error code in a body.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(code=code, message=message, detail=detail).model_dump(exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a domain error with its public message only."""
    if isinstance(exc, Forbidden):
        logger.info("403 on %s %s (caller role=%s)", request.method, request.url.path, exc.caller_role)
    elif isinstance(exc, InternalError):
        logger.error("InternalError on %s %s", request.method, request.url.path, exc_info=exc)
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the request body or query params fail schema validation."""
    first = exc.errors()[0] if exc.errors() else {}
    return _error(422, "validation_error", "Request validation failed.", first.get("msg"))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected failures (store unreachable, bugs).

    Full traceback to the server log; the client gets the generic
    InternalError message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    err = InternalError()
    return _error(err.status_code, err.code, err.message)


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a database round-trip check. No auth, no rate limit."""
    try:
        db_status = "ok" if request.app.state.user_store.ping() else "error"
    except Exception:
        logger.exception("Health check database ping failed")
        db_status = "error"
    return HealthResponse(version=__version__, components={"app": "ok", "database": db_status})
