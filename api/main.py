"""
api/main.py -- FastAPI application entry point for the library portal auth core.

Exposes the login pipeline over HTTP. The bearer-token routes live in
api/routes/v1/auth.py; the cookie session flow in web/routes.py is mounted by
asgi.py.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the credential store, identity cache and AuthenticationService
on startup and tears them down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.policy import SessionPolicy
from auth.service import AuthenticationService
from auth.store import CredentialStore
from auth.tokens import SessionTokenIssuer
from cache.store import IdentityCache
from core.config import Settings, get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("libraryportal.api")

# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def build_auth_service(settings: Settings, store: CredentialStore) -> AuthenticationService:
    """Assemble the login pipeline from settings. One instance per process."""
    cache = IdentityCache(
        ttl=settings.identity_cache_ttl_seconds,
        max_entries=settings.identity_cache_max_entries,
    )
    issuer = SessionTokenIssuer(
        settings.secret_key,
        max_age=timedelta(seconds=settings.session_max_age_seconds),
        update_age=timedelta(seconds=settings.session_update_age_seconds),
    )
    return AuthenticationService(
        store=store,
        cache=cache,
        policy=SessionPolicy(deny_unrecognized=settings.deny_unrecognized_status),
        issuer=issuer,
        secret_key=settings.secret_key,
        password_workers=settings.password_hash_workers,
        login_timeout=settings.login_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: float) -> None:
    """Drop stale identity cache entries every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.auth_service.cache.purge_expired()
        if removed:
            logger.debug("Purged %d stale identity cache entries", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the store must exist before the service, and the
    service (which owns the cache) before the purge task references it.
    """
    settings = get_settings()
    logger.info("Library portal auth starting up")
    app.state.credential_store = CredentialStore(settings.database_url)
    app.state.auth_service = build_auth_service(settings, app.state.credential_store)
    logger.info(
        "Auth initialized (cache ttl=%ss, max_entries=%d, verify workers=%d)",
        settings.identity_cache_ttl_seconds,
        settings.identity_cache_max_entries,
        settings.password_hash_workers,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.identity_cache_purge_seconds))

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.auth_service.close()
    app.state.credential_store.close()
    logger.info("Library portal auth shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="Library Portal Auth",
    description="Credential authentication and session issuance for the library portal.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
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

app.include_router(auth_router, prefix="/api", tags=["Auth"])
# Cookie session router is mounted by asgi.py, not here.

# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is {"error": "<client-safe message>"}.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map typed auth failures to their status and public message."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    response = _error(exc.status_code, exc.public_message)
    if headers:
        response.headers.update(headers)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded; Retry-After in seconds."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies answer 400. Field-level detail stays in the server log."""
    logger.info("Rejected request body on %s %s: %s", request.method, request.url.path, exc.errors())
    return _error(400, "Invalid request body")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged only, never written to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "Something went wrong")


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit -- load balancer checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability."""
    database = "ok"
    try:
        if not request.app.state.credential_store.ping():
            database = "error"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(version=__version__, components={"app": "ok", "database": database})
