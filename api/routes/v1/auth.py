"""
api/routes/v1/auth.py -- Bearer-token authentication endpoints.

Routes (mounted under /api):
  POST /api/auth/login   -- email/password login; returns a 7-day session token
  GET  /api/auth/me      -- identity behind a Bearer token (requires auth)

The login path keeps the /api prefix the portal front end already posts to,
so the bearer login is /api/auth/login rather than a bare /auth/login. The
bare /auth/ paths belong to the cookie session flow in web/routes.py.

Security:
  [H2] POST /login is rate-limited (LOGIN_RATE_LIMIT, default 10/minute per IP).
  [C1] All verification goes through AuthenticationService -- never inline
       store lookups and password checks in a route.
  [M5] Cache-Control: no-store on login responses.

Error mapping is done by the AuthError handler in api/main.py, except the
403 body: this surface reports every denied status as "This user is
suspended." while the cookie flow shows the per-status policy message.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import ErrorResponse, LoginRequest, LoginResponse, LoginUser, SessionUser
from auth.dependencies import get_auth_service, get_current_session
from auth.errors import AccountDeniedError, AuthError
from auth.models import Session
from auth.service import AuthenticationService
from core.config import get_settings

logger = logging.getLogger("libraryportal.api")

ACCOUNT_DENIED_MESSAGE = "This user is suspended."

# Auth policy:
# - POST /api/auth/login: public -- login endpoint must be unauthenticated
# - GET  /api/auth/me:    requires a valid Bearer token (get_current_session)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@limiter.limit(_login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post(
    "/auth/login",
    response_model=LoginResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def login(
    request: Request,
    body: LoginRequest,
    service: AuthenticationService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password; return a signed session token.

    Unknown email and wrong password produce the same 401 body.
    """
    try:
        result = await service.login(body.email, body.password)
    except AccountDeniedError as exc:
        return _no_store(JSONResponse(status_code=exc.status_code, content={"error": ACCOUNT_DENIED_MESSAGE}))
    except AuthError as exc:
        return _no_store(JSONResponse(status_code=exc.status_code, content={"error": exc.public_message}))

    session = result.session
    return _no_store(
        JSONResponse(
            status_code=200,
            content=LoginResponse(
                token=result.token,
                user=LoginUser(id=session.id, email=session.email, name=session.name, role=session.role),
            ).model_dump(),
        )
    )


@router.get("/auth/me", response_model=SessionUser)
async def me(session: Session = Depends(get_current_session)) -> SessionUser:
    """Return identity information for the Bearer token's owner."""
    return SessionUser(**session.to_dict())
