"""
auth/dependencies.py -- FastAPI Depends() helpers for request identity.

Two presentation methods, checked in priority order:
  1. Authorization: Bearer <token> header -- API clients using the token
     returned by POST /api/auth/login.
  2. session_token cookie -- set by the cookie session flow.

Both converge on a Session after AuthenticationService validates the token.
Collaborating features (likes, comments, media) depend on get_current_session
for identity and nothing else.

try_get_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises the typed token error so the
exception handlers in api/main.py can answer 401 with the right message.

Layer rule: no imports from web/ or cache/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthError, TokenInvalidError
from auth.models import Session
from auth.service import AuthenticationService
from auth.tokens import SESSION_COOKIE


class AuthenticationRequiredError(TokenInvalidError):
    public_message = "Authentication required"


def get_auth_service(request: Request) -> AuthenticationService:
    return request.app.state.auth_service


def _presented_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.cookies.get(SESSION_COOKIE)


def try_get_session(request: Request) -> Session | None:
    """Return the Session for the presented token, or None. Never raises."""
    token = _presented_token(request)
    if not token:
        return None
    try:
        return get_auth_service(request).identify(token)
    except AuthError:
        return None


def get_current_session(request: Request) -> Session:
    """Require a valid token. Raises TokenInvalidError / TokenExpiredError.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: Session = Depends(get_current_session)): ...
    """
    token = _presented_token(request)
    if not token:
        raise AuthenticationRequiredError()
    return get_auth_service(request).identify(token)
