"""
web/routes.py -- Cookie session flow consumed by the portal's web front end.

The front end's credentials provider posts the login form here; the session
itself lives in an httpOnly cookie holding a profile-bearing session token.
Verification is the same AuthenticationService used by the bearer route.

Routes:
  POST /auth/callback/credentials  -- verify form credentials, set cookie, redirect
  GET  /auth/session               -- current session (sliding refresh applied)
  POST /auth/signout               -- clear cookie, redirect
  GET  /auth/error-message         -- whitelist lookup for ?error= codes

Page rendering is owned by the front end. Failed logins redirect back to
/auth/login?error=<code>; the page turns the code into text through
/auth/error-message and never reflects the raw query value [M3].
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode, urlparse

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import SessionResponse, SessionUser
from auth.dependencies import get_auth_service
from auth.errors import AccountDeniedError, AuthError
from auth.policy import DENIED_MESSAGES, UNRECOGNIZED_MESSAGE
from auth.service import AuthenticationService
from auth.tokens import SESSION_COOKIE, clear_session_cookie, set_session_cookie
from core.config import get_settings

logger = logging.getLogger("libraryportal.web")

router = APIRouter()

LOGIN_PAGE = "/auth/login"

# Whitelist mapping for ?error= codes [M3]. Only these messages are ever shown.
_ERROR_MESSAGES: dict[str, str] = {
    "missing_credentials": "Email and password are required",
    "invalid_credentials": "Invalid email or password",
    "account_suspended": DENIED_MESSAGES["suspended"],
    "account_blocked": DENIED_MESSAGES["blocked"],
    "account_banned": DENIED_MESSAGES["banned"],
    "account_denied": UNRECOGNIZED_MESSAGE,
    "token_invalid": "Your session is no longer valid. Please sign in again.",
    "token_expired": "Your session has expired. Please sign in again.",
    "server_error": "Something went wrong. Please try again.",
}

# ---------------------------------------------------------------------------
# Redirect guard
# ---------------------------------------------------------------------------


def resolve_redirect(url: Optional[str], base_url: str) -> str:
    """Validate a post-login redirect target against the portal origin. [C2]

    - Paths beginning with "/" are joined onto base_url.
    - Absolute http(s) URLs are honoured only when their origin equals
      base_url's origin.
    - Anything else, including protocol-relative "//host", backslash
      tricks and URLs urlparse cannot parse, falls back to base_url.
    """
    base = base_url.rstrip("/")
    if not url:
        return base
    if url.startswith("/") and not url.startswith(("//", "/\\")):
        return f"{base}{url}"
    try:
        target = urlparse(url)
        origin = urlparse(base)
    except ValueError:
        logger.info("Unparsable redirect target %r; using base URL", url)
        return base
    if target.scheme in ("http", "https") and (target.scheme, target.netloc) == (origin.scheme, origin.netloc):
        return url
    return base


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _error_code(exc: AuthError) -> str:
    if isinstance(exc, AccountDeniedError) and f"account_{exc.status}" in _ERROR_MESSAGES:
        return f"account_{exc.status}"
    return exc.code


def _login_error_redirect(code: str, callback_url: Optional[str]) -> RedirectResponse:
    params = {"error": code}
    if callback_url:
        params["callbackUrl"] = callback_url
    resp = RedirectResponse(f"{LOGIN_PAGE}?{urlencode(params)}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@limiter.limit(_login_rate_limit)  # [H2]
@router.post("/auth/callback/credentials")
async def credentials_callback(
    request: Request,
    email: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    remember: Optional[str] = Form(None),
    callbackUrl: Optional[str] = Form(None),  # noqa: N803 -- form field name used by the front end
    service: AuthenticationService = Depends(get_auth_service),
) -> RedirectResponse:
    """Handle the credentials form: verify, set the session cookie, redirect."""
    settings = get_settings()
    try:
        result = await service.authorize(email, password)
    except AuthError as exc:
        return _login_error_redirect(_error_code(exc), callbackUrl)

    # "remember" does not change the session lifetime; it is recorded only.
    logger.info("Cookie session issued for user id=%s (remember=%s)", result.session.id, bool(remember))
    target = resolve_redirect(callbackUrl or settings.default_callback_path, settings.base_url)
    resp = RedirectResponse(target, status_code=302)
    set_session_cookie(resp, result.token, settings.session_max_age_seconds, secure=settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/session")
def session(request: Request, service: AuthenticationService = Depends(get_auth_service)) -> JSONResponse:
    """Return {user, expires} for a valid session cookie, {} otherwise.

    Sessions older than SESSION_UPDATE_AGE_SECONDS are reissued and the cookie
    rewritten. An invalid or expired cookie is cleared.
    """
    settings = get_settings()
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return JSONResponse(content={})

    try:
        resolution = service.resolve(token)
    except AuthError as exc:
        logger.info("Rejected session cookie: %s", exc.code)
        resp = JSONResponse(content={})
        clear_session_cookie(resp)
        return resp

    expires = datetime.fromtimestamp(resolution.expires_at, tz=timezone.utc).isoformat()
    body = SessionResponse(user=SessionUser(**resolution.session.to_dict()), expires=expires)
    resp = JSONResponse(content=body.model_dump(by_alias=True))
    if resolution.refreshed_token:
        set_session_cookie(
            resp, resolution.refreshed_token, settings.session_max_age_seconds, secure=settings.secure_cookies
        )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/signout")
def signout(callbackUrl: Optional[str] = Form(None)) -> RedirectResponse:  # noqa: N803
    """Clear the session cookie and redirect to the guarded callback URL."""
    settings = get_settings()
    resp = RedirectResponse(resolve_redirect(callbackUrl, settings.base_url), status_code=302)
    clear_session_cookie(resp)
    return resp


@router.get("/auth/error-message")
def error_message(error: str = "") -> JSONResponse:
    """Map a ?error= code to its display text. Unknown codes map to null."""
    if error not in _ERROR_MESSAGES:
        return JSONResponse(content={"error": None, "message": None})
    return JSONResponse(content={"error": error, "message": _ERROR_MESSAGES[error]})
