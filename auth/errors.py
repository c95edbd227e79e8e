"""
auth/errors.py -- Typed failures raised by the login pipeline.

Every failure the core can produce is an AuthError subclass carrying the HTTP
status and the client-safe message. The boundary (api/main.py exception
handlers, web/routes.py redirects) maps them to responses; nothing below the
boundary builds HTTP responses.

public_message is the only text that may reach a client. Internal detail
(driver errors, tracebacks) is logged where the error is raised and never
attached to the exception message shown to users.

Layer rule: no imports from api/, web/, core/, or cache/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all authentication failures."""

    status_code: int = 500
    code: str = "auth_error"
    public_message: str = "Something went wrong"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.public_message = message
        super().__init__(self.public_message)


class MissingCredentialsError(AuthError):
    """Identifier or secret absent from the request (400)."""

    status_code = 400
    code = "missing_credentials"
    public_message = "Email and password are required"


class InvalidCredentialsError(AuthError):
    """Unknown identifier OR wrong secret. Never says which (401)."""

    status_code = 401
    code = "invalid_credentials"
    public_message = "Invalid credentials"


class AccountDeniedError(AuthError):
    """Account status forbids login (403).

    status is the normalized account status ("suspended", "blocked", ...).
    """

    status_code = 403
    code = "account_denied"

    def __init__(self, status: str, message: str) -> None:
        self.status = status
        super().__init__(message)


class TokenInvalidError(AuthError):
    """Presented session token is malformed or its signature does not verify."""

    status_code = 401
    code = "token_invalid"
    public_message = "Invalid token"


class TokenExpiredError(AuthError):
    """Presented session token has a valid signature but is past its expiry."""

    status_code = 401
    code = "token_expired"
    public_message = "Session expired"


class AuthInternalError(AuthError):
    """Store unreachable, deadline exceeded, or any unexpected fault (500)."""

    status_code = 500
    code = "server_error"
    public_message = "Something went wrong"
