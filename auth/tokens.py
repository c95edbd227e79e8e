"""
auth/tokens.py -- Session tokens, password hashing, and cookie utilities.

Security design decisions:
  Tokens: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id), email, role, iat and exp. Cookie-flow tokens also carry
       the profile fields needed to rebuild a Session without a DB read.
       validate() checks the signature first and expiry second, so an
       expired-but-genuine token is distinguishable from a forged one.

  Expiry: 7 days from issuance. Cookie sessions slide -- once a token is
       older than the update age (24 h) it is reissued on next use. There is
       no absolute cap across reissues.

  Passwords: bcrypt, used directly (no passlib wrapper). The _DUMMY_HASH
       constant enables timing equalization in CredentialVerifier so response
       time does not reveal whether an email exists [C1].

  Secret digests: HMAC-SHA256(SECRET_KEY, password) binds an identity cache
       entry to the password that produced it. The digest is never persisted
       and never leaves the process.

Layer rule: no imports from api/, web/, or cache/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

import bcrypt
from jose import JWTError, jwt

from auth.errors import TokenExpiredError, TokenInvalidError
from auth.models import IdentitySnapshot, SessionClaims

logger = logging.getLogger("libraryportal.auth")

_ALGORITHM = "HS256"

SESSION_COOKIE = "session_token"
DEFAULT_MAX_AGE = timedelta(days=7)
DEFAULT_UPDATE_AGE = timedelta(hours=24)

_REQUIRED_CLAIMS = ("sub", "email", "role", "iat", "exp")
_PROFILE_CLAIMS = ("name", "username", "avatar", "created_at", "last_login")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes: bcrypt 4.x silently truncates
    longer input and 5.x raises ValueError for it. Provisioning tooling
    should reject such passwords before calling this.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A missing or malformed hash is a mismatch, not an error, and so is a
    plaintext over bcrypt's 72-byte limit on releases that reject it.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("libraryportal_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt comparison against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)


def secret_digest(secret_key: str, plain: str) -> str:
    """Return HMAC-SHA256(secret_key, plain) as a hex string."""
    return hmac.new(secret_key.encode(), plain.encode("utf-8"), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionTokenIssuer:
    """Issues and validates signed, expiring session tokens.

    clock is injectable so expiry and sliding-refresh boundaries can be
    tested without sleeping.
    """

    def __init__(
        self,
        secret_key: str,
        max_age: timedelta = DEFAULT_MAX_AGE,
        update_age: timedelta = DEFAULT_UPDATE_AGE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.max_age = max_age
        self.update_age = update_age
        self._clock = clock

    def issue(self, snapshot: IdentitySnapshot, include_profile: bool = False) -> str:
        """Encode a signed token for snapshot, valid for max_age from now."""
        payload = {"sub": snapshot.id, "email": snapshot.email, "role": snapshot.role}
        if include_profile:
            for claim in _PROFILE_CLAIMS:
                payload[claim] = getattr(snapshot, claim)
        return self._encode(payload)

    def validate(self, token: str) -> SessionClaims:
        """Verify signature, then expiry. Returns the decoded claims.

        Raises TokenInvalidError for anything that is not a genuine token
        from this server, TokenExpiredError for a genuine one past exp.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenInvalidError() from exc
        if any(payload.get(claim) is None for claim in _REQUIRED_CLAIMS):
            raise TokenInvalidError()
        try:
            issued_at = int(payload["iat"])
            expires_at = int(payload["exp"])
        except (TypeError, ValueError) as exc:
            raise TokenInvalidError() from exc

        if self._clock().timestamp() >= expires_at:
            raise TokenExpiredError()

        return SessionClaims(
            subject=str(payload["sub"]),
            email=payload["email"],
            role=payload["role"],
            issued_at=issued_at,
            expires_at=expires_at,
            **{claim: payload.get(claim) for claim in _PROFILE_CLAIMS},
        )

    def needs_refresh(self, claims: SessionClaims) -> bool:
        """True once a still-valid token is older than update_age."""
        now = self._clock().timestamp()
        if now >= claims.expires_at:
            return False
        return now - claims.issued_at > self.update_age.total_seconds()

    def refresh(self, claims: SessionClaims) -> str:
        """Reissue claims with a fresh iat/exp window."""
        payload = {"sub": claims.subject, "email": claims.email, "role": claims.role}
        for claim in _PROFILE_CLAIMS:
            value = getattr(claims, claim)
            if value is not None:
                payload[claim] = value
        return self._encode(payload)

    def _encode(self, payload: dict) -> str:
        now = self._clock()
        payload = dict(payload)
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + self.max_age).timestamp())
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the token lifetime so both expire together.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)
