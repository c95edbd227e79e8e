"""
auth/service.py -- The single login pipeline behind every sign-in surface.

Both the bearer-token route (api/routes/v1/auth.py) and the cookie session
flow (web/routes.py) call AuthenticationService. Validation, caching, status
policy and password checks are defined here once.

Pipeline:
  RECEIVED -> CACHE_LOOKUP
    hit  -> ISSUE_TOKEN -> SUCCESS
    miss -> FETCH_CREDENTIAL -> STATUS_CHECK -> PASSWORD_VERIFY
         -> CACHE_WRITE -> ISSUE_TOKEN -> SUCCESS
  Denied status     -> AccountDeniedError
  Bad credentials   -> InvalidCredentialsError
  Anything else     -> AuthInternalError (logged with traceback)

Threads:
  The verifier (store read + bcrypt) runs on a bounded ThreadPoolExecutor so
  the event loop keeps accepting requests while hashes are compared.
  last_login writes are scheduled by the service after the awaited result
  returns, on a separate single-worker executor. They are
  best-effort: failures are logged and dropped, never retried.

Layer rule: no imports from api/ or web/. The identity cache is injected;
cache/ is referenced for typing only.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from auth.errors import AccountDeniedError, AuthError, AuthInternalError, MissingCredentialsError
from auth.models import IdentitySnapshot, Session, SessionClaims
from auth.policy import SessionPolicy
from auth.store import CredentialStore
from auth.tokens import SessionTokenIssuer, secret_digest
from auth.verifier import CredentialVerifier

if TYPE_CHECKING:
    from cache.store import IdentityCache

logger = logging.getLogger("libraryportal.auth")


@dataclass(frozen=True)
class LoginResult:
    session: Session
    token: str
    cached: bool = False


@dataclass(frozen=True)
class SessionResolution:
    session: Session
    claims: SessionClaims
    expires_at: int
    refreshed_token: Optional[str] = None


class AuthenticationService:
    def __init__(
        self,
        store: CredentialStore,
        cache: IdentityCache,
        policy: SessionPolicy,
        issuer: SessionTokenIssuer,
        secret_key: str,
        password_workers: int = 4,
        login_timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.issuer = issuer
        self.login_timeout = login_timeout
        self._secret_key = secret_key
        self._verify_pool = ThreadPoolExecutor(max_workers=password_workers, thread_name_prefix="login-verify")
        self._background = ThreadPoolExecutor(max_workers=1, thread_name_prefix="last-login")
        self.verifier = CredentialVerifier(store, policy)

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    async def login(
        self, identifier: Optional[str], secret: Optional[str], *, timeout: Optional[float] = None
    ) -> LoginResult:
        """Bearer flow: verify credentials and issue a compact session token."""
        snapshot, cached = await self._authenticate(identifier, secret, timeout)
        token = self.issuer.issue(snapshot)
        return LoginResult(session=Session.from_snapshot(snapshot), token=token, cached=cached)

    async def authorize(
        self, identifier: Optional[str], secret: Optional[str], *, timeout: Optional[float] = None
    ) -> LoginResult:
        """Cookie flow: same verification, token carries the profile claims."""
        snapshot, cached = await self._authenticate(identifier, secret, timeout)
        token = self.issuer.issue(snapshot, include_profile=True)
        return LoginResult(session=Session.from_snapshot(snapshot), token=token, cached=cached)

    async def _authenticate(
        self, identifier: Optional[str], secret: Optional[str], timeout: Optional[float]
    ) -> tuple[IdentitySnapshot, bool]:
        if not identifier or not secret:
            raise MissingCredentialsError()

        digest = secret_digest(self._secret_key, secret)
        snapshot = self.cache.lookup(identifier, secret_digest=digest)
        if snapshot is not None:
            logger.debug("Identity cache hit for user id=%s", snapshot.id)
            return snapshot, True

        deadline = timeout if timeout is not None else self.login_timeout
        loop = asyncio.get_running_loop()
        try:
            snapshot = await asyncio.wait_for(
                loop.run_in_executor(self._verify_pool, self.verifier.verify, identifier, secret),
                timeout=deadline,
            )
        except AccountDeniedError:
            self.cache.invalidate(identifier)
            raise
        except AuthError:
            raise
        except asyncio.TimeoutError as exc:
            logger.error("Login verification exceeded %.2fs deadline", deadline)
            raise AuthInternalError() from exc
        except Exception as exc:
            logger.exception("Unexpected error during credential verification")
            raise AuthInternalError() from exc

        # A verification that outlived the deadline never reaches this point.
        self._schedule_last_login(int(snapshot.id))
        self.cache.store(identifier, snapshot, secret_digest=digest)
        logger.info("Login verified for user id=%s", snapshot.id)
        return snapshot, False

    # ------------------------------------------------------------------
    # Presented tokens
    # ------------------------------------------------------------------

    def identify(self, token: str) -> Session:
        """Validate a bearer token. Raises TokenInvalidError / TokenExpiredError."""
        return Session.from_claims(self.issuer.validate(token))

    def resolve(self, token: str) -> SessionResolution:
        """Validate a cookie token and apply the sliding-session rule."""
        claims = self.issuer.validate(token)
        if not self.issuer.needs_refresh(claims):
            return SessionResolution(session=Session.from_claims(claims), claims=claims, expires_at=claims.expires_at)
        refreshed = self.issuer.refresh(claims)
        renewed = self.issuer.validate(refreshed)
        logger.debug("Sliding session renewed for user id=%s", claims.subject)
        return SessionResolution(
            session=Session.from_claims(renewed),
            claims=renewed,
            expires_at=renewed.expires_at,
            refreshed_token=refreshed,
        )

    # ------------------------------------------------------------------
    # Background last_login writes
    # ------------------------------------------------------------------

    def _schedule_last_login(self, user_id: int) -> None:
        try:
            future = self._background.submit(self.store.update_last_login, user_id)
        except RuntimeError:
            logger.warning("last_login update for user id=%s skipped: service is shutting down", user_id)
            return
        future.add_done_callback(lambda f: _log_last_login_failure(f, user_id))

    def close(self) -> None:
        """Stop accepting work and wait for pending last_login writes."""
        self._verify_pool.shutdown(wait=True)
        self._background.shutdown(wait=True)


def _log_last_login_failure(future: Future, user_id: int) -> None:
    exc = future.exception()
    if exc is not None:
        logger.warning("last_login update failed for user id=%s: %s", user_id, exc)
