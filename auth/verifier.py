"""
auth/verifier.py -- Email/password verification against the credential store.

Order of checks (intentional, see DESIGN.md "status before password"):
  1. Fetch the record. Missing -> InvalidCredentials, after burning one
     bcrypt comparison so timing matches the wrong-password path [C1].
  2. Account status. Denied -> AccountDenied, whether or not the password
     would have matched.
  3. bcrypt comparison. Mismatch -> InvalidCredentials.
  4. Success: return the hash-free snapshot. Recording last_login is the
     caller's job, once it has accepted the result.

The password hash stays inside verify(); only IdentitySnapshot leaves.

Layer rule: no imports from api/, web/, core/, or cache/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AccountDeniedError, AuthInternalError, InvalidCredentialsError
from auth.models import IdentitySnapshot
from auth.policy import SessionPolicy
from auth.store import CredentialStore
from auth.tokens import burn_password_check, verify_password

logger = logging.getLogger("libraryportal.auth")


class CredentialVerifier:
    def __init__(self, store: CredentialStore, policy: SessionPolicy) -> None:
        self.store = store
        self.policy = policy

    def verify(self, identifier: str, secret: str) -> IdentitySnapshot:
        """Return the IdentitySnapshot for valid credentials or raise an AuthError."""
        try:
            record = self.store.find_by_email(identifier)
        except SQLAlchemyError as exc:
            logger.exception("Credential store lookup failed")
            raise AuthInternalError() from exc

        if record is None:
            burn_password_check(secret)
            raise InvalidCredentialsError()

        decision = self.policy.is_login_allowed(record.status)
        if not decision.allowed:
            logger.info("Login denied for user id=%s: account status %r", record.id, decision.status)
            raise AccountDeniedError(decision.status, decision.message)

        if not verify_password(secret, record.password_hash):
            raise InvalidCredentialsError()

        return IdentitySnapshot.from_record(record)
