"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
domain shape; the store, verifier and routes do the work.

The password hash lives on CredentialRecord only. IdentitySnapshot is the
hash-stripped view that is cached and handed to callers; Session is what a
validated token turns back into.

Layer rule: no imports from api/, web/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum


class AccountStatus(str, Enum):
    active = "active"
    suspended = "suspended"
    blocked = "blocked"
    banned = "banned"


@dataclass
class CredentialRecord:
    """A user row as projected by CredentialStore.find_by_email().

    status is stored as free text (mixed case is common in legacy rows).
    SessionPolicy interprets it; the record does not.
    """

    email: str
    password_hash: str | None = None
    id: int | None = None
    role: str | None = None
    status: str | None = None
    name: str | None = None
    username: str | None = None
    avatar: str | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class IdentitySnapshot:
    """Verified identity, safe to cache and return. Never carries the hash."""

    id: str
    email: str
    role: str = "user"
    name: str | None = None
    username: str | None = None
    avatar: str | None = None
    created_at: str | None = None
    last_login: str | None = None

    @classmethod
    def from_record(cls, record: CredentialRecord) -> IdentitySnapshot:
        return cls(
            id=str(record.id),
            email=record.email,
            role=record.role or "user",
            name=record.name,
            username=record.username,
            avatar=record.avatar,
            created_at=record.created_at,
            last_login=record.last_login,
        )


@dataclass(frozen=True)
class SessionClaims:
    """Decoded, signature-checked session token payload.

    issued_at / expires_at are POSIX timestamps (seconds). The profile
    fields are only present on cookie-flow tokens.
    """

    subject: str
    email: str
    role: str
    issued_at: int
    expires_at: int
    name: str | None = None
    username: str | None = None
    avatar: str | None = None
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class Session:
    """Server-side view of an authenticated user for the current request."""

    id: str
    role: str
    email: str
    name: str | None = None
    username: str | None = None
    avatar: str | None = None
    created_at: str | None = None
    last_login: str | None = None

    @classmethod
    def from_snapshot(cls, snapshot: IdentitySnapshot) -> Session:
        return cls(
            id=snapshot.id,
            role=snapshot.role,
            email=snapshot.email,
            name=snapshot.name,
            username=snapshot.username,
            avatar=snapshot.avatar,
            created_at=snapshot.created_at,
            last_login=snapshot.last_login,
        )

    @classmethod
    def from_claims(cls, claims: SessionClaims) -> Session:
        return cls(
            id=claims.subject,
            role=claims.role,
            email=claims.email,
            name=claims.name,
            username=claims.username,
            avatar=claims.avatar,
            created_at=claims.created_at,
            last_login=claims.last_login,
        )

    def to_dict(self) -> dict:
        return asdict(self)
