"""Unit tests for auth/tokens.py -- session token issue/validate and password helpers.

Covers:
- issue -> validate yields the snapshot's id/email/role
- expiry boundary at issuedAt + 7 days +/- 1 second
- tampered signature and wrong key are TokenInvalid, not TokenExpired
- expired token with a bad signature is TokenInvalid (signature checked first)
- sliding refresh only after the 24 h update age
- bcrypt helpers and the secret digest
"""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.errors import TokenExpiredError, TokenInvalidError
from auth.models import IdentitySnapshot
from auth.tokens import SessionTokenIssuer, hash_password, secret_digest, verify_password

SECRET = "x" * 40
ISSUED = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

SNAPSHOT = IdentitySnapshot(
    id="42",
    email="a@b.com",
    role="admin",
    name="Ada",
    username="ada",
    avatar="/avatars/ada.png",
    created_at="2024-01-15T10:00:00+00:00",
    last_login=None,
)


class MovableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> MovableClock:
    return MovableClock(ISSUED)


@pytest.fixture
def issuer(clock) -> SessionTokenIssuer:
    return SessionTokenIssuer(SECRET, clock=clock)


def test_round_trip_claims_match_snapshot(issuer):
    claims = issuer.validate(issuer.issue(SNAPSHOT))
    assert (claims.subject, claims.email, claims.role) == (SNAPSHOT.id, SNAPSHOT.email, SNAPSHOT.role)
    assert claims.issued_at == int(ISSUED.timestamp())
    assert claims.expires_at == int((ISSUED + timedelta(days=7)).timestamp())


def test_bearer_token_has_no_profile_claims(issuer):
    claims = issuer.validate(issuer.issue(SNAPSHOT))
    assert claims.name is None
    assert claims.username is None


def test_profile_token_carries_profile(issuer):
    claims = issuer.validate(issuer.issue(SNAPSHOT, include_profile=True))
    assert claims.name == "Ada"
    assert claims.username == "ada"
    assert claims.avatar == "/avatars/ada.png"
    assert claims.created_at == "2024-01-15T10:00:00+00:00"


def test_valid_one_second_before_expiry(issuer, clock):
    token = issuer.issue(SNAPSHOT)
    clock.now = ISSUED + timedelta(days=7) - timedelta(seconds=1)
    assert issuer.validate(token).subject == "42"


def test_expired_one_second_after_expiry(issuer, clock):
    token = issuer.issue(SNAPSHOT)
    clock.now = ISSUED + timedelta(days=7) + timedelta(seconds=1)
    with pytest.raises(TokenExpiredError):
        issuer.validate(token)


def test_tampered_signature_is_invalid(issuer):
    token = issuer.issue(SNAPSHOT)
    header, payload, signature = token.split(".")
    flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
    with pytest.raises(TokenInvalidError):
        issuer.validate(f"{header}.{payload}.{flipped}")


def test_wrong_key_is_invalid(clock):
    token = SessionTokenIssuer("y" * 40, clock=clock).issue(SNAPSHOT)
    with pytest.raises(TokenInvalidError):
        SessionTokenIssuer(SECRET, clock=clock).validate(token)


def test_expired_forgery_reports_invalid_not_expired(clock):
    forged = SessionTokenIssuer("y" * 40, clock=clock).issue(SNAPSHOT)
    clock.now = ISSUED + timedelta(days=30)
    with pytest.raises(TokenInvalidError):
        SessionTokenIssuer(SECRET, clock=clock).validate(forged)


def test_garbage_is_invalid(issuer):
    with pytest.raises(TokenInvalidError):
        issuer.validate("not-a-token")


def test_missing_claims_is_invalid(issuer):
    token = jwt.encode({"sub": "42", "iat": int(ISSUED.timestamp())}, SECRET, algorithm="HS256")
    with pytest.raises(TokenInvalidError):
        issuer.validate(token)


def test_expired_and_invalid_are_distinct_types():
    assert not issubclass(TokenExpiredError, TokenInvalidError)
    assert not issubclass(TokenInvalidError, TokenExpiredError)


class TestSlidingRefresh:
    def test_fresh_token_not_refreshed(self, issuer, clock):
        token = issuer.issue(SNAPSHOT, include_profile=True)
        clock.now = ISSUED + timedelta(hours=23)
        assert not issuer.needs_refresh(issuer.validate(token))

    def test_day_old_token_refreshed_with_new_window(self, issuer, clock):
        token = issuer.issue(SNAPSHOT, include_profile=True)
        clock.now = ISSUED + timedelta(hours=25)
        claims = issuer.validate(token)
        assert issuer.needs_refresh(claims)

        renewed = issuer.validate(issuer.refresh(claims))
        assert renewed.issued_at == int(clock.now.timestamp())
        assert renewed.expires_at == int((clock.now + timedelta(days=7)).timestamp())
        assert (renewed.subject, renewed.email, renewed.role, renewed.name) == ("42", "a@b.com", "admin", "Ada")

    def test_refreshed_session_outlives_original_window(self, issuer, clock):
        token = issuer.issue(SNAPSHOT)
        clock.now = ISSUED + timedelta(days=6)
        refreshed = issuer.refresh(issuer.validate(token))
        clock.now = ISSUED + timedelta(days=8)
        with pytest.raises(TokenExpiredError):
            issuer.validate(token)
        assert issuer.validate(refreshed).subject == "42"


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("correctpw")
        assert hashed.startswith("$2")
        assert verify_password("correctpw", hashed)
        assert not verify_password("wrongpw", hashed)

    @pytest.mark.parametrize("bad_hash", [None, "", "not-a-bcrypt-hash"])
    def test_missing_or_malformed_hash_never_matches(self, bad_hash):
        assert not verify_password("anything", bad_hash)

    def test_over_long_password_never_matches(self):
        assert not verify_password("x" * 100, hash_password("correctpw"))

    def test_secret_digest_is_keyed(self):
        assert secret_digest(SECRET, "pw") == secret_digest(SECRET, "pw")
        assert secret_digest(SECRET, "pw") != secret_digest("y" * 40, "pw")
        assert secret_digest(SECRET, "pw") != secret_digest(SECRET, "pw2")
