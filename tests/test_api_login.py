"""
tests/test_api_login.py -- Integration tests for the bearer-token routes.

Covers:
  - POST /api/auth/login: success, wrong password, unknown email,
    denied status (mixed case), missing password, malformed body
  - store failure answers 500 with a generic body
  - Cache-Control: no-store on every login response
  - GET /api/auth/me with a valid, missing, tampered and expired token
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import IdentitySnapshot
from auth.tokens import SessionTokenIssuer
from conftest import ACTIVE_EMAIL, ACTIVE_PASSWORD
from core.config import get_settings

LOGIN = "/api/auth/login"


def _login(client, **body):
    return client.post(LOGIN, json=body)


class TestLogin:
    def test_active_account_gets_token(self, api_client):
        client, ids = api_client
        resp = _login(client, email=ACTIVE_EMAIL, password=ACTIVE_PASSWORD)
        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Login successful"
        assert data["token"]
        assert data["user"]["email"] == ACTIVE_EMAIL
        assert data["user"]["id"] == str(ids[ACTIVE_EMAIL])
        assert data["user"]["role"] == "admin"
        assert "password_hash" not in data["user"]

    def test_wrong_password(self, api_client):
        client, _ = api_client
        resp = _login(client, email=ACTIVE_EMAIL, password="wrongpw")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid credentials"}

    def test_unknown_email_matches_wrong_password(self, api_client):
        client, _ = api_client
        unknown = _login(client, email="ghost@x.com", password="correctpw")
        wrong = _login(client, email=ACTIVE_EMAIL, password="wrongpw")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_mixed_case_suspended_status_is_forbidden(self, api_client):
        client, _ = api_client
        resp = _login(client, email="suspended@b.com", password="suspendedpw")
        assert resp.status_code == 403
        assert resp.json() == {"error": "This user is suspended."}

    @pytest.mark.parametrize("email", ["blocked@b.com", "banned@b.com"])
    def test_other_denied_statuses_forbidden_with_wrong_password(self, api_client, email):
        client, _ = api_client
        resp = _login(client, email=email, password="wrongpw")
        assert resp.status_code == 403

    def test_missing_password(self, api_client):
        client, _ = api_client
        resp = _login(client, email=ACTIVE_EMAIL)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Email and password are required"}

    def test_empty_body_fields(self, api_client):
        client, _ = api_client
        resp = _login(client, email="", password="")
        assert resp.status_code == 400

    def test_malformed_body(self, api_client):
        client, _ = api_client
        resp = client.post(LOGIN, content="not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid request body"}

    def test_store_failure_is_generic_500(self, api_client):
        client, _ = api_client
        store = client.app.state.credential_store
        boom = OperationalError("SELECT", {}, Exception("database is locked"))
        with patch.object(store, "find_by_email", side_effect=boom):
            resp = _login(client, email="legacy@b.com", password="legacypw")
        assert resp.status_code == 500
        assert resp.json() == {"error": "Something went wrong"}
        assert "locked" not in resp.text

    @pytest.mark.parametrize(
        "email, password",
        [(ACTIVE_EMAIL, ACTIVE_PASSWORD), (ACTIVE_EMAIL, "wrongpw"), ("suspended@b.com", "x"), (ACTIVE_EMAIL, None)],
    )
    def test_no_store_header(self, api_client, email, password):
        client, _ = api_client
        resp = _login(client, email=email, password=password)
        assert resp.headers["Cache-Control"] == "no-store"


class TestMe:
    def test_bearer_token_identifies_user(self, api_client):
        client, ids = api_client
        token = _login(client, email=ACTIVE_EMAIL, password=ACTIVE_PASSWORD).json()["token"]
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == str(ids[ACTIVE_EMAIL])
        assert data["email"] == ACTIVE_EMAIL
        assert data["role"] == "admin"

    def test_missing_token(self, api_client):
        client, _ = api_client
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Authentication required"}
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_tampered_token(self, api_client):
        client, _ = api_client
        token = _login(client, email=ACTIVE_EMAIL, password=ACTIVE_PASSWORD).json()["token"]
        header, payload, signature = token.split(".")
        forged = f"{header}.{payload}.{'A' if signature[0] != 'A' else 'B'}{signature[1:]}"
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {forged}"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid token"}

    def test_expired_token(self, api_client):
        client, ids = api_client
        past = datetime.now(timezone.utc) - timedelta(days=8)
        issuer = SessionTokenIssuer(get_settings().secret_key, clock=lambda: past)
        token = issuer.issue(IdentitySnapshot(id=str(ids[ACTIVE_EMAIL]), email=ACTIVE_EMAIL, role="admin"))
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Session expired"}
