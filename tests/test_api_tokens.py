"""
tests/test_api_tokens.py -- HTTP integration tests for /api/v1/tokens*.

Covers:
  - local login returns the token pair with Cache-Control: no-store
  - bad password / unknown tenant / missing tenant -> 401 authentication_failed
  - inactive tenant -> 401 tenant_inactive
  - body validation: both identity fields -> 422, password never echoed
  - refresh rotates; replaying the old refresh token -> 401 invalid_refresh_token
  - directory login through the fake directory
  - X-Forwarded-For first hop becomes the ip_address claim
  - both login routes answer 429 rate_limited once LOGIN_RATE_LIMIT is spent
  - unknown paths and methods use the ErrorResponse envelope

The limiter counts per client IP across the module, so the rate-limit test
resets it before and after it runs.
"""

from __future__ import annotations

import pytest
from jose import jwt

from api.limiter import limiter
from core.config import get_settings

ACME = {"tenant": "acme"}
PASSWORD = "correct horse battery"


def _login(client, headers=ACME, **body):
    body.setdefault("password", PASSWORD)
    return client.post("/api/v1/tokens", json=body, headers=headers)


def test_login_returns_token_pair(api_client):
    client, user_store, _ = api_client
    resp = _login(client, username="alice")
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    data = resp.json()
    assert data["is_auth_successful"] is True
    assert data["is_tfa_enabled"] is False
    assert data["token"] and data["refresh_token"] and data["refresh_token_expiry_time"]
    assert user_store.find_by_username("alice", "acme").refresh_token == data["refresh_token"]


def test_wrong_password(api_client):
    client, _, _ = api_client
    resp = _login(client, email="alice@example.test", password="nope")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "authentication_failed"
    assert resp.headers["cache-control"] == "no-store"


def test_unknown_tenant_looks_like_bad_credentials(api_client):
    client, _, _ = api_client
    unknown = _login(client, headers={"tenant": "nosuch"}, username="alice")
    missing = _login(client, headers={}, username="alice")
    assert unknown.status_code == missing.status_code == 401
    assert unknown.json() == missing.json()
    assert unknown.json()["error"]["code"] == "authentication_failed"


def test_inactive_tenant(api_client):
    client, _, _ = api_client
    resp = _login(client, headers={"tenant": "umbrella"}, username="frank")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "tenant_inactive"


def test_both_identity_fields_rejected(api_client):
    client, _, _ = api_client
    resp = _login(client, email="alice@example.test", username="alice")
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "validation_error"
    assert PASSWORD not in resp.text


def test_refresh_rotates_and_old_token_is_rejected(api_client):
    client, _, _ = api_client
    login = _login(client, username="alice").json()
    body = {"token": login["token"], "refresh_token": login["refresh_token"]}

    first = client.post("/api/v1/tokens/refresh", json=body, headers=ACME)
    assert first.status_code == 200
    assert first.headers["cache-control"] == "no-store"
    assert first.json()["refresh_token"] != login["refresh_token"]

    replay = client.post("/api/v1/tokens/refresh", json=body, headers=ACME)
    assert replay.status_code == 401
    assert replay.json()["error"]["code"] == "invalid_refresh_token"


def test_refresh_with_garbage_token(api_client):
    client, _, _ = api_client
    resp = client.post(
        "/api/v1/tokens/refresh", json={"token": "not.a.jwt", "refresh_token": "x"}, headers=ACME
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "invalid_token"


def test_directory_login(api_client):
    client, _, directory = api_client
    resp = client.post("/api/v1/tokens/ldap", json={"username": "jdoe", "password": PASSWORD}, headers=ACME)
    assert resp.status_code == 200
    assert resp.json()["token"]
    assert directory.bound_as == ("jdoe", PASSWORD)


def test_forwarded_for_becomes_ip_claim(api_client):
    client, _, _ = api_client
    resp = _login(client, headers={**ACME, "X-Forwarded-For": "203.0.113.7, 10.0.0.1"}, username="alice")
    claims = jwt.get_unverified_claims(resp.json()["token"])
    assert claims["ip_address"] == "203.0.113.7"
    assert claims["tenant"] == "acme"


def test_unknown_path_uses_error_envelope(api_client):
    client, _, _ = api_client
    resp = client.get("/api/v1/nosuch")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"


def test_wrong_method_uses_error_envelope(api_client):
    client, _, _ = api_client
    resp = client.get("/api/v1/tokens")
    assert resp.status_code == 405
    assert resp.json()["error"]["code"] == "http_405"


@pytest.mark.parametrize(
    ("path", "body"),
    [
        ("/api/v1/tokens", {"username": "alice", "password": "nope"}),
        ("/api/v1/tokens/ldap", {"username": "jdoe", "password": "nope"}),
    ],
)
def test_login_routes_are_rate_limited(api_client, path, body):
    client, _, _ = api_client
    allowed = int(get_settings().login_rate_limit.split("/")[0])
    limiter.reset()
    try:
        statuses = [client.post(path, json=body, headers=ACME).status_code for _ in range(allowed)]
        assert statuses == [401] * allowed

        blocked = client.post(path, json=body, headers=ACME)
        assert blocked.status_code == 429
        assert blocked.json()["error"]["code"] == "rate_limited"
        assert "retry-after" in blocked.headers
    finally:
        limiter.reset()
