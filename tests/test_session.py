from __future__ import annotations

from contextlib import contextmanager
from functools import partial

from design_platform.auth.session import (
    apply_client_update,
    claims_differ,
    decode_claims,
    encode_claims,
    issue_claims,
    refresh_claims,
)
from design_platform.billing.subscriptions import upsert_subscription
from design_platform.db import connect

from conftest import PASSWORD


def _claims(user, **overrides):
    c = issue_claims(user)
    c.update(overrides)
    return c


def test_refresh_overwrites_store_owned_fields(cfg, make_user):
    user = make_user("alice@example.com")
    stale = _claims(user)
    assert stale["subscription_status"] == "inactive"

    with connect(cfg.DB_DSN) as conn:
        upsert_subscription(conn, user_id=int(user["user_id"]), status="active")

    fresh = refresh_claims(partial(connect, cfg.DB_DSN), stale)
    assert fresh["subscription_status"] == "active"
    assert fresh["email"] == stale["email"]


def test_refresh_is_idempotent(cfg, subscriber):
    open_conn = partial(connect, cfg.DB_DSN)
    once = refresh_claims(open_conn, _claims(subscriber))
    twice = refresh_claims(open_conn, once)
    assert once == twice


def test_refresh_is_fail_soft(subscriber):
    @contextmanager
    def broken():
        raise RuntimeError("store unavailable")
        yield  # pragma: no cover

    claims = _claims(subscriber, subscription_status="pending")
    assert refresh_claims(broken, claims) == claims


def test_refresh_keeps_claims_for_unknown_user(cfg):
    claims = {"sub": "9999", "role": "USER", "subscription_status": "active"}
    assert refresh_claims(partial(connect, cfg.DB_DSN), claims) == claims


def test_client_update_cannot_grant_role_or_status(cfg, make_user):
    user = make_user("alice@example.com")
    claims = _claims(user)

    out = apply_client_update(
        partial(connect, cfg.DB_DSN),
        claims,
        {"role": "ADMIN", "subscription_status": "active", "name": "Alice B"},
    )
    assert out["role"] == "USER"
    assert out["subscription_status"] == "inactive"
    assert out["name"] == "Alice B"


def test_claims_differ_ignores_token_timestamps():
    a = {"sub": "1", "role": "USER", "iat": 1, "exp": 2}
    b = {"sub": "1", "role": "USER", "iat": 5, "exp": 9}
    assert not claims_differ(a, b)
    assert claims_differ(a, {**b, "role": "ADMIN"})


def test_cookie_is_reissued_when_store_changes(cfg, client, make_user):
    user = make_user("alice@example.com")
    r = client.post("/api/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
    assert r.status_code == 200

    with connect(cfg.DB_DSN) as conn:
        upsert_subscription(conn, user_id=int(user["user_id"]), status="active")

    s = client.get("/api/auth/session")
    body = s.json()
    assert body["authenticated"] is True
    assert body["session"]["subscription_status"] == "active"

    # The new cookie carries the refreshed status.
    claims = decode_claims(cfg, s.cookies["dd_session"])
    assert claims["subscription_status"] == "active"


def test_session_update_endpoint_ignores_privileged_fields(client, make_user, auth_headers):
    user = make_user("alice@example.com")
    r = client.post(
        "/api/auth/session",
        json={"role": "ADMIN", "subscriptionStatus": "active", "name": "Renamed"},
        headers=auth_headers(user),
    )
    assert r.status_code == 200
    session = r.json()["session"]
    assert session["role"] == "USER"
    assert session["subscription_status"] == "inactive"
    assert session["name"] == "Renamed"


def test_session_update_requires_session(client):
    assert client.post("/api/auth/session", json={"name": "x"}).status_code == 401


def test_onboarding_complete_is_reflected_in_session(client, make_user, auth_headers):
    user = make_user("alice@example.com")
    r = client.post("/api/onboarding/complete", headers=auth_headers(user))
    assert r.status_code == 200
    assert r.json()["session"]["onboarding_completed"] is True


def test_expired_or_garbage_token_is_anonymous(cfg, client):
    assert decode_claims(cfg, "not-a-jwt") is None
    r = client.get("/api/auth/session", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.json() == {"authenticated": False, "session": None}


def test_token_roundtrip_keeps_claims(cfg, subscriber):
    claims = _claims(subscriber)
    decoded = decode_claims(cfg, encode_claims(cfg, claims))
    assert not claims_differ(claims, decoded)
