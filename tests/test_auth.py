from __future__ import annotations

import pytest

from design_platform.auth.crud import (
    authenticate,
    bootstrap_admin_if_needed,
    create_user,
    get_user_by_email,
    start_password_reset,
)
from design_platform.db import connect, init_db
from design_platform.errors import ConflictError, ValidationError

from conftest import PASSWORD, make_cfg


def test_authenticate_returns_identity_with_effective_status(cfg, make_user):
    make_user("alice@example.com", subscription="active")
    with connect(cfg.DB_DSN) as conn:
        user = authenticate(conn, "  Alice@Example.com ", PASSWORD)

    assert user is not None
    assert user["email"] == "alice@example.com"
    assert user["subscription_status"] == "active"
    assert "password_hash" not in user


@pytest.mark.parametrize(
    "email,password",
    [
        ("", PASSWORD),
        ("alice@example.com", ""),
        ("nobody@example.com", PASSWORD),
        ("alice@example.com", "wrong-password"),
        ("nohash@example.com", PASSWORD),
    ],
)
def test_authenticate_failures_all_return_none(cfg, make_user, email, password):
    make_user("alice@example.com")
    with connect(cfg.DB_DSN) as conn:
        create_user(conn, email="nohash@example.com", password=None)
        assert authenticate(conn, email, password) is None


def test_login_failures_are_indistinguishable(client, make_user):
    make_user("alice@example.com")
    wrong = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope-nope"})
    unknown = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope-nope"})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"detail": "invalid_credentials"}


def test_login_sets_cookie_and_returns_token(client, make_user):
    make_user("alice@example.com")
    r = client.post("/api/auth/login", json={"email": "alice@example.com", "password": PASSWORD})

    assert r.status_code == 200
    body = r.json()
    assert body["access_token"]
    assert body["user"]["email"] == "alice@example.com"
    assert "dd_session" in r.cookies

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "alice@example.com"


def test_register_then_duplicate(client):
    body = {"name": "Bob", "email": "bob@example.com", "password": "long-enough-pw"}
    r = client.post("/api/auth/register", json=body)
    assert r.status_code == 201
    assert r.json()["user"]["role"] == "USER"

    dup = client.post("/api/auth/register", json={**body, "email": "BOB@example.com"})
    assert dup.status_code == 409
    assert dup.json()["detail"] == "email_exists"


def test_register_validation_is_400(client):
    r = client.post("/api/auth/register", json={"name": "B", "email": "not-an-email", "password": "short"})
    assert r.status_code == 400


def test_check_email(client, make_user):
    make_user("alice@example.com")
    assert client.get("/api/auth/check-email", params={"email": "alice@example.com"}).json() == {"exists": True}
    assert client.get("/api/auth/check-email", params={"email": "zed@example.com"}).json() == {"exists": False}


def test_password_reset_flow(cfg, client, make_user):
    make_user("alice@example.com")

    # Same response whether or not the account exists.
    a = client.post("/api/auth/request-password-reset", json={"email": "alice@example.com"})
    b = client.post("/api/auth/request-password-reset", json={"email": "ghost@example.com"})
    assert a.status_code == b.status_code == 200
    assert a.json() == b.json()

    with connect(cfg.DB_DSN) as conn:
        _, token = start_password_reset(conn, "alice@example.com", expire_minutes=5)

    r = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "brand-new-password"})
    assert r.status_code == 200

    again = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "another-password"})
    assert again.status_code == 400
    assert again.json()["detail"] == "invalid_or_expired_token"

    login = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "brand-new-password"})
    assert login.status_code == 200


def test_expired_reset_token_is_rejected(cfg, make_user):
    from design_platform.auth.crud import reset_password

    make_user("alice@example.com")
    with connect(cfg.DB_DSN) as conn:
        _, token = start_password_reset(conn, "alice@example.com", expire_minutes=-1)
        with pytest.raises(ValidationError):
            reset_password(conn, token, "brand-new-password")


def test_create_user_rejects_duplicate_email(cfg, make_user):
    make_user("alice@example.com")
    with connect(cfg.DB_DSN) as conn:
        with pytest.raises(ConflictError):
            create_user(conn, email="alice@example.com", password=PASSWORD)


def test_bootstrap_admin_only_on_empty_table(tmp_path):
    c = make_cfg(
        tmp_path,
        AUTH_BOOTSTRAP_ADMIN_EMAIL="Boss@Example.com",
        AUTH_BOOTSTRAP_ADMIN_PASSWORD="bootstrap-password",
    )
    init_db(c.DB_DSN)

    first = bootstrap_admin_if_needed(c)
    assert first is not None
    assert first["role"] == "ADMIN"
    assert first["email"] == "boss@example.com"

    assert bootstrap_admin_if_needed(c) is None
    with connect(c.DB_DSN) as conn:
        assert get_user_by_email(conn, "boss@example.com") is not None


def test_admin_route_requires_session_and_role(client, make_user, auth_headers):
    user = make_user("alice@example.com")
    assert client.get("/api/admin/stats").status_code == 401
    assert client.get("/api/admin/stats", headers=auth_headers(user)).status_code == 403
