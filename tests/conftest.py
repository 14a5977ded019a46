from __future__ import annotations

from typing import Any, Callable, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from design_platform.api.server import create_app
from design_platform.auth.crud import create_user
from design_platform.auth.session import encode_claims, issue_claims
from design_platform.billing import stripe_billing
from design_platform.billing.subscriptions import upsert_subscription
from design_platform.catalog.packages import get_package_by_name, seed_default_packages
from design_platform.config import Config
from design_platform.content.models import KINDS
from design_platform.db import connect, init_db

from fakes import FakeStripe, InMemoryContentRepository


PASSWORD = "correct-horse-battery"


def make_cfg(tmp_path, **overrides: Any) -> Config:
    values: Dict[str, Any] = {
        "DB_DSN": str(tmp_path / "test.sqlite"),
        "PUBLIC_APP_URL": "http://testserver",
        "AUTH_JWT_SECRET": "test-secret-that-is-long-enough-for-hs256",
        "AUTH_COOKIE_SECURE": False,
        "AUTH_BOOTSTRAP_ADMIN_PASSWORD": "",
        "CORS_ALLOW_ORIGINS": "",
        "STRIPE_SECRET_KEY": None,
        "STRIPE_WEBHOOK_SECRET": None,
        "STRIPE_PRICE_ID_BASIC": None,
        "STRIPE_PRICE_ID_PRO": None,
        "STRIPE_PRICE_ID_ENTERPRISE": None,
        "BILLING_DEV_BYPASS": False,
        "SMTP_HOST": None,
        "UPLOAD_CALLBACK_SECRET": None,
    }
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def cfg(tmp_path) -> Config:
    c = make_cfg(tmp_path)
    init_db(c.DB_DSN)
    with connect(c.DB_DSN) as conn:
        seed_default_packages(conn)
    return c


@pytest.fixture
def content_repos():
    return {k: InMemoryContentRepository(k) for k in KINDS}


@pytest.fixture
def client(cfg, content_repos):
    app = create_app(cfg, content_repos=content_repos)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    monkeypatch.setattr(stripe_billing, "_get_stripe", lambda cfg: fake)
    return fake


@pytest.fixture
def make_user(cfg) -> Callable[..., Dict[str, Any]]:
    def _make(
        email: str,
        *,
        role: str = "USER",
        name: str = "Test User",
        password: str = PASSWORD,
        subscription: Optional[str] = None,
        package: str = "Pro",
    ) -> Dict[str, Any]:
        with connect(cfg.DB_DSN) as conn:
            u = create_user(conn, email=email, password=password, name=name, role=role)
            if subscription is not None:
                pkg = get_package_by_name(conn, package)
                upsert_subscription(
                    conn,
                    user_id=int(u["user_id"]),
                    status=subscription,
                    package_id=int(pkg["package_id"]),
                )
                u["subscription_status"] = subscription
        return u

    return _make


@pytest.fixture
def auth_headers(cfg) -> Callable[[Dict[str, Any]], Dict[str, str]]:
    def _headers(user: Dict[str, Any]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {encode_claims(cfg, issue_claims(user))}"}

    return _headers


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", role="ADMIN", name="Studio Admin")


@pytest.fixture
def subscriber(make_user):
    return make_user("sub@example.com", name="Sam Subscriber", subscription="active")
