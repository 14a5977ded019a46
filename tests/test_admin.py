from __future__ import annotations

from design_platform.billing.payments import record_payment
from design_platform.catalog.packages import get_package_by_name
from design_platform.db import connect


def _package_id(cfg, name):
    with connect(cfg.DB_DSN) as conn:
        return int(get_package_by_name(conn, name)["package_id"])


def test_customer_list_filters(client, admin, subscriber, make_user, auth_headers):
    make_user("nosub@example.com", name="Nora None")
    make_user("pend@example.com", name="Paul Pending", subscription="pending")
    h = auth_headers(admin)

    def emails(**params):
        r = client.get("/api/admin/customers", params=params, headers=h)
        assert r.status_code == 200
        return sorted(c["email"] for c in r.json()["customers"])

    assert emails() == ["nosub@example.com", "pend@example.com", "sub@example.com"]
    assert emails(status="NONE") == ["nosub@example.com"]
    assert emails(status="active") == ["sub@example.com"]
    assert emails(search="PAUL") == ["pend@example.com"]
    assert emails(search="example.com", status="pending") == ["pend@example.com"]

    bad = client.get("/api/admin/customers", params={"status": "gold"}, headers=h)
    assert bad.status_code == 400


def test_customer_search_treats_wildcards_literally(client, admin, make_user, auth_headers):
    make_user("ann_lee@example.com", name="Ann Lee")
    make_user("annxlee@example.com", name="Ann X")
    make_user("pct@example.com", name="100% Pure")
    h = auth_headers(admin)

    def emails(search):
        r = client.get("/api/admin/customers", params={"search": search}, headers=h)
        return sorted(c["email"] for c in r.json()["customers"])

    assert emails("ann_") == ["ann_lee@example.com"]
    assert emails("%") == ["pct@example.com"]


def test_customer_detail(client, admin, subscriber, auth_headers):
    client.post(
        "/api/design-requests",
        json={"title": "Poster", "description": "Concert poster, A2 size."},
        headers=auth_headers(subscriber),
    )
    r = client.get(f"/api/admin/customers/{subscriber['user_id']}", headers=auth_headers(admin))
    assert r.status_code == 200
    body = r.json()
    assert body["customer"]["email"] == "sub@example.com"
    assert "password_hash" not in body["customer"]
    assert body["subscription"]["package_name"] == "Pro"
    assert [x["title"] for x in body["recent_requests"]] == ["Poster"]
    assert len(body["packages"]) == 3

    assert client.get("/api/admin/customers/99999", headers=auth_headers(admin)).status_code == 404


def test_customer_update_with_subscription_actions(cfg, client, admin, make_user, auth_headers):
    user = make_user("carl@example.com", name="Carl")
    url = f"/api/admin/customers/{user['user_id']}"
    h = auth_headers(admin)

    r = client.put(
        url,
        json={
            "name": "Carl C",
            "onboardingCompleted": True,
            "subscriptionUpdate": {"action": "create", "packageId": _package_id(cfg, "Basic")},
        },
        headers=h,
    )
    assert r.status_code == 200
    assert r.json()["customer"]["name"] == "Carl C"
    assert r.json()["customer"]["onboarding_completed"] is True
    assert r.json()["subscription"]["status"] == "active"

    dup = client.put(url, json={"subscriptionUpdate": {"action": "create", "packageId": _package_id(cfg, "Pro")}}, headers=h)
    assert dup.status_code == 409

    r = client.put(
        url,
        json={"subscriptionUpdate": {"action": "update", "packageId": _package_id(cfg, "Enterprise")}},
        headers=h,
    )
    assert r.json()["subscription"]["package_name"] == "Enterprise"

    r = client.put(f"{url}/subscription", json={"status": "cancelled"}, headers=h)
    assert r.json()["subscription"]["status"] == "cancelled"

    r = client.put(url, json={"subscriptionUpdate": {"action": "delete"}}, headers=h)
    assert r.json()["subscription"] is None

    r = client.put(url, json={"subscriptionUpdate": {"action": "upgrade"}}, headers=h)
    assert r.status_code == 400


def test_role_change_reaches_session_on_next_request(cfg, client, admin, make_user, auth_headers):
    user = make_user("future-admin@example.com")
    headers = auth_headers(user)
    assert client.get("/api/admin/stats", headers=headers).status_code == 403

    client.put(f"/api/admin/customers/{user['user_id']}", json={"role": "ADMIN"}, headers=auth_headers(admin))

    # Same token; the role is re-read from the store.
    assert client.get("/api/admin/stats", headers=headers).status_code == 200
    session = client.get("/api/auth/session", headers=headers).json()["session"]
    assert session["role"] == "ADMIN"


def test_stats(cfg, client, admin, subscriber, make_user, auth_headers):
    make_user("enterprise@example.com", subscription="active", package="Enterprise")
    make_user("lapsed@example.com", subscription="cancelled")
    client.post(
        "/api/design-requests",
        json={"title": "Flyer", "description": "Flyer for the open day."},
        headers=auth_headers(subscriber),
    )
    with connect(cfg.DB_DSN) as conn:
        record_payment(conn, user_id=int(subscriber["user_id"]), amount=9900, stripe_invoice_id="in_s")

    r = client.get("/api/admin/stats", headers=auth_headers(admin))
    assert r.status_code == 200
    s = r.json()
    assert s["total_users"] == 3
    assert s["active_subscriptions"] == 2
    assert s["mrr"] == 99 + 199
    assert s["pending_requests"] == 1
    assert s["completed_requests"] == 0
    assert len(s["recent_users"]) == 3
    assert [x["title"] for x in s["recent_requests"]] == ["Flyer"]


def test_admin_packages_lists_all(cfg, client, admin, auth_headers):
    with connect(cfg.DB_DSN) as conn:
        conn.execute("UPDATE packages SET is_active=0 WHERE name='Basic'")

    public = [p["name"] for p in client.get("/api/packages").json()["packages"]]
    assert public == ["Pro", "Enterprise"]

    everything = client.get("/api/admin/packages", headers=auth_headers(admin)).json()["packages"]
    assert sorted(p["name"] for p in everything) == ["Basic", "Enterprise", "Pro"]
