from __future__ import annotations

import pytest

from design_platform.design.requests import (
    CANCELED,
    COMPLETED,
    IN_PROGRESS,
    PENDING,
    REVISIONS_REQUESTED,
    can_transition,
    check_transition,
)
from design_platform.errors import ValidationError


REQUEST_BODY = {
    "title": "Launch banner",
    "description": "A wide banner for the spring launch campaign.",
    "priority": "HIGH",
    "projectType": "SOCIAL",
}


@pytest.mark.parametrize(
    "current,new",
    [
        (PENDING, IN_PROGRESS),
        (IN_PROGRESS, REVISIONS_REQUESTED),
        (REVISIONS_REQUESTED, IN_PROGRESS),
        (IN_PROGRESS, COMPLETED),
        (PENDING, CANCELED),
        (IN_PROGRESS, CANCELED),
        (REVISIONS_REQUESTED, CANCELED),
    ],
)
def test_allowed_transitions(current, new):
    assert can_transition(current, new)


@pytest.mark.parametrize(
    "current,new",
    [
        (PENDING, COMPLETED),
        (PENDING, REVISIONS_REQUESTED),
        (COMPLETED, IN_PROGRESS),
        (COMPLETED, CANCELED),
        (CANCELED, PENDING),
        (REVISIONS_REQUESTED, COMPLETED),
    ],
)
def test_rejected_transitions(current, new):
    assert not can_transition(current, new)
    with pytest.raises(ValidationError) as exc:
        check_transition(current, new)
    assert exc.value.detail == "invalid_status_transition"


def test_owner_cannot_start_work():
    assert not can_transition(PENDING, IN_PROGRESS, admin=False)
    assert can_transition(IN_PROGRESS, REVISIONS_REQUESTED, admin=False)
    assert can_transition(PENDING, CANCELED, admin=False)


def test_create_requires_active_subscription(client, make_user, auth_headers):
    user = make_user("alice@example.com")
    r = client.post("/api/design-requests", json=REQUEST_BODY, headers=auth_headers(user))
    assert r.status_code == 403
    assert r.json()["detail"] == "subscription_required"

    assert client.post("/api/design-requests", json=REQUEST_BODY).status_code == 401


def test_create_assigns_first_admin(client, admin, subscriber, auth_headers):
    r = client.post("/api/design-requests", json=REQUEST_BODY, headers=auth_headers(subscriber))
    assert r.status_code == 201
    req = r.json()
    assert req["status"] == PENDING
    assert req["priority"] == "HIGH"
    assert req["project_type"] == "SOCIAL"
    assert req["file_format"] == "ANY"
    assert req["assigned_to_id"] == admin["user_id"]
    assert req["files"] == []


def test_create_validates_body(client, subscriber, auth_headers):
    r = client.post(
        "/api/design-requests",
        json={"title": "ab", "description": "too short"},
        headers=auth_headers(subscriber),
    )
    assert r.status_code == 400


def test_admin_creates_without_subscription(client, admin, auth_headers):
    r = client.post("/api/design-requests", json=REQUEST_BODY, headers=auth_headers(admin))
    assert r.status_code == 201


def test_inline_uploaded_files(client, subscriber, auth_headers):
    body = {
        **REQUEST_BODY,
        "uploadedFiles": [
            {"name": "brief.pdf", "ufsUrl": "https://files.example/brief.pdf", "size": 2048, "type": "application/pdf"},
            {"name": "logo.png", "url": "https://files.example/logo.png", "size": 1024, "type": "image/png"},
        ],
    }
    r = client.post("/api/design-requests", json=body, headers=auth_headers(subscriber))
    assert r.status_code == 201
    assert sorted(f["name"] for f in r.json()["files"]) == ["brief.pdf", "logo.png"]


def test_requests_are_private_to_owner(client, make_user, subscriber, admin, auth_headers):
    req = client.post("/api/design-requests", json=REQUEST_BODY, headers=auth_headers(subscriber)).json()
    other = make_user("mallory@example.com", subscription="active")
    url = f"/api/design-requests/{req['request_id']}"

    assert client.get(url, headers=auth_headers(subscriber)).status_code == 200
    assert client.get(url, headers=auth_headers(admin)).status_code == 200
    assert client.get(url, headers=auth_headers(other)).status_code == 404
    assert client.delete(url, headers=auth_headers(other)).status_code == 404

    mine = client.get("/api/design-requests", headers=auth_headers(other)).json()["items"]
    assert mine == []
    everyone = client.get("/api/design-requests", headers=auth_headers(admin)).json()["items"]
    assert [r["request_id"] for r in everyone] == [req["request_id"]]


def test_list_filters(client, subscriber, auth_headers):
    headers = auth_headers(subscriber)
    client.post("/api/design-requests", json=REQUEST_BODY, headers=headers)
    client.post("/api/design-requests", json={**REQUEST_BODY, "priority": "LOW"}, headers=headers)

    low = client.get("/api/design-requests", params={"priority": "LOW"}, headers=headers).json()["items"]
    assert [r["priority"] for r in low] == ["LOW"]
    pending = client.get("/api/design-requests", params={"status": "PENDING"}, headers=headers).json()["items"]
    assert len(pending) == 2


def test_owner_edits_only_while_pending(client, admin, subscriber, auth_headers):
    req = client.post("/api/design-requests", json=REQUEST_BODY, headers=auth_headers(subscriber)).json()
    url = f"/api/design-requests/{req['request_id']}"

    r = client.patch(url, json={"title": "Launch banner v2"}, headers=auth_headers(subscriber))
    assert r.status_code == 200
    assert r.json()["title"] == "Launch banner v2"

    r = client.put(
        f"/api/admin/design-requests/{req['request_id']}",
        json={"status": IN_PROGRESS},
        headers=auth_headers(admin),
    )
    assert r.status_code == 200

    r = client.patch(url, json={"title": "Too late"}, headers=auth_headers(subscriber))
    assert r.status_code == 400
    assert r.json()["detail"] == "request_not_editable"

    r = client.patch(url, json={"status": REVISIONS_REQUESTED}, headers=auth_headers(subscriber))
    assert r.status_code == 200
    assert r.json()["status"] == REVISIONS_REQUESTED


def test_admin_lifecycle_and_terminal_states(client, admin, subscriber, auth_headers):
    req = client.post("/api/design-requests", json=REQUEST_BODY, headers=auth_headers(subscriber)).json()
    url = f"/api/admin/design-requests/{req['request_id']}"
    h = auth_headers(admin)

    r = client.put(url, json={"status": COMPLETED}, headers=h)
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_status_transition"

    for status in (IN_PROGRESS, REVISIONS_REQUESTED, IN_PROGRESS, COMPLETED):
        r = client.put(url, json={"status": status}, headers=h)
        assert r.status_code == 200, r.json()
        assert r.json()["status"] == status

    r = client.put(url, json={"status": CANCELED}, headers=h)
    assert r.status_code == 400

    owner = client.patch(
        f"/api/design-requests/{req['request_id']}", json={"status": CANCELED}, headers=auth_headers(subscriber)
    )
    assert owner.status_code == 400


def test_admin_reassigns(client, admin, make_user, subscriber, auth_headers):
    designer = make_user("designer@example.com", role="ADMIN", name="Dee")
    req = client.post("/api/design-requests", json=REQUEST_BODY, headers=auth_headers(subscriber)).json()

    r = client.put(
        f"/api/admin/design-requests/{req['request_id']}",
        json={"assignedToId": designer["user_id"]},
        headers=auth_headers(admin),
    )
    assert r.status_code == 200
    assert r.json()["assigned_to_name"] == "Dee"


def test_owner_deletes_request(client, subscriber, auth_headers):
    req = client.post("/api/design-requests", json=REQUEST_BODY, headers=auth_headers(subscriber)).json()
    url = f"/api/design-requests/{req['request_id']}"
    assert client.delete(url, headers=auth_headers(subscriber)).json() == {"ok": True}
    assert client.get(url, headers=auth_headers(subscriber)).status_code == 404
