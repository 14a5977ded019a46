from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from design_platform.api.server import create_app
from design_platform.design import files as design_files
from design_platform.design.messages import notify_recipient
from design_platform.errors import UpstreamError, ValidationError
from design_platform.notify import mailer
from design_platform.util.hashing import hmac_sha256_hex

from conftest import make_cfg


REQUEST_BODY = {"title": "Menu redesign", "description": "Two-page menu for the new bistro."}


@pytest.fixture
def request_id(client, subscriber, admin, auth_headers):
    r = client.post("/api/design-requests", json=REQUEST_BODY, headers=auth_headers(subscriber))
    return r.json()["request_id"]


# -----------------------------
# Upload limits
# -----------------------------


@pytest.mark.parametrize(
    "name,size,ctype,kind",
    [
        ("photo.jpg", design_files.IMAGE_MAX_BYTES, "image/jpeg", "image"),
        ("scan.pdf", design_files.PDF_MAX_BYTES, "application/pdf", "pdf"),
        ("LOGO.PNG", 10, None, "image"),
    ],
)
def test_upload_within_limits(name, size, ctype, kind):
    assert design_files.check_upload(name, size, ctype) == kind


@pytest.mark.parametrize(
    "name,size,ctype,detail",
    [
        ("photo.jpg", design_files.IMAGE_MAX_BYTES + 1, "image/jpeg", "file_too_large"),
        ("scan.pdf", design_files.PDF_MAX_BYTES + 1, "application/pdf", "file_too_large"),
        ("notes.docx", 10, "application/msword", "unsupported_file_type"),
        ("empty.png", 0, "image/png", "file_size_invalid"),
    ],
)
def test_upload_rejections(name, size, ctype, detail):
    with pytest.raises(ValidationError) as exc:
        design_files.check_upload(name, size, ctype)
    assert exc.value.detail == detail


def test_file_url_must_be_http():
    with pytest.raises(ValidationError):
        design_files.check_url("javascript:alert(1)")
    assert design_files.check_url(" https://cdn.example/a.png ") == "https://cdn.example/a.png"


def test_attach_file_to_own_request(client, subscriber, make_user, request_id, auth_headers):
    body = {"name": "ref.png", "url": "https://cdn.example/ref.png", "size": 100, "type": "image/png", "designRequestId": request_id}
    r = client.post("/api/files", json=body, headers=auth_headers(subscriber))
    assert r.status_code == 201
    assert r.json()["design_request_id"] == request_id

    other = make_user("eve@example.com")
    assert client.post("/api/files", json=body, headers=auth_headers(other)).status_code == 404


@pytest.mark.parametrize(
    "name,size,ctype,detail",
    [
        ("setup.exe", 1024, "application/octet-stream", "unsupported_file_type"),
        ("poster.png", design_files.IMAGE_MAX_BYTES + 1, "image/png", "file_too_large"),
    ],
)
def test_attach_file_enforces_upload_limits(client, subscriber, request_id, auth_headers, name, size, ctype, detail):
    body = {"name": name, "url": "https://cdn.example/x", "size": size, "type": ctype, "designRequestId": request_id}
    r = client.post("/api/files", json=body, headers=auth_headers(subscriber))
    assert r.status_code == 400
    assert r.json()["detail"] == detail


def _callback_body(user_id, request_id, **overrides):
    body = {
        "userId": user_id,
        "fileName": "draft.pdf",
        "fileSize": 4096,
        "fileUrl": "https://uploads.example/f/abc",
        "key": "abc",
        "designRequestId": request_id,
    }
    body.update(overrides)
    return json.dumps(body).encode("utf-8")


def test_upload_callback_creates_file(client, subscriber, request_id):
    r = client.post("/api/uploads/complete", content=_callback_body(subscriber["user_id"], request_id))
    assert r.status_code == 201
    f = r.json()["file"]
    assert f["storage_key"] == "abc"
    assert f["type"] == "pdf"


def test_upload_callback_enforces_limits(client, subscriber, request_id):
    body = _callback_body(subscriber["user_id"], request_id, fileName="huge.png", fileSize=5 * 1024 * 1024)
    r = client.post("/api/uploads/complete", content=body)
    assert r.status_code == 400
    assert r.json()["detail"] == "file_too_large"


def test_upload_callback_rejects_foreign_request(client, make_user, request_id):
    other = make_user("eve@example.com")
    r = client.post("/api/uploads/complete", content=_callback_body(other["user_id"], request_id))
    assert r.status_code == 404


def test_upload_callback_signature(tmp_path, content_repos):
    from design_platform.auth.crud import create_user
    from design_platform.catalog.packages import seed_default_packages
    from design_platform.db import connect, init_db
    from design_platform.design.requests import create_request

    c = make_cfg(tmp_path, UPLOAD_CALLBACK_SECRET="upload-secret")
    init_db(c.DB_DSN)
    with connect(c.DB_DSN) as conn:
        seed_default_packages(conn)
        u = create_user(conn, email="u@example.com", password="password-123")
        req = create_request(conn, user_id=int(u["user_id"]), title="Card", description="Business card design")

    body = _callback_body(u["user_id"], req["request_id"])
    with TestClient(create_app(c, content_repos=content_repos)) as client:
        unsigned = client.post("/api/uploads/complete", content=body)
        assert unsigned.status_code == 401
        assert unsigned.json()["detail"] == "invalid_upload_signature"

        forged = client.post("/api/uploads/complete", content=body, headers={"X-Upload-Signature": "00" * 32})
        assert forged.status_code == 401

        sig = hmac_sha256_hex("upload-secret", body)
        ok = client.post("/api/uploads/complete", content=body, headers={"X-Upload-Signature": sig})
        assert ok.status_code == 201


# -----------------------------
# Messages
# -----------------------------


def test_message_thread_between_owner_and_admin(client, subscriber, admin, request_id, auth_headers):
    r = client.post(
        "/api/messages",
        json={"content": "Can we use a darker palette?", "designRequestId": request_id},
        headers=auth_headers(subscriber),
    )
    assert r.status_code == 201
    msg = r.json()
    assert msg["recipient_id"] == admin["user_id"]
    assert msg["is_from_admin"] is False
    assert msg["notified"] is True

    reply = client.post(
        "/api/messages",
        json={"content": "Sure, new draft tomorrow.", "designRequestId": request_id},
        headers=auth_headers(admin),
    ).json()
    assert reply["recipient_id"] == subscriber["user_id"]
    assert reply["is_from_admin"] is True

    thread = client.get("/api/messages", params={"designRequestId": request_id}, headers=auth_headers(subscriber))
    assert [m["message_id"] for m in thread.json()["items"]] == [reply["message_id"], msg["message_id"]]


def test_outsiders_cannot_read_or_post(client, make_user, subscriber, request_id, auth_headers):
    eve = make_user("eve@example.com")
    r = client.post(
        "/api/messages",
        json={"content": "hello", "designRequestId": request_id},
        headers=auth_headers(eve),
    )
    assert r.status_code == 403
    assert r.json()["detail"] == "not_request_owner"

    r = client.get("/api/messages", params={"designRequestId": request_id}, headers=auth_headers(eve))
    assert r.status_code == 404


def test_owner_cannot_message_other_customers(client, make_user, subscriber, admin, request_id, auth_headers):
    victim = make_user("victim@example.com", name="Victim Person")
    r = client.post(
        "/api/messages",
        json={"content": "hi", "designRequestId": request_id, "recipientId": victim["user_id"]},
        headers=auth_headers(subscriber),
    )
    assert r.status_code == 403
    assert r.json()["detail"] == "recipient_not_allowed"
    assert "victim@example.com" not in r.text

    to_admin = client.post(
        "/api/messages",
        json={"content": "hi", "designRequestId": request_id, "recipientId": admin["user_id"]},
        headers=auth_headers(subscriber),
    )
    assert to_admin.status_code == 201


def test_mark_read_by_recipient_only(client, subscriber, admin, make_user, request_id, auth_headers):
    msg = client.post(
        "/api/messages",
        json={"content": "First draft attached.", "designRequestId": request_id},
        headers=auth_headers(admin),
    ).json()

    eve = make_user("eve@example.com")
    denied = client.put("/api/messages", json={"messageIds": [msg["message_id"]]}, headers=auth_headers(eve))
    assert denied.status_code == 403

    ok = client.put("/api/messages", json={"messageIds": [msg["message_id"]]}, headers=auth_headers(subscriber))
    assert ok.json() == {"ok": True, "updated": 1}
    again = client.put("/api/messages", json={"messageIds": [msg["message_id"]]}, headers=auth_headers(subscriber))
    assert again.json()["updated"] == 0


def test_notification_failure_is_logged_not_raised(cfg, monkeypatch):
    def failing_send(cfg, **kwargs):
        raise UpstreamError("email_delivery_failed", context="relay down")

    monkeypatch.setattr(mailer, "send_email", failing_send)
    message = {
        "message_id": 1,
        "design_request_id": 1,
        "recipient_email": "sub@example.com",
        "sender_name": "Studio",
        "request_title": "Menu",
    }
    assert notify_recipient(cfg, message) is False


def test_message_email_escapes_html(cfg, monkeypatch):
    sent = []
    monkeypatch.setattr(mailer, "send_email", lambda cfg, **kw: sent.append(kw))
    mailer.new_message_email(cfg, to="a@example.com", sender_name="<b>Eve</b>", request_title="Logo & Co", request_id=3)
    assert "&lt;b&gt;Eve&lt;/b&gt;" in sent[0]["html"]
    assert "Logo &amp; Co" in sent[0]["html"]
    assert sent[0]["html"].count("/dashboard/requests/3") == 1
