from __future__ import annotations

import pytest

from design_platform.content.models import CASE_STUDY, TESTIMONIAL
from design_platform.content.repository import ContentRepository, SqlContentRepository


CASE_STUDY_BODY = {
    "title": "Bakery rebrand",
    "category": "Branding",
    "features": ["Logo", "Packaging"],
    "metrics": [{"title": "Sales", "value": "+40%"}],
    "gallery": ["https://cdn.example/1.jpg"],
}


def test_public_listing_needs_no_session(client, content_repos):
    content_repos[CASE_STUDY].create({"title": "Existing", "category": "Web"})
    r = client.get("/api/case-studies")
    assert r.status_code == 200
    assert [x["title"] for x in r.json()["items"]] == ["Existing"]
    assert client.get("/api/services").json() == {"items": []}


def test_admin_create_update_delete_case_study(client, admin, auth_headers, content_repos):
    h = auth_headers(admin)
    created = client.post("/api/admin/case-studies", json=CASE_STUDY_BODY, headers=h)
    assert created.status_code == 201
    item = created.json()
    assert item["metrics"] == [{"title": "Sales", "value": "+40%"}]

    updated = client.put(
        f"/api/admin/case-studies/{item['id']}", json={**CASE_STUDY_BODY, "title": "Bakery rebrand 2"}, headers=h
    )
    assert updated.status_code == 200
    assert updated.json()["title"] == "Bakery rebrand 2"

    deleted = client.delete(f"/api/admin/case-studies/{item['id']}", headers=h)
    assert deleted.json() == {"ok": True}
    assert content_repos[CASE_STUDY].list() == []

    assert client.delete(f"/api/admin/case-studies/{item['id']}", headers=h).status_code == 404


def test_case_study_delete_permissions(client, admin, subscriber, auth_headers, content_repos):
    item = content_repos[CASE_STUDY].create({"title": "Keep me", "category": "Print"})
    url = f"/api/admin/case-studies/{item['id']}"

    assert client.delete(url).status_code == 401
    assert client.delete(url, headers=auth_headers(subscriber)).status_code == 403
    assert content_repos[CASE_STUDY].get(item["id"]) is not None

    assert client.delete(url, headers=auth_headers(admin)).status_code == 200


@pytest.mark.parametrize("rating", [0, 6])
def test_testimonial_rating_bounds(client, admin, auth_headers, rating):
    body = {"clientName": "Ana", "quote": "Great work", "rating": rating}
    r = client.post("/api/admin/testimonials", json=body, headers=auth_headers(admin))
    assert r.status_code == 400
    assert "rating" in r.json()["detail"]


def test_testimonial_created_with_camel_case_body(client, admin, auth_headers, content_repos):
    body = {"clientName": "Ana", "company": "Ana's Cafe", "quote": "Great work", "rating": 5}
    r = client.post("/api/admin/testimonials", json=body, headers=auth_headers(admin))
    assert r.status_code == 201
    assert content_repos[TESTIMONIAL].list()[0]["client_name"] == "Ana"


def test_sql_repository_roundtrip(cfg):
    repo = SqlContentRepository(cfg.DB_DSN, CASE_STUDY)
    item = repo.create({"title": "SQL", "category": "Web"})
    assert repo.get(item["id"])["title"] == "SQL"

    assert repo.update(item["id"], {"title": "SQL 2", "category": "Web"})["title"] == "SQL 2"
    assert repo.update(424242, {"title": "x"}) is None
    assert [x["id"] for x in repo.list()] == [item["id"]]

    assert repo.delete(item["id"]) is True
    assert repo.get(item["id"]) is None


def test_sql_repository_rejects_unknown_kind(cfg):
    with pytest.raises(ValueError):
        SqlContentRepository(cfg.DB_DSN, "blog_post")


def test_repository_contract_is_enforced():
    class Partial(ContentRepository):
        def list(self):
            return []

    with pytest.raises(TypeError):
        Partial()
