"""Marketing content endpoints.

Each kind gets a public list route and admin create/update/delete routes. The
storage behind them is whatever `ContentRepository` the app was built with.
"""

from __future__ import annotations

from typing import Any, Dict

import pydantic
from fastapi import APIRouter, Body, Depends, Request

from design_platform.auth import require_admin
from design_platform.content.models import CASE_STUDY, MODEL_FOR_KIND, SERVICE, TESTIMONIAL
from design_platform.content.repository import ContentRepository
from design_platform.errors import ConfigurationError, NotFound, ValidationError


router = APIRouter()

# URL segment -> content kind
COLLECTIONS = {
    "services": SERVICE,
    "case-studies": CASE_STUDY,
    "testimonials": TESTIMONIAL,
}


def _debug(msg: str) -> None:
    print(f"[api.content] {msg}")


def _repo(request: Request, kind: str) -> ContentRepository:
    repos = getattr(request.app.state, "content_repos", None) or {}
    repo = repos.get(kind)
    if repo is None:
        raise ConfigurationError("content_repository_missing")
    return repo


def _validated(kind: str, body: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return MODEL_FOR_KIND[kind].model_validate(body).payload()
    except pydantic.ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(x) for x in first.get("loc", ()))
        msg = str(first.get("msg") or "invalid_request")
        raise ValidationError(f"{loc}: {msg}" if loc else msg) from e


def _register(collection: str, kind: str) -> None:
    def list_items(request: Request) -> Dict[str, Any]:
        return {"items": _repo(request, kind).list()}

    def create_item(
        request: Request,
        body: Dict[str, Any] = Body(...),
        _admin: Dict[str, Any] = Depends(require_admin),
    ) -> Dict[str, Any]:
        item = _repo(request, kind).create(_validated(kind, body))
        _debug(f"created {kind} id={item['id']}")
        return item

    def update_item(
        item_id: int,
        request: Request,
        body: Dict[str, Any] = Body(...),
        _admin: Dict[str, Any] = Depends(require_admin),
    ) -> Dict[str, Any]:
        item = _repo(request, kind).update(item_id, _validated(kind, body))
        if item is None:
            raise NotFound(f"{kind}_not_found")
        return item

    def delete_item(
        item_id: int,
        request: Request,
        _admin: Dict[str, Any] = Depends(require_admin),
    ) -> Dict[str, Any]:
        if not _repo(request, kind).delete(item_id):
            raise NotFound(f"{kind}_not_found")
        _debug(f"deleted {kind} id={item_id}")
        return {"ok": True}

    name = collection.replace("-", "_")
    router.add_api_route(f"/api/{collection}", list_items, methods=["GET"], name=f"list_{name}")
    router.add_api_route(
        f"/api/admin/{collection}", create_item, methods=["POST"], status_code=201, name=f"create_{name}"
    )
    router.add_api_route(
        f"/api/admin/{collection}/{{item_id}}", update_item, methods=["PUT"], name=f"update_{name}"
    )
    router.add_api_route(
        f"/api/admin/{collection}/{{item_id}}", delete_item, methods=["DELETE"], name=f"delete_{name}"
    )


for _collection, _kind in COLLECTIONS.items():
    _register(_collection, _kind)
