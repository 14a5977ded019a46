from __future__ import annotations

from typing import Any, Dict, List, Optional

import pydantic
from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from design_platform.auth.crud import get_user_by_id
from design_platform.auth.deps import get_cfg, get_current_user, require_subscription
from design_platform.config import Config
from design_platform.db import connect
from design_platform.design import files as design_files
from design_platform.design import messages as design_messages
from design_platform.design import requests as design_requests
from design_platform.errors import NotFound, Unauthorized, ValidationError
from design_platform.util.hashing import hmac_sha256_hex, signatures_match


router = APIRouter()


def _debug(msg: str) -> None:
    print(f"[api.requests] {msg}")


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadedFile(_Camel):
    key: Optional[str] = None
    name: str = Field(min_length=1)
    url: Optional[str] = None
    ufs_url: Optional[str] = None
    size: int = Field(ge=0)
    type: Optional[str] = None

    @model_validator(mode="after")
    def _need_url(self) -> "UploadedFile":
        if not (self.ufs_url or self.url):
            raise ValueError("File URL is required")
        return self


class DesignRequestCreate(_Camel):
    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    priority: Optional[str] = None
    project_type: Optional[str] = None
    file_format: Optional[str] = None
    dimensions: Optional[str] = None
    reference_links: Optional[str] = None
    uploaded_files: List[UploadedFile] = Field(default_factory=list)


class DesignRequestPatch(_Camel):
    title: Optional[str] = Field(default=None, min_length=3)
    description: Optional[str] = Field(default=None, min_length=10)
    priority: Optional[str] = None
    project_type: Optional[str] = None
    file_format: Optional[str] = None
    dimensions: Optional[str] = None
    reference_links: Optional[str] = None
    status: Optional[str] = None


class FileCreate(_Camel):
    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    size: int = Field(gt=0)
    type: str = Field(min_length=1)
    design_request_id: int


class UploadComplete(_Camel):
    user_id: int
    file_name: str = Field(min_length=1)
    file_size: int
    file_url: str = Field(min_length=1)
    key: str = Field(min_length=1)
    design_request_id: int
    file_type: Optional[str] = None


class MessageCreate(_Camel):
    content: str = Field(min_length=1)
    design_request_id: int
    recipient_id: Optional[int] = None


class MarkRead(_Camel):
    message_ids: List[int] = Field(min_length=1)


# -----------------------------
# Design requests
# -----------------------------


@router.post("/api/design-requests", status_code=201)
def create_design_request(
    payload: DesignRequestCreate,
    user: Dict[str, Any] = Depends(require_subscription),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    attachments = []
    for f in payload.uploaded_files:
        url = design_files.check_url(f.ufs_url or f.url or "")
        design_files.check_upload(f.name, f.size, f.type)
        attachments.append({"name": f.name, "url": url, "size": f.size, "type": f.type, "key": f.key})

    with connect(cfg.DB_DSN) as conn:
        req = design_requests.create_request(
            conn,
            user_id=int(user["user_id"]),
            title=payload.title,
            description=payload.description,
            priority=payload.priority,
            project_type=payload.project_type,
            file_format=payload.file_format,
            dimensions=payload.dimensions,
            reference_links=payload.reference_links,
            uploaded_files=attachments,
        )
        req["files"] = design_files.list_files(conn, int(req["request_id"]))
    return req


@router.get("/api/design-requests")
def list_design_requests(
    status: Optional[str] = Query(default=None),
    priority: Optional[str] = Query(default=None),
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Own requests (admins: everyone's), newest first."""
    owner = None if user.get("role") == "ADMIN" else int(user["user_id"])
    with connect(cfg.DB_DSN) as conn:
        items = design_requests.list_requests(conn, user_id=owner, status=status, priority=priority)
    return {"items": items}


@router.get("/api/design-requests/{request_id}")
def get_design_request(
    request_id: int,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        req = design_requests.get_request_for(conn, request_id, user)
        req["files"] = design_files.list_files(conn, request_id)
    return req


@router.patch("/api/design-requests/{request_id}")
def patch_design_request(
    request_id: int,
    payload: DesignRequestPatch,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    fields = payload.model_dump(exclude_none=True, exclude={"status"})
    with connect(cfg.DB_DSN) as conn:
        return design_requests.update_request(
            conn,
            request_id,
            actor=user,
            fields=fields,
            status=payload.status,
        )


@router.delete("/api/design-requests/{request_id}")
def delete_design_request(
    request_id: int,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        design_requests.delete_request(conn, request_id, actor=user)
    return {"ok": True}


# -----------------------------
# Files
# -----------------------------


@router.post("/api/files", status_code=201)
def create_file(
    payload: FileCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    url = design_files.check_url(payload.url)
    design_files.check_upload(payload.name, payload.size, payload.type)
    with connect(cfg.DB_DSN) as conn:
        design_requests.get_request_for(conn, payload.design_request_id, user)
        return design_files.add_file(
            conn,
            user_id=int(user["user_id"]),
            design_request_id=payload.design_request_id,
            name=payload.name,
            url=url,
            size=payload.size,
            type=payload.type,
        )


@router.post("/api/uploads/complete", status_code=201)
async def upload_complete(
    request: Request,
    signature: str | None = Header(default=None, alias="X-Upload-Signature"),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Upload-provider callback, sent once a browser upload has finished."""
    body = await request.body()

    if cfg.UPLOAD_CALLBACK_SECRET:
        expected = hmac_sha256_hex(cfg.UPLOAD_CALLBACK_SECRET, body)
        if not signature or not signatures_match(expected, signature):
            _debug("upload callback rejected: bad signature")
            raise Unauthorized("invalid_upload_signature")

    try:
        payload = UploadComplete.model_validate_json(body)
    except pydantic.ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        raise ValidationError(str(first.get("msg") or "invalid_request")) from e

    url = design_files.check_url(payload.file_url)
    kind = design_files.check_upload(payload.file_name, payload.file_size, payload.file_type)

    with connect(cfg.DB_DSN) as conn:
        owner = get_user_by_id(conn, payload.user_id)
        if owner is None:
            raise NotFound("user_not_found")
        design_requests.get_request_for(conn, payload.design_request_id, {"user_id": payload.user_id, "role": owner["role"]})
        row = design_files.add_file(
            conn,
            user_id=payload.user_id,
            design_request_id=payload.design_request_id,
            name=payload.file_name,
            url=url,
            size=payload.file_size,
            type=payload.file_type or kind,
            storage_key=payload.key,
        )
    return {"uploadedBy": payload.user_id, "file": row}


# -----------------------------
# Messages
# -----------------------------


@router.get("/api/messages")
def list_messages(
    design_request_id: Optional[int] = Query(default=None, alias="designRequestId"),
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        items = design_messages.list_messages(conn, user=user, design_request_id=design_request_id)
    return {"items": items}


@router.post("/api/messages", status_code=201)
def post_message(
    payload: MessageCreate,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        msg = design_messages.create_message(
            conn,
            sender=user,
            design_request_id=payload.design_request_id,
            content=payload.content,
            recipient_id=payload.recipient_id,
        )
    # After commit: a relay failure must not lose the message.
    msg["notified"] = design_messages.notify_recipient(cfg, msg)
    return msg


@router.put("/api/messages")
def mark_messages_read(
    payload: MarkRead,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        n = design_messages.mark_read(conn, user=user, message_ids=payload.message_ids)
    return {"ok": True, "updated": n}
