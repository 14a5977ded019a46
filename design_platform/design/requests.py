"""Design requests and their lifecycle.

    PENDING -> IN_PROGRESS -> COMPLETED
                   ^   |
                   |   v
           REVISIONS_REQUESTED

CANCELED is reachable from any state before COMPLETED. COMPLETED and CANCELED
are terminal.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional

from design_platform.auth.crud import get_first_admin, get_user_by_id
from design_platform.errors import NotFound, ValidationError
from design_platform.util.time import utcnow_iso

from .files import add_file


PENDING = "PENDING"
IN_PROGRESS = "IN_PROGRESS"
REVISIONS_REQUESTED = "REVISIONS_REQUESTED"
COMPLETED = "COMPLETED"
CANCELED = "CANCELED"

STATUSES = (PENDING, IN_PROGRESS, REVISIONS_REQUESTED, COMPLETED, CANCELED)
PRIORITIES = ("LOW", "MEDIUM", "HIGH", "URGENT")

TRANSITIONS: Dict[str, tuple[str, ...]] = {
    PENDING: (IN_PROGRESS, CANCELED),
    IN_PROGRESS: (REVISIONS_REQUESTED, COMPLETED, CANCELED),
    REVISIONS_REQUESTED: (IN_PROGRESS, CANCELED),
    COMPLETED: (),
    CANCELED: (),
}

# What a non-admin owner may do on their own request.
OWNER_TRANSITIONS: Dict[str, tuple[str, ...]] = {
    PENDING: (CANCELED,),
    IN_PROGRESS: (REVISIONS_REQUESTED, CANCELED),
    REVISIONS_REQUESTED: (CANCELED,),
    COMPLETED: (),
    CANCELED: (),
}

# Descriptive fields an owner may edit while the request is still PENDING.
EDITABLE_FIELDS = (
    "title",
    "description",
    "priority",
    "project_type",
    "file_format",
    "dimensions",
    "reference_links",
)

DEFAULTS = {
    "priority": "MEDIUM",
    "project_type": "GENERAL",
    "file_format": "ANY",
    "dimensions": "STANDARD",
}


def _debug(msg: str) -> None:
    print(f"[requests] {msg}")


def can_transition(current: str, new: str, *, admin: bool = True) -> bool:
    table = TRANSITIONS if admin else OWNER_TRANSITIONS
    return new in table.get(current, ())


def check_transition(current: str, new: str, *, admin: bool = True) -> None:
    if new not in STATUSES:
        raise ValidationError("invalid_status")
    if current == new:
        return
    if not can_transition(current, new, admin=admin):
        _debug(f"rejected transition {current} -> {new} (admin={admin})")
        raise ValidationError("invalid_status_transition")


def _request_select() -> str:
    return """
        SELECT r.*,
               u.name AS user_name, u.email AS user_email,
               a.name AS assigned_to_name, a.email AS assigned_to_email
        FROM design_requests r
        JOIN users u ON u.user_id = r.user_id
        LEFT JOIN users a ON a.user_id = r.assigned_to_id
    """


def _to_dict(row: Any) -> Dict[str, Any]:
    return dict(row)


def get_request(conn: Any, request_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(_request_select() + " WHERE r.request_id=?", (int(request_id),)).fetchone()
    return _to_dict(row) if row is not None else None


def get_request_for(conn: Any, request_id: int, user: Mapping[str, Any]) -> Dict[str, Any]:
    """Fetch a request the caller may see. Not-owned requests look absent."""
    req = get_request(conn, request_id)
    if req is None:
        raise NotFound("design_request_not_found")
    if user.get("role") != "ADMIN" and int(req["user_id"]) != int(user["user_id"]):
        _debug(f"user_id={user['user_id']} denied request_id={request_id}")
        raise NotFound("design_request_not_found")
    return req


def list_requests(
    conn: Any,
    *,
    user_id: int | None = None,
    status: str | None = None,
    priority: str | None = None,
    limit: int = 500,
) -> List[Dict[str, Any]]:
    """Newest first. `user_id=None` lists everyone's (admin views)."""
    where: list[str] = []
    params: list[Any] = []
    if user_id is not None:
        where.append("r.user_id=?")
        params.append(int(user_id))
    if status:
        where.append("r.status=?")
        params.append(status)
    if priority:
        where.append("r.priority=?")
        params.append(priority)

    sql = _request_select()
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY r.created_at DESC, r.request_id DESC LIMIT ?"
    params.append(max(1, min(int(limit), 1000)))
    return [_to_dict(r) for r in conn.execute(sql, params).fetchall()]


def create_request(
    conn: Any,
    *,
    user_id: int,
    title: str,
    description: str,
    priority: str | None = None,
    project_type: str | None = None,
    file_format: str | None = None,
    dimensions: str | None = None,
    reference_links: str | None = None,
    uploaded_files: Iterable[Mapping[str, Any]] = (),
) -> Dict[str, Any]:
    """Create a PENDING request, auto-assigned to the first admin (if any)."""
    p = (priority or DEFAULTS["priority"]).upper()
    if p not in PRIORITIES:
        raise ValidationError("invalid_priority")

    admin = get_first_admin(conn)
    now = utcnow_iso()
    r = conn.execute(
        """
        INSERT INTO design_requests (
            user_id, assigned_to_id, title, description, priority, project_type,
            file_format, dimensions, reference_links, status, created_at, updated_at
        ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
        RETURNING request_id
        """,
        (
            int(user_id),
            int(admin["user_id"]) if admin is not None else None,
            title.strip(),
            description.strip(),
            p,
            project_type or DEFAULTS["project_type"],
            file_format or DEFAULTS["file_format"],
            dimensions or DEFAULTS["dimensions"],
            reference_links or None,
            PENDING,
            now,
            now,
        ),
    ).fetchone()
    request_id = int(r["request_id"])

    # Inline attachments uploaded before the request existed.
    for f in uploaded_files:
        add_file(
            conn,
            user_id=user_id,
            design_request_id=request_id,
            name=str(f["name"]),
            url=str(f.get("url") or ""),
            size=int(f.get("size") or 0),
            type=f.get("type"),
            storage_key=f.get("key"),
        )

    _debug(f"created request_id={request_id} user_id={user_id}")
    out = get_request(conn, request_id)
    assert out is not None
    return out


def update_request(
    conn: Any,
    request_id: int,
    *,
    actor: Mapping[str, Any],
    fields: Mapping[str, Any],
    status: str | None = None,
    assigned_to_id: int | None = None,
) -> Dict[str, Any]:
    """Apply an edit and/or a status change for `actor`.

    Owners may edit descriptive fields only while PENDING and may only cancel
    or ask for revisions. Admins may do any lifecycle transition and reassign.
    """
    req = get_request_for(conn, request_id, actor)
    admin = actor.get("role") == "ADMIN"

    sets: list[tuple[str, Any]] = []

    edits = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
    if edits:
        if not admin and req["status"] != PENDING:
            raise ValidationError("request_not_editable")
        if "priority" in edits:
            edits["priority"] = str(edits["priority"]).upper()
            if edits["priority"] not in PRIORITIES:
                raise ValidationError("invalid_priority")
        sets.extend(edits.items())

    if status is not None:
        new_status = str(status).upper()
        check_transition(str(req["status"]), new_status, admin=admin)
        if new_status != req["status"]:
            sets.append(("status", new_status))

    if assigned_to_id is not None:
        if not admin:
            raise ValidationError("assignment_requires_admin")
        assignee = get_user_by_id(conn, int(assigned_to_id))
        if assignee is None:
            raise ValidationError("assignee_not_found")
        sets.append(("assigned_to_id", int(assigned_to_id)))

    if not sets:
        return req

    sets.append(("updated_at", utcnow_iso()))
    sql = "UPDATE design_requests SET " + ", ".join(f"{k}=?" for k, _ in sets) + " WHERE request_id=?"
    conn.execute(sql, [v for _, v in sets] + [int(request_id)])
    _debug(f"updated request_id={request_id} fields={','.join(k for k, _ in sets)}")

    out = get_request(conn, request_id)
    assert out is not None
    return out


def delete_request(conn: Any, request_id: int, *, actor: Mapping[str, Any]) -> None:
    get_request_for(conn, request_id, actor)
    conn.execute("DELETE FROM messages WHERE design_request_id=?", (int(request_id),))
    conn.execute("DELETE FROM files WHERE design_request_id=?", (int(request_id),))
    conn.execute("DELETE FROM design_requests WHERE request_id=?", (int(request_id),))
    _debug(f"deleted request_id={request_id} by user_id={actor.get('user_id')}")


def count_by_status(conn: Any, status: str) -> int:
    r = conn.execute("SELECT COUNT(*) AS n FROM design_requests WHERE status=?", (status,)).fetchone()
    return int(r["n"])
