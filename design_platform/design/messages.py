from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from design_platform.auth.crud import get_first_admin, get_user_by_id
from design_platform.config import Config
from design_platform.errors import Forbidden, NotFound, UpstreamError, ValidationError
from design_platform.notify.mailer import new_message_email
from design_platform.util.time import utcnow_iso

from .requests import get_request, get_request_for


def _debug(msg: str) -> None:
    print(f"[messages] {msg}")


def _message_select() -> str:
    return """
        SELECT m.*,
               s.name AS sender_name, s.email AS sender_email, s.role AS sender_role,
               rc.name AS recipient_name, rc.email AS recipient_email,
               r.title AS request_title, r.status AS request_status, r.user_id AS request_user_id
        FROM messages m
        JOIN users s ON s.user_id = m.sender_id
        LEFT JOIN users rc ON rc.user_id = m.recipient_id
        JOIN design_requests r ON r.request_id = m.design_request_id
    """


def _to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    d["is_from_admin"] = bool(d.get("is_from_admin"))
    d["is_read"] = bool(d.get("is_read"))
    return d


def get_message(conn: Any, message_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(_message_select() + " WHERE m.message_id=?", (int(message_id),)).fetchone()
    return _to_dict(row) if row is not None else None


def list_messages(
    conn: Any,
    *,
    user: Mapping[str, Any],
    design_request_id: int | None = None,
) -> List[Dict[str, Any]]:
    """Newest first.

    With a request id: that request's thread (owner or admin only).
    Without: admins see everything; users see messages they sent, received,
    or that belong to their own requests.
    """
    admin = user.get("role") == "ADMIN"
    uid = int(user["user_id"])

    where: list[str] = []
    params: list[Any] = []
    if design_request_id is not None:
        get_request_for(conn, design_request_id, user)
        where.append("m.design_request_id=?")
        params.append(int(design_request_id))
    elif not admin:
        where.append("(m.sender_id=? OR m.recipient_id=? OR r.user_id=?)")
        params.extend([uid, uid, uid])

    sql = _message_select()
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY m.created_at DESC, m.message_id DESC"
    return [_to_dict(r) for r in conn.execute(sql, params).fetchall()]


def create_message(
    conn: Any,
    *,
    sender: Mapping[str, Any],
    design_request_id: int,
    content: str,
    recipient_id: int | None = None,
) -> Dict[str, Any]:
    """Post a message on a request thread.

    The recipient defaults to the request owner when an admin writes, and to
    the first admin when the owner writes.
    """
    text = (content or "").strip()
    if not text:
        raise ValidationError("message_content_required")

    req = get_request(conn, design_request_id)
    if req is None:
        raise NotFound("design_request_not_found")

    admin = sender.get("role") == "ADMIN"
    sender_id = int(sender["user_id"])
    if not admin and int(req["user_id"]) != sender_id:
        _debug(f"user_id={sender_id} tried to post on request_id={design_request_id}")
        raise Forbidden("not_request_owner")

    rid = recipient_id
    if rid is not None:
        recipient = get_user_by_id(conn, int(rid))
        if recipient is None:
            raise ValidationError("recipient_not_found")
        # Customers may only write to staff or to themselves on their own thread.
        if not admin and recipient["role"] != "ADMIN" and int(recipient["user_id"]) != int(req["user_id"]):
            _debug(f"user_id={sender_id} tried to message user_id={rid}")
            raise Forbidden("recipient_not_allowed")
    elif admin:
        rid = int(req["user_id"])
    else:
        first_admin = get_first_admin(conn)
        rid = int(first_admin["user_id"]) if first_admin is not None else None

    r = conn.execute(
        """
        INSERT INTO messages (design_request_id, sender_id, recipient_id, content, is_from_admin, is_read, created_at)
        VALUES (?,?,?,?,?,0,?)
        RETURNING message_id
        """,
        (int(design_request_id), sender_id, rid, text, 1 if admin else 0, utcnow_iso()),
    ).fetchone()
    out = get_message(conn, int(r["message_id"]))
    assert out is not None
    return out


def mark_read(conn: Any, *, user: Mapping[str, Any], message_ids: List[int]) -> int:
    """Mark messages read. Only the recipient (or an admin) may do so."""
    if not message_ids:
        raise ValidationError("message_ids_required")

    admin = user.get("role") == "ADMIN"
    uid = int(user["user_id"])
    n = 0
    for mid in message_ids:
        msg = get_message(conn, int(mid))
        if msg is None:
            raise NotFound("message_not_found")
        if not admin and msg.get("recipient_id") != uid:
            raise Forbidden("not_message_recipient")
        cur = conn.execute("UPDATE messages SET is_read=1 WHERE message_id=? AND is_read=0", (int(mid),))
        n += int(cur.rowcount or 0)
    return n


def notify_recipient(cfg: Config, message: Mapping[str, Any]) -> bool:
    """Email the recipient about a new message. Failures are logged, not raised."""
    to = message.get("recipient_email")
    if not to:
        return False
    try:
        new_message_email(
            cfg,
            to=str(to),
            sender_name=str(message.get("sender_name") or message.get("sender_email") or "Someone"),
            request_title=str(message.get("request_title") or ""),
            request_id=int(message["design_request_id"]),
        )
    except UpstreamError as e:
        _debug(f"notification failed for message_id={message.get('message_id')}: {e.context}")
        return False
    return True
