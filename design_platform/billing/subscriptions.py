"""Subscription records.

`subscriptions.status` is the source of truth for a user's access. Every write
here also rewrites `users.subscription_status`, which is only a cache for
listings and legacy readers.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from design_platform.errors import ConflictError, NotFound, ValidationError
from design_platform.util.time import utcnow_iso


ACTIVE = "active"
PENDING = "pending"
CANCELLED = "cancelled"
REFUNDED = "refunded"
PARTIALLY_REFUNDED = "partially_refunded"
INACTIVE = "inactive"  # no subscription row

STATUSES = (ACTIVE, PENDING, CANCELLED, REFUNDED, PARTIALLY_REFUNDED)

_PROVIDER_STATUS_MAP = {
    "active": ACTIVE,
    "trialing": ACTIVE,
    "succeeded": ACTIVE,
    "incomplete": PENDING,
    "past_due": PENDING,
    "processing": PENDING,
    "canceled": CANCELLED,
    "cancelled": CANCELLED,
    "incomplete_expired": CANCELLED,
    "unpaid": CANCELLED,
    "refunded": REFUNDED,
    "partially_refunded": PARTIALLY_REFUNDED,
}


def _debug(msg: str) -> None:
    print(f"[subscriptions] {msg}")


def map_provider_status(status: str | None) -> str:
    """Billing provider status -> internal status. Unknown values map to pending."""
    s = (status or "").strip().lower()
    mapped = _PROVIDER_STATUS_MAP.get(s)
    if mapped is None:
        _debug(f"unknown provider status {status!r}; treating as pending")
        return PENDING
    return mapped


def _check_status(status: str) -> str:
    s = (status or "").strip().lower()
    if s not in STATUSES:
        raise ValidationError("invalid_subscription_status")
    return s


def _sync_user_cache(conn: Any, user_id: int, status: str) -> None:
    conn.execute(
        "UPDATE users SET subscription_status=?, updated_at=? WHERE user_id=?",
        (status, utcnow_iso(), int(user_id)),
    )


def get_subscription(conn: Any, user_id: int) -> Optional[Dict[str, Any]]:
    """Subscription row joined with its package summary (or None)."""
    row = conn.execute(
        """
        SELECT s.*, p.name AS package_name, p.price AS package_price, p.features_json AS package_features_json
        FROM subscriptions s
        LEFT JOIN packages p ON p.package_id = s.package_id
        WHERE s.user_id=?
        """,
        (int(user_id),),
    ).fetchone()
    if row is None:
        return None
    d = dict(row)
    d["cancel_at_period_end"] = bool(d.get("cancel_at_period_end"))
    return d


def get_subscription_by_provider_id(conn: Any, stripe_subscription_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        "SELECT * FROM subscriptions WHERE stripe_subscription_id=?",
        (stripe_subscription_id,),
    ).fetchone()
    return dict(row) if row is not None else None


def effective_status(conn: Any, user_id: int) -> str:
    row = conn.execute("SELECT status FROM subscriptions WHERE user_id=?", (int(user_id),)).fetchone()
    return str(row["status"]) if row is not None else INACTIVE


def upsert_subscription(
    conn: Any,
    *,
    user_id: int,
    status: str,
    package_id: int | None = None,
    stripe_subscription_id: str | None = None,
    stripe_price_id: str | None = None,
    current_period_end: str | None = None,
    cancel_at_period_end: bool | None = None,
) -> Dict[str, Any]:
    """Create or update the user's single subscription in one statement.

    Concurrent callers for the same user cannot produce two rows: the insert
    collides on UNIQUE(user_id) and turns into an update. Optional fields left
    as None keep their stored values.
    """
    s = _check_status(status)
    now = utcnow_iso()
    cape = None if cancel_at_period_end is None else (1 if cancel_at_period_end else 0)

    conn.execute(
        """
        INSERT INTO subscriptions (
            user_id, package_id, status, stripe_subscription_id, stripe_price_id,
            current_period_end, cancel_at_period_end, created_at, updated_at
        ) VALUES (?,?,?,?,?,?,?,?,?)
        ON CONFLICT(user_id) DO UPDATE SET
            package_id=COALESCE(excluded.package_id, subscriptions.package_id),
            status=excluded.status,
            stripe_subscription_id=COALESCE(excluded.stripe_subscription_id, subscriptions.stripe_subscription_id),
            stripe_price_id=COALESCE(excluded.stripe_price_id, subscriptions.stripe_price_id),
            current_period_end=COALESCE(excluded.current_period_end, subscriptions.current_period_end),
            cancel_at_period_end=COALESCE(?, subscriptions.cancel_at_period_end),
            updated_at=excluded.updated_at
        """,
        (
            int(user_id),
            package_id,
            s,
            stripe_subscription_id,
            stripe_price_id,
            current_period_end,
            cape or 0,
            now,
            now,
            cape,
        ),
    )

    _sync_user_cache(conn, user_id, s)
    out = get_subscription(conn, user_id)
    assert out is not None
    return out


def create_subscription_record(
    conn: Any,
    *,
    user_id: int,
    package_id: int,
    status: str = ACTIVE,
    stripe_subscription_id: str | None = None,
) -> Dict[str, Any]:
    """Insert a new subscription; ConflictError when the user already has one."""
    s = _check_status(status)
    now = utcnow_iso()
    r = conn.execute(
        """
        INSERT INTO subscriptions (user_id, package_id, status, stripe_subscription_id, created_at, updated_at)
        VALUES (?,?,?,?,?,?)
        ON CONFLICT(user_id) DO NOTHING
        RETURNING subscription_id
        """,
        (int(user_id), int(package_id), s, stripe_subscription_id, now, now),
    ).fetchone()
    if r is None:
        raise ConflictError("already_subscribed")

    _sync_user_cache(conn, user_id, s)
    out = get_subscription(conn, user_id)
    assert out is not None
    return out


def update_subscription(
    conn: Any,
    *,
    user_id: int,
    status: str | None = None,
    package_id: int | None = None,
) -> Dict[str, Any]:
    existing = get_subscription(conn, user_id)
    if existing is None:
        raise NotFound("subscription_not_found")

    new_status = _check_status(status) if status else str(existing["status"])
    conn.execute(
        """
        UPDATE subscriptions
        SET status=?, package_id=COALESCE(?, package_id), updated_at=?
        WHERE user_id=?
        """,
        (new_status, package_id, utcnow_iso(), int(user_id)),
    )
    _sync_user_cache(conn, user_id, new_status)
    out = get_subscription(conn, user_id)
    assert out is not None
    return out


def delete_subscription(conn: Any, *, user_id: int) -> bool:
    cur = conn.execute("DELETE FROM subscriptions WHERE user_id=?", (int(user_id),))
    _sync_user_cache(conn, user_id, INACTIVE)
    return int(cur.rowcount or 0) > 0
