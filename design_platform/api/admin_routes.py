from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from design_platform.auth import require_admin
from design_platform.auth.crud import get_user_by_id, public_user, update_user
from design_platform.auth.deps import get_cfg
from design_platform.billing import payments as billing_payments
from design_platform.billing.stripe_billing import refund_issuer
from design_platform.billing.subscriptions import (
    ACTIVE,
    STATUSES,
    create_subscription_record,
    delete_subscription,
    get_subscription,
    update_subscription,
)
from design_platform.catalog.packages import get_package, list_active_packages, list_all_packages
from design_platform.config import Config
from design_platform.db import connect
from design_platform.design import requests as design_requests
from design_platform.errors import NotFound, ValidationError


router = APIRouter()

RECENT_LIMIT = 5


def _debug(msg: str) -> None:
    print(f"[api.admin] {msg}")


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubscriptionUpdate(_Camel):
    action: str
    package_id: Optional[int] = None
    status: Optional[str] = None


class CustomerUpdate(_Camel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    onboarding_completed: Optional[bool] = None
    subscription_update: Optional[SubscriptionUpdate] = None


class CustomerSubscriptionStatus(_Camel):
    status: str = Field(min_length=1)


class AdminRequestUpdate(_Camel):
    status: Optional[str] = None
    assigned_to_id: Optional[int] = None


class PaymentOperation(_Camel):
    operation: str
    amount: Optional[int] = None
    is_full_refund: bool = False


# -----------------------------
# Customers
# -----------------------------


def _require_customer(conn: Any, user_id: int) -> Dict[str, Any]:
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFound("customer_not_found")
    return public_user(row)


def _require_package(conn: Any, package_id: Optional[int]) -> Dict[str, Any]:
    if package_id is None:
        raise ValidationError("package_id_required")
    pkg = get_package(conn, package_id)
    if pkg is None:
        raise NotFound("package_not_found")
    return pkg


def _apply_subscription_update(conn: Any, user_id: int, upd: SubscriptionUpdate) -> Optional[Dict[str, Any]]:
    action = upd.action.strip().lower()
    if action == "create":
        pkg = _require_package(conn, upd.package_id)
        return create_subscription_record(
            conn,
            user_id=user_id,
            package_id=int(pkg["package_id"]),
            status=upd.status or ACTIVE,
        )
    if action == "update":
        if upd.package_id is not None:
            _require_package(conn, upd.package_id)
        return update_subscription(conn, user_id=user_id, status=upd.status, package_id=upd.package_id)
    if action == "delete":
        if not delete_subscription(conn, user_id=user_id):
            raise NotFound("subscription_not_found")
        return None
    raise ValidationError("invalid_subscription_action")


@router.get("/api/admin/customers")
def admin_list_customers(
    status: str = Query("ALL"),
    search: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Customers with their subscription and request count.

    `status` is ALL, NONE (no subscription) or a subscription status.
    """
    where: List[str] = ["u.role='USER'"]
    params: List[Any] = []

    st = (status or "ALL").strip()
    if st.upper() == "NONE":
        where.append("s.subscription_id IS NULL")
    elif st.upper() != "ALL":
        if st.lower() not in STATUSES:
            raise ValidationError("invalid_subscription_status")
        where.append("s.status=?")
        params.append(st.lower())

    q = (search or "").strip().lower()
    if q:
        pattern = "%" + _escape_like(q) + "%"
        where.append("(LOWER(COALESCE(u.name,'')) LIKE ? ESCAPE '\\' OR LOWER(u.email) LIKE ? ESCAPE '\\')")
        params.extend([pattern, pattern])

    sql = f"""
        SELECT u.user_id, u.email, u.name, u.role, u.onboarding_completed, u.created_at, u.last_login_at,
               s.status AS subscription_status, s.package_id,
               p.name AS package_name, p.price AS package_price,
               (SELECT COUNT(*) FROM design_requests r WHERE r.user_id = u.user_id) AS request_count
        FROM users u
        LEFT JOIN subscriptions s ON s.user_id = u.user_id
        LEFT JOIN packages p ON p.package_id = s.package_id
        WHERE {" AND ".join(where)}
        ORDER BY u.created_at DESC, u.user_id DESC
        LIMIT ?
    """
    params.append(limit)

    with connect(cfg.DB_DSN) as conn:
        rows = conn.execute(sql, params).fetchall()

    customers = []
    for r in rows:
        d = dict(r)
        d["onboarding_completed"] = bool(d.get("onboarding_completed"))
        d["subscription_status"] = d.get("subscription_status") or "inactive"
        customers.append(d)
    return {"customers": customers}


@router.get("/api/admin/customers/{user_id}")
def admin_get_customer(
    user_id: int,
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        customer = _require_customer(conn, user_id)
        return {
            "customer": customer,
            "subscription": get_subscription(conn, user_id),
            "recent_requests": design_requests.list_requests(conn, user_id=user_id, limit=RECENT_LIMIT),
            "packages": list_active_packages(conn),
        }


@router.put("/api/admin/customers/{user_id}")
def admin_update_customer(
    user_id: int,
    payload: CustomerUpdate,
    admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        _require_customer(conn, user_id)
        update_user(
            conn,
            user_id,
            name=payload.name,
            email=payload.email,
            role=payload.role,
            onboarding_completed=payload.onboarding_completed,
        )
        if payload.subscription_update is not None:
            _apply_subscription_update(conn, user_id, payload.subscription_update)
        out = {"customer": _require_customer(conn, user_id), "subscription": get_subscription(conn, user_id)}
    _debug(f"customer user_id={user_id} updated by admin user_id={admin['user_id']}")
    return out


@router.put("/api/admin/customers/{user_id}/subscription")
def admin_update_customer_subscription(
    user_id: int,
    payload: CustomerSubscriptionStatus,
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        _require_customer(conn, user_id)
        sub = update_subscription(conn, user_id=user_id, status=payload.status.strip().lower())
    return {"subscription": sub}


# -----------------------------
# Design requests
# -----------------------------


@router.get("/api/admin/design-requests")
def admin_list_design_requests(
    status: Optional[str] = Query(None),
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        items = design_requests.list_requests(conn, status=(status or "").upper() or None)
    return {"items": items}


@router.put("/api/admin/design-requests/{request_id}")
def admin_update_design_request(
    request_id: int,
    payload: AdminRequestUpdate,
    admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return design_requests.update_request(
            conn,
            request_id,
            actor=admin,
            fields={},
            status=payload.status,
            assigned_to_id=payload.assigned_to_id,
        )


# -----------------------------
# Payments
# -----------------------------


@router.get("/api/admin/payments")
def admin_list_payments(
    status: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None, alias="userId"),
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"payments": billing_payments.list_payments(conn, status=status, user_id=user_id)}


@router.get("/api/admin/payments/{payment_id}")
def admin_get_payment(
    payment_id: int,
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        p = billing_payments.get_payment(conn, payment_id)
    if p is None:
        raise NotFound("payment_not_found")
    return p


@router.patch("/api/admin/payments/{payment_id}")
def admin_payment_operation(
    payment_id: int,
    payload: PaymentOperation,
    admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Refund or credit a payment. Amounts are in cents."""
    with connect(cfg.DB_DSN) as conn:
        p = billing_payments.apply_payment_operation(
            conn,
            payment_id,
            operation=payload.operation,
            amount=payload.amount,
            is_full_refund=payload.is_full_refund,
            issue_refund=refund_issuer(cfg),
        )
    _debug(f"payment_id={payment_id} {payload.operation} by admin user_id={admin['user_id']}")
    return p


# -----------------------------
# Stats / packages
# -----------------------------


@router.get("/api/admin/stats")
def admin_stats(
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        total_users = conn.execute("SELECT COUNT(*) AS n FROM users WHERE role='USER'").fetchone()["n"]
        active = conn.execute(
            """
            SELECT COUNT(*) AS n, COALESCE(SUM(p.price), 0) AS mrr
            FROM subscriptions s
            LEFT JOIN packages p ON p.package_id = s.package_id
            WHERE s.status=?
            """,
            (ACTIVE,),
        ).fetchone()
        recent_users = conn.execute(
            """
            SELECT user_id, email, name, created_at
            FROM users
            WHERE role='USER'
            ORDER BY created_at DESC, user_id DESC
            LIMIT ?
            """,
            (RECENT_LIMIT,),
        ).fetchall()

        return {
            "total_users": int(total_users),
            "active_subscriptions": int(active["n"]),
            "mrr": float(active["mrr"] or 0),
            "pending_requests": design_requests.count_by_status(conn, design_requests.PENDING),
            "completed_requests": design_requests.count_by_status(conn, design_requests.COMPLETED),
            "recent_users": [dict(r) for r in recent_users],
            "recent_requests": design_requests.list_requests(
                conn, status=design_requests.PENDING, limit=RECENT_LIMIT
            ),
        }


@router.get("/api/admin/packages")
def admin_list_packages(
    _admin: Dict[str, Any] = Depends(require_admin),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"packages": list_all_packages(conn)}
