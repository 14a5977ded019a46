"""Payment records, refunds and account credits.

Amounts are integer minor units (cents) everywhere in this module.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from design_platform.errors import ConflictError, NotFound, ValidationError
from design_platform.util.time import utcnow_iso


PAID = "succeeded"
REFUNDED = "refunded"
PARTIALLY_REFUNDED = "partially_refunded"

OPERATIONS = ("refund", "credit")

# (payment, amount_cents) -> None; raises on provider failure
RefundIssuer = Callable[[Dict[str, Any], int], None]


def _debug(msg: str) -> None:
    print(f"[payments] {msg}")


def _payment_select() -> str:
    return """
        SELECT p.*, u.name AS user_name, u.email AS user_email
        FROM payments p
        JOIN users u ON u.user_id = p.user_id
    """


def get_payment(conn: Any, payment_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(_payment_select() + " WHERE p.payment_id=?", (int(payment_id),)).fetchone()
    return dict(row) if row is not None else None


def list_payments(
    conn: Any,
    *,
    status: str | None = None,
    user_id: int | None = None,
    limit: int = 200,
) -> List[Dict[str, Any]]:
    where: list[str] = []
    params: list[Any] = []
    if status:
        where.append("p.status=?")
        params.append(status)
    if user_id is not None:
        where.append("p.user_id=?")
        params.append(int(user_id))

    sql = _payment_select()
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY p.created_at DESC, p.payment_id DESC LIMIT ?"
    params.append(max(1, min(int(limit), 1000)))
    return [dict(r) for r in conn.execute(sql, params).fetchall()]


def record_payment(
    conn: Any,
    *,
    user_id: int,
    amount: int,
    currency: str = "usd",
    status: str = PAID,
    description: str | None = None,
    stripe_invoice_id: str | None = None,
    stripe_payment_intent_id: str | None = None,
) -> Optional[Dict[str, Any]]:
    """Insert a payment. Returns None when the invoice was already recorded."""
    now = utcnow_iso()
    r = conn.execute(
        """
        INSERT INTO payments (
            user_id, amount, currency, status, description,
            stripe_invoice_id, stripe_payment_intent_id, created_at, updated_at
        ) VALUES (?,?,?,?,?,?,?,?,?)
        ON CONFLICT(stripe_invoice_id) DO NOTHING
        RETURNING payment_id
        """,
        (
            int(user_id),
            int(amount),
            (currency or "usd").lower(),
            status,
            description,
            stripe_invoice_id,
            stripe_payment_intent_id,
            now,
            now,
        ),
    ).fetchone()
    if r is None:
        _debug(f"invoice {stripe_invoice_id} already recorded")
        return None
    return get_payment(conn, int(r["payment_id"]))


def refund_payment(
    conn: Any,
    payment_id: int,
    *,
    amount: int | None,
    is_full_refund: bool = False,
    issue_refund: RefundIssuer | None = None,
) -> Dict[str, Any]:
    """Refund part or all of what remains on a payment.

    The requested amount is checked against `amount - refunded_amount` before
    anything is touched; an over-refund leaves the payment exactly as it was.
    The amount is claimed on the row first and `issue_refund` (the billing
    provider call) runs afterwards in the same transaction, so a provider
    failure rolls the claim back. It runs only for payments that carry a
    provider payment id.
    """
    payment = get_payment(conn, payment_id)
    if payment is None:
        raise NotFound("payment_not_found")

    total = int(payment["amount"])
    already = int(payment["refunded_amount"] or 0)
    remaining = total - already

    refund_amount = remaining if is_full_refund else int(amount or 0)
    if is_full_refund and remaining <= 0:
        raise ValidationError("payment_already_refunded")
    if refund_amount <= 0:
        raise ValidationError("amount_must_be_positive")
    if refund_amount > remaining:
        _debug(
            f"refund rejected payment_id={payment_id}: requested={refund_amount} remaining={remaining}"
        )
        raise ValidationError("refund_amount_exceeds_payment")

    new_refunded = already + refund_amount
    new_status = REFUNDED if new_refunded >= total else PARTIALLY_REFUNDED

    # Claim only if nobody refunded in between.
    cur = conn.execute(
        """
        UPDATE payments
        SET refunded_amount=?, status=?, updated_at=?
        WHERE payment_id=? AND refunded_amount=?
        """,
        (new_refunded, new_status, utcnow_iso(), int(payment_id), already),
    )
    if int(cur.rowcount or 0) != 1:
        raise ConflictError("payment_changed_concurrently")

    if issue_refund is not None and payment.get("stripe_payment_intent_id"):
        issue_refund(payment, refund_amount)

    _debug(f"refunded payment_id={payment_id} amount={refund_amount} status={new_status}")
    out = get_payment(conn, payment_id)
    assert out is not None
    return out


def credit_payment(conn: Any, payment_id: int, *, amount: int | None) -> Dict[str, Any]:
    """Record an account credit against a payment."""
    if get_payment(conn, payment_id) is None:
        raise NotFound("payment_not_found")
    credit = int(amount or 0)
    if credit <= 0:
        raise ValidationError("amount_must_be_positive")

    conn.execute(
        "UPDATE payments SET credit_amount=?, updated_at=? WHERE payment_id=?",
        (credit, utcnow_iso(), int(payment_id)),
    )
    _debug(f"credit payment_id={payment_id} amount={credit}")
    out = get_payment(conn, payment_id)
    assert out is not None
    return out


def apply_payment_operation(
    conn: Any,
    payment_id: int,
    *,
    operation: str,
    amount: int | None,
    is_full_refund: bool = False,
    issue_refund: RefundIssuer | None = None,
) -> Dict[str, Any]:
    op = (operation or "").strip().lower()
    if op == "refund":
        return refund_payment(
            conn,
            payment_id,
            amount=amount,
            is_full_refund=is_full_refund,
            issue_refund=issue_refund,
        )
    if op == "credit":
        return credit_payment(conn, payment_id, amount=amount)
    raise ValidationError("invalid_operation")
