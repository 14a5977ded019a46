from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from design_platform.auth.crud import get_user_by_id, get_user_by_stripe_customer_id, update_user
from design_platform.catalog.packages import (
    get_package,
    get_package_by_name,
    package_for_price,
    price_id_for_package,
)
from design_platform.config import Config
from design_platform.db import connect
from design_platform.errors import (
    BillingAuthError,
    ConfigurationError,
    NotFound,
    UpstreamError,
    ValidationError,
)
from design_platform.util.time import ts_to_iso, utcnow_iso

from .payments import RefundIssuer, record_payment
from .subscriptions import (
    ACTIVE,
    CANCELLED,
    get_subscription,
    map_provider_status,
    upsert_subscription,
)


TEST_SUBSCRIPTION_PREFIX = "test_"
INVOICE_LIMIT = 12


def _debug(msg: str) -> None:
    print(f"[billing] {msg}")


def _get_stripe(cfg: Config):
    import stripe

    if not cfg.STRIPE_SECRET_KEY:
        raise ConfigurationError("stripe_secret_key_missing")

    stripe.api_key = cfg.STRIPE_SECRET_KEY
    return stripe


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _id_of(obj: Any) -> Optional[str]:
    """Expandable fields arrive either as an id string or as an object."""
    if obj is None:
        return None
    if isinstance(obj, str):
        return obj
    v = _field(obj, "id")
    return str(v) if v else None


@contextmanager
def _provider_call(stripe: Any, op: str) -> Iterator[None]:
    try:
        yield
    except stripe.AuthenticationError as e:
        _debug(f"{op}: provider rejected credentials: {e}")
        raise BillingAuthError(context=f"{op}: {e}") from e
    except stripe.StripeError as e:
        _debug(f"{op}: provider error: {type(e).__name__}: {e}")
        raise UpstreamError("billing_provider_error", context=f"{op}: {e}") from e


def _first_price_id(sub: Any) -> Optional[str]:
    items = _field(_field(sub, "items"), "data") or []
    if not items:
        return None
    return _id_of(_field(items[0], "price"))


def _period_end(sub: Any) -> Optional[str]:
    # Newer API versions moved the period onto subscription items.
    ts = _field(sub, "current_period_end")
    if ts is None:
        items = _field(_field(sub, "items"), "data") or []
        if items:
            ts = _field(items[0], "current_period_end")
    return ts_to_iso(ts)


# -----------------------------
# Customers / plans
# -----------------------------


def ensure_customer(cfg: Config, conn: Any, user: Mapping[str, Any]) -> str:
    """Return the user's provider customer id, creating and saving it once."""
    existing = (user.get("stripe_customer_id") or "").strip()
    if existing:
        return existing

    row = get_user_by_id(conn, int(user["user_id"]))
    if row is not None and row["stripe_customer_id"]:
        return str(row["stripe_customer_id"])

    stripe = _get_stripe(cfg)
    with _provider_call(stripe, "customer.create"):
        customer = stripe.Customer.create(
            email=user.get("email"),
            name=user.get("name") or None,
            metadata={"user_id": str(user["user_id"])},
        )
    customer_id = str(_field(customer, "id"))
    update_user(conn, int(user["user_id"]), stripe_customer_id=customer_id)
    _debug(f"created customer {customer_id} for user_id={user['user_id']}")
    return customer_id


def resolve_plan(conn: Any, plan: str | None) -> Dict[str, Any]:
    """Plan key ('PRO') or package name ('Pro') -> package row."""
    p = (plan or "").strip()
    if not p:
        raise ValidationError("plan_required")
    pkg = get_package_by_name(conn, p)
    if pkg is None or not pkg.get("is_active"):
        raise ValidationError("invalid_plan")
    return pkg


def _require_price(cfg: Config, pkg: Dict[str, Any]) -> str:
    price_id = price_id_for_package(cfg, pkg)
    if not price_id:
        _debug(f"no price configured for package_id={pkg.get('package_id')} name={pkg.get('name')}")
        raise ConfigurationError("price_id_missing")
    return price_id


# -----------------------------
# Checkout / subscriptions
# -----------------------------


def create_checkout_session(cfg: Config, conn: Any, *, user: Mapping[str, Any], plan: str) -> str:
    """Create a Checkout Session URL for a subscription."""
    pkg = resolve_plan(conn, plan)
    price_id = _require_price(cfg, pkg)
    stripe = _get_stripe(cfg)

    base = cfg.PUBLIC_APP_URL.rstrip("/")
    params: Dict[str, Any] = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": f"{base}/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{base}/pricing",
        # Helps us map webhooks back to users.
        "client_reference_id": str(user["user_id"]),
        "metadata": {"user_id": str(user["user_id"]), "package_id": str(pkg["package_id"])},
        "subscription_data": {
            "metadata": {"user_id": str(user["user_id"]), "package_id": str(pkg["package_id"])},
        },
    }

    customer_id = (user.get("stripe_customer_id") or "").strip()
    if customer_id:
        params["customer"] = customer_id
    else:
        # Checkout will create a customer automatically.
        params["customer_email"] = user.get("email")

    with _provider_call(stripe, "checkout.create"):
        session = stripe.checkout.Session.create(**params)
    url = _field(session, "url")
    if not url:
        raise UpstreamError("billing_provider_error", context="checkout session url missing")
    return str(url)


def create_subscription(cfg: Config, conn: Any, *, user: Mapping[str, Any], package_id: int) -> Dict[str, Any]:
    """Start a default-incomplete subscription and return the payment client secret."""
    pkg = get_package(conn, package_id)
    if pkg is None:
        raise NotFound("package_not_found")
    price_id = _require_price(cfg, pkg)

    customer_id = ensure_customer(cfg, conn, user)
    stripe = _get_stripe(cfg)
    with _provider_call(stripe, "subscription.create"):
        sub = stripe.Subscription.create(
            customer=customer_id,
            items=[{"price": price_id}],
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.payment_intent", "latest_invoice.confirmation_secret"],
            metadata={
                "user_id": str(user["user_id"]),
                "package_id": str(pkg["package_id"]),
                "package_name": str(pkg["name"]),
            },
        )

    invoice = _field(sub, "latest_invoice")
    secret = _field(_field(invoice, "payment_intent"), "client_secret") or _field(
        _field(invoice, "confirmation_secret"), "client_secret"
    )
    if not secret:
        raise UpstreamError("billing_provider_error", context=f"no client secret on subscription {_field(sub, 'id')}")

    return {"clientSecret": str(secret), "subscriptionId": str(_field(sub, "id"))}


def verify_checkout_session(cfg: Config, session_id: str) -> Dict[str, Any]:
    if not session_id:
        raise ValidationError("session_id_required")
    stripe = _get_stripe(cfg)
    with _provider_call(stripe, "checkout.retrieve"):
        session = stripe.checkout.Session.retrieve(session_id)
    status = _field(session, "status")
    return {"verified": status == "complete", "status": status}


def create_billing_portal_session(cfg: Config, *, customer_id: str | None, return_url: str) -> str:
    if not customer_id:
        raise ValidationError("no_billing_customer")
    stripe = _get_stripe(cfg)
    with _provider_call(stripe, "portal.create"):
        session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
    url = _field(session, "url")
    if not url:
        raise UpstreamError("billing_provider_error", context="portal session url missing")
    return str(url)


def get_subscription_summary(cfg: Config, conn: Any, *, user_id: int) -> Dict[str, Any]:
    local = get_subscription(conn, user_id)
    if local is None:
        raise NotFound("subscription_not_found")

    sub_id = local.get("stripe_subscription_id") or ""
    if not sub_id or sub_id.startswith(TEST_SUBSCRIPTION_PREFIX) or not cfg.billing_enabled:
        return {
            "id": sub_id or None,
            "plan": local.get("package_name"),
            "status": local["status"],
            "currentPeriodEnd": local.get("current_period_end"),
            "price": local.get("package_price"),
            "interval": "month",
            "cancelAtPeriodEnd": bool(local.get("cancel_at_period_end")),
        }

    stripe = _get_stripe(cfg)
    with _provider_call(stripe, "subscription.retrieve"):
        sub = stripe.Subscription.retrieve(sub_id)

    items = _field(_field(sub, "items"), "data") or []
    price = _field(items[0], "price") if items else None
    unit_amount = _field(price, "unit_amount")
    return {
        "id": _field(sub, "id"),
        "plan": local.get("package_name"),
        "status": map_provider_status(_field(sub, "status")),
        "currentPeriodEnd": _period_end(sub),
        "price": (int(unit_amount) / 100) if unit_amount else local.get("package_price"),
        "interval": _field(_field(price, "recurring"), "interval"),
        "cancelAtPeriodEnd": bool(_field(sub, "cancel_at_period_end")),
    }


def cancel_subscription(cfg: Config, conn: Any, *, user_id: int) -> Dict[str, Any]:
    """Cancel at period end (test subscriptions are cancelled immediately)."""
    local = get_subscription(conn, user_id)
    if local is None:
        raise NotFound("subscription_not_found")

    sub_id = local.get("stripe_subscription_id") or ""
    if not sub_id or sub_id.startswith(TEST_SUBSCRIPTION_PREFIX):
        out = upsert_subscription(conn, user_id=user_id, status=CANCELLED, cancel_at_period_end=True)
        _debug(f"cancelled local subscription for user_id={user_id}")
        return out

    stripe = _get_stripe(cfg)
    with _provider_call(stripe, "subscription.modify"):
        sub = stripe.Subscription.modify(sub_id, cancel_at_period_end=True)

    return upsert_subscription(
        conn,
        user_id=user_id,
        status=map_provider_status(_field(sub, "status")),
        current_period_end=_period_end(sub),
        cancel_at_period_end=True,
    )


# -----------------------------
# Invoices / payment methods / refunds
# -----------------------------


def list_invoices(cfg: Config, *, customer_id: str | None) -> List[Dict[str, Any]]:
    if not customer_id:
        return []
    stripe = _get_stripe(cfg)
    with _provider_call(stripe, "invoice.list"):
        invoices = stripe.Invoice.list(customer=customer_id, limit=INVOICE_LIMIT)

    out: List[Dict[str, Any]] = []
    for inv in _field(invoices, "data") or []:
        out.append(
            {
                "id": _field(inv, "id"),
                "date": ts_to_iso(_field(inv, "created")),
                "amount": int(_field(inv, "amount_paid") or 0) / 100,
                "status": _field(inv, "status"),
                "downloadUrl": _field(inv, "invoice_pdf"),
            }
        )
    return out


def get_invoice_pdf(cfg: Config, *, customer_id: str | None, invoice_id: str) -> str:
    if not invoice_id:
        raise ValidationError("invoice_id_required")
    if not customer_id:
        raise NotFound("invoice_not_found")
    stripe = _get_stripe(cfg)
    with _provider_call(stripe, "invoice.retrieve"):
        inv = stripe.Invoice.retrieve(invoice_id)

    if _id_of(_field(inv, "customer")) != customer_id:
        _debug(f"invoice {invoice_id} does not belong to customer {customer_id}")
        raise NotFound("invoice_not_found")
    url = _field(inv, "invoice_pdf")
    if not url:
        raise NotFound("invoice_pdf_unavailable")
    return str(url)


def list_payment_methods(cfg: Config, *, customer_id: str | None) -> List[Dict[str, Any]]:
    if not customer_id:
        return []
    stripe = _get_stripe(cfg)
    with _provider_call(stripe, "payment_method.list"):
        customer = stripe.Customer.retrieve(customer_id)
        methods = stripe.PaymentMethod.list(customer=customer_id, type="card")

    default_id = _id_of(_field(_field(customer, "invoice_settings"), "default_payment_method"))
    out: List[Dict[str, Any]] = []
    for m in _field(methods, "data") or []:
        card = _field(m, "card")
        out.append(
            {
                "id": _field(m, "id"),
                "brand": _field(card, "brand"),
                "last4": _field(card, "last4"),
                "expMonth": _field(card, "exp_month"),
                "expYear": _field(card, "exp_year"),
                "isDefault": _field(m, "id") == default_id,
            }
        )
    return out


def create_refund(
    cfg: Config,
    *,
    payment_intent_id: str,
    amount: int,
    idempotency_key: str | None = None,
) -> str:
    stripe = _get_stripe(cfg)
    params: Dict[str, Any] = {"payment_intent": payment_intent_id, "amount": int(amount)}
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    with _provider_call(stripe, "refund.create"):
        refund = stripe.Refund.create(**params)
    refund_id = str(_field(refund, "id"))
    _debug(f"refund {refund_id} payment_intent={payment_intent_id} amount={amount}")
    return refund_id


def refund_issuer(cfg: Config) -> Optional[RefundIssuer]:
    """Provider refund callback for payments; None when billing is not configured."""
    if not cfg.billing_enabled:
        return None

    def _issue(payment: Dict[str, Any], amount: int) -> None:
        # Keyed on the refunded total this call brings the payment to.
        total = int(payment.get("refunded_amount") or 0) + int(amount)
        create_refund(
            cfg,
            payment_intent_id=str(payment["stripe_payment_intent_id"]),
            amount=amount,
            idempotency_key=f"payment-{payment['payment_id']}-refunded-{total}",
        )

    return _issue


# -----------------------------
# Webhooks
# -----------------------------


def process_stripe_webhook(
    cfg: Config,
    *,
    payload_bytes: bytes,
    signature: str | None,
) -> Tuple[str, bool]:
    """Verify + process a webhook.

    Returns: (event_id, processed)
    """
    stripe = _get_stripe(cfg)
    if not cfg.STRIPE_WEBHOOK_SECRET:
        raise ConfigurationError("stripe_webhook_secret_missing")

    if not signature:
        raise ValidationError("stripe_signature_missing")

    try:
        event = stripe.Webhook.construct_event(payload_bytes, signature, cfg.STRIPE_WEBHOOK_SECRET)
    except stripe.SignatureVerificationError as e:
        _debug(f"webhook signature rejected: {e}")
        raise ValidationError("stripe_signature_invalid") from e
    except ValueError as e:
        _debug(f"webhook payload invalid: {e}")
        raise ValidationError("stripe_payload_invalid") from e

    return handle_event(cfg, stripe, event)


def handle_event(cfg: Config, stripe: Any, event: Any) -> Tuple[str, bool]:
    event_id = str(_field(event, "id") or "")
    event_type = str(_field(event, "type") or "")

    # Idempotency: record the event_id first; if we've seen it, exit early.
    with connect(cfg.DB_DSN) as conn:
        inserted = conn.execute(
            """
            INSERT INTO stripe_events (event_id, event_type, received_at) VALUES (?,?,?)
            ON CONFLICT(event_id) DO NOTHING
            RETURNING event_id
            """,
            (event_id, event_type, utcnow_iso()),
        ).fetchone()
    if inserted is None:
        _debug(f"duplicate event {event_id} ({event_type})")
        return event_id, False

    obj = _field(_field(event, "data"), "object")
    try:
        if event_type == "checkout.session.completed":
            _handle_checkout_completed(cfg, stripe, obj)
        elif event_type in (
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
        ):
            _handle_subscription_event(cfg, obj, deleted=event_type.endswith(".deleted"))
        elif event_type == "invoice.payment_succeeded":
            _handle_invoice_paid(cfg, stripe, obj)
        # else: ignore other events
    except Exception:
        # Remove the idempotency record so a provider retry can re-process.
        with connect(cfg.DB_DSN) as conn:
            conn.execute("DELETE FROM stripe_events WHERE event_id=?", (event_id,))
        _debug(f"event {event_id} ({event_type}) failed; idempotency record removed")
        raise

    return event_id, True


def _resolve_user_id(conn: Any, *, metadata: Any, customer_id: str | None, reference: Any = None) -> int:
    raw = reference or _field(metadata, "user_id")
    try:
        user_id = int(raw) if raw else 0
    except (TypeError, ValueError):
        user_id = 0

    if user_id > 0 and get_user_by_id(conn, user_id) is not None:
        return user_id

    # Fallback: map by customer id.
    if customer_id:
        row = get_user_by_stripe_customer_id(conn, customer_id)
        if row is not None:
            return int(row["user_id"])
    return 0


def _resolve_package_id(cfg: Config, conn: Any, *, metadata: Any, price_id: str | None) -> Optional[int]:
    raw = str(_field(metadata, "package_id") or "")
    if raw.isdigit() and get_package(conn, int(raw)) is not None:
        return int(raw)
    pkg = package_for_price(conn, cfg, price_id)
    return int(pkg["package_id"]) if pkg else None


def _apply_subscription(cfg: Config, conn: Any, *, user_id: int, sub: Any, status: str | None = None) -> None:
    price_id = _first_price_id(sub)
    upsert_subscription(
        conn,
        user_id=user_id,
        status=status or map_provider_status(_field(sub, "status")),
        package_id=_resolve_package_id(cfg, conn, metadata=_field(sub, "metadata"), price_id=price_id),
        stripe_subscription_id=_id_of(sub),
        stripe_price_id=price_id,
        current_period_end=_period_end(sub),
        cancel_at_period_end=bool(_field(sub, "cancel_at_period_end")),
    )


def _handle_checkout_completed(cfg: Config, stripe: Any, session: Any) -> None:
    if _field(session, "mode") != "subscription":
        return

    customer_id = _id_of(_field(session, "customer"))
    subscription_id = _id_of(_field(session, "subscription"))
    if not subscription_id:
        _debug("checkout.session.completed without subscription; ignoring")
        return

    with _provider_call(stripe, "subscription.retrieve"):
        sub = stripe.Subscription.retrieve(subscription_id)

    with connect(cfg.DB_DSN) as conn:
        user_id = _resolve_user_id(
            conn,
            metadata=_field(session, "metadata"),
            customer_id=customer_id,
            reference=_field(session, "client_reference_id"),
        )
        if user_id <= 0:
            _debug(f"checkout.session.completed: could not map to user (customer={customer_id})")
            return
        if customer_id:
            update_user(conn, user_id, stripe_customer_id=customer_id)
        _apply_subscription(cfg, conn, user_id=user_id, sub=sub)
    _debug(f"checkout completed: user_id={user_id} subscription={subscription_id}")


def _handle_subscription_event(cfg: Config, sub: Any, *, deleted: bool) -> None:
    customer_id = _id_of(_field(sub, "customer"))
    with connect(cfg.DB_DSN) as conn:
        user_id = _resolve_user_id(conn, metadata=_field(sub, "metadata"), customer_id=customer_id)
        if user_id <= 0:
            _debug(f"subscription event: could not map {_id_of(sub)} to user")
            return
        _apply_subscription(cfg, conn, user_id=user_id, sub=sub, status=CANCELLED if deleted else None)


def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    sid = _id_of(_field(invoice, "subscription"))
    if sid:
        return sid
    # Newer API versions nest it under parent.subscription_details.
    details = _field(_field(invoice, "parent"), "subscription_details")
    return _id_of(_field(details, "subscription"))


def _handle_invoice_paid(cfg: Config, stripe: Any, invoice: Any) -> None:
    subscription_id = _invoice_subscription_id(invoice)
    customer_id = _id_of(_field(invoice, "customer"))

    sub = None
    if subscription_id:
        with _provider_call(stripe, "subscription.retrieve"):
            sub = stripe.Subscription.retrieve(subscription_id)

    with connect(cfg.DB_DSN) as conn:
        user_id = _resolve_user_id(
            conn,
            metadata=_field(sub, "metadata") if sub is not None else None,
            customer_id=customer_id,
        )
        if user_id <= 0:
            _debug(f"invoice.payment_succeeded: could not map invoice {_id_of(invoice)} to user")
            return

        if sub is not None:
            _apply_subscription(cfg, conn, user_id=user_id, sub=sub, status=ACTIVE)

        record_payment(
            conn,
            user_id=user_id,
            amount=int(_field(invoice, "amount_paid") or 0),
            currency=str(_field(invoice, "currency") or "usd"),
            description=_field(invoice, "description") or "Subscription payment",
            stripe_invoice_id=_id_of(invoice),
            stripe_payment_intent_id=_id_of(_field(invoice, "payment_intent")),
        )
    _debug(f"invoice paid: user_id={user_id} invoice={_id_of(invoice)}")
