from __future__ import annotations

import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from design_platform.auth.deps import get_cfg, get_current_user, get_session
from design_platform.billing import stripe_billing
from design_platform.billing.subscriptions import (
    ACTIVE,
    effective_status,
    get_subscription,
    upsert_subscription,
)
from design_platform.catalog.packages import get_package, list_active_packages
from design_platform.config import Config
from design_platform.db import connect
from design_platform.errors import Forbidden, NotFound, ValidationError


router = APIRouter()


def _debug(msg: str) -> None:
    print(f"[api.billing] {msg}")


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutRequest(_Camel):
    plan: str = Field(min_length=1)


class CreateSubscriptionRequest(_Camel):
    plan_id: int


class VerifySessionRequest(_Camel):
    session_id: str = Field(min_length=1)


class SubscriptionActionRequest(_Camel):
    action: str


class InvoicePdfRequest(_Camel):
    invoice_id: str = Field(min_length=1)


class TestSubscriptionRequest(_Camel):
    package_id: int


# -----------------------------
# Checkout
# -----------------------------


@router.post("/api/stripe/checkout")
def stripe_checkout(
    payload: CheckoutRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Create a Checkout session for the logged-in user."""
    with connect(cfg.DB_DSN) as conn:
        url = stripe_billing.create_checkout_session(cfg, conn, user=user, plan=payload.plan)
    return {"url": url}


@router.post("/api/stripe/create-subscription")
def stripe_create_subscription(
    payload: CreateSubscriptionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return stripe_billing.create_subscription(cfg, conn, user=user, package_id=payload.plan_id)


@router.post("/api/stripe/verify-session")
def stripe_verify_session(payload: VerifySessionRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    return stripe_billing.verify_checkout_session(cfg, payload.session_id)


@router.post("/api/billing/webhook")
@router.post("/api/stripe/webhook")
async def billing_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Provider webhook endpoint (signature-verified, idempotent per event id)."""
    payload_bytes = await request.body()
    event_id, processed = stripe_billing.process_stripe_webhook(
        cfg, payload_bytes=payload_bytes, signature=stripe_signature
    )
    return {"received": True, "event_id": event_id, "processed": processed}


# -----------------------------
# Account billing
# -----------------------------


@router.post("/api/billing/portal")
def billing_portal(
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Create a customer portal session (update card, cancel, invoices)."""
    return_url = f"{cfg.PUBLIC_APP_URL.rstrip('/')}/dashboard/billing"
    url = stripe_billing.create_billing_portal_session(
        cfg, customer_id=user.get("stripe_customer_id"), return_url=return_url
    )
    return {"url": url}


@router.get("/api/billing/subscription")
def billing_subscription(
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return stripe_billing.get_subscription_summary(cfg, conn, user_id=int(user["user_id"]))


@router.post("/api/billing/subscription")
def billing_subscription_action(
    payload: SubscriptionActionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    if payload.action != "cancel":
        raise ValidationError("invalid_action")
    with connect(cfg.DB_DSN) as conn:
        sub = stripe_billing.cancel_subscription(cfg, conn, user_id=int(user["user_id"]))
    return {"message": "Subscription cancelled", "subscription": sub}


@router.get("/api/billing/invoices")
def billing_invoices(
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    return {"invoices": stripe_billing.list_invoices(cfg, customer_id=user.get("stripe_customer_id"))}


@router.post("/api/billing/invoices")
def billing_invoice_pdf(
    payload: InvoicePdfRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    url = stripe_billing.get_invoice_pdf(
        cfg, customer_id=user.get("stripe_customer_id"), invoice_id=payload.invoice_id
    )
    return {"downloadUrl": url}


@router.get("/api/billing/payment-methods")
def billing_payment_methods(
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    return {"payment_methods": stripe_billing.list_payment_methods(cfg, customer_id=user.get("stripe_customer_id"))}


@router.post("/api/billing/test-subscription")
def billing_test_subscription(
    payload: TestSubscriptionRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Activate a subscription without the provider (local development only)."""
    if not cfg.BILLING_DEV_BYPASS:
        raise Forbidden("dev_bypass_disabled")

    with connect(cfg.DB_DSN) as conn:
        existing = get_subscription(conn, int(user["user_id"]))
        if existing is not None and existing["status"] == ACTIVE:
            return {"message": "already_active", "subscription": existing, "redirectTo": "/dashboard"}

        pkg = get_package(conn, payload.package_id)
        if pkg is None:
            raise NotFound("package_not_found")

        sub = upsert_subscription(
            conn,
            user_id=int(user["user_id"]),
            status=ACTIVE,
            package_id=int(pkg["package_id"]),
            stripe_subscription_id=f"{stripe_billing.TEST_SUBSCRIPTION_PREFIX}subscription_{secrets.token_hex(8)}",
            stripe_price_id=f"{stripe_billing.TEST_SUBSCRIPTION_PREFIX}price_{pkg['package_id']}",
        )
    _debug(f"test subscription for user_id={user['user_id']} package_id={pkg['package_id']}")
    return {"message": "created", "subscription": sub, "redirectTo": "/dashboard"}


@router.get("/api/user/subscription")
def user_subscription(
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        sub = get_subscription(conn, int(user["user_id"]))

    status = sub["status"] if sub is not None else "inactive"
    return {
        "hasActiveSubscription": status == ACTIVE,
        "subscriptionStatus": status,
        "subscription": (
            {
                "id": sub["subscription_id"],
                "status": sub["status"],
                "packageId": sub.get("package_id"),
                "packageName": sub.get("package_name") or "Unknown",
            }
            if sub is not None
            else None
        ),
    }


def _safe_callback(callback_url: Optional[str]) -> Optional[str]:
    """Only same-site relative paths are allowed as redirect targets."""
    cb = (callback_url or "").strip()
    if not cb.startswith("/") or cb.startswith("//") or "\\" in cb:
        return None
    return cb


@router.get("/api/check-subscription")
def check_subscription(
    request: Request,
    callback_url: Optional[str] = Query(default=None, alias="callbackUrl"),
    cfg: Config = Depends(get_cfg),
) -> RedirectResponse:
    """Re-check the store and send the browser on to the callback or to billing."""
    claims = get_session(request)
    if not claims or not claims.get("sub"):
        target = "/signin"
        if callback_url:
            target += "?" + urlencode({"callbackUrl": callback_url})
        return RedirectResponse(url=target, status_code=307)

    cb = _safe_callback(callback_url)
    if cb is None:
        return RedirectResponse(url="/dashboard/billing", status_code=307)

    with connect(cfg.DB_DSN) as conn:
        status = effective_status(conn, int(claims["sub"]))
    if status == ACTIVE:
        return RedirectResponse(url=cb, status_code=307)
    return RedirectResponse(url="/dashboard/billing", status_code=307)


# -----------------------------
# Catalog
# -----------------------------


@router.get("/api/packages")
def packages(cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Active packages, cheapest first."""
    with connect(cfg.DB_DSN) as conn:
        return {"packages": list_active_packages(conn)}
