"""Session token refresher.

Claims carried in the session token:

    {sub, email, name, role, subscription_status, onboarding_completed} + iat/exp

The token is only a snapshot. Whenever a request arrives with a session, the
role / subscription status / onboarding state are re-read from the store and
written back into the claims, so a payment or admin change shows up on the
next request without signing in again.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Callable, Dict, Mapping, Optional

import jwt
from fastapi import Request, Response

from design_platform.config import Config

from .crud import get_auth_state
from .security import create_session_token, decode_session_token


ConnFactory = Callable[[], AbstractContextManager]

# Fields the store owns. Client-supplied values for these are never trusted.
STORE_FIELDS = ("role", "subscription_status", "onboarding_completed")

# Fields a client may push through the explicit update trigger.
CLIENT_FIELDS = ("onboarding_completed", "name")

_TOKEN_META = ("iat", "exp")


def _debug(msg: str) -> None:
    print(f"[session] {msg}")


def issue_claims(identity: Mapping[str, Any]) -> Dict[str, Any]:
    """Initial claims from an authenticated identity payload."""
    return {
        "sub": str(identity["user_id"]),
        "email": identity.get("email"),
        "name": identity.get("name"),
        "role": identity.get("role") or "USER",
        "subscription_status": identity.get("subscription_status") or "inactive",
        "onboarding_completed": bool(identity.get("onboarding_completed")),
    }


def refresh_claims(open_conn: ConnFactory, claims: Mapping[str, Any]) -> Dict[str, Any]:
    """Overwrite store-owned claims with the current store values.

    Fail-soft: when the store read raises or the user no longer exists, the
    claims come back unchanged. Calling this twice with no store change in
    between yields the same claims.
    """
    out = dict(claims)
    sub = out.get("sub")
    if not sub:
        return out

    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        _debug(f"refresh skipped: non-integer sub={sub!r}")
        return out

    try:
        with open_conn() as conn:
            state = get_auth_state(conn, user_id)
    except Exception as e:
        _debug(f"refresh failed for user_id={user_id}: {type(e).__name__}: {e}")
        return out

    if state is None:
        _debug(f"refresh: user_id={user_id} not found; keeping claims")
        return out

    out.update(state)
    return out


def apply_client_update(open_conn: ConnFactory, claims: Mapping[str, Any], fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Explicit update trigger.

    Only onboarding/profile fields are merged from the client. Anything naming
    role or subscription status is dropped, then the store is re-read so its
    values win.
    """
    out = dict(claims)
    for k in CLIENT_FIELDS:
        if k in fields:
            out[k] = bool(fields[k]) if k == "onboarding_completed" else fields[k]
    ignored = sorted(k for k in fields if k in STORE_FIELDS and k not in CLIENT_FIELDS)
    if ignored:
        _debug(f"client update ignored store-owned fields: {', '.join(ignored)}")
    return refresh_claims(open_conn, out)


def claims_differ(a: Mapping[str, Any], b: Mapping[str, Any]) -> bool:
    def _strip(d: Mapping[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in d.items() if k not in _TOKEN_META}

    return _strip(a) != _strip(b)


def encode_claims(cfg: Config, claims: Mapping[str, Any]) -> str:
    payload = {k: v for k, v in claims.items() if k not in _TOKEN_META}
    return create_session_token(
        secret=cfg.AUTH_JWT_SECRET,
        claims=payload,
        expires_minutes=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES),
    )


def read_token(request: Request, cfg: Config) -> tuple[Optional[str], str]:
    """Return (token, source) where source is 'bearer', 'cookie' or ''."""
    auth = request.headers.get("authorization") or ""
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip(), "bearer"

    token = request.cookies.get(cfg.AUTH_COOKIE_NAME)
    if token:
        return token, "cookie"
    return None, ""


def decode_claims(cfg: Config, token: str) -> Optional[Dict[str, Any]]:
    """Decode a session token; None when expired or invalid."""
    try:
        return decode_session_token(token=token, secret=cfg.AUTH_JWT_SECRET)
    except jwt.ExpiredSignatureError:
        _debug("token expired")
        return None
    except jwt.InvalidTokenError as e:
        _debug(f"token invalid: {type(e).__name__}")
        return None


# -----------------------------
# Cookies
# -----------------------------


def _cookie_secure(cfg: Config) -> bool:
    """Return whether auth cookies should be marked Secure."""
    samesite = str(cfg.AUTH_COOKIE_SAMESITE or "lax").lower()
    # Browsers require Secure when SameSite=None
    if samesite == "none":
        return True
    return bool(cfg.AUTH_COOKIE_SECURE)


def set_session_cookie(response: Response, *, token: str, cfg: Config) -> None:
    response.set_cookie(
        key=cfg.AUTH_COOKIE_NAME,
        value=str(token),
        httponly=True,
        samesite=str(cfg.AUTH_COOKIE_SAMESITE or "lax").lower(),
        secure=_cookie_secure(cfg),
        max_age=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES) * 60,
        path=str(cfg.AUTH_COOKIE_PATH or "/"),
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )


def clear_session_cookie(response: Response, cfg: Config) -> None:
    response.delete_cookie(
        key=cfg.AUTH_COOKIE_NAME,
        path=str(cfg.AUTH_COOKIE_PATH or "/"),
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )


def response_sets_cookie(response: Response, cookie_name: str) -> bool:
    prefix = f"{cookie_name}="
    return any(v.startswith(prefix) for v in response.headers.getlist("set-cookie"))
