from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Depends, Request

from design_platform.config import Config
from design_platform.db import connect
from design_platform.errors import ConfigurationError, Forbidden, Unauthorized

from .crud import get_auth_state, get_user_by_id, public_user


def get_cfg(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise ConfigurationError("server_config_missing")
    return cfg


def get_session(request: Request) -> Optional[Dict[str, Any]]:
    """Claims placed on the request by the session middleware (already refreshed)."""
    return getattr(request.state, "session", None)


def get_current_user(
    request: Request,
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    """Resolve the signed-in user from the session claims.

    The session middleware accepts both `Authorization: Bearer <jwt>` and the
    httpOnly session cookie; this dependency only looks at its result.
    """

    claims = get_session(request)
    if not claims:
        raise Unauthorized("missing_token")

    sub = claims.get("sub")
    if not sub:
        raise Unauthorized("token_missing_sub")

    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise Unauthorized("token_sub_not_int")

    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, user_id)
        if row is None:
            raise Unauthorized("user_not_found")
        user = public_user(row)
        state = get_auth_state(conn, user_id)

    if state is not None:
        user["subscription_status"] = state["subscription_status"]
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "ADMIN":
        raise Forbidden("admin_required")
    return user


def require_subscription(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    """Require an active subscription. Admins are always allowed."""

    if user.get("role") == "ADMIN":
        return user

    if (user.get("subscription_status") or "") == "active":
        return user

    raise Forbidden("subscription_required")
