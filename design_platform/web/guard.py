"""Route guard for page paths.

`decide()` is a pure function of (path, query, claims). The claims are the
ones the session middleware already refreshed, so the guard never touches the
store itself. Rules are evaluated in order and the first match wins:

1. /subscribe[/...] (except /subscribe/test) -> /checkout, keeping `plan`
2. signed in on /signin or /signup           -> /dashboard
3. anonymous on /dashboard[/...] or /subscribe/test -> /signin?callbackUrl=...
4. signed in on /dashboard/requests[/...] without an active subscription
                                             -> /dashboard/billing
5. pass
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs, urlencode


ALLOW_PREFIXES = (
    "/api/auth",
    "/api/check-subscription",
    "/static",
    "/assets",
)

ALLOW_EXACT = (
    "/favicon.ico",
    "/health",
)

# Always guarded, even when the last segment has a file extension.
GUARDED_PREFIXES = (
    "/dashboard",
    "/subscribe",
    "/signin",
    "/signup",
)


@dataclass(frozen=True)
class GuardDecision:
    action: str  # pass|redirect
    location: Optional[str] = None
    rule: str = "pass"

    @property
    def is_redirect(self) -> bool:
        return self.action == "redirect"


PASS = GuardDecision(action="pass")


def _redirect(location: str, rule: str) -> GuardDecision:
    return GuardDecision(action="redirect", location=location, rule=rule)


def under(path: str, prefix: str) -> bool:
    """Segment-aware prefix match: '/dashboard' matches '/dashboard/x' but not '/dashboards'."""
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


def is_allowlisted(path: str) -> bool:
    if path in ALLOW_EXACT:
        return True
    if any(under(path, p) for p in ALLOW_PREFIXES):
        return True
    if any(under(path, p) for p in GUARDED_PREFIXES):
        return False
    # Anything whose last segment looks like a file (app.js, logo.png, ...)
    last = path.rsplit("/", 1)[-1]
    return bool(posixpath.splitext(last)[1])


def _normalize(path: str) -> str:
    p = path or "/"
    if len(p) > 1:
        p = p.rstrip("/") or "/"
    return p


def decide(path: str, query: str, claims: Optional[Mapping[str, Any]]) -> GuardDecision:
    p = _normalize(path)
    if is_allowlisted(p):
        return PASS

    authed = bool(claims) and bool((claims or {}).get("sub"))

    if under(p, "/subscribe") and p != "/subscribe/test":
        plan = (parse_qs(query or "").get("plan") or [None])[0]
        loc = "/checkout"
        if plan:
            loc += "?" + urlencode({"plan": plan})
        return _redirect(loc, "subscribe_to_checkout")

    if authed and (p == "/signin" or p == "/signup"):
        return _redirect("/dashboard", "signed_in_to_dashboard")

    if not authed and (under(p, "/dashboard") or p == "/subscribe/test"):
        callback = path + (f"?{query}" if query else "")
        return _redirect("/signin?" + urlencode({"callbackUrl": callback}), "anonymous_to_signin")

    if authed and under(p, "/dashboard/requests"):
        if (claims or {}).get("subscription_status") == "active":
            return PASS
        return _redirect("/dashboard/billing", "subscription_required")

    return PASS
