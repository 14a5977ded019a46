from __future__ import annotations

from functools import partial
from typing import Awaitable, Callable

from fastapi import Request, Response
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from design_platform.auth.session import (
    claims_differ,
    decode_claims,
    encode_claims,
    read_token,
    refresh_claims,
    response_sets_cookie,
    set_session_cookie,
)
from design_platform.db import connect

from .guard import decide


CallNext = Callable[[Request], Awaitable[Response]]


def _debug(msg: str) -> None:
    print(f"[web] {msg}")


async def session_middleware(request: Request, call_next: CallNext) -> Response:
    """Decode + refresh the session token and expose it as `request.state.session`.

    When the refreshed claims differ from the token's, a new cookie is issued
    (cookie sessions only; bearer clients fetch a new token themselves).
    """
    cfg = request.app.state.cfg
    request.state.session = None

    token, source = read_token(request, cfg)
    claims = decode_claims(cfg, token) if token else None
    refreshed = None
    if claims:
        # Store access is blocking; keep it off the event loop.
        refreshed = await run_in_threadpool(refresh_claims, partial(connect, cfg.DB_DSN), claims)
        request.state.session = refreshed

    response = await call_next(request)

    if (
        refreshed is not None
        and source == "cookie"
        and claims_differ(claims, refreshed)
        and not response_sets_cookie(response, cfg.AUTH_COOKIE_NAME)
    ):
        set_session_cookie(response, token=encode_claims(cfg, refreshed), cfg=cfg)
    return response


async def route_guard_middleware(request: Request, call_next: CallNext) -> Response:
    decision = decide(request.url.path, request.url.query, getattr(request.state, "session", None))
    if decision.is_redirect:
        _debug(f"guard {decision.rule}: {request.url.path} -> {decision.location}")
        return RedirectResponse(url=str(decision.location), status_code=307)
    return await call_next(request)
