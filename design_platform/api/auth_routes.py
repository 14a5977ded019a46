from __future__ import annotations

from functools import partial
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

from design_platform.auth.crud import (
    authenticate,
    create_user,
    email_exists,
    reset_password,
    start_password_reset,
    touch_last_login,
    update_user,
)
from design_platform.auth.deps import get_cfg, get_current_user, get_session
from design_platform.auth.security import MIN_PASSWORD_LENGTH
from design_platform.auth.session import (
    apply_client_update,
    clear_session_cookie,
    encode_claims,
    issue_claims,
    refresh_claims,
    set_session_cookie,
)
from design_platform.config import Config
from design_platform.db import connect
from design_platform.errors import Unauthorized
from design_platform.notify.mailer import password_reset_email


router = APIRouter()

RESET_REQUESTED_MESSAGE = "If an account exists for that email, a reset link has been sent."


def _debug(msg: str) -> None:
    print(f"[api.auth] {msg}")


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    name: str = Field(min_length=2)
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    token: str = Field(min_length=1)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)


class SessionUpdateRequest(BaseModel):
    """Client-side session update. Unknown keys (role, subscriptionStatus, ...) are dropped."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    onboarding_completed: Optional[bool] = None


class OnboardingProgressRequest(BaseModel):
    step: int = Field(ge=0)


def _issue(response: Response, cfg: Config, claims: Dict[str, Any]) -> str:
    token = encode_claims(cfg, claims)
    set_session_cookie(response, token=token, cfg=cfg)
    return token


def _reissue(request: Request, response: Response, cfg: Config) -> Optional[Dict[str, Any]]:
    """Re-read the store after a write in this request and push a fresh cookie."""
    claims = get_session(request)
    if not claims:
        return None
    refreshed = refresh_claims(partial(connect, cfg.DB_DSN), claims)
    request.state.session = refreshed
    _issue(response, cfg, refreshed)
    return refreshed


@router.post("/api/auth/login")
def auth_login(payload: LoginRequest, response: Response, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user = authenticate(conn, payload.email, payload.password)
        if user is None:
            raise Unauthorized("invalid_credentials")
        touch_last_login(conn, int(user["user_id"]))

    claims = issue_claims(user)
    token = _issue(response, cfg, claims)
    _debug(f"login user_id={user['user_id']}")
    return {"access_token": token, "token_type": "bearer", "user": user}


@router.post("/api/auth/register", status_code=201)
def auth_register(payload: RegisterRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        u = create_user(conn, email=payload.email, password=payload.password, name=payload.name)
    _debug(f"registered user_id={u['user_id']}")
    return {"user": u}


@router.get("/api/auth/check-email")
def auth_check_email(email: str = Query(..., min_length=1), cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"exists": email_exists(conn, email)}


@router.post("/api/auth/request-password-reset")
def auth_request_password_reset(payload: PasswordResetRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        started = start_password_reset(conn, payload.email, expire_minutes=cfg.PASSWORD_RESET_EXPIRE_MINUTES)

    if started is None:
        _debug("password reset requested for unknown email")
    else:
        user, token = started
        password_reset_email(cfg, to=str(user["email"]), token=token)

    return {"message": RESET_REQUESTED_MESSAGE}


@router.post("/api/auth/reset-password")
def auth_reset_password(payload: ResetPasswordRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        reset_password(conn, payload.token, payload.new_password)
    return {"message": "Password has been reset."}


@router.get("/api/auth/session")
def auth_session(request: Request) -> Dict[str, Any]:
    claims = get_session(request)
    return {"authenticated": bool(claims), "session": claims}


@router.post("/api/auth/session")
def auth_session_update(
    payload: SessionUpdateRequest,
    request: Request,
    response: Response,
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    claims = get_session(request)
    if not claims:
        raise Unauthorized("missing_token")

    updated = apply_client_update(
        partial(connect, cfg.DB_DSN),
        claims,
        payload.model_dump(exclude_none=True),
    )
    request.state.session = updated
    token = _issue(response, cfg, updated)
    return {"session": updated, "access_token": token}


@router.post("/api/auth/logout")
def auth_logout(response: Response, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    """Clear the session cookie."""
    clear_session_cookie(response, cfg)
    return {"ok": True}


@router.get("/api/auth/me")
def auth_me(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return {"user": user}


# -----------------------------
# Onboarding
# -----------------------------


@router.post("/api/onboarding/progress")
def onboarding_progress(
    payload: OnboardingProgressRequest,
    request: Request,
    response: Response,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        update_user(conn, int(user["user_id"]), onboarding_step=payload.step)
    _reissue(request, response, cfg)
    return {"ok": True, "onboarding_step": payload.step}


@router.post("/api/onboarding/complete")
def onboarding_complete(
    request: Request,
    response: Response,
    user: Dict[str, Any] = Depends(get_current_user),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        update_user(conn, int(user["user_id"]), onboarding_completed=True)
    session = _reissue(request, response, cfg)
    return {"ok": True, "session": session}
