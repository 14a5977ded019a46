from __future__ import annotations

import html as html_lib
import re
import smtplib
from email.message import EmailMessage

from design_platform.config import Config
from design_platform.errors import UpstreamError


def _debug(msg: str) -> None:
    print(f"[mailer] {msg}")


def _html_to_text(html: str) -> str:
    return re.sub(r"<[^>]+>", "", html or "").strip()


def build_message(cfg: Config, *, to: str, subject: str, html: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = cfg.EMAIL_FROM
    msg["To"] = to
    msg.set_content(_html_to_text(html))
    msg.add_alternative(html, subtype="html")
    return msg


def send_email(cfg: Config, *, to: str, subject: str, html: str) -> None:
    """Send an HTML email over SMTP SSL.

    Without SMTP_HOST the message is printed instead (local development).
    Relay failures raise UpstreamError.
    """
    msg = build_message(cfg, to=to, subject=subject, html=html)

    if not cfg.SMTP_HOST:
        _debug(f"SMTP not configured; would send to={to} subject={subject!r}")
        _debug(_html_to_text(html))
        return

    try:
        with smtplib.SMTP_SSL(cfg.SMTP_HOST, cfg.SMTP_PORT, timeout=20) as smtp:
            if cfg.SMTP_USER and cfg.SMTP_PASSWORD:
                smtp.login(cfg.SMTP_USER, cfg.SMTP_PASSWORD)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        _debug(f"send failed to={to} subject={subject!r}: {type(e).__name__}: {e}")
        raise UpstreamError("email_delivery_failed", context=f"smtp {cfg.SMTP_HOST}: {e}") from e
    _debug(f"sent to={to} subject={subject!r}")


def password_reset_email(cfg: Config, *, to: str, token: str) -> None:
    link = f"{cfg.PUBLIC_APP_URL.rstrip('/')}/reset-password?token={token}"
    send_email(
        cfg,
        to=to,
        subject="Reset your password",
        html=(
            "<p>We received a request to reset your password.</p>"
            f'<p><a href="{link}">Choose a new password</a></p>'
            f"<p>This link expires in {cfg.PASSWORD_RESET_EXPIRE_MINUTES} minutes. "
            "If you did not ask for this, you can ignore this email.</p>"
        ),
    )


def new_message_email(cfg: Config, *, to: str, sender_name: str, request_title: str, request_id: int) -> None:
    link = f"{cfg.PUBLIC_APP_URL.rstrip('/')}/dashboard/requests/{request_id}"
    send_email(
        cfg,
        to=to,
        subject=f"New message on: {request_title}",
        html=(
            f"<p>{html_lib.escape(sender_name)} sent you a message about "
            f"<strong>{html_lib.escape(request_title)}</strong>.</p>"
            f'<p><a href="{link}">View the conversation</a></p>'
        ),
    )
