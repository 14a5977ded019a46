import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import load_dotenv

# Load a local .env file if present.
load_dotenv()


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


def _env_opt(name: str) -> Optional[str]:
    return (os.environ.get(name) or "").strip() or None


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    IMPORTANT: Provide secrets via environment variables or a .env file.
    Do not hardcode secrets in source code.
    """

    # -----------------
    # Core
    # -----------------
    # Preferred: set DESIGN_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: DESIGN_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("DESIGN_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("DESIGN_DB_PATH", "./design_platform.sqlite")
    )

    # Public URL of the site. Used for billing return URLs and email links.
    PUBLIC_APP_URL: str = os.environ.get("PUBLIC_APP_URL", "http://localhost:3000")

    # -----------------
    # Auth (JWT session)
    # -----------------
    # NOTE: In dev, this defaults to a fixed string so you can get started.
    # In production, you MUST set AUTH_JWT_SECRET to a strong random value.
    AUTH_JWT_SECRET: str = os.environ.get("AUTH_JWT_SECRET", "dev_change_me")
    AUTH_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_TOKEN_EXPIRE_MINUTES", "43200"))  # 30 days

    # Bootstrap first admin user if users table is empty
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "admin@example.com")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "")

    AUTH_COOKIE_NAME: str = os.environ.get("AUTH_COOKIE_NAME", "dd_session")
    AUTH_COOKIE_DOMAIN: str | None = _env_opt("AUTH_COOKIE_DOMAIN")
    AUTH_COOKIE_PATH: str = os.environ.get("AUTH_COOKIE_PATH", "/")
    AUTH_COOKIE_SAMESITE: str = os.environ.get("AUTH_COOKIE_SAMESITE", "lax")  # lax|strict|none

    # If AUTH_COOKIE_SECURE is unset, we default to secure cookies when PUBLIC_APP_URL is https.
    AUTH_COOKIE_SECURE: bool = (
        _env_bool("AUTH_COOKIE_SECURE", None)
        if _env_bool("AUTH_COOKIE_SECURE", None) is not None
        else PUBLIC_APP_URL.lower().startswith("https://")
    )

    PASSWORD_RESET_EXPIRE_MINUTES: int = int(os.environ.get("PASSWORD_RESET_EXPIRE_MINUTES", "60"))

    # -----------------
    # CORS (development)
    # -----------------
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )

    # -----------------
    # Billing (Stripe)
    # -----------------
    STRIPE_SECRET_KEY: str | None = _env_opt("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: str | None = _env_opt("STRIPE_WEBHOOK_SECRET")

    # Price IDs per plan key. A package row may also carry its own stripe_price_id.
    STRIPE_PRICE_ID_BASIC: str | None = _env_opt("STRIPE_PRICE_ID_BASIC")
    STRIPE_PRICE_ID_PRO: str | None = _env_opt("STRIPE_PRICE_ID_PRO")
    STRIPE_PRICE_ID_ENTERPRISE: str | None = _env_opt("STRIPE_PRICE_ID_ENTERPRISE")

    # Enables the test-subscription endpoint (no provider involved).
    BILLING_DEV_BYPASS: bool = _env_bool("BILLING_DEV_BYPASS", False) is True

    # -----------------
    # Email relay (SMTP)
    # -----------------
    # When SMTP_HOST is unset, outgoing emails are printed instead of sent.
    SMTP_HOST: str | None = _env_opt("SMTP_HOST")
    SMTP_PORT: int = int(os.environ.get("SMTP_PORT", "465"))
    SMTP_USER: str | None = _env_opt("SMTP_USER")
    SMTP_PASSWORD: str | None = _env_opt("SMTP_PASSWORD")
    EMAIL_FROM: str = os.environ.get("EMAIL_FROM", "noreply@designdesk.local")

    # -----------------
    # Uploads
    # -----------------
    # Shared secret for the upload provider's completion callback (HMAC-SHA256 of the body).
    UPLOAD_CALLBACK_SECRET: str | None = _env_opt("UPLOAD_CALLBACK_SECRET")

    def price_ids(self) -> Dict[str, Optional[str]]:
        """Plan key -> configured Stripe price id."""
        return {
            "BASIC": self.STRIPE_PRICE_ID_BASIC,
            "PRO": self.STRIPE_PRICE_ID_PRO,
            "ENTERPRISE": self.STRIPE_PRICE_ID_ENTERPRISE,
        }

    @property
    def billing_enabled(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)


def load_config() -> Config:
    return Config()
