from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from design_platform.config import Config
from design_platform.db import connect
from design_platform.errors import ConflictError, ValidationError
from design_platform.util.hashing import new_token, sha256_hex
from design_platform.util.time import iso_in, utcnow_iso

from .security import MIN_PASSWORD_LENGTH, dummy_verify, hash_password, verify_password


ROLES = ("USER", "ADMIN")

_PRIVATE_FIELDS = ("password_hash", "password_reset_token_hash", "password_reset_expires_at")


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    for k in _PRIVATE_FIELDS:
        d.pop(k, None)
    d["onboarding_completed"] = bool(d.get("onboarding_completed"))
    d["is_admin"] = d.get("role") == "ADMIN"
    return d


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute("SELECT * FROM users WHERE email=?", (e,)).fetchone()


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute("SELECT * FROM users WHERE user_id=?", (int(user_id),)).fetchone()


def get_user_by_stripe_customer_id(conn: Any, stripe_customer_id: str) -> Optional[Any]:
    cid = (stripe_customer_id or "").strip()
    if not cid:
        return None
    return conn.execute("SELECT * FROM users WHERE stripe_customer_id=?", (cid,)).fetchone()


def get_first_admin(conn: Any) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE role='ADMIN' ORDER BY user_id ASC LIMIT 1"
    ).fetchone()


def get_auth_state(conn: Any, user_id: int) -> Optional[Dict[str, Any]]:
    """Role, subscription status and onboarding state for the session refresher.

    The subscription row is the source of truth; users without one are 'inactive'.
    """
    row = conn.execute(
        """
        SELECT u.user_id, u.role, u.onboarding_completed, s.status AS sub_status
        FROM users u
        LEFT JOIN subscriptions s ON s.user_id = u.user_id
        WHERE u.user_id=?
        """,
        (int(user_id),),
    ).fetchone()
    if row is None:
        return None
    return {
        "role": str(row["role"]),
        "subscription_status": str(row["sub_status"] or "inactive"),
        "onboarding_completed": bool(row["onboarding_completed"]),
    }


def authenticate(conn: Any, email: str, password: str) -> Optional[Dict[str, Any]]:
    """Check credentials; return the public identity or None.

    Never raises for bad input. Every failure path returns None after a hash
    verification of comparable cost, so callers cannot tell the cases apart.
    """
    e = normalize_email(email)
    if not e or not password:
        dummy_verify()
        return None

    row = get_user_by_email(conn, e)
    if row is None:
        _debug(f"authenticate: no user for {e}")
        dummy_verify()
        return None

    stored = row["password_hash"]
    if not stored:
        _debug(f"authenticate: user_id={row['user_id']} has no password hash")
        dummy_verify()
        return None

    if not verify_password(password, str(stored)):
        _debug(f"authenticate: password mismatch for user_id={row['user_id']}")
        return None

    user = public_user(row)
    state = get_auth_state(conn, int(row["user_id"]))
    if state is not None:
        user["subscription_status"] = state["subscription_status"]
    return user


def create_user(
    conn: Any,
    *,
    email: str,
    password: str | None,
    name: str | None = None,
    role: str = "USER",
) -> Dict[str, Any]:
    e = normalize_email(email)
    if not e:
        raise ValidationError("email_blank")
    if role not in ROLES:
        raise ValidationError("invalid_role")
    if password is not None and len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("password_too_short")

    now = utcnow_iso()
    inserted = conn.execute(
        """
        INSERT INTO users (email, name, password_hash, role, subscription_status, created_at, updated_at)
        VALUES (?,?,?,?,'inactive',?,?)
        ON CONFLICT(email) DO NOTHING
        RETURNING user_id
        """,
        (e, (name or "").strip() or None, hash_password(password) if password else None, role, now, now),
    ).fetchone()
    if inserted is None:
        raise ConflictError("email_exists")

    row = get_user_by_id(conn, int(inserted["user_id"]))
    assert row is not None
    return public_user(row)


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, updated_at=? WHERE user_id=?",
        (now, now, int(user_id)),
    )


def update_user(
    conn: Any,
    user_id: int,
    *,
    name: str | None = None,
    email: str | None = None,
    role: str | None = None,
    onboarding_step: int | None = None,
    onboarding_completed: bool | None = None,
    stripe_customer_id: str | None = None,
) -> None:
    """Update only the provided fields."""
    fields: list[tuple[str, Any]] = []
    if name is not None:
        fields.append(("name", name.strip()))
    if email is not None:
        e = normalize_email(email)
        if not e:
            raise ValidationError("email_blank")
        other = get_user_by_email(conn, e)
        if other is not None and int(other["user_id"]) != int(user_id):
            raise ConflictError("email_exists")
        fields.append(("email", e))
    if role is not None:
        if role not in ROLES:
            raise ValidationError("invalid_role")
        fields.append(("role", role))
    if onboarding_step is not None:
        fields.append(("onboarding_step", int(onboarding_step)))
    if onboarding_completed is not None:
        fields.append(("onboarding_completed", 1 if onboarding_completed else 0))
    if stripe_customer_id is not None:
        fields.append(("stripe_customer_id", stripe_customer_id))

    if not fields:
        return

    fields.append(("updated_at", utcnow_iso()))
    sets = ", ".join([f"{k}=?" for k, _ in fields])
    params = [v for _, v in fields] + [int(user_id)]
    conn.execute(f"UPDATE users SET {sets} WHERE user_id=?", params)


def email_exists(conn: Any, email: str) -> bool:
    return get_user_by_email(conn, email) is not None


def start_password_reset(conn: Any, email: str, *, expire_minutes: int) -> Optional[Tuple[Dict[str, Any], str]]:
    """Issue a reset token for an existing user.

    Only the token's SHA-256 is stored. Returns (user, raw_token) or None when
    the email is unknown.
    """
    row = get_user_by_email(conn, email)
    if row is None:
        return None

    token = new_token()
    conn.execute(
        """
        UPDATE users
        SET password_reset_token_hash=?, password_reset_expires_at=?, updated_at=?
        WHERE user_id=?
        """,
        (sha256_hex(token), iso_in(expire_minutes), utcnow_iso(), int(row["user_id"])),
    )
    return public_user(row), token


def reset_password(conn: Any, token: str, new_password: str) -> Dict[str, Any]:
    if not token or not new_password:
        raise ValidationError("token_and_password_required")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("password_too_short")

    row = conn.execute(
        "SELECT * FROM users WHERE password_reset_token_hash=?",
        (sha256_hex(token),),
    ).fetchone()
    expires = (row["password_reset_expires_at"] if row is not None else None) or ""
    if row is None or expires <= utcnow_iso():
        raise ValidationError("invalid_or_expired_token")

    conn.execute(
        """
        UPDATE users
        SET password_hash=?, password_reset_token_hash=NULL, password_reset_expires_at=NULL, updated_at=?
        WHERE user_id=?
        """,
        (hash_password(new_password), utcnow_iso(), int(row["user_id"])),
    )
    _debug(f"password reset for user_id={row['user_id']}")
    return public_user(row)


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    - AUTH_BOOTSTRAP_ADMIN_EMAIL (default: admin@example.com)
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD (no default: nothing is created when unset)
    """

    with connect(cfg.DB_DSN) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None

        email = normalize_email(cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL)
        password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD
        if not email or not password:
            return None

        return create_user(conn, email=email, password=password, name="Admin", role="ADMIN")
