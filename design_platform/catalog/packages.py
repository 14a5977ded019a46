from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from design_platform.config import Config
from design_platform.util.time import utcnow_iso


# Seeded when the packages table is empty.
DEFAULT_PACKAGES: List[Dict[str, Any]] = [
    {
        "name": "Basic",
        "original_price": 99,
        "price": 49,
        "features": [
            "Up to 5 design requests per month",
            "Standard support",
            "Basic design assets",
            "72-hour turnaround",
        ],
    },
    {
        "name": "Pro",
        "original_price": 199,
        "price": 99,
        "features": [
            "Unlimited design requests",
            "Priority support",
            "Premium design assets",
            "48-hour turnaround",
            "Custom branding",
        ],
    },
    {
        "name": "Enterprise",
        "original_price": 399,
        "price": 199,
        "features": [
            "Unlimited design requests",
            "24/7 priority support",
            "All design assets",
            "24-hour Priority Delivery",
            "Custom branding",
            "Dedicated designer",
            "API access",
        ],
    },
]


def _debug(msg: str) -> None:
    print(f"[catalog] {msg}")


def package_to_dict(row: Any) -> Dict[str, Any]:
    d = dict(row)
    try:
        d["features"] = json.loads(d.pop("features_json", None) or "[]")
    except json.JSONDecodeError:
        d["features"] = []
    d["is_active"] = bool(d.get("is_active"))
    return d


def seed_default_packages(conn: Any) -> int:
    """Insert the default plans that are missing by name. Returns rows inserted."""
    now = utcnow_iso()
    n = 0
    for p in DEFAULT_PACKAGES:
        r = conn.execute(
            """
            INSERT INTO packages (name, price, original_price, features_json, is_active, created_at, updated_at)
            VALUES (?,?,?,?,1,?,?)
            ON CONFLICT(name) DO NOTHING
            RETURNING package_id
            """,
            (p["name"], float(p["price"]), float(p["original_price"]), json.dumps(p["features"]), now, now),
        ).fetchone()
        if r is not None:
            n += 1
    if n:
        _debug(f"seeded {n} default package(s)")
    return n


def list_active_packages(conn: Any) -> List[Dict[str, Any]]:
    """Active packages by price ascending; seeds the defaults on an empty table."""
    rows = conn.execute(
        "SELECT * FROM packages WHERE is_active=1 ORDER BY price ASC, package_id ASC"
    ).fetchall()
    if not rows:
        total = conn.execute("SELECT COUNT(*) AS n FROM packages").fetchone()["n"]
        if int(total) == 0:
            seed_default_packages(conn)
            rows = conn.execute(
                "SELECT * FROM packages WHERE is_active=1 ORDER BY price ASC, package_id ASC"
            ).fetchall()
    return [package_to_dict(r) for r in rows]


def list_all_packages(conn: Any) -> List[Dict[str, Any]]:
    rows = conn.execute("SELECT * FROM packages ORDER BY price ASC, package_id ASC").fetchall()
    return [package_to_dict(r) for r in rows]


def get_package(conn: Any, package_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute("SELECT * FROM packages WHERE package_id=?", (int(package_id),)).fetchone()
    return package_to_dict(row) if row is not None else None


def get_package_by_name(conn: Any, name: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        "SELECT * FROM packages WHERE LOWER(name)=?",
        ((name or "").strip().lower(),),
    ).fetchone()
    return package_to_dict(row) if row is not None else None


def plan_key(package: Dict[str, Any]) -> str:
    """'Basic' -> 'BASIC' (the key used for configured price ids)."""
    return str(package.get("name") or "").strip().upper()


def price_id_for_package(cfg: Config, package: Dict[str, Any]) -> Optional[str]:
    """A price set on the package row wins over the configured per-plan price."""
    return package.get("stripe_price_id") or cfg.price_ids().get(plan_key(package))


def package_for_price(conn: Any, cfg: Config, price_id: str | None) -> Optional[Dict[str, Any]]:
    if not price_id:
        return None
    row = conn.execute("SELECT * FROM packages WHERE stripe_price_id=?", (price_id,)).fetchone()
    if row is not None:
        return package_to_dict(row)
    for key, pid in cfg.price_ids().items():
        if pid and pid == price_id:
            return get_package_by_name(conn, key)
    return None
