"""Promote an existing user to ADMIN.

Usage:
  python scripts/make_admin.py alice@example.com
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from design_platform.auth.crud import get_user_by_email, update_user
from design_platform.config import load_config
from design_platform.db import connect, init_db


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("email")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_email(conn, args.email)
        if row is None:
            print(f"No user with email {args.email}")
            raise SystemExit(1)
        update_user(conn, int(row["user_id"]), role="ADMIN")

    print(f"{args.email} is now an admin")


if __name__ == "__main__":
    main()
