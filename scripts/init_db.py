import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from design_platform.auth.crud import bootstrap_admin_if_needed
from design_platform.catalog.packages import seed_default_packages
from design_platform.config import load_config
from design_platform.db import connect, init_db


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    with connect(cfg.DB_DSN) as conn:
        n = seed_default_packages(conn)

    admin = bootstrap_admin_if_needed(cfg)

    print(f"DB initialized: {cfg.DB_DSN}")
    print(f"Default packages inserted: {n}")
    if admin:
        print(f"Bootstrapped admin: {admin['email']}")


if __name__ == "__main__":
    main()
