"""
Release phase: migrate the schema, then make sure an admin can log in.

DATABASE_URL is mandatory here so a misconfigured deploy never migrates a
throwaway SQLite file. Both steps are idempotent and safe to re-run.

Usage:
  python scripts/release.py
  python scripts/release.py --skip-seed
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def release_database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against sqlite in production. Set DATABASE_URL to Postgres.")
    return db_url


def run_migrations(db_url: str, revision: str = "head") -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, revision)


def run_release(*, seed: bool = True) -> None:
    db_url = release_database_url()
    print(f"=== AccessPoint Control release (ENV={os.environ.get('ENV') or 'unset'}) ===", flush=True)

    print("[1/2] alembic upgrade head", flush=True)
    run_migrations(db_url)

    if seed:
        print("[2/2] seeding admin user", flush=True)
        from scripts.init_db import seed_only

        seed_only(database_url=db_url)
    else:
        print("[2/2] seed skipped", flush=True)
    print("=== release done ===", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run migrations and seed the admin user")
    parser.add_argument("--skip-seed", action="store_true", help="Only run migrations")
    args = parser.parse_args()
    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
