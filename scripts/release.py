"""
Release step: migrate the database to head, then seed roles and the admin user.

    python scripts/release.py

Run by scripts/start.py before gunicorn starts. Both steps are idempotent.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def release_database_url(environ=os.environ) -> str:
    """DATABASE_URL for the release; sqlite is only allowed outside production."""
    db_url = (environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL must be set for a release.")
    env = (environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release onto sqlite in production.")
    return db_url


def alembic_config(db_url: str) -> Config:
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def run_release() -> None:
    from scripts import init_db

    db_url = release_database_url()
    print("Migrating to head...", flush=True)
    command.upgrade(alembic_config(db_url), "head")
    print("Seeding roles and admin...", flush=True)
    init_db.seed_only(database_url=db_url)
    print("Release done.", flush=True)


if __name__ == "__main__":
    run_release()
