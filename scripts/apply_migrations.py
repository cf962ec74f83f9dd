#!/usr/bin/env python3
"""
Apply Supabase SQL migrations for RLS Guard Dog

Runs every file in supabase/migrations/ (sorted by name) against the Postgres
database behind the Supabase project, inside a single transaction.

Prerequisites:
- DATABASE_URL set in .env (Project Settings -> Database -> Connection string)
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

load_dotenv(project_root / ".env")

import psycopg  # noqa: E402

from config.settings import get_settings  # noqa: E402

logger = logging.getLogger("apply_migrations")

MIGRATIONS_DIR = project_root / "supabase" / "migrations"


def discover_migrations(directory: Path = MIGRATIONS_DIR) -> list[Path]:
    """Return migration files in the order they should run."""
    return sorted(path for path in directory.glob("*.sql") if path.is_file())


def apply_migrations(database_url: str, migrations: list[Path]) -> None:
    with psycopg.connect(database_url) as conn:
        with conn.cursor() as cur:
            for path in migrations:
                logger.info("Applying %s", path.name)
                cur.execute(path.read_text(encoding="utf-8"))
        conn.commit()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Apply SQL migrations to the Supabase database.")
    parser.add_argument("--dry-run", action="store_true", help="List migrations without applying them.")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    migrations = discover_migrations()
    if not migrations:
        print(f"❌ No migrations found in {MIGRATIONS_DIR}")
        return 1

    print("📦 Migrations:")
    for path in migrations:
        print(f"   - {path.name}")

    if args.dry_run:
        return 0

    if not settings.DATABASE_URL:
        print("❌ DATABASE_URL is not set.")
        print("   Add the project's Postgres connection string to your .env file")
        return 1

    try:
        apply_migrations(settings.DATABASE_URL, migrations)
    except psycopg.Error as exc:
        print(f"❌ Migration failed: {exc}")
        return 1

    print(f"\n✅ Applied {len(migrations)} migration(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
