#!/usr/bin/env python3
"""Create the Postgres tables the session store expects.

Usage:
    DATABASE_URL=postgresql://localhost:5432/curvaqz python scripts/bootstrap_schema.py

    # Print the DDL without touching the database:
    python scripts/bootstrap_schema.py --dry-run

Environment Variables:
    DATABASE_URL: PostgreSQL connection string (or pass --database-url)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        display_name TEXT,
        provider TEXT,
        provider_sub TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        user_id TEXT REFERENCES users(id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        last_seen_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        revoked INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS sessions_user_id_idx ON sessions (user_id)",
    "CREATE INDEX IF NOT EXISTS users_provider_idx ON users (provider, provider_sub)",
    """
    CREATE TABLE IF NOT EXISTS quizzes (
        id TEXT PRIMARY KEY,
        session_id TEXT REFERENCES sessions(id),
        source TEXT NOT NULL,
        payload TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
]


def apply_schema(database_url: str) -> None:
    import psycopg

    from curvaqz.storage.postgres import REQUIRED_TABLES

    with psycopg.connect(database_url) as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(statement)
        conn.commit()
        for table in REQUIRED_TABLES:
            row = conn.execute("SELECT to_regclass(%s)", (f"public.{table}",)).fetchone()
            if not row or not row[0]:
                raise RuntimeError(f"table {table} missing after bootstrap")


def main():
    parser = argparse.ArgumentParser(
        description="Create the curvaqz Postgres schema",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="PostgreSQL connection string (or set DATABASE_URL env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the DDL without executing it",
    )

    args = parser.parse_args()

    if args.dry_run:
        for statement in SCHEMA_STATEMENTS:
            print(statement.strip() + ";\n")
        return

    if not args.database_url:
        print("Error: --database-url or DATABASE_URL environment variable required")
        sys.exit(1)

    try:
        apply_schema(args.database_url)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    print("Schema ready: " + ", ".join(("users", "sessions", "quizzes")))


if __name__ == "__main__":
    main()
