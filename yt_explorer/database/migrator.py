from __future__ import annotations

"""Database migration runner. Applies numbered SQL migration files in order,
tracking which have been applied via the schema_version table."""

import logging
from pathlib import Path

from .connection import strip_pragmas

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def current_version(conn) -> int:
    row = conn.execute("SELECT MAX(version) as v FROM schema_version").fetchone()
    return row["v"] if row["v"] is not None else 0


def run_migrations(conn) -> int:
    """Run all pending migrations in order. Returns how many were applied."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS schema_version (
            version     INTEGER PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at  TEXT NOT NULL DEFAULT (datetime('now'))
        );
    """)

    current = current_version(conn)

    if not MIGRATIONS_DIR.exists():
        return 0

    applied = 0
    for mf in sorted(MIGRATIONS_DIR.glob("*.sql")):
        # Filenames look like 001_description.sql
        try:
            version = int(mf.stem.split("_")[0])
        except (ValueError, IndexError):
            logger.warning(f"Skipping non-numbered migration file: {mf.name}")
            continue

        if version <= current:
            continue

        logger.info(f"Applying migration {version}: {mf.name}")
        conn.executescript(strip_pragmas(mf.read_text()))

        conn.execute(
            "INSERT INTO schema_version (version, description) VALUES (?, ?)",
            (version, mf.stem),
        )
        conn.commit()
        applied += 1

    return applied
