import sqlite3
import logging
from pathlib import Path

from ..errors import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"
BUSY_TIMEOUT_SECONDS = 30


def strip_pragmas(sql: str) -> str:
    """Drop PRAGMA lines; connection-level pragmas are set in get_connection."""
    return "\n".join(
        line for line in sql.splitlines() if not line.strip().upper().startswith("PRAGMA")
    )


def get_connection(db_path: str) -> sqlite3.Connection:
    """Open a connection in WAL mode with foreign keys (and so cascades) enforced."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database(db_path: str) -> sqlite3.Connection:
    """Open the database and bring its schema up to date.

    schema.sql is idempotent (IF NOT EXISTS everywhere); numbered migrations
    run afterwards.
    """
    conn = get_connection(db_path)
    try:
        # executescript handles the BEGIN/END bodies of the FTS triggers
        conn.executescript(strip_pragmas(SCHEMA_PATH.read_text()))
    except sqlite3.OperationalError as e:
        conn.close()
        if "fts5" in str(e).lower():
            raise PersistenceError("This SQLite build has no FTS5 support") from e
        raise PersistenceError(f"Could not initialize schema: {e}") from e

    from .migrator import run_migrations
    applied = run_migrations(conn)

    logger.debug(f"Database ready at {db_path} ({applied} migrations applied)")
    return conn
