import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from utils.text import search_text
from .schema import SCHEMA_SQL, INDEXES_SQL, SCHEMA_VERSION

CONFIG_DIR = Path.home() / ".subsearch"
DB_PATH = CONFIG_DIR / "subsearch.db"

# Progress handler granularity (SQLite VM instructions between budget checks)
_PROGRESS_STEPS = 10000


def init_db():
    """Initialize the database by creating tables and indexes if they don't exist."""
    CONFIG_DIR.mkdir(exist_ok=True)
    with get_conn() as conn:
        conn.executescript(SCHEMA_SQL)
        conn.executescript(INDEXES_SQL)
        ensure_schema_version(conn)
        conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Read the SQLite schema version from PRAGMA user_version."""
    cursor = conn.cursor()
    cursor.execute("PRAGMA user_version")
    row = cursor.fetchone()
    return int(row[0]) if row else 0


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Set the SQLite schema version via PRAGMA user_version."""
    conn.execute(f"PRAGMA user_version = {int(version)}")


def ensure_schema_version(conn: sqlite3.Connection) -> None:
    """Ensure the current schema version is written to the database."""
    current = get_schema_version(conn)
    if current != SCHEMA_VERSION:
        set_schema_version(conn, SCHEMA_VERSION)


def get_watermark(conn: sqlite3.Connection, name: str) -> int:
    """Return the persisted checkpoint for a background job (0 if never run)."""
    row = conn.execute("SELECT watermark FROM job_state WHERE name = ?", (name,)).fetchone()
    return int(row[0]) if row else 0


def set_watermark(conn: sqlite3.Connection, name: str, watermark: int) -> None:
    """Persist a job checkpoint. Caller owns the transaction."""
    conn.execute(
        """
        INSERT INTO job_state (name, watermark, updated_at)
        VALUES (?, ?, datetime('now'))
        ON CONFLICT(name) DO UPDATE SET
            watermark = excluded.watermark,
            updated_at = excluded.updated_at
        """,
        (name, int(watermark)),
    )


@contextmanager
def execution_budget(conn: sqlite3.Connection, seconds: float):
    """Abort statements on this connection once `seconds` have elapsed.

    An interrupted statement raises sqlite3.OperationalError("interrupted").
    """
    deadline = time.monotonic() + seconds

    def _check() -> int:
        return 1 if time.monotonic() > deadline else 0

    conn.set_progress_handler(_check, _PROGRESS_STEPS)
    try:
        yield
    finally:
        conn.set_progress_handler(None, 0)


def chunked(values: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    """Yield consecutive slices of at most `size` items."""
    size = max(1, int(size))
    for start in range(0, len(values), size):
        yield values[start:start + size]


def query_all(sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    """Run a read-only statement on a fresh connection and return dict rows."""
    with get_conn() as conn:
        cursor = conn.execute(sql, list(params))
        return [dict(row) for row in cursor.fetchall()]


@contextmanager
def get_conn():
    """Context manager for SQLite connection, using row_factory for dict-like rows."""
    conn = sqlite3.connect(DB_PATH, detect_types=sqlite3.PARSE_DECLTYPES, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.create_function("search_text", 2, search_text, deterministic=True)
    try:
        yield conn
    finally:
        conn.close()


def get_db():
    """FastAPI dependency that yields a DB connection and closes it afterwards."""
    with get_conn() as conn:
        yield conn
