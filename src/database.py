"""Database module for SQLite operations.

All SQL operations are isolated here. No other module writes SQL.
"""

import sqlite3
from typing import List, Dict, Any, Optional


AUDIT_COLUMNS = (
    "recorded_at",
    "target",
    "percent_kept",
    "error_delta",
    "bytes_this_window",
    "delta_bytes",
    "average_rate_mb_per_sec",
)


def init_db(path: str) -> sqlite3.Connection:
    """Initialize database with tables and PRAGMAs.

    Args:
        path: Path to the SQLite database file (use ':memory:' for in-memory)

    Returns:
        sqlite3.Connection: Database connection with row factory set
    """
    conn = _create_connection(path)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            recorded_at INTEGER NOT NULL,
            target TEXT NOT NULL,
            percent_kept REAL NOT NULL,
            error_delta REAL NOT NULL,
            bytes_this_window INTEGER NOT NULL,
            delta_bytes REAL NOT NULL,
            average_rate_mb_per_sec REAL NOT NULL
        )
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_audit_log_recorded_at ON audit_log (recorded_at)"
    )

    conn.commit()
    return conn


def _create_connection(path: str) -> sqlite3.Connection:
    """Create a new database connection with proper settings.

    Args:
        path: Path to the SQLite database file

    Returns:
        sqlite3.Connection: Database connection with row factory and PRAGMAs set
    """
    conn = sqlite3.connect(path, check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row

    # Set required PRAGMAs
    conn.execute("PRAGMA auto_vacuum=INCREMENTAL")
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.commit()

    return conn


def get_connection(path: str) -> sqlite3.Connection:
    """Get a new database connection for a worker thread.

    Each thread should call this to get its own connection to avoid
    thread-safety issues with SQLite connections.

    Args:
        path: Path to the SQLite database file

    Returns:
        sqlite3.Connection: New database connection with row factory and PRAGMAs set
    """
    return _create_connection(path)


def insert_audit_row(
    conn: sqlite3.Connection,
    recorded_at: int,
    target: str,
    percent_kept: float,
    error_delta: float,
    bytes_this_window: int,
    delta_bytes: float,
    average_rate_mb_per_sec: float,
) -> None:
    """Insert one audit row for a completed cycle.

    Args:
        conn: Database connection
        recorded_at: Unix timestamp in milliseconds
        target: Index measured during the cycle
        percent_kept: Percentage written to the store (0-100)
        error_delta: Normalized error fed to the PID controller
        bytes_this_window: Raw change in index size
        delta_bytes: Smoothed change in index size
        average_rate_mb_per_sec: Average growth rate since rotation
    """
    conn.execute(
        """INSERT INTO audit_log
           (recorded_at, target, percent_kept, error_delta, bytes_this_window,
            delta_bytes, average_rate_mb_per_sec)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            recorded_at,
            target,
            percent_kept,
            error_delta,
            bytes_this_window,
            delta_bytes,
            average_rate_mb_per_sec,
        ),
    )


def commit_batch(conn: sqlite3.Connection) -> None:
    """Commit all pending writes in a single transaction.

    Args:
        conn: Database connection
    """
    conn.commit()


def get_audit_rows(
    conn: sqlite3.Connection, limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Get audit rows ordered oldest first.

    Args:
        conn: Database connection
        limit: If given, only the most recent limit rows are returned

    Returns:
        List of dicts keyed by AUDIT_COLUMNS
    """
    columns = ", ".join(AUDIT_COLUMNS)
    if limit is None:
        cursor = conn.execute(f"SELECT {columns} FROM audit_log ORDER BY id ASC")
    else:
        cursor = conn.execute(
            f"""SELECT {columns} FROM (
                   SELECT id, {columns} FROM audit_log ORDER BY id DESC LIMIT ?
               ) ORDER BY id ASC""",
            (limit,),
        )
    return [dict(zip(AUDIT_COLUMNS, tuple(row))) for row in cursor.fetchall()]


def count_audit_rows(conn: sqlite3.Connection) -> int:
    """Count rows in the audit table."""
    cursor = conn.execute("SELECT COUNT(*) FROM audit_log")
    return cursor.fetchone()[0]


def prune_audit_rows(conn: sqlite3.Connection, keep_n: int) -> int:
    """Delete all but the most recent keep_n audit rows.

    Args:
        conn: Database connection
        keep_n: Number of most recent rows to keep

    Returns:
        Number of rows deleted
    """
    cursor = conn.execute(
        """DELETE FROM audit_log
           WHERE id NOT IN (
               SELECT id FROM audit_log
               ORDER BY id DESC
               LIMIT ?
           )""",
        (keep_n,),
    )
    return cursor.rowcount


def run_incremental_vacuum(conn: sqlite3.Connection, pages: int = 100) -> None:
    """Run incremental vacuum to reclaim disk space.

    Args:
        conn: Database connection
        pages: Number of pages to vacuum

    Raises:
        ValueError: If pages is not a positive integer
    """
    if not isinstance(pages, int) or pages <= 0:
        raise ValueError(f"pages must be a positive integer, got {pages!r}")
    conn.execute(f"PRAGMA incremental_vacuum({pages})")
