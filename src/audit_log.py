"""Audit log module.

Records one row per completed control cycle so that the controller's
behavior can be reviewed after the fact.
"""

import csv
import logging
import sqlite3
from typing import Any, Optional

import database


logger = logging.getLogger(__name__)

# percentKept holds the percentage the cycle computed (0-100), not the one
# it replaced.
CSV_HEADER = [
    "timestamp",
    "percentKept",
    "errorPctDelta",
    "bytesThisWindow",
    "deltaBytes",
    "avgRateMBPerSec",
]


class AuditLog:
    """Writes cycle results to the audit_log table.

    Owns a dedicated connection; only the scheduler thread writes through it.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the audit log.

        Args:
            db_path: Path to the SQLite database file
        """
        self._db_path = db_path
        self._db_conn: Optional[sqlite3.Connection] = database.get_connection(db_path)

    def record(self, result: Any, recorded_at_ms: int) -> None:
        """Persist one cycle result.

        Write errors are logged; the connection is reopened and the row is
        dropped. If the database cannot be reopened, the next call retries.

        Args:
            result: CycleResult of a successful cycle
            recorded_at_ms: Unix timestamp in milliseconds
        """
        if self._db_conn is None and not self._reconnect():
            logger.warning(f"Audit row for {recorded_at_ms} not recorded")
            return

        try:
            database.insert_audit_row(
                self._db_conn,
                recorded_at=recorded_at_ms,
                target=result.target_id,
                percent_kept=result.percentage * 100,
                error_delta=result.error,
                bytes_this_window=result.raw_delta,
                delta_bytes=result.smoothed_delta,
                average_rate_mb_per_sec=result.average_rate_mb_per_sec,
            )
            database.commit_batch(self._db_conn)
        except sqlite3.DatabaseError as e:
            logger.warning(f"Failed to write audit row: {e}; reconnecting")
            try:
                self._db_conn.close()
            except Exception:
                pass
            self._db_conn = None
            self._reconnect()

    def _reconnect(self) -> bool:
        try:
            self._db_conn = database.get_connection(self._db_path)
        except sqlite3.Error as e:
            logger.error(
                f"Failed to reopen audit database {self._db_path}: "
                f"{e}; retrying on next cycle"
            )
            return False
        return True

    def export_csv(self, path: str) -> int:
        """Write all audit rows to a CSV file.

        Args:
            path: Output file path

        Returns:
            Number of rows written
        """
        if self._db_conn is None and not self._reconnect():
            raise sqlite3.OperationalError(f"Cannot open audit database {self._db_path}")
        rows = database.get_audit_rows(self._db_conn)
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for row in rows:
                writer.writerow([
                    row["recorded_at"],
                    f"{row['percent_kept']:.4f}",
                    f"{row['error_delta']:.4f}",
                    row["bytes_this_window"],
                    row["delta_bytes"],
                    f"{row['average_rate_mb_per_sec']:.4f}",
                ])
        return len(rows)

    def close(self) -> None:
        if self._db_conn is not None:
            self._db_conn.close()
            self._db_conn = None
