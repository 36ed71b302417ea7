"""Housekeeping thread module for database maintenance.

Handles periodic pruning and vacuum operations to keep the audit log bounded.
"""

import logging
import sqlite3
import time
from typing import Any

import database


logger = logging.getLogger(__name__)


class Housekeeping:
    """Housekeeping thread that manages audit log size and performs vacuum.

    Runs periodically and enforces a count-based row limit. Knows nothing
    about the control loop.
    """

    def __init__(self, config: Any, db_path: str) -> None:
        """Initialize the housekeeping thread.

        Args:
            config: Configuration object with audit settings
            db_path: Path to the SQLite database file
        """
        self._config = config
        self._db_path = db_path
        self._db_conn = database.get_connection(db_path)

    def run(self, shutdown_event: Any) -> None:
        """Run the housekeeping loop.

        Continuously performs database maintenance at the configured interval
        until shutdown_event is set.

        Args:
            shutdown_event: Threading event to signal shutdown
        """
        while not shutdown_event.is_set():
            try:
                cycle_start = time.time()
                self._run_cycle()

                # Sleep for remainder of housekeeping interval
                elapsed = time.time() - cycle_start
                sleep_time = (
                    self._config.audit.housekeeping_interval_seconds - elapsed
                )
                if sleep_time > 0:
                    # Check shutdown_event during sleep
                    shutdown_event.wait(timeout=sleep_time)

            except Exception as e:
                logger.exception(f"Error in housekeeping cycle: {e}")
                if isinstance(e, sqlite3.DatabaseError):
                    logger.warning("DB error detected, reconnecting before next cycle")
                    try:
                        self._db_conn.close()
                    except Exception:
                        pass
                    self._db_conn = database.get_connection(self._db_path)
                # Sleep briefly before retrying
                if shutdown_event.wait(timeout=5):
                    break

    def _run_cycle(self) -> None:
        """Execute a single housekeeping cycle."""
        cycle_start = time.time()

        deleted = database.prune_audit_rows(
            self._db_conn, self._config.audit.max_entries
        )

        # Commit the prune before vacuuming so freed pages are reclaimable
        database.commit_batch(self._db_conn)
        database.run_incremental_vacuum(self._db_conn, pages=100)
        database.commit_batch(self._db_conn)

        elapsed = time.time() - cycle_start
        logger.info(
            f"Housekeeping cycle complete: "
            f"audit_log: {deleted} rows pruned, "
            f"elapsed: {elapsed:.2f}s"
        )
