"""Pytest configuration and shared fixtures."""

import pytest
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import database
from config import (
    Config,
    ControllerConfig,
    ConnectionsConfig,
    SampleConnectionConfig,
    StoreConnectionConfig,
    AuditConfig,
)


# 2024-03-09 01:00:00 UTC
DAY_ONE = 1709946000.0
DAY_SECONDS = 86400


@pytest.fixture
def db_path(tmp_path):
    """Provide a path to a temporary SQLite database file."""
    return str(tmp_path / "test.db")


@pytest.fixture
def db_path_initialized(db_path):
    """Provide a path to a temporary SQLite database file with schema initialized."""
    database.init_db(db_path).close()
    return db_path


@pytest.fixture
def db_conn(db_path):
    """Provide a SQLite database connection initialized with schema.

    Creates a file-based database at db_path so that multiple connections
    (e.g., from worker threads) can access the same database.
    """
    conn = database.init_db(db_path)
    yield conn
    conn.close()


def make_test_config(window_ms: int = 300000, audit_path: str = None) -> Config:
    """Create a test configuration."""
    return Config(
        controller=ControllerConfig(
            target_rate=1,
            initial_percent_kept=50,
            minimum_percent=5,
            window_ms=window_ms,
        ),
        connections=ConnectionsConfig(
            sample=SampleConnectionConfig(
                url="http://sample:9200", daily_index_prefix="events"
            ),
            store=StoreConnectionConfig(
                url="http://store:9200", index="settings", document_id="events-rate"
            ),
            request_timeout_seconds=0.01,
        ),
        audit=AuditConfig(database_path=audit_path, max_entries=5),
    )
