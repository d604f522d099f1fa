"""SQLite connection management and schema for the persistent stores.

Connections run in autocommit mode (``isolation_level=None``) so stores can
open explicit ``BEGIN IMMEDIATE`` transactions around read-modify-write
sequences. The schema is auto-created via CREATE TABLE IF NOT EXISTS
(idempotent).
"""

import logging
import sqlite3

from src.config import get_settings

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS credentials (
    user_id         TEXT NOT NULL,
    provider_type   TEXT NOT NULL,
    access_token    TEXT NOT NULL,
    refresh_token   TEXT,
    token_expiry    TEXT,
    metadata        TEXT NOT NULL DEFAULT '{}',
    is_active       INTEGER NOT NULL DEFAULT 1,
    last_synced_at  TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    PRIMARY KEY (user_id, provider_type)
);

CREATE TABLE IF NOT EXISTS standups (
    id                   TEXT PRIMARY KEY,
    user_id              TEXT NOT NULL,
    date                 TEXT NOT NULL,
    content              TEXT NOT NULL,
    raw_data             TEXT,
    preferences          TEXT NOT NULL DEFAULT '{}',
    generation_metadata  TEXT NOT NULL DEFAULT '{}',
    replaced_count       INTEGER NOT NULL DEFAULT 0,
    generated_at         TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_standups_user_date ON standups(user_id, date);
CREATE INDEX IF NOT EXISTS idx_standups_generated ON standups(user_id, generated_at);
"""


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Open a SQLite connection suitable for use from worker threads.

    Args:
        db_path: Explicit path to the database file. If None, reads from settings.
                 Pass ":memory:" for in-memory databases (tests).

    Returns:
        A new sqlite3.Connection with row_factory set to sqlite3.Row.

    Raises:
        ValueError: If storage is not configured (empty db path).
    """
    if db_path is None:
        db_path = get_settings().standup_db_path
    if not db_path:
        msg = "Standup storage not configured (STANDUP_DB_PATH is empty)"
        raise ValueError(msg)

    conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't exist (idempotent)."""
    conn.executescript(_SCHEMA_SQL)


def get_initialized_connection(db_path: str | None = None) -> sqlite3.Connection:
    """Get a connection with schema already initialized. Convenience wrapper."""
    conn = get_connection(db_path)
    init_schema(conn)
    return conn

