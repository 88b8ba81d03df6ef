#!/usr/bin/env python3
"""
Project Lifecycle Engine Database Schema

SQLite schema for the engine's persistence adapter. Includes:
- workflows: workflow definitions (step document stored as JSON)
- projects: project records (everything except history, as JSON) with a
  version counter for compare-and-swap saves
- project_history: append-only audit trail rows, one per history entry
- deleted_projects: tombstones keeping the final history of deleted projects
- notifications: per-user notifications, optionally tagged with a project

Schema version is stored in PRAGMA user_version. The migrate() function
applies schema changes incrementally and is idempotent.

All write transactions use BEGIN IMMEDIATE so concurrent writers serialize
on the database lock instead of failing mid-transaction.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

# Current schema version; increment when adding tables or columns
SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
# Connection helper
# ---------------------------------------------------------------------------


def open_db(db_path: str | Path) -> sqlite3.Connection:
    """
    Open (or create) the engine database with required PRAGMAs.

    Sets:
    - journal_mode=WAL: concurrent reads while a single writer holds the lock
    - busy_timeout=5000: wait on a locked database for up to 5 seconds
    - foreign_keys=ON: cascade project history on delete
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


# ---------------------------------------------------------------------------
# DDL, ordered by dependency (no FK violations on fresh create)
# ---------------------------------------------------------------------------

_CREATE_WORKFLOWS = """
CREATE TABLE IF NOT EXISTS workflows (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    steps       TEXT NOT NULL,                  -- JSON array of steps
    position    INTEGER NOT NULL,               -- listing order
    created_at  TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_PROJECTS = """
CREATE TABLE IF NOT EXISTS projects (
    id          TEXT PRIMARY KEY,
    workflow_id TEXT NOT NULL,
    status      TEXT NOT NULL,
    progress    INTEGER NOT NULL CHECK(progress BETWEEN 0 AND 100),
    record      TEXT NOT NULL,                  -- JSON project minus history
    version     INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

_CREATE_PROJECT_HISTORY = """
CREATE TABLE IF NOT EXISTS project_history (
    project_id  TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    seq         INTEGER NOT NULL,               -- 0-based position in history
    actor       TEXT NOT NULL,
    action      TEXT NOT NULL,
    timestamp   TEXT NOT NULL,
    note        TEXT,
    PRIMARY KEY (project_id, seq)
)
"""

_CREATE_DELETED_PROJECTS = """
CREATE TABLE IF NOT EXISTS deleted_projects (
    id          TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    deleted_by  TEXT NOT NULL,
    deleted_at  TEXT NOT NULL,
    record      TEXT NOT NULL                   -- JSON project including history
)
"""

_CREATE_NOTIFICATIONS = """
CREATE TABLE IF NOT EXISTS notifications (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    project_id  TEXT,
    message     TEXT NOT NULL,
    timestamp   TEXT NOT NULL,
    is_read     INTEGER NOT NULL DEFAULT 0 CHECK(is_read IN (0, 1))
)
"""

# Appending to history is the only permitted write on project_history
_HISTORY_IMMUTABLE_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS project_history_no_update
BEFORE UPDATE ON project_history
BEGIN
    SELECT RAISE(ABORT, 'project_history is append-only');
END
"""

# ---------------------------------------------------------------------------
# Indexes for common queries
# ---------------------------------------------------------------------------

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_projects_workflow ON projects(workflow_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_projects_created ON projects(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_project ON notifications(project_id)",
]

# All DDL in dependency order
SCHEMA_STATEMENTS: list[str] = [
    _CREATE_WORKFLOWS,
    _CREATE_PROJECTS,
    _CREATE_PROJECT_HISTORY,
    _CREATE_DELETED_PROJECTS,
    _CREATE_NOTIFICATIONS,
    _HISTORY_IMMUTABLE_TRIGGER,
    *_INDEXES,
]


# ---------------------------------------------------------------------------
# Migration runner
# ---------------------------------------------------------------------------


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Read the current schema version from PRAGMA user_version."""
    return conn.execute("PRAGMA user_version").fetchone()[0]


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Write schema version to PRAGMA user_version (no param binding, use f-string)."""
    conn.execute(f"PRAGMA user_version = {version}")


def migrate(conn: sqlite3.Connection) -> None:
    """
    Apply schema migrations incrementally.

    Idempotent: safe to call on an existing database.

    Version history:
    0 → 1: Initial schema (workflows, projects, project_history,
            deleted_projects, notifications, indexes)
    """
    current = get_schema_version(conn)

    if current < 1:
        for stmt in SCHEMA_STATEMENTS:
            conn.execute(stmt)
        set_schema_version(conn, 1)
        conn.commit()


def create_db(db_path: str | Path) -> sqlite3.Connection:
    """
    Create or open the engine database, applying all migrations.

    Returns an open connection with WAL mode, busy_timeout=5000,
    and foreign_keys=ON. The caller is responsible for closing it.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_db(path)
    migrate(conn)
    return conn


# ---------------------------------------------------------------------------
# Per-thread connections and write transactions
# ---------------------------------------------------------------------------


class ThreadLocalConnections:
    """
    Hands each thread its own connection to one database file.

    A sqlite3 connection carries a single transaction state, so threads must
    not share one while writing. Every connection is opened through open_db()
    and therefore waits on busy_timeout instead of failing under contention.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._all: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        create_db(self.db_path).close()

    def get(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = open_db(self.db_path)
            self._local.conn = conn
            with self._lock:
                self._all.append(conn)
        return conn

    def close_all(self) -> None:
        with self._lock:
            for conn in self._all:
                conn.close()
            self._all.clear()
        self._local = threading.local()


@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    BEGIN IMMEDIATE … COMMIT, rolling back if the body raises.

    The caller must NOT already be in a transaction.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
