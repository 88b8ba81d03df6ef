#!/usr/bin/env python3
"""
Project Lifecycle Engine Notification Dispatch

The engine talks to notification delivery only through the
NotificationDispatcher protocol:

    notify_role(role | [roles], message, project_id=None)
    notify_user(user_id, message, project_id=None)
    purge_by_project(project_id)

SQLiteNotificationStore is the shipped dispatcher. It fans a role out to its
members through a RoleDirectory, writes one notification row per user, and
keeps only the newest `limit` notifications overall.

Delivery is best-effort from the engine's point of view: the state machine
calls the dispatcher after its own commit and logs (never raises) a failure.
"""

import logging
import sqlite3
import uuid
from typing import Callable, Iterable, Protocol

from .models import Notification, utc_now
from .schema import ThreadLocalConnections, write_transaction

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def notify_role(
        self, roles: str | Iterable[str | None] | None, message: str, project_id: str | None = None
    ) -> int: ...

    def notify_user(self, user_id: str, message: str, project_id: str | None = None) -> int: ...

    def purge_by_project(self, project_id: str) -> int: ...


class RoleDirectory(Protocol):
    def users_in_role(self, role: str) -> list[str]: ...


class StaticRoleDirectory:
    """Role membership from a fixed mapping (the `roles` section of config.yaml)."""

    def __init__(self, members: dict[str, list[str]] | None = None):
        self.members = {role: list(users) for role, users in (members or {}).items()}

    def users_in_role(self, role: str) -> list[str]:
        return list(self.members.get(role, []))


def normalize_roles(roles: str | Iterable[str | None] | None) -> list[str]:
    """Accept one role or a list; drop empty and None entries, keep order, dedupe."""
    if roles is None:
        return []
    if isinstance(roles, str):
        roles = [roles]
    result: list[str] = []
    for role in roles:
        if role and role not in result:
            result.append(role)
    return result


# ---------------------------------------------------------------------------
# SQLite-backed store
# ---------------------------------------------------------------------------


class SQLiteNotificationStore:
    """
    NotificationDispatcher persisting to the `notifications` table.

    Shares the engine's database file; each thread uses its own connection.
    """

    def __init__(
        self,
        connections: ThreadLocalConnections,
        directory: RoleDirectory,
        limit: int = 300,
        clock: Callable[[], str] = utc_now,
    ):
        self.connections = connections
        self.directory = directory
        self.limit = limit
        self.clock = clock

    def _insert(self, user_ids: list[str], message: str, project_id: str | None) -> int:
        if not user_ids:
            return 0
        now = self.clock()
        conn = self.connections.get()
        with write_transaction(conn):
            conn.executemany(
                """
                INSERT INTO notifications (id, user_id, project_id, message, timestamp, is_read)
                VALUES (?, ?, ?, ?, ?, 0)
                """,
                [
                    (f"notif-{uuid.uuid4().hex[:12]}", user_id, project_id, message, now)
                    for user_id in user_ids
                ],
            )
            self._trim(conn)
        return len(user_ids)

    def _trim(self, conn: sqlite3.Connection) -> None:
        # Newest first by timestamp, then insertion order
        conn.execute(
            """
            DELETE FROM notifications
            WHERE rowid NOT IN (
                SELECT rowid FROM notifications
                ORDER BY timestamp DESC, rowid DESC
                LIMIT ?
            )
            """,
            (self.limit,),
        )

    def notify_role(
        self, roles: str | Iterable[str | None] | None, message: str, project_id: str | None = None
    ) -> int:
        """
        Notify every member of one or more roles.

        Returns the number of notifications written. A role without members
        is logged and skipped.
        """
        recipients: list[str] = []
        for role in normalize_roles(roles):
            users = self.directory.users_in_role(role)
            if not users:
                logger.warning("No users in role '%s'; notification not delivered", role)
                continue
            for user_id in users:
                if user_id not in recipients:
                    recipients.append(user_id)
        return self._insert(recipients, message, project_id)

    def notify_user(self, user_id: str, message: str, project_id: str | None = None) -> int:
        if not user_id:
            return 0
        return self._insert([user_id], message, project_id)

    def purge_by_project(self, project_id: str) -> int:
        """Delete every notification tagged with the project. Returns the count removed."""
        if not project_id:
            return 0
        conn = self.connections.get()
        with write_transaction(conn):
            cursor = conn.execute("DELETE FROM notifications WHERE project_id = ?", (project_id,))
        return cursor.rowcount

    # -----------------------------------------------------------------------
    # Queries and housekeeping
    # -----------------------------------------------------------------------

    def for_user(self, user_id: str) -> list[Notification]:
        """A user's notifications, newest first."""
        conn = self.connections.get()
        rows = conn.execute(
            """
            SELECT id, user_id, project_id, message, timestamp, is_read
            FROM notifications
            WHERE user_id = ?
            ORDER BY timestamp DESC, rowid DESC
            """,
            (user_id,),
        ).fetchall()
        return [Notification.from_row(row) for row in rows]

    def count_for_project(self, project_id: str) -> int:
        conn = self.connections.get()
        return conn.execute(
            "SELECT COUNT(*) FROM notifications WHERE project_id = ?", (project_id,)
        ).fetchone()[0]

    def mark_read(self, notification_id: str) -> bool:
        """Returns False when the id is unknown or the notification was already read."""
        conn = self.connections.get()
        with write_transaction(conn):
            cursor = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ? AND is_read = 0",
                (notification_id,),
            )
        return cursor.rowcount > 0

    def mark_all_read(self, user_id: str) -> int:
        conn = self.connections.get()
        with write_transaction(conn):
            cursor = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
                (user_id,),
            )
        return cursor.rowcount

    def clear_all(self) -> None:
        conn = self.connections.get()
        with write_transaction(conn):
            conn.execute("DELETE FROM notifications")
