#!/usr/bin/env python3
"""
Project Lifecycle Engine Persistence Adapter

The engine depends only on the PersistenceAdapter protocol: load/save per
aggregate id plus collection listings. SQLitePersistence is the shipped
implementation.

Guarantees of SQLitePersistence:
- Every save runs inside BEGIN IMMEDIATE … COMMIT; a reader never observes a
  partially written record.
- save_project() is a compare-and-swap on the record's version counter. A
  save based on a stale load raises ConcurrentModification.
- History rows are append-only. A save may add entries beyond the stored
  ones; it may never drop or rewrite a stored entry (HistoryRewriteError).
- delete_project() keeps a tombstone with the project's final history.
"""

import json
import sqlite3
from pathlib import Path
from typing import Protocol

from .errors import ConcurrentModification, HistoryRewriteError, PersistenceError
from .models import HistoryEntry, Project, Status, WorkflowDefinition, WorkflowStep
from .schema import ThreadLocalConnections, write_transaction


class PersistenceAdapter(Protocol):
    """Storage contract consumed by the workflow store and the state machine."""

    def load_project(self, project_id: str) -> Project | None: ...

    def save_project(self, project: Project) -> Project: ...

    def delete_project(self, project: Project, deleted_by: str, deleted_at: str) -> bool: ...

    def list_projects(self) -> list[Project]: ...

    def count_live_projects(self, workflow_id: str) -> int: ...

    def load_workflow(self, workflow_id: str) -> WorkflowDefinition | None: ...

    def save_workflow(self, workflow: WorkflowDefinition, first: bool = False) -> None: ...

    def delete_workflow(self, workflow_id: str) -> bool: ...

    def list_workflows(self) -> list[WorkflowDefinition]: ...


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------


def _history_matches(row: sqlite3.Row, entry: HistoryEntry) -> bool:
    return (
        row["actor"] == entry.actor
        and row["action"] == entry.action_description
        and row["timestamp"] == entry.timestamp
        and row["note"] == entry.note
    )


class SQLitePersistence:
    """
    PersistenceAdapter over a single SQLite file.

    Each thread gets its own connection; writers serialize on the database
    lock (BEGIN IMMEDIATE with busy_timeout).
    """

    def __init__(self, db_path: str | Path):
        self.connections = ThreadLocalConnections(db_path)

    @property
    def db_path(self) -> Path:
        return self.connections.db_path

    def close(self) -> None:
        self.connections.close_all()

    # -----------------------------------------------------------------------
    # Projects
    # -----------------------------------------------------------------------

    def _read_project(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Project:
        record = json.loads(row["record"])
        history_rows = conn.execute(
            """
            SELECT actor, action, timestamp, note
            FROM project_history
            WHERE project_id = ?
            ORDER BY seq ASC
            """,
            (row["id"],),
        ).fetchall()
        project = Project.from_dict(record)
        project.workflow_history = [
            HistoryEntry(
                actor=h["actor"],
                action_description=h["action"],
                timestamp=h["timestamp"],
                note=h["note"],
            )
            for h in history_rows
        ]
        project.version = row["version"]
        return project

    def load_project(self, project_id: str) -> Project | None:
        conn = self.connections.get()
        try:
            row = conn.execute(
                "SELECT id, record, version FROM projects WHERE id = ?",
                (project_id,),
            ).fetchone()
            if row is None:
                return None
            return self._read_project(conn, row)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to load project '{project_id}': {exc}") from exc

    def save_project(self, project: Project) -> Project:
        """
        Insert (version 0) or compare-and-swap update a project record.

        On success the project's version is advanced in place and the same
        object is returned.

        Raises:
            ConcurrentModification: the stored version differs from project.version
            HistoryRewriteError: the offered history does not extend the stored one
            PersistenceError: any SQLite failure (nothing is committed)
        """
        conn = self.connections.get()
        record = json.dumps(project.to_dict(include_history=False))
        new_version = project.version + 1
        try:
            with write_transaction(conn):
                if project.version == 0:
                    exists = conn.execute(
                        "SELECT 1 FROM projects WHERE id = ?", (project.id,)
                    ).fetchone()
                    if exists:
                        raise ConcurrentModification(project.id, project.version)
                    conn.execute(
                        """
                        INSERT INTO projects (id, workflow_id, status, progress,
                                              record, version, created_at)
                        VALUES (:id, :workflow_id, :status, :progress,
                                :record, :version, :created_at)
                        """,
                        {
                            "id": project.id,
                            "workflow_id": project.workflow_id,
                            "status": project.status,
                            "progress": project.progress,
                            "record": record,
                            "version": new_version,
                            "created_at": project.created_at,
                        },
                    )
                else:
                    cursor = conn.execute(
                        """
                        UPDATE projects
                        SET workflow_id = :workflow_id,
                            status      = :status,
                            progress    = :progress,
                            record      = :record,
                            version     = :new_version,
                            updated_at  = datetime('now')
                        WHERE id = :id AND version = :version
                        """,
                        {
                            "id": project.id,
                            "workflow_id": project.workflow_id,
                            "status": project.status,
                            "progress": project.progress,
                            "record": record,
                            "version": project.version,
                            "new_version": new_version,
                        },
                    )
                    if cursor.rowcount == 0:
                        raise ConcurrentModification(project.id, project.version)

                self._append_history(conn, project)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to save project '{project.id}': {exc}") from exc

        project.version = new_version
        return project

    def _append_history(self, conn: sqlite3.Connection, project: Project) -> None:
        stored = conn.execute(
            """
            SELECT seq, actor, action, timestamp, note
            FROM project_history
            WHERE project_id = ?
            ORDER BY seq ASC
            """,
            (project.id,),
        ).fetchall()
        offered = project.workflow_history
        if len(offered) < len(stored):
            raise HistoryRewriteError(project.id, len(stored), len(offered))
        for row, entry in zip(stored, offered):
            if not _history_matches(row, entry):
                raise HistoryRewriteError(project.id, len(stored), len(offered))

        conn.executemany(
            """
            INSERT INTO project_history (project_id, seq, actor, action, timestamp, note)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (project.id, seq, e.actor, e.action_description, e.timestamp, e.note)
                for seq, e in enumerate(offered)
                if seq >= len(stored)
            ],
        )

    def delete_project(self, project: Project, deleted_by: str, deleted_at: str) -> bool:
        """
        Remove a project, archiving it (with its full history) as a tombstone.

        The tombstone is written from the offered object, so callers append
        the deletion entry to project.workflow_history first. Returns False
        if the project no longer exists.
        """
        conn = self.connections.get()
        try:
            with write_transaction(conn):
                cursor = conn.execute(
                    "DELETE FROM projects WHERE id = ? AND version = ?",
                    (project.id, project.version),
                )
                if cursor.rowcount == 0:
                    exists = conn.execute(
                        "SELECT 1 FROM projects WHERE id = ?", (project.id,)
                    ).fetchone()
                    if exists:
                        raise ConcurrentModification(project.id, project.version)
                    return False
                conn.execute(
                    """
                    INSERT OR REPLACE INTO deleted_projects (id, title, deleted_by, deleted_at, record)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        project.id,
                        project.title,
                        deleted_by,
                        deleted_at,
                        json.dumps(project.to_dict()),
                    ),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to delete project '{project.id}': {exc}") from exc
        return True

    def load_deleted_project(self, project_id: str) -> Project | None:
        """Return the archived record of a deleted project, or None."""
        conn = self.connections.get()
        row = conn.execute(
            "SELECT record FROM deleted_projects WHERE id = ?", (project_id,)
        ).fetchone()
        if row is None:
            return None
        return Project.from_dict(json.loads(row["record"]))

    def list_projects(self) -> list[Project]:
        """All projects, newest first."""
        conn = self.connections.get()
        try:
            rows = conn.execute(
                "SELECT id, record, version FROM projects ORDER BY created_at DESC, id DESC"
            ).fetchall()
            return [self._read_project(conn, row) for row in rows]
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to list projects: {exc}") from exc

    def count_live_projects(self, workflow_id: str) -> int:
        """
        Projects on this workflow still expecting action.

        Terminal means a terminal status or an empty assigned division, the
        same test as Project.is_terminal.
        """
        conn = self.connections.get()
        terminal = sorted(Status.TERMINAL)
        placeholders = ", ".join("?" for _ in terminal)
        row = conn.execute(
            f"""
            SELECT COUNT(*) FROM projects
            WHERE workflow_id = ?
              AND status NOT IN ({placeholders})
              AND COALESCE(json_extract(record, '$.assignedDivision'), '') != ''
            """,
            [workflow_id, *terminal],
        ).fetchone()
        return row[0]

    # -----------------------------------------------------------------------
    # Workflows
    # -----------------------------------------------------------------------

    @staticmethod
    def _workflow_from_row(row: sqlite3.Row) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            steps=tuple(WorkflowStep.from_dict(s) for s in json.loads(row["steps"])),
        )

    def load_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        conn = self.connections.get()
        try:
            row = conn.execute(
                "SELECT id, name, description, steps FROM workflows WHERE id = ?",
                (workflow_id,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to load workflow '{workflow_id}': {exc}") from exc
        return self._workflow_from_row(row) if row else None

    def save_workflow(self, workflow: WorkflowDefinition, first: bool = False) -> None:
        """
        Upsert a workflow definition.

        New definitions are listed last, or first when first=True. Updates
        keep their listing position.
        """
        conn = self.connections.get()
        steps = json.dumps([step.to_dict() for step in workflow.steps])
        try:
            with write_transaction(conn):
                bounds = conn.execute(
                    "SELECT MIN(position), MAX(position) FROM workflows"
                ).fetchone()
                if bounds[0] is None:
                    position = 0
                elif first:
                    position = bounds[0] - 1
                else:
                    position = bounds[1] + 1
                conn.execute(
                    """
                    INSERT INTO workflows (id, name, description, steps, position)
                    VALUES (:id, :name, :description, :steps, :position)
                    ON CONFLICT(id) DO UPDATE SET
                        name        = excluded.name,
                        description = excluded.description,
                        steps       = excluded.steps,
                        updated_at  = datetime('now')
                    """,
                    {
                        "id": workflow.id,
                        "name": workflow.name,
                        "description": workflow.description,
                        "steps": steps,
                        "position": position,
                    },
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to save workflow '{workflow.id}': {exc}") from exc

    def delete_workflow(self, workflow_id: str) -> bool:
        conn = self.connections.get()
        try:
            with write_transaction(conn):
                cursor = conn.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to delete workflow '{workflow_id}': {exc}") from exc
        return cursor.rowcount > 0

    def list_workflows(self) -> list[WorkflowDefinition]:
        conn = self.connections.get()
        try:
            rows = conn.execute(
                "SELECT id, name, description, steps FROM workflows ORDER BY position ASC"
            ).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to list workflows: {exc}") from exc
        return [self._workflow_from_row(row) for row in rows]
