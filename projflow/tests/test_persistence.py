"""
Tests for engine/persistence.py

Validates:
- Project save/load keeps every field, history included
- save_project is a compare-and-swap on the version counter
- Saving a shortened or rewritten history is refused
- Deleting a project leaves a tombstone with its final history
- Projects list newest first; workflows list in position order
- count_live_projects ignores terminal projects
- SQLite failures surface as PersistenceError
"""

import dataclasses
import sqlite3

import pytest

from projflow.engine.errors import ConcurrentModification, HistoryRewriteError, PersistenceError
from projflow.engine.models import (
    FileEntry,
    HistoryEntry,
    Project,
    ScheduleDetails,
    SurveyDetails,
    WorkflowDefinition,
    WorkflowStep,
)


def _project(project_id="project-1", created_at="2025-03-03T10:00:00.000Z", **overrides):
    fields = dict(
        id=project_id,
        title="Rumah Tinggal",
        workflow_id="wf",
        status="Pending Offer",
        progress=10,
        assigned_division="Admin Proyek",
        next_action="Unggah Dokumen Penawaran",
        created_at=created_at,
        created_by="admin1",
        workflow_history=[
            HistoryEntry("admin1", "Created Project with workflow: wf", created_at, "Project entry created."),
            HistoryEntry("System", "Assigned to Admin Proyek for Unggah Dokumen Penawaran", created_at),
        ],
    )
    fields.update(overrides)
    return Project(**fields)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


def test_save_and_load_round_trip(persistence):
    project = _project(
        files=[FileEntry("offer.pdf", "p/offer.pdf", "admin1", "2025-03-03T10:00:00.000Z")],
        schedule_details=ScheduleDetails("2025-04-01", "09:00", "Balai Kota"),
        survey_details=SurveyDetails("2025-03-10", "10:00", "Site visit"),
        parallel_uploads_completed_by=["Arsitek"],
    )
    persistence.save_project(project)
    assert project.version == 1

    loaded = persistence.load_project("project-1")
    assert loaded == project


def test_load_unknown_project_returns_none(persistence):
    assert persistence.load_project("missing") is None


def test_update_advances_version_and_appends_history(persistence):
    project = persistence.save_project(_project())
    project.status = "Pending Approval"
    project.workflow_history.append(HistoryEntry("Admin Proyek", "submitted", "2025-03-03T10:05:00.000Z"))
    persistence.save_project(project)

    loaded = persistence.load_project(project.id)
    assert loaded.version == 2
    assert loaded.status == "Pending Approval"
    assert len(loaded.workflow_history) == 3


def test_stale_save_raises_concurrent_modification(persistence):
    persistence.save_project(_project())
    first = persistence.load_project("project-1")
    second = persistence.load_project("project-1")

    first.workflow_history.append(HistoryEntry("Owner", "approved", "t1"))
    persistence.save_project(first)

    second.workflow_history.append(HistoryEntry("Owner", "rejected", "t2"))
    with pytest.raises(ConcurrentModification):
        persistence.save_project(second)

    # The losing save changed nothing
    stored = persistence.load_project("project-1")
    assert [h.action_description for h in stored.workflow_history][-1] == "approved"


def test_inserting_existing_id_raises_concurrent_modification(persistence):
    persistence.save_project(_project())
    with pytest.raises(ConcurrentModification):
        persistence.save_project(_project())


def test_shortened_history_is_refused(persistence):
    project = persistence.save_project(_project())
    project.workflow_history.pop()
    with pytest.raises(HistoryRewriteError):
        persistence.save_project(project)
    assert len(persistence.load_project(project.id).workflow_history) == 2


def test_rewritten_history_is_refused(persistence):
    project = persistence.save_project(_project())
    project.workflow_history[0] = dataclasses.replace(
        project.workflow_history[0], action_description="Something else"
    )
    with pytest.raises(HistoryRewriteError):
        persistence.save_project(project)


def test_delete_project_keeps_tombstone(persistence):
    project = persistence.save_project(_project())
    project.workflow_history.append(HistoryEntry("admin1", "Deleted project", "t9"))

    assert persistence.delete_project(project, "admin1", "t9") is True
    assert persistence.load_project(project.id) is None

    archived = persistence.load_deleted_project(project.id)
    assert archived.title == project.title
    assert archived.workflow_history[-1].action_description == "Deleted project"
    assert len(archived.workflow_history) == 3


def test_delete_missing_project_returns_false(persistence):
    assert persistence.delete_project(_project("ghost"), "admin1", "t") is False


def test_delete_with_stale_version_raises(persistence):
    project = persistence.save_project(_project())
    stale = persistence.load_project(project.id)
    project.workflow_history.append(HistoryEntry("x", "y", "t"))
    persistence.save_project(project)
    with pytest.raises(ConcurrentModification):
        persistence.delete_project(stale, "admin1", "t")


def test_list_projects_newest_first(persistence):
    persistence.save_project(_project("old", created_at="2025-01-01T00:00:00.000Z"))
    persistence.save_project(_project("new", created_at="2025-02-01T00:00:00.000Z"))
    assert [p.id for p in persistence.list_projects()] == ["new", "old"]


def test_count_live_projects_ignores_terminal(persistence):
    persistence.save_project(_project("live"))
    persistence.save_project(_project("done", status="Completed", progress=100, assigned_division=""))
    persistence.save_project(_project("other", workflow_id="other-wf"))
    assert persistence.count_live_projects("wf") == 1


def test_count_live_projects_unassigned_custom_status_is_terminal(persistence):
    persistence.save_project(_project("archived", status="Archived", progress=100, assigned_division=""))
    assert persistence.count_live_projects("wf") == 0
    persistence.save_project(_project("drafting", status="Drafting", progress=10, assigned_division="Arsitek"))
    assert persistence.count_live_projects("wf") == 1


def test_sqlite_error_becomes_persistence_error(persistence):
    with pytest.raises(PersistenceError):
        persistence.save_project(_project(progress=250))
    assert persistence.load_project("project-1") is None


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


def _workflow(workflow_id, name="WF"):
    return WorkflowDefinition(
        id=workflow_id,
        name=name,
        steps=(WorkflowStep("Only", "Pending Offer", 10, "Admin"),),
    )


def test_workflow_round_trip(persistence):
    workflow = _workflow("wf-a")
    persistence.save_workflow(workflow)
    assert persistence.load_workflow("wf-a") == workflow


def test_workflow_listing_order(persistence):
    persistence.save_workflow(_workflow("b"))
    persistence.save_workflow(_workflow("c"))
    persistence.save_workflow(_workflow("a"), first=True)
    assert [w.id for w in persistence.list_workflows()] == ["a", "b", "c"]


def test_workflow_update_keeps_position(persistence):
    persistence.save_workflow(_workflow("a"))
    persistence.save_workflow(_workflow("b"))
    persistence.save_workflow(_workflow("a", name="Renamed"))
    listed = persistence.list_workflows()
    assert [w.id for w in listed] == ["a", "b"]
    assert listed[0].name == "Renamed"


def test_delete_workflow(persistence):
    persistence.save_workflow(_workflow("a"))
    assert persistence.delete_workflow("a") is True
    assert persistence.delete_workflow("a") is False
    assert persistence.load_workflow("a") is None


def test_sqlite_error_class_is_wrapped(persistence, monkeypatch):
    class BrokenConnection:
        def execute(self, *args, **kwargs):
            raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(persistence.connections, "get", lambda: BrokenConnection())
    with pytest.raises(PersistenceError, match="disk I/O error"):
        persistence.load_workflow("a")
