"""
pytest configuration for lifecycle engine tests.

Adds the repository root to sys.path so that
'from projflow.engine.xxx import ...' works without installing the package,
and provides shared fixtures: a fresh SQLite store per test, a recording
notification dispatcher, a deterministic clock, and the two-step workflow
used by the lifecycle scenarios.
"""

import itertools
import sys
import threading
from pathlib import Path

import pytest

# Ensure the repository root is on the path (projflow package lives at ./projflow/)
repo_root = Path(__file__).parent.parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from projflow.engine.models import EngineConfig, WorkflowStep  # noqa: E402
from projflow.engine.persistence import SQLitePersistence  # noqa: E402
from projflow.engine.projects import ProjectStateMachine  # noqa: E402
from projflow.engine.workflows import WorkflowStore  # noqa: E402


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Strictly increasing ISO timestamps, one second apart."""

    def __init__(self):
        self._ticks = itertools.count(1)

    def __call__(self) -> str:
        n = next(self._ticks)
        return f"2025-03-03T{10 + n // 3600:02d}:{n // 60 % 60:02d}:{n % 60:02d}.000Z"


class RecordingDispatcher:
    """NotificationDispatcher that records calls; optionally fails on delivery."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.role_calls: list[tuple[list[str], str, str | None]] = []
        self.user_calls: list[tuple[str, str, str | None]] = []
        self.purged: list[str] = []
        self._lock = threading.Lock()

    def notify_role(self, roles, message, project_id=None):
        if self.fail:
            raise RuntimeError("delivery backend down")
        roles = [roles] if isinstance(roles, str) else list(roles)
        with self._lock:
            self.role_calls.append((roles, message, project_id))
        return len(roles)

    def notify_user(self, user_id, message, project_id=None):
        if self.fail:
            raise RuntimeError("delivery backend down")
        with self._lock:
            self.user_calls.append((user_id, message, project_id))
        return 1

    def purge_by_project(self, project_id):
        if self.fail:
            raise RuntimeError("delivery backend down")
        with self._lock:
            self.purged.append(project_id)
            before = len(self.role_calls)
            self.role_calls = [c for c in self.role_calls if c[2] != project_id]
        return before - len(self.role_calls)

    def messages_for(self, project_id):
        return [c[1] for c in self.role_calls if c[2] == project_id]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def persistence(tmp_path):
    """A fresh SQLite store with schema."""
    store = SQLitePersistence(tmp_path / "projflow.db")
    yield store
    store.close()


@pytest.fixture
def workflows(persistence):
    return WorkflowStore(persistence)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def machine(persistence, workflows, dispatcher, clock):
    return ProjectStateMachine(persistence, workflows, dispatcher, EngineConfig(), clock=clock)


TWO_STEP_STEPS = [
    WorkflowStep.from_dict({
        "stepName": "Offer",
        "status": "Pending Offer",
        "progress": 10,
        "assignedDivision": "Admin",
        "nextActionDescription": "Upload offer",
        "transitions": {
            "submitted": {
                "targetStatus": "Pending Approval",
                "targetProgress": 20,
                "targetAssignedDivision": "Owner",
                "targetNextActionDescription": "Approve offer",
                "notification": {
                    "division": "Owner",
                    "message": "Offer for '{projectName}' is now {newStatus} (by {actorUsername}).",
                },
            },
        },
    }),
    WorkflowStep.from_dict({
        "stepName": "Approval",
        "status": "Pending Approval",
        "progress": 20,
        "assignedDivision": "Owner",
        "nextActionDescription": "Approve offer",
        "transitions": {
            "approved": {
                "targetStatus": "Completed",
                "targetProgress": 100,
                "targetAssignedDivision": "",
            },
            "revise": {
                "targetStatus": "Pending Offer",
                "targetProgress": 10,
                "targetAssignedDivision": "Admin",
                "targetNextActionDescription": "Revise offer",
                "notification": {"division": "Admin", "message": ""},
            },
        },
    }),
    WorkflowStep.from_dict({
        "stepName": "Done",
        "status": "Completed",
        "progress": 100,
        "assignedDivision": "",
    }),
]


@pytest.fixture
def two_step(workflows):
    """Offer -> Approval -> Completed, with a revise path back to Offer."""
    return workflows.create("Two step", "Offer and approval", TWO_STEP_STEPS, workflow_id="two-step")
