#!/usr/bin/env python3
"""
Project Lifecycle Engine Data Models

Typed dataclasses for workflow definitions (steps, transition rules,
notification rules) and for the project aggregate (history, files, schedule
and survey details). All models use @dataclass; JSON serialization is handled
manually through to_dict()/from_dict() so the stored documents stay stable.

Workflow-side models are frozen: a definition is replaced as a whole by the
workflow store, never mutated in place. The Project is mutable but its
workflow_history and files lists are append-only by convention (enforced on
save by the persistence layer).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


# ---------------------------------------------------------------------------
# Role, status and action constants
# ---------------------------------------------------------------------------


class Role:
    """Divisions known to the firm. Single source for role names."""
    OWNER = "Owner"
    ADMIN_PROYEK = "Admin Proyek"
    GENERAL_ADMIN = "General Admin"
    ARSITEK = "Arsitek"
    STRUKTUR = "Struktur"
    MEP = "MEP"
    ADMIN_DEVELOPER = "Admin Developer"
    SYSTEM = "System"

    ALL = frozenset([
        OWNER, ADMIN_PROYEK, GENERAL_ADMIN, ARSITEK, STRUKTUR, MEP,
        ADMIN_DEVELOPER,
    ])


class Status:
    COMPLETED = "Completed"
    CANCELED = "Canceled"
    PENDING_APPROVAL = "Pending Approval"
    PENDING_SURVEY_DETAILS = "Pending Survey Details"

    # No further action is expected once a project reaches one of these
    TERMINAL = frozenset([COMPLETED, CANCELED])


class Action:
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    REVISE = "revise"
    REVISE_OFFER = "revise_offer"
    REVISE_AFTER_SIDANG = "revise_after_sidang"
    CANCELED_AFTER_SIDANG = "canceled_after_sidang"
    REVISION_COMPLETED_AND_FINISH = "revision_completed_and_finish"
    RESCHEDULE_SURVEY = "reschedule_survey"
    ARCHITECT_UPLOADED_INITIAL_IMAGES = "architect_uploaded_initial_images_for_struktur"

    ALL = frozenset([
        SUBMITTED, APPROVED, REJECTED, SCHEDULED, COMPLETED, REVISE,
        REVISE_OFFER, REVISE_AFTER_SIDANG, CANCELED_AFTER_SIDANG,
        REVISION_COMPLETED_AND_FINISH, RESCHEDULE_SURVEY,
        ARCHITECT_UPLOADED_INITIAL_IMAGES,
    ])

    # Recorded within the current step; never looked up as a transition
    IN_STEP = frozenset([ARCHITECT_UPLOADED_INITIAL_IMAGES])

    # Hearing ("sidang") outcomes declared by the owner
    SIDANG_OUTCOMES = frozenset([COMPLETED, REVISE_AFTER_SIDANG, CANCELED_AFTER_SIDANG])


def is_terminal(status: str, assigned_division: str | None = None) -> bool:
    """Return True if a project in this state expects no further action."""
    return status in Status.TERMINAL or assigned_division == ""


# ---------------------------------------------------------------------------
# Workflow definition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotificationRule:
    """Who to notify when a transition fires, and the message template."""
    division: tuple[str, ...]
    message_template: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "NotificationRule | None":
        if not d:
            return None
        division = d.get("division")
        if division is None:
            roles: tuple[str, ...] = ()
        elif isinstance(division, str):
            roles = (division,)
        else:
            roles = tuple(division)
        return cls(division=roles, message_template=d.get("message") or "")

    def to_dict(self) -> dict[str, Any]:
        division: str | list[str] | None
        if not self.division:
            division = None
        elif len(self.division) == 1:
            division = self.division[0]
        else:
            division = list(self.division)
        return {"division": division, "message": self.message_template}


@dataclass(frozen=True)
class TransitionRule:
    """Target state of an action taken from a step."""
    target_status: str
    target_assigned_division: str
    target_progress: int
    target_next_action_description: str | None = None
    notification: NotificationRule | None = None

    @property
    def target_key(self) -> tuple[str, int]:
        return (self.target_status, self.target_progress)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "TransitionRule":
        return cls(
            target_status=d["targetStatus"],
            target_assigned_division=d.get("targetAssignedDivision") or "",
            target_progress=int(d["targetProgress"]),
            target_next_action_description=d.get("targetNextActionDescription"),
            notification=NotificationRule.from_dict(d.get("notification")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "targetStatus": self.target_status,
            "targetAssignedDivision": self.target_assigned_division,
            "targetNextActionDescription": self.target_next_action_description,
            "targetProgress": self.target_progress,
            "notification": self.notification.to_dict() if self.notification else None,
        }


@dataclass(frozen=True)
class WorkflowStep:
    """One step of a workflow. (status, progress) is the lookup key."""
    step_name: str
    status: str
    progress: int
    assigned_division: str = ""
    next_action_description: str | None = None
    transitions: dict[str, TransitionRule] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, int]:
        return (self.status, self.progress)

    @property
    def is_terminal(self) -> bool:
        return not self.transitions

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "WorkflowStep":
        transitions = {
            action: TransitionRule.from_dict(rule)
            for action, rule in (d.get("transitions") or {}).items()
        }
        return cls(
            step_name=d["stepName"],
            status=d["status"],
            progress=int(d["progress"]),
            assigned_division=d.get("assignedDivision") or "",
            next_action_description=d.get("nextActionDescription"),
            transitions=transitions,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stepName": self.step_name,
            "status": self.status,
            "assignedDivision": self.assigned_division,
            "progress": self.progress,
            "nextActionDescription": self.next_action_description,
            "transitions": (
                {action: rule.to_dict() for action, rule in self.transitions.items()}
                if self.transitions else None
            ),
        }


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named workflow template: an ordered list of steps, entry step first."""
    id: str
    name: str
    description: str = ""
    steps: tuple[WorkflowStep, ...] = ()

    @property
    def first_step(self) -> WorkflowStep | None:
        return self.steps[0] if self.steps else None

    def find_step(self, status: str, progress: int) -> WorkflowStep | None:
        for step in self.steps:
            if step.status == status and step.progress == progress:
                return step
        return None

    def statuses(self) -> list[str]:
        seen: list[str] = []
        for step in self.steps:
            if step.status not in seen:
                seen.append(step.status)
        return seen

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "WorkflowDefinition":
        return cls(
            id=d["id"],
            name=d["name"],
            description=d.get("description") or "",
            steps=tuple(WorkflowStep.from_dict(s) for s in d.get("steps") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [step.to_dict() for step in self.steps],
        }


# ---------------------------------------------------------------------------
# Project aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable audit trail entry on a project."""
    actor: str                      # division or username
    action_description: str
    timestamp: str                  # ISO-8601, UTC
    note: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "HistoryEntry":
        return cls(
            actor=d["division"],
            action_description=d["action"],
            timestamp=d["timestamp"],
            note=d.get("note"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "division": self.actor,
            "action": self.action_description,
            "timestamp": self.timestamp,
            "note": self.note,
        }


@dataclass(frozen=True)
class FileEntry:
    name: str
    path: str
    uploaded_by: str
    timestamp: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "FileEntry":
        return cls(
            name=d["name"],
            path=d["path"],
            uploaded_by=d["uploadedBy"],
            timestamp=d.get("timestamp"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "uploadedBy": self.uploaded_by,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ScheduleDetails:
    """Hearing ("sidang") appointment."""
    date: str                       # YYYY-MM-DD
    time: str                       # HH:MM
    location: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "ScheduleDetails | None":
        if not d:
            return None
        return cls(date=d["date"], time=d.get("time") or "", location=d.get("location") or "")

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "time": self.time, "location": self.location}


@dataclass(frozen=True)
class SurveyDetails:
    """Site survey appointment."""
    date: str                       # YYYY-MM-DD
    time: str                       # HH:MM
    description: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> "SurveyDetails | None":
        if not d:
            return None
        return cls(date=d["date"], time=d.get("time") or "", description=d.get("description") or "")

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date, "time": self.time, "description": self.description}


@dataclass
class Project:
    """A design project moving through its workflow."""
    id: str
    title: str
    workflow_id: str
    status: str
    progress: int
    assigned_division: str
    next_action: str | None
    created_at: str
    created_by: str
    workflow_history: list[HistoryEntry] = field(default_factory=list)
    files: list[FileEntry] = field(default_factory=list)
    schedule_details: ScheduleDetails | None = None
    survey_details: SurveyDetails | None = None
    parallel_uploads_completed_by: list[str] = field(default_factory=list)
    version: int = 0                # persistence compare-and-swap counter

    @property
    def state_key(self) -> tuple[str, int]:
        return (self.status, self.progress)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status, self.assigned_division)

    def last_activity(self) -> HistoryEntry | None:
        """Newest history entry; the history is the only activity source."""
        return self.workflow_history[-1] if self.workflow_history else None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Project":
        return cls(
            id=d["id"],
            title=d["title"],
            workflow_id=d["workflowId"],
            status=d["status"],
            progress=int(d["progress"]),
            assigned_division=d.get("assignedDivision") or "",
            next_action=d.get("nextAction"),
            created_at=d["createdAt"],
            created_by=d["createdBy"],
            workflow_history=[HistoryEntry.from_dict(h) for h in d.get("workflowHistory") or []],
            files=[FileEntry.from_dict(f) for f in d.get("files") or []],
            schedule_details=ScheduleDetails.from_dict(d.get("scheduleDetails")),
            survey_details=SurveyDetails.from_dict(d.get("surveyDetails")),
            parallel_uploads_completed_by=list(d.get("parallelUploadsCompletedBy") or []),
            version=int(d.get("version", 0)),
        )

    def to_dict(self, include_history: bool = True) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "workflowId": self.workflow_id,
            "status": self.status,
            "progress": self.progress,
            "assignedDivision": self.assigned_division,
            "nextAction": self.next_action,
            "createdAt": self.created_at,
            "createdBy": self.created_by,
            "files": [f.to_dict() for f in self.files],
            "scheduleDetails": self.schedule_details.to_dict() if self.schedule_details else None,
            "surveyDetails": self.survey_details.to_dict() if self.survey_details else None,
            "parallelUploadsCompletedBy": list(self.parallel_uploads_completed_by),
            "version": self.version,
        }
        if include_history:
            d["workflowHistory"] = [h.to_dict() for h in self.workflow_history]
        return d


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@dataclass
class Notification:
    """A message delivered to one user, optionally tagged with a project."""
    id: str
    user_id: str
    message: str
    timestamp: str
    project_id: str | None = None
    is_read: bool = False

    @classmethod
    def from_row(cls, row: Any) -> "Notification":
        """Construct from a sqlite3.Row or dict."""
        d = dict(row)
        return cls(
            id=d["id"],
            user_id=d["user_id"],
            message=d["message"],
            timestamp=d["timestamp"],
            project_id=d.get("project_id"),
            is_read=bool(d.get("is_read", 0)),
        )


# ---------------------------------------------------------------------------
# Runtime configuration
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Runtime configuration loaded from .projflow/config.yaml."""
    db_path: str = "data/projflow.db"
    default_workflow_id: str = "default_standard_workflow"
    definitions_path: str | None = None
    notification_limit: int = 300
    coordinating_role: str = Role.ADMIN_PROYEK
    offer_stage_progress: int = 20
    max_retries: int = 3
    extra_actions: list[str] = field(default_factory=list)
    role_members: dict[str, list[str]] = field(default_factory=dict)

    @property
    def known_actions(self) -> frozenset[str]:
        return Action.ALL | frozenset(self.extra_actions)


def utc_now() -> str:
    """Current UTC time as ISO-8601 with millisecond precision, e.g. 2025-03-03T10:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
