#!/usr/bin/env python3
"""
Project Lifecycle Engine State Machine

Owns every mutation of a Project:

    create               instantiate a workflow's first step
    apply_action         resolve and apply a transition (history-only on NoMatch)
    revise               like apply_action, but the transition must exist
    manual_override      administrative escape hatch; bypasses the resolver
    mark_division_complete   record one division's share of a parallel step
    add_files / delete_file / rename / delete

Each mutation is one load-mutate-save cycle:

    1. take the per-project lock (at most one in-flight mutation per id)
    2. load the project; ProjectNotFound if absent
    3. mutate, appending exactly the history entries that describe it
    4. save (compare-and-swap on the record version; retried up to
       max_retries on ConcurrentModification from another process)
    5. dispatch notifications, then release the lock

Notifications are best-effort: they are sent after the commit, and a
dispatcher failure is logged, never raised. The committed state stands.
They are sent before the lock is released, so a delete of the same project
always purges them.

Integrity errors (StepNotFound) propagate unchanged; the engine never
guesses a corrected state.
"""

import dataclasses
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .errors import ConcurrentModification, ProjectNotFound, RevisionNotSupported, WorkflowInvalid
from .history import (
    ActionContext,
    created_entries,
    deleted_entry,
    describe_action,
    division_complete_entry,
    file_deleted_entry,
    files_uploaded_entry,
    override_entry,
    renamed_entry,
    revision_entry,
)
from .locks import KeyedLocks
from .models import (
    Action,
    EngineConfig,
    FileEntry,
    HistoryEntry,
    Project,
    Role,
    ScheduleDetails,
    SurveyDetails,
    TransitionRule,
    is_terminal,
    utc_now,
)
from .notifications import NotificationDispatcher, normalize_roles
from .persistence import PersistenceAdapter
from .rendering import DEFAULT_REVISION_TEMPLATE, DEFAULT_TRANSITION_TEMPLATE, render_message
from .resolver import NoMatch, resolve
from .workflows import WorkflowStore

logger = logging.getLogger(__name__)

FilesInput = Iterable[FileEntry | dict[str, Any]]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Delivery:
    """A notification queued during a mutation, sent once the save commits."""
    roles: tuple[str, ...]
    message: str


class ActionResult:
    """Outcome of apply_action: the saved project and what the resolver decided."""

    def __init__(self, project: Project, outcome: TransitionRule | NoMatch):
        self.project = project
        self.outcome = outcome

    @property
    def transitioned(self) -> bool:
        return not isinstance(self.outcome, NoMatch)

    def __str__(self) -> str:
        if self.transitioned:
            return f"Project {self.project.id} moved to ('{self.project.status}', {self.project.progress})"
        return str(self.outcome)


def _stamp_files(files: FilesInput, uploaded_by: str, now: str) -> list[FileEntry]:
    stamped = []
    for f in files:
        if isinstance(f, FileEntry):
            stamped.append(dataclasses.replace(f, timestamp=f.timestamp or now))
        else:
            stamped.append(FileEntry(
                name=f["name"],
                path=f["path"],
                uploaded_by=f.get("uploadedBy") or uploaded_by,
                timestamp=f.get("timestamp") or now,
            ))
    return stamped


def _as_schedule(details: ScheduleDetails | dict[str, Any] | None) -> ScheduleDetails | None:
    if details is None or isinstance(details, ScheduleDetails):
        return details
    return ScheduleDetails.from_dict(details)


def _as_survey(details: SurveyDetails | dict[str, Any] | None) -> SurveyDetails | None:
    if details is None or isinstance(details, SurveyDetails):
        return details
    return SurveyDetails.from_dict(details)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class ProjectStateMachine:
    """
    Project lifecycle operations over injected collaborators.

    Args:
        persistence: project store (load/save/delete/list)
        workflows: workflow definition store
        dispatcher: notification delivery
        config: engine settings (coordinating role, retries, offer stage)
        clock: returns the current time as an ISO-8601 string
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        workflows: WorkflowStore,
        dispatcher: NotificationDispatcher,
        config: EngineConfig | None = None,
        clock: Callable[[], str] = utc_now,
    ):
        self.persistence = persistence
        self.workflows = workflows
        self.dispatcher = dispatcher
        self.config = config or EngineConfig()
        self.clock = clock
        self.locks = KeyedLocks()

    # -----------------------------------------------------------------------
    # Commit and dispatch plumbing
    # -----------------------------------------------------------------------

    def _load(self, project_id: str) -> Project:
        project = self.persistence.load_project(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    def _mutate(
        self,
        project_id: str,
        change: Callable[[Project], list[Delivery] | None],
    ) -> Project:
        """
        Run one load-mutate-save cycle under the project's lock.

        `change` mutates the loaded project in place and returns the
        deliveries to send after commit, or None to skip the save entirely.
        A version conflict reloads and re-runs `change`.
        """
        deliveries: list[Delivery] | None = None
        with self.locks.hold(project_id):
            attempt = 0
            while True:
                project = self._load(project_id)
                deliveries = change(project)
                if deliveries is None:
                    return project
                try:
                    self.persistence.save_project(project)
                    break
                except ConcurrentModification:
                    attempt += 1
                    if attempt > self.config.max_retries:
                        raise
                    logger.warning(
                        "Project '%s' changed during update; retrying (%d/%d)",
                        project_id, attempt, self.config.max_retries,
                    )
            self._deliver(project_id, deliveries)
        return project

    def _deliver(self, project_id: str, deliveries: list[Delivery]) -> None:
        for delivery in deliveries:
            try:
                self.dispatcher.notify_role(list(delivery.roles), delivery.message, project_id)
            except Exception:
                logger.exception(
                    "Notification to %s for project '%s' failed; state change stands",
                    ", ".join(delivery.roles), project_id,
                )

    @staticmethod
    def _delivery(roles: str | Iterable[str | None] | None, message: str) -> list[Delivery]:
        targets = tuple(normalize_roles(roles))
        return [Delivery(targets, message)] if targets else []

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get(self, project_id: str) -> Project:
        """Raises ProjectNotFound for an unknown id."""
        return self._load(project_id)

    def last_activity(self, project_id: str) -> HistoryEntry | None:
        """Newest history entry of the project."""
        return self._load(project_id).last_activity()

    # -----------------------------------------------------------------------
    # Creation
    # -----------------------------------------------------------------------

    def create(self, workflow_id: str, title: str, created_by: str) -> Project:
        """
        Create a project at its workflow's first step.

        Raises:
            WorkflowInvalid: the workflow does not exist or has no steps
        """
        workflow = self.workflows.get(workflow_id)
        first = workflow.first_step
        if first is None:
            logger.error("Cannot create project '%s': workflow '%s' has no steps", title, workflow_id)
            raise WorkflowInvalid(workflow_id, "workflow has no steps")

        now = self.clock()
        project = Project(
            id=f"project-{uuid.uuid4().hex[:12]}",
            title=title,
            workflow_id=workflow_id,
            status=first.status,
            progress=first.progress,
            assigned_division=first.assigned_division,
            next_action=first.next_action_description,
            created_at=now,
            created_by=created_by,
            workflow_history=created_entries(
                workflow_id, created_by, first.assigned_division,
                first.next_action_description, now,
            ),
        )
        message = (
            f'Proyek baru "{title}" telah dibuat oleh {created_by} dan memerlukan tindakan: '
            f"{first.next_action_description or 'Langkah awal'}."
        )
        with self.locks.hold(project.id):
            self.persistence.save_project(project)
            logger.info("Created project '%s' (%s) on workflow '%s'", project.id, title, workflow_id)
            self._deliver(project.id, self._delivery(first.assigned_division, message))
        return project

    # -----------------------------------------------------------------------
    # Workflow transitions
    # -----------------------------------------------------------------------

    def _enter(self, project: Project, rule: TransitionRule) -> None:
        moved = project.state_key != rule.target_key
        project.status = rule.target_status
        project.assigned_division = rule.target_assigned_division
        project.next_action = rule.target_next_action_description
        project.progress = rule.target_progress
        if moved:
            # Parallel completion marks belong to the step they were made in
            project.parallel_uploads_completed_by = []

    def apply_action(
        self,
        project_id: str,
        action: str,
        actor: str,
        role: str | None = None,
        files: FilesInput | None = None,
        note: str | None = None,
        schedule_details: ScheduleDetails | dict[str, Any] | None = None,
        survey_details: SurveyDetails | dict[str, Any] | None = None,
    ) -> ActionResult:
        """
        Record an action on a project and apply its transition, if any.

        The history entry and any files are persisted whether or not the
        current step defines a transition for `action`. With NoMatch the
        lifecycle fields are left as they were and the result reports it.
        In-step actions (Action.IN_STEP) never consult the resolver: they
        record history and files and notify fixed roles.

        Raises:
            ProjectNotFound: unknown project id
            StepNotFound: the project's (status, progress) is not a step of its workflow
        """
        schedule = _as_schedule(schedule_details)
        survey = _as_survey(survey_details)
        # Materialized once: change() may run again after a version conflict
        files = list(files or [])
        if action not in self.config.known_actions:
            logger.warning("Unknown action '%s' on project '%s'; recording history only", action, project_id)

        outcome: list[TransitionRule | NoMatch] = []

        def change(project: Project) -> list[Delivery]:
            now = self.clock()
            workflow = self.workflows.get(project.workflow_id)
            entry = describe_action(
                ActionContext(
                    actor=actor,
                    role=role,
                    action=action,
                    status=project.status,
                    progress=project.progress,
                    next_action=project.next_action,
                    note=note,
                    schedule_details=schedule,
                    survey_details=survey,
                    offer_stage_progress=self.config.offer_stage_progress,
                ),
                now,
            )
            project.files.extend(_stamp_files(files, actor, now))
            project.workflow_history.append(entry)

            if action in Action.IN_STEP:
                outcome[:] = [NoMatch(project.status, project.progress, action)]
                return self._in_step_deliveries(project, action, actor)

            resolved = resolve(workflow, project.status, project.progress, action)
            outcome[:] = [resolved]

            if isinstance(resolved, NoMatch):
                logger.warning("Project '%s': %s; history recorded, state unchanged", project.id, resolved)
                return []

            self._enter(project, resolved)
            if schedule is not None:
                project.schedule_details = schedule
            if survey is not None:
                project.survey_details = survey

            rule = resolved.notification
            if rule is None:
                return []
            message = render_message(
                rule.message_template or DEFAULT_TRANSITION_TEMPLATE,
                project_name=project.title,
                new_status=project.status,
                actor_username=actor,
                reason_note=note,
                survey=project.survey_details,
            )
            return self._delivery(rule.division, message)

        project = self._mutate(project_id, change)
        result = ActionResult(project, outcome[0])
        if result.transitioned:
            logger.info(
                "Project '%s' %s by %s -> ('%s', %d) assigned to '%s'",
                project.id, action, actor, project.status, project.progress,
                project.assigned_division,
            )
        return result

    def _in_step_deliveries(self, project: Project, action: str, actor: str) -> list[Delivery]:
        if action == Action.ARCHITECT_UPLOADED_INITIAL_IMAGES:
            uploaded = (
                f"Gambar referensi awal dari Arsitek ({actor}) untuk proyek '{project.title}' "
                "telah diunggah."
            )
            return [
                Delivery((Role.STRUKTUR,), f"{uploaded} Anda bisa mulai merencanakan struktur."),
                Delivery((Role.MEP,), f"{uploaded} Anda bisa mulai melakukan perencanaan MEP awal."),
            ]
        return []

    def revise(
        self,
        project_id: str,
        actor: str,
        actor_role: str | None = None,
        note: str | None = None,
        action: str = "revise",
    ) -> Project:
        """
        Send a project back for revision through a defined transition.

        Raises:
            RevisionNotSupported: the current step has no transition for `action`
            ProjectNotFound, StepNotFound: as for apply_action
        """
        def change(project: Project) -> list[Delivery]:
            workflow = self.workflows.get(project.workflow_id)
            rule = resolve(workflow, project.status, project.progress, action)
            if isinstance(rule, NoMatch):
                raise RevisionNotSupported(project.id, action, project.status, project.progress)

            project.workflow_history.append(
                revision_entry(actor, actor_role, action, rule, note, self.clock())
            )
            self._enter(project, rule)

            if rule.notification is None:
                return []
            message = render_message(
                rule.notification.message_template or DEFAULT_REVISION_TEMPLATE,
                project_name=project.title,
                new_status=project.status,
                actor_username=actor,
                reason_note=note or "N/A",
                survey=project.survey_details,
            )
            return self._delivery(rule.notification.division, message)

        project = self._mutate(project_id, change)
        logger.info(
            "Project '%s' sent back for revision (%s) by %s -> ('%s', %d)",
            project.id, action, actor, project.status, project.progress,
        )
        return project

    # -----------------------------------------------------------------------
    # Administrative operations
    # -----------------------------------------------------------------------

    def manual_override(
        self,
        project_id: str,
        new_status: str,
        new_assigned_division: str,
        new_next_action: str | None,
        new_progress: int,
        admin: str,
        reason: str,
    ) -> Project:
        """
        Place a project into any state, bypassing the resolver.

        The new (status, progress) is not checked against the workflow; a
        later apply_action from a state with no step raises StepNotFound.
        """
        if not 0 <= new_progress <= 100:
            raise ValueError(f"progress must be between 0 and 100, got {new_progress}")

        def change(project: Project) -> list[Delivery]:
            project.status = new_status
            project.assigned_division = new_assigned_division
            project.next_action = new_next_action
            project.progress = new_progress
            project.workflow_history.append(
                override_entry(
                    admin, new_status, new_assigned_division, new_next_action,
                    new_progress, reason, self.clock(),
                )
            )
            if is_terminal(new_status, new_assigned_division):
                return []
            message = (
                f'Proyek "{project.title}" telah diperbarui secara manual oleh {admin}. '
                f'Status baru: "{new_status}", Ditugaskan ke: "{new_assigned_division}". '
                f"Tindakan berikutnya: {new_next_action or 'Tinjau proyek'}. Alasan: {reason}"
            )
            return self._delivery(new_assigned_division, message)

        project = self._mutate(project_id, change)
        logger.info(
            "Project '%s' manually set to ('%s', %d) assigned to '%s' by %s",
            project.id, new_status, new_progress, new_assigned_division, admin,
        )
        return project

    def mark_division_complete(self, project_id: str, division: str, actor: str) -> Project:
        """
        Record that `division` finished its part of a parallel step.

        Idempotent: a division already recorded changes nothing and sends
        no notification.
        """
        def change(project: Project) -> list[Delivery] | None:
            if division in project.parallel_uploads_completed_by:
                return None
            project.parallel_uploads_completed_by.append(division)
            project.workflow_history.append(division_complete_entry(actor, division, self.clock()))
            message = (
                f'Divisi {division} telah menyelesaikan unggahan mereka untuk proyek "{project.title}".'
            )
            return self._delivery(self.config.coordinating_role, message)

        return self._mutate(project_id, change)

    def add_files(self, project_id: str, files: FilesInput, actor: str) -> Project:
        """Attach files outside a transition (e.g. right after creation)."""
        files = list(files)

        def change(project: Project) -> list[Delivery] | None:
            if not files:
                return None
            now = self.clock()
            stamped = _stamp_files(files, actor, now)
            project.files.extend(stamped)
            project.workflow_history.append(files_uploaded_entry(actor, stamped, now))
            return []

        return self._mutate(project_id, change)

    def rename(self, project_id: str, new_title: str, actor: str) -> Project:
        if not new_title or not new_title.strip():
            raise ValueError("project title must not be empty")

        def change(project: Project) -> list[Delivery]:
            old_title = project.title
            project.title = new_title
            project.workflow_history.append(renamed_entry(actor, old_title, new_title, self.clock()))
            return []

        project = self._mutate(project_id, change)
        logger.info("Project '%s' renamed to '%s' by %s", project.id, new_title, actor)
        return project

    def delete_file(self, project_id: str, file_path: str, actor: str) -> Project:
        """Remove a file entry by path. An unknown path is logged and changes nothing."""
        def change(project: Project) -> list[Delivery] | None:
            match = next((f for f in project.files if f.path == file_path), None)
            if match is None:
                logger.warning("Project '%s' has no file '%s'; nothing deleted", project.id, file_path)
                return None
            project.files = [f for f in project.files if f.path != file_path]
            project.workflow_history.append(file_deleted_entry(actor, match, self.clock()))
            return []

        return self._mutate(project_id, change)

    def delete(self, project_id: str, actor: str) -> Project:
        """
        Delete a project and purge its notifications.

        The project's final record, including a closing history entry, is
        kept as a tombstone by the store. Returns that final record.
        """
        with self.locks.hold(project_id):
            attempt = 0
            while True:
                project = self._load(project_id)
                now = self.clock()
                project.workflow_history.append(deleted_entry(actor, project.title, now))
                try:
                    if not self.persistence.delete_project(project, actor, now):
                        raise ProjectNotFound(project_id)
                    break
                except ConcurrentModification:
                    attempt += 1
                    if attempt > self.config.max_retries:
                        raise
                    logger.warning(
                        "Project '%s' changed during delete; retrying (%d/%d)",
                        project_id, attempt, self.config.max_retries,
                    )
        logger.info("Deleted project '%s' (%s) by %s", project_id, project.title, actor)

        try:
            self.dispatcher.purge_by_project(project_id)
        except Exception:
            logger.exception("Failed to purge notifications of deleted project '%s'", project_id)
        return project

    # Defined last: the method name shadows the builtin in the class body
    def list(self) -> list[Project]:
        """All projects, newest first."""
        return self.persistence.list_projects()
