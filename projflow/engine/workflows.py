#!/usr/bin/env python3
"""
Project Lifecycle Engine Workflow Definition Store

Holds the named workflow templates projects are created from.

Rules enforced here (not only in a UI):
- Within one workflow, (status, progress) identifies exactly one step.
  Definitions with a collision are rejected (StepKeyCollision).
- Transitions are keyed by known action names and must target a
  (status, progress) that is a step of the same workflow (WorkflowInvalid).
- The designated default workflow cannot be deleted (WorkflowForbidden).
- A workflow referenced by a live (non-terminal) project keeps its step
  structure: only name and description may change, and it cannot be deleted.

Reads are cached process-wide. update() and delete() invalidate the cached
definition before returning, under the same lock readers populate it with.
"""

import logging
import threading
import uuid
from typing import Any, Iterable

from .config import DEFAULT_WORKFLOW_ID, default_workflow
from .errors import StepKeyCollision, WorkflowForbidden, WorkflowInvalid, WorkflowNotFound
from .models import Action, WorkflowDefinition, WorkflowStep
from .persistence import PersistenceAdapter

logger = logging.getLogger(__name__)

StepsInput = Iterable[WorkflowStep | dict[str, Any]]


def _coerce_steps(steps: StepsInput) -> tuple[WorkflowStep, ...]:
    return tuple(
        step if isinstance(step, WorkflowStep) else WorkflowStep.from_dict(step)
        for step in steps
    )


# ---------------------------------------------------------------------------
# Definition validation
# ---------------------------------------------------------------------------


def validate_workflow(
    workflow: WorkflowDefinition,
    known_actions: frozenset[str] = Action.ALL,
) -> None:
    """
    Check a definition for internal consistency.

    Raises:
        WorkflowInvalid: blank name, progress outside 0–100, unknown action,
            or a transition targeting a (status, progress) with no step
        StepKeyCollision: two steps share a (status, progress) key
    """
    if not workflow.name or not workflow.name.strip():
        raise WorkflowInvalid(workflow.id, "name must not be empty")

    seen: dict[tuple[str, int], str] = {}
    for step in workflow.steps:
        if not 0 <= step.progress <= 100:
            raise WorkflowInvalid(
                workflow.id, f"step '{step.step_name}' has progress {step.progress} outside 0-100"
            )
        if step.key in seen:
            logger.error(
                "Workflow '%s': steps '%s' and '%s' share key ('%s', %d)",
                workflow.id, seen[step.key], step.step_name, step.status, step.progress,
            )
            raise StepKeyCollision(
                workflow.id, step.status, step.progress, [seen[step.key], step.step_name]
            )
        seen[step.key] = step.step_name

    for step in workflow.steps:
        for action, rule in step.transitions.items():
            if action not in known_actions:
                raise WorkflowInvalid(
                    workflow.id, f"step '{step.step_name}' uses unknown action '{action}'"
                )
            if rule.target_key not in seen:
                raise WorkflowInvalid(
                    workflow.id,
                    f"step '{step.step_name}' action '{action}' targets "
                    f"('{rule.target_status}', {rule.target_progress}) which is not a step",
                )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class WorkflowStore:
    """
    Workflow definitions over a PersistenceAdapter, with a read cache.

    Args:
        persistence: backing store
        default_workflow_id: the designated default; never deletable
        known_actions: action names accepted in transitions
    """

    def __init__(
        self,
        persistence: PersistenceAdapter,
        default_workflow_id: str = DEFAULT_WORKFLOW_ID,
        known_actions: frozenset[str] = Action.ALL,
    ):
        self.persistence = persistence
        self.default_workflow_id = default_workflow_id
        self.known_actions = known_actions
        self._cache: dict[str, WorkflowDefinition] = {}
        self._lock = threading.RLock()

    @property
    def protected_ids(self) -> frozenset[str]:
        return frozenset([DEFAULT_WORKFLOW_ID, self.default_workflow_id])

    def invalidate(self, workflow_id: str | None = None) -> None:
        with self._lock:
            if workflow_id is None:
                self._cache.clear()
            else:
                self._cache.pop(workflow_id, None)

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def find(self, workflow_id: str) -> WorkflowDefinition | None:
        with self._lock:
            cached = self._cache.get(workflow_id)
            if cached is not None:
                return cached
            workflow = self.persistence.load_workflow(workflow_id)
            if workflow is not None:
                self._cache[workflow_id] = workflow
            return workflow

    def get(self, workflow_id: str) -> WorkflowDefinition:
        """Raises WorkflowNotFound for an unknown id."""
        workflow = self.find(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        return workflow

    def unique_statuses(self) -> list[str]:
        """Every distinct status label across all workflows, in first-seen order."""
        statuses: list[str] = []
        for workflow in self.list():
            for status in workflow.statuses():
                if status not in statuses:
                    statuses.append(status)
        return statuses

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def _put(self, workflow: WorkflowDefinition, first: bool = False) -> WorkflowDefinition:
        validate_workflow(workflow, self.known_actions)
        with self._lock:
            self.persistence.save_workflow(workflow, first=first)
            self._cache.pop(workflow.id, None)
        return workflow

    def create(
        self,
        name: str,
        description: str = "",
        steps: StepsInput | None = None,
        workflow_id: str | None = None,
    ) -> WorkflowDefinition:
        """
        Create a definition. With steps=None the new workflow starts as a copy
        of the built-in standard workflow's steps.
        """
        workflow_id = workflow_id or f"wf-{uuid.uuid4().hex[:12]}"
        if self.find(workflow_id) is not None:
            raise WorkflowInvalid(workflow_id, "a workflow with this id already exists")
        workflow = WorkflowDefinition(
            id=workflow_id,
            name=name,
            description=description or "",
            steps=default_workflow().steps if steps is None else _coerce_steps(steps),
        )
        self._put(workflow)
        logger.info("Created workflow '%s' (%s) with %d steps", workflow.id, name, len(workflow.steps))
        return workflow

    def update(
        self,
        workflow_id: str,
        name: str | None = None,
        description: str | None = None,
        steps: StepsInput | None = None,
    ) -> WorkflowDefinition:
        """
        Apply a partial update; None leaves a field as it is.

        Raises:
            WorkflowNotFound: unknown id
            WorkflowForbidden: steps change while live projects use the workflow
        """
        with self._lock:
            current = self.get(workflow_id)
            new_steps = current.steps if steps is None else _coerce_steps(steps)
            if new_steps != current.steps:
                live = self.persistence.count_live_projects(workflow_id)
                if live:
                    raise WorkflowForbidden(
                        workflow_id,
                        f"steps cannot change while {live} live project(s) use this workflow",
                    )
            updated = WorkflowDefinition(
                id=workflow_id,
                name=current.name if name is None else name,
                description=current.description if description is None else description,
                steps=new_steps,
            )
            self._put(updated)
        logger.info("Updated workflow '%s'", workflow_id)
        return updated

    def delete(self, workflow_id: str) -> bool:
        """
        Raises:
            WorkflowForbidden: the default workflow, or one live projects use
            WorkflowNotFound: unknown id
        """
        if workflow_id in self.protected_ids:
            raise WorkflowForbidden(workflow_id, "the default workflow cannot be deleted")
        with self._lock:
            self.get(workflow_id)
            live = self.persistence.count_live_projects(workflow_id)
            if live:
                raise WorkflowForbidden(
                    workflow_id, f"{live} live project(s) still use this workflow"
                )
            deleted = self.persistence.delete_workflow(workflow_id)
            self._cache.pop(workflow_id, None)
        logger.info("Deleted workflow '%s'", workflow_id)
        return deleted

    def ensure_default(self) -> WorkflowDefinition:
        """Seed the built-in standard workflow, listed first, if it is absent."""
        with self._lock:
            existing = self.find(DEFAULT_WORKFLOW_ID)
            if existing is not None:
                return existing
            logger.info("Default workflow '%s' not found; seeding it", DEFAULT_WORKFLOW_ID)
            return self._put(default_workflow(), first=True)

    def import_definitions(self, workflows: Iterable[WorkflowDefinition]) -> list[WorkflowDefinition]:
        """Insert new definitions and update changed ones (e.g. from workflows.definitions)."""
        imported = []
        for workflow in workflows:
            current = self.find(workflow.id)
            if current is None:
                self._put(workflow)
                logger.info("Imported workflow '%s'", workflow.id)
            elif current != workflow:
                self.update(workflow.id, workflow.name, workflow.description, workflow.steps)
            imported.append(self.get(workflow.id))
        return imported

    # Defined last: the method name shadows the builtin in the class body
    def list(self) -> list[WorkflowDefinition]:
        """All definitions in listing order (the default workflow first once seeded)."""
        return self.persistence.list_workflows()
