#!/usr/bin/env python3
"""
Project Lifecycle Engine Error Types

Three families:

- CallerError:    the caller asked for something the engine cannot do
                   (unknown project, invalid workflow, undefined revision).
                   Reported back for user-facing messaging, never retried.
- IntegrityError: stored state disagrees with its workflow definition, or a
                   definition is internally inconsistent. Logged at error
                   level and surfaced; the engine never repairs these.
- Collaborator failures: PersistenceError aborts the operation;
                   ConcurrentModification is retried by the engine.

NoMatch (an action with no transition from the current step) is NOT an
error; see resolver.NoMatch.
"""


class EngineError(Exception):
    """Base class for all lifecycle engine errors."""


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------


class CallerError(EngineError):
    """Caller-correctable error."""


class WorkflowInvalid(CallerError):
    """Workflow is missing, has no steps, or is not a consistent definition."""

    def __init__(self, workflow_id: str | None, reason: str):
        self.workflow_id = workflow_id
        self.reason = reason
        super().__init__(f"Workflow '{workflow_id}' is invalid: {reason}")


class WorkflowNotFound(WorkflowInvalid):
    def __init__(self, workflow_id: str):
        super().__init__(workflow_id, "not found")


class WorkflowForbidden(CallerError):
    """The requested workflow change is not allowed."""

    def __init__(self, workflow_id: str, reason: str):
        self.workflow_id = workflow_id
        self.reason = reason
        super().__init__(f"Workflow '{workflow_id}': {reason}")


class ProjectNotFound(CallerError):
    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project '{project_id}' not found")


class RevisionNotSupported(CallerError):
    """A revision action has no transition defined from the current step."""

    def __init__(self, project_id: str, action: str, status: str, progress: int):
        self.project_id = project_id
        self.action = action
        self.status = status
        self.progress = progress
        super().__init__(
            f"Revision '{action}' is not supported for project '{project_id}' "
            f"at status '{status}' (progress {progress})"
        )


# ---------------------------------------------------------------------------
# Integrity errors
# ---------------------------------------------------------------------------


class IntegrityError(EngineError):
    """Stored data or a definition violates an engine invariant."""


class StepNotFound(IntegrityError):
    """The project's (status, progress) matches no step of its workflow."""

    def __init__(self, workflow_id: str, status: str, progress: int):
        self.workflow_id = workflow_id
        self.status = status
        self.progress = progress
        super().__init__(
            f"No step with status '{status}' and progress {progress} "
            f"in workflow '{workflow_id}'"
        )


class StepKeyCollision(IntegrityError):
    """Two steps of one workflow share the same (status, progress) key."""

    def __init__(self, workflow_id: str | None, status: str, progress: int, step_names: list[str]):
        self.workflow_id = workflow_id
        self.status = status
        self.progress = progress
        self.step_names = step_names
        super().__init__(
            f"Steps {step_names} in workflow '{workflow_id}' share the key "
            f"('{status}', {progress})"
        )


# ---------------------------------------------------------------------------
# Collaborator failures
# ---------------------------------------------------------------------------


class PersistenceError(EngineError):
    """The store failed to load or save a record; nothing was committed."""


class ConcurrentModification(PersistenceError):
    """The stored record changed between load and save."""

    def __init__(self, project_id: str, expected_version: int):
        self.project_id = project_id
        self.expected_version = expected_version
        super().__init__(
            f"Project '{project_id}' was modified concurrently "
            f"(expected version {expected_version})"
        )


class HistoryRewriteError(PersistenceError):
    """A save would shorten or rewrite a project's append-only history."""

    def __init__(self, project_id: str, stored: int, offered: int):
        self.project_id = project_id
        super().__init__(
            f"Refusing to save project '{project_id}': history has {offered} "
            f"entries but {stored} are already stored"
        )
