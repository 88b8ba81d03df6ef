#!/usr/bin/env python3
"""
Project Lifecycle Engine Transition Resolver

Pure lookup: (workflow, current status, current progress, action) gives the
TransitionRule to apply, or NoMatch.

The (status, progress) pair is the step key; stepName is never used for
lookup. Two outcomes must not be confused:

    NoMatch       the step exists but defines no transition for the action.
                  Routine; the caller records history only.
    StepNotFound  no step has the project's (status, progress). The project
                  has drifted from its workflow (e.g. after a manual
                  override) and is surfaced as an integrity error.

The resolver never falls back to a status-only match.
"""

import logging

from .errors import StepNotFound
from .models import TransitionRule, WorkflowDefinition

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Resolution result types
# ---------------------------------------------------------------------------


class NoMatch:
    """The current step defines no transition for the action."""

    def __init__(self, status: str, progress: int, action: str):
        self.status = status
        self.progress = progress
        self.action = action
        self.success = False

    def __str__(self) -> str:
        return (
            f"No transition for action '{self.action}' from step "
            f"('{self.status}', {self.progress})"
        )

    def __bool__(self) -> bool:
        return False


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


def resolve(
    workflow: WorkflowDefinition,
    current_status: str,
    current_progress: int,
    action: str,
) -> TransitionRule | NoMatch:
    """
    Find the transition for `action` from the step keyed (status, progress).

    Returns:
        The step's TransitionRule for the action, or NoMatch if the step
        has no such transition (terminal steps have none).

    Raises:
        StepNotFound: no step of `workflow` has this (status, progress).
    """
    step = workflow.find_step(current_status, current_progress)
    if step is None:
        logger.error(
            "Project state ('%s', %d) matches no step of workflow '%s'",
            current_status, current_progress, workflow.id,
        )
        raise StepNotFound(workflow.id, current_status, current_progress)

    rule = step.transitions.get(action)
    if rule is None:
        return NoMatch(current_status, current_progress, action)
    return rule
