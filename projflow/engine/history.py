#!/usr/bin/env python3
"""
Project Lifecycle Engine History Phrasing

Builds the human-readable HistoryEntry text written for every project
mutation. The audit trail is read by people, so each action kind keeps its
own wording: a hearing ("sidang") being scheduled reads differently from an
offer being canceled.

Per-action wording for apply_action lives in ACTION_PHRASES, a lookup table
of action name -> phrase function. A phrase function returns None when its
preconditions are not met (e.g. `scheduled` without schedule details) and
the generic phrase is used instead.

The remaining builders cover the operations that bypass the resolver
(create, manual override, revisions, file and title edits, deletion).
"""

from dataclasses import dataclass
from typing import Callable

from .models import (
    Action,
    FileEntry,
    HistoryEntry,
    Role,
    ScheduleDetails,
    Status,
    SurveyDetails,
    TransitionRule,
)


# ---------------------------------------------------------------------------
# apply_action phrasing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionContext:
    """Everything a phrase function may look at. State is the pre-transition state."""
    actor: str
    role: str | None
    action: str
    status: str
    progress: int
    next_action: str | None
    note: str | None = None
    schedule_details: ScheduleDetails | None = None
    survey_details: SurveyDetails | None = None
    offer_stage_progress: int = 20

    @property
    def label(self) -> str:
        return f"{self.actor} ({self.role})" if self.role else self.actor

    @property
    def history_actor(self) -> str:
        return self.role or self.actor


# A phrase is (action description, note); note None keeps the caller's note
Phrase = tuple[str, str | None]


def _with_note(prefix: str, note: str | None) -> str:
    return f"{prefix}. {f'Note: {note}' if note else ''}".strip()


def _scheduled(ctx: ActionContext) -> Phrase | None:
    details = ctx.schedule_details
    if details is None:
        return None
    return (
        f"{ctx.label} scheduled Sidang on {details.date} at {details.time}",
        _with_note(f"Location: {details.location}", ctx.note),
    )


def _submitted(ctx: ActionContext) -> Phrase | None:
    # Survey wording only where the workflow asks for survey details
    details = ctx.survey_details
    if details is None or ctx.status != Status.PENDING_SURVEY_DETAILS:
        return None
    return (
        f"{ctx.label} submitted Survey Details for {details.date} at {details.time}",
        _with_note(f"Survey Description: {details.description}", ctx.note),
    )


def _reschedule_survey(ctx: ActionContext) -> Phrase | None:
    details = ctx.survey_details
    if details is None:
        return None
    return f"{ctx.label} rescheduled Survey to {details.date} at {details.time}", None


def _approved(ctx: ActionContext) -> Phrase:
    return f"{ctx.label} approved: {ctx.next_action or 'current step'}", None


def _rejected(ctx: ActionContext) -> Phrase:
    # Offer-stage cancellation is recognized by its progress value only.
    # TODO: give offer cancellation its own action name so a workflow that
    # moves the offer approval step off offer_stage_progress keeps this wording.
    if ctx.status == Status.PENDING_APPROVAL and ctx.progress == ctx.offer_stage_progress:
        return (
            f"{ctx.label} canceled project at offer stage: {ctx.next_action or 'penawaran'}",
            None,
        )
    return f"{ctx.label} rejected: {ctx.next_action or 'current step'}", None


def _revise_offer(ctx: ActionContext) -> Phrase:
    return f"{ctx.label} requested revision for offer: {ctx.next_action or 'penawaran'}", None


_SIDANG_OUTCOME_WORDS = {
    Action.COMPLETED: "completed",
    Action.REVISE_AFTER_SIDANG: "revise",
    Action.CANCELED_AFTER_SIDANG: "canceled",
}


def _sidang_outcome(ctx: ActionContext) -> Phrase:
    return f"{ctx.label} declared Sidang outcome as: {_SIDANG_OUTCOME_WORDS[ctx.action]}", None


def _revision_completed_and_finish(ctx: ActionContext) -> Phrase:
    return (
        f"{ctx.label} completed post-sidang revisions and moved to final documentation.",
        None,
    )


def _architect_initial_images(ctx: ActionContext) -> Phrase:
    return f"{ctx.label} uploaded initial reference images for Struktur & MEP.", None


ACTION_PHRASES: dict[str, Callable[[ActionContext], Phrase | None]] = {
    Action.SCHEDULED: _scheduled,
    Action.SUBMITTED: _submitted,
    Action.RESCHEDULE_SURVEY: _reschedule_survey,
    Action.APPROVED: _approved,
    Action.REJECTED: _rejected,
    Action.REVISE_OFFER: _revise_offer,
    Action.COMPLETED: _sidang_outcome,
    Action.REVISE_AFTER_SIDANG: _sidang_outcome,
    Action.CANCELED_AFTER_SIDANG: _sidang_outcome,
    Action.REVISION_COMPLETED_AND_FINISH: _revision_completed_and_finish,
    Action.ARCHITECT_UPLOADED_INITIAL_IMAGES: _architect_initial_images,
}


def describe_action(ctx: ActionContext, timestamp: str) -> HistoryEntry:
    """
    Build the history entry for an apply_action call.

    Written whether or not the resolver finds a transition; the entry records
    what the actor did, not what the workflow made of it.
    """
    phrase_fn = ACTION_PHRASES.get(ctx.action)
    phrase = phrase_fn(ctx) if phrase_fn else None
    if phrase is None:
        phrase = (f'{ctx.label} {ctx.action} for "{ctx.next_action or "progress"}"', None)
    description, note = phrase
    return HistoryEntry(
        actor=ctx.history_actor,
        action_description=description,
        timestamp=timestamp,
        note=note if note is not None else ctx.note,
    )


# ---------------------------------------------------------------------------
# Other operations
# ---------------------------------------------------------------------------


def created_entries(
    workflow_id: str,
    created_by: str,
    assigned_division: str,
    next_action: str | None,
    timestamp: str,
) -> list[HistoryEntry]:
    """The two seed entries every new project starts with."""
    return [
        HistoryEntry(
            actor=created_by,
            action_description=f"Created Project with workflow: {workflow_id}",
            timestamp=timestamp,
            note="Project entry created.",
        ),
        HistoryEntry(
            actor=Role.SYSTEM,
            action_description=f"Assigned to {assigned_division} for {next_action or 'initial step'}",
            timestamp=timestamp,
        ),
    ]


def revision_entry(
    actor: str,
    role: str | None,
    action: str,
    rule: TransitionRule,
    note: str | None,
    timestamp: str,
) -> HistoryEntry:
    label = f"{actor} ({role})" if role else actor
    return HistoryEntry(
        actor=role or actor,
        action_description=(
            f"{label} requested revision ({action}). Project sent to "
            f"{rule.target_assigned_division} for "
            f"{rule.target_next_action_description or 'revision'}."
        ),
        timestamp=timestamp,
        note=note,
    )


def override_entry(
    admin: str,
    status: str,
    assigned_division: str,
    next_action: str | None,
    progress: int,
    reason: str,
    timestamp: str,
) -> HistoryEntry:
    return HistoryEntry(
        actor=admin,
        action_description=(
            f'Manually changed status to "{status}" and assigned to "{assigned_division}". '
            f"Next Action: {next_action or 'None'}. Progress: {progress}%."
        ),
        timestamp=timestamp,
        note=f"Reason: {reason}",
    )


def division_complete_entry(actor: str, division: str, timestamp: str) -> HistoryEntry:
    return HistoryEntry(
        actor=actor,
        action_description="Marked their design/revision phase as complete.",
        timestamp=timestamp,
        note=f"Divisi {division} telah menyelesaikan tugasnya.",
    )


def files_uploaded_entry(actor: str, files: list[FileEntry], timestamp: str) -> HistoryEntry:
    names = ", ".join(f.name for f in files)
    return HistoryEntry(
        actor=actor,
        action_description=f"Uploaded initial file(s): {names}",
        timestamp=timestamp,
    )


def renamed_entry(actor: str, old_title: str, new_title: str, timestamp: str) -> HistoryEntry:
    return HistoryEntry(
        actor=actor,
        action_description=f'Manually changed project title from "{old_title}" to "{new_title}".',
        timestamp=timestamp,
    )


def file_deleted_entry(actor: str, file: FileEntry, timestamp: str) -> HistoryEntry:
    return HistoryEntry(
        actor=actor,
        action_description=f'Deleted file: "{file.name}"',
        timestamp=timestamp,
    )


def deleted_entry(actor: str, title: str, timestamp: str) -> HistoryEntry:
    return HistoryEntry(
        actor=actor,
        action_description=f'Deleted project "{title}".',
        timestamp=timestamp,
    )
