#!/usr/bin/env python3
"""
Project Lifecycle Engine Message Rendering

Notification templates carry five placeholders, replaced literally:

    {projectName}    project title
    {newStatus}      status after the transition
    {actorUsername}  user who triggered the change
    {reasonNote}     caller's note (empty, or "N/A" for revisions)
    {surveyDate}     survey appointment as an Indonesian long date

A placeholder whose value is absent is replaced with the empty string; the
surrounding template text is kept as written. Every occurrence of a
placeholder is replaced. Unknown {braces} are left alone.
"""

import logging
from datetime import datetime

from .models import SurveyDetails

logger = logging.getLogger(__name__)

DEFAULT_TRANSITION_TEMPLATE = "Proyek '{projectName}' telah diperbarui ke status: {newStatus}."
DEFAULT_REVISION_TEMPLATE = "Proyek '{projectName}' memerlukan revisi dari Anda."

# Monday first, matching datetime.weekday()
_DAYS_ID = ["Senin", "Selasa", "Rabu", "Kamis", "Jumat", "Sabtu", "Minggu"]
_MONTHS_ID = [
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
]


def format_survey_date(survey: SurveyDetails | None) -> str:
    """
    Format a survey appointment, e.g. "Senin, 3 Maret 2025 pukul 10:00".

    Returns "" when there is no survey or it carries no date. A date that
    cannot be parsed is returned as written.
    """
    if survey is None or not survey.date:
        return ""
    raw = f"{survey.date}T{survey.time or '00:00'}"
    try:
        when = datetime.strptime(raw, "%Y-%m-%dT%H:%M")
    except ValueError:
        logger.warning("Unparseable survey date '%s'; rendering it verbatim", raw)
        return f"{survey.date} {survey.time}".strip()
    return (
        f"{_DAYS_ID[when.weekday()]}, {when.day} {_MONTHS_ID[when.month - 1]} "
        f"{when.year} pukul {when:%H:%M}"
    )


def render_message(
    template: str,
    project_name: str = "",
    new_status: str = "",
    actor_username: str = "",
    reason_note: str | None = None,
    survey: SurveyDetails | None = None,
) -> str:
    """Substitute the five placeholders into a notification template."""
    replacements = {
        "{projectName}": project_name or "",
        "{newStatus}": new_status or "",
        "{actorUsername}": actor_username or "",
        "{reasonNote}": reason_note or "",
        "{surveyDate}": format_survey_date(survey),
    }
    message = template
    for placeholder, value in replacements.items():
        message = message.replace(placeholder, value)
    return message
