"""
Tests for engine/rendering.py

One test per placeholder, plus the combinations that matter:
- absent values render as empty strings, surrounding text kept
- repeated placeholders are all replaced
- unknown braces are left alone
- {surveyDate} uses Indonesian day and month names, or "" without a survey
"""

from projflow.engine.models import SurveyDetails
from projflow.engine.rendering import (
    DEFAULT_REVISION_TEMPLATE,
    DEFAULT_TRANSITION_TEMPLATE,
    format_survey_date,
    render_message,
)


def test_project_name():
    assert render_message("Proyek '{projectName}'", project_name="Rumah A") == "Proyek 'Rumah A'"


def test_new_status():
    assert render_message("Status: {newStatus}", new_status="Scheduled") == "Status: Scheduled"


def test_actor_username():
    assert render_message("oleh {actorUsername}", actor_username="budi") == "oleh budi"


def test_reason_note():
    assert render_message("Alasan: {reasonNote}", reason_note="Harga") == "Alasan: Harga"


def test_reason_note_absent_is_empty():
    assert render_message("Alasan: {reasonNote}.") == "Alasan: ."


def test_survey_date():
    survey = SurveyDetails("2025-03-03", "10:00", "Cek lokasi")
    assert render_message("Survei {surveyDate}", survey=survey) == "Survei Senin, 3 Maret 2025 pukul 10:00"


def test_survey_date_absent_is_empty():
    assert render_message("Survei pada {surveyDate}.") == "Survei pada ."


def test_all_placeholders_together():
    template = "{projectName}|{newStatus}|{actorUsername}|{reasonNote}|{surveyDate}"
    rendered = render_message(
        template,
        project_name="P",
        new_status="S",
        actor_username="A",
        reason_note="R",
        survey=SurveyDetails("2025-08-17", "08:30"),
    )
    assert rendered == "P|S|A|R|Minggu, 17 Agustus 2025 pukul 08:30"


def test_repeated_placeholder_replaced_everywhere():
    assert render_message("{projectName} / {projectName}", project_name="X") == "X / X"


def test_unknown_braces_untouched():
    assert render_message("{projectName} {other}", project_name="X") == "X {other}"


def test_default_templates():
    assert render_message(DEFAULT_TRANSITION_TEMPLATE, project_name="X", new_status="Done") == (
        "Proyek 'X' telah diperbarui ke status: Done."
    )
    assert render_message(DEFAULT_REVISION_TEMPLATE, project_name="X") == (
        "Proyek 'X' memerlukan revisi dari Anda."
    )


# ---------------------------------------------------------------------------
# Indonesian dates
# ---------------------------------------------------------------------------


def test_format_survey_date_weekdays_and_months():
    assert format_survey_date(SurveyDetails("2025-01-03", "09:05")) == "Jumat, 3 Januari 2025 pukul 09:05"
    assert format_survey_date(SurveyDetails("2025-12-31", "23:59")) == "Rabu, 31 Desember 2025 pukul 23:59"


def test_format_survey_date_without_time_uses_midnight():
    assert format_survey_date(SurveyDetails("2025-05-20", "")) == "Selasa, 20 Mei 2025 pukul 00:00"


def test_format_survey_date_missing():
    assert format_survey_date(None) == ""
    assert format_survey_date(SurveyDetails("", "10:00")) == ""


def test_format_survey_date_unparseable_is_verbatim():
    assert format_survey_date(SurveyDetails("next week", "10:00")) == "next week 10:00"
