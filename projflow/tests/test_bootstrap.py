"""
Tests for engine/bootstrap.py

Validates:
- open_engine without a config file uses defaults under the project root
- the standard workflow is seeded exactly once across reopenings
- workflows.definitions are imported and extra actions become known
- notifications flow from the state machine into the SQLite store,
  addressed through the configured role directory
"""

import textwrap

import pytest

from projflow.engine.bootstrap import open_engine
from projflow.engine.config import DEFAULT_WORKFLOW_ID


CONFIG_YAML = textwrap.dedent("""\
    database:
      path: data/engine.db
    workflows:
      definitions: workflows.yaml
    notifications:
      limit: 50
    roles:
      Owner: [owner1]
      Admin Proyek: [admin1, admin2]
      Arsitek: arch1
    actions:
      extra: [survey_done]
""")

WORKFLOWS_YAML = textwrap.dedent("""\
    workflows:
      - id: survey_only
        name: "Survey only"
        steps:
          - stepName: "Survey"
            status: "Pending Survey"
            progress: 10
            assignedDivision: "Arsitek"
            nextActionDescription: "Lakukan survei"
            transitions:
              survey_done:
                targetStatus: "Completed"
                targetProgress: 100
                targetAssignedDivision: ""
                notification:
                  division: ["Owner", "Admin Proyek"]
                  message: "Survei '{projectName}' selesai oleh {actorUsername}."
          - stepName: "Done"
            status: "Completed"
            progress: 100
            assignedDivision: ""
""")


@pytest.fixture
def app_root(tmp_path):
    (tmp_path / ".projflow").mkdir()
    (tmp_path / "data").mkdir()
    (tmp_path / ".projflow" / "config.yaml").write_text(CONFIG_YAML)
    (tmp_path / "workflows.yaml").write_text(WORKFLOWS_YAML)
    return tmp_path


@pytest.fixture
def engine(app_root):
    eng = open_engine(app_root)
    yield eng
    eng.close()


def test_defaults_without_config(tmp_path):
    eng = open_engine(tmp_path)
    try:
        assert eng.config.db_path.startswith(str(tmp_path))
        assert [wf.id for wf in eng.workflows.list()] == [DEFAULT_WORKFLOW_ID]
    finally:
        eng.close()


def test_default_seeded_once(app_root):
    for _ in range(2):
        eng = open_engine(app_root)
        try:
            ids = [wf.id for wf in eng.workflows.list()]
        finally:
            eng.close()
        assert ids.count(DEFAULT_WORKFLOW_ID) == 1
        assert ids[0] == DEFAULT_WORKFLOW_ID


def test_config_applied(engine, app_root):
    assert engine.config.db_path == str(app_root / "data" / "engine.db")
    assert engine.notifications.limit == 50
    assert "survey_done" in engine.config.known_actions
    assert engine.workflows.get("survey_only").first_step.step_name == "Survey"


def test_notifications_reach_role_members(engine):
    project = engine.projects.create("survey_only", "Gudang", "admin1")
    assert [n.message for n in engine.notifications.for_user("arch1")] == [
        'Proyek baru "Gudang" telah dibuat oleh admin1 dan memerlukan tindakan: Lakukan survei.'
    ]

    result = engine.projects.apply_action(project.id, "survey_done", "arch1", role="Arsitek")

    assert result.project.status == "Completed"
    expected = "Survei 'Gudang' selesai oleh arch1."
    for user in ("owner1", "admin1", "admin2"):
        assert [n.message for n in engine.notifications.for_user(user)] == [expected]
    assert engine.notifications.count_for_project(project.id) == 4


def test_state_survives_reopen(app_root):
    eng = open_engine(app_root)
    try:
        project = eng.projects.create(DEFAULT_WORKFLOW_ID, "Ruko", "admin1")
        eng.projects.apply_action(project.id, "submitted", "admin1", role="Admin Proyek")
    finally:
        eng.close()

    eng = open_engine(app_root)
    try:
        loaded = eng.projects.get(project.id)
        assert loaded.state_key == ("Pending Approval", 20)
        assert len(loaded.workflow_history) == 3
        assert len(eng.notifications.for_user("owner1")) == 1
    finally:
        eng.close()
