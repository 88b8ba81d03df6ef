#!/usr/bin/env python3
"""
Project Lifecycle Engine Configuration Reader

Reads deployment-specific configuration from the hosting application's
.projflow/ directory:
- .projflow/config.yaml: database path, notification limits, role
  membership, extra action names, engine tuning

The file is optional and every setting has a default. The built-in
"Standard Project Workflow" ships as DEFAULT_WORKFLOW_YAML and is parsed by
the same loader as user-supplied workflow documents (workflows.definitions).
"""

from pathlib import Path
from typing import Any

import yaml

from .models import EngineConfig, Role, WorkflowDefinition


# ---------------------------------------------------------------------------
# Default workflow document (seeded by WorkflowStore.ensure_default)
# ---------------------------------------------------------------------------

DEFAULT_WORKFLOW_ID = "default_standard_workflow"

DEFAULT_WORKFLOW_YAML = """
workflows:
  - id: default_standard_workflow
    name: "Standard Project Workflow"
    description: "The standard, multi-stage project workflow."
    steps:
      - stepName: "Offer Submission"
        status: "Pending Offer"
        assignedDivision: "Admin Proyek"
        progress: 10
        nextActionDescription: "Unggah Dokumen Penawaran"
        transitions:
          submitted:
            targetStatus: "Pending Approval"
            targetAssignedDivision: "Owner"
            targetNextActionDescription: "Setujui Dokumen Penawaran"
            targetProgress: 20
            notification:
              division: "Owner"
              message: "Penawaran untuk proyek '{projectName}' telah diajukan dan menunggu persetujuan Anda."

      - stepName: "Offer Approval"
        status: "Pending Approval"
        assignedDivision: "Owner"
        progress: 20
        nextActionDescription: "Tinjau dan setujui/tolak penawaran"
        transitions:
          approved:
            targetStatus: "Pending DP Invoice"
            targetAssignedDivision: "General Admin"
            targetNextActionDescription: "Buat Faktur DP"
            targetProgress: 25
            notification:
              division: "General Admin"
              message: "Penawaran untuk proyek '{projectName}' telah disetujui. Mohon buat faktur DP."
          rejected:
            targetStatus: "Canceled"
            targetAssignedDivision: ""
            targetNextActionDescription: null
            targetProgress: 20
            notification:
              division: "Admin Proyek"
              message: "Penawaran untuk proyek '{projectName}' ditolak oleh Owner."

      - stepName: "DP Invoice Submission"
        status: "Pending DP Invoice"
        assignedDivision: "General Admin"
        progress: 25
        nextActionDescription: "Unggah Faktur DP"
        transitions:
          submitted:
            targetStatus: "Pending Approval"
            targetAssignedDivision: "Owner"
            targetNextActionDescription: "Setujui Faktur DP"
            targetProgress: 30
            notification:
              division: "Owner"
              message: "Faktur DP untuk proyek '{projectName}' telah diajukan dan menunggu persetujuan Anda."

      # Same status as the offer approval; progress tells them apart
      - stepName: "DP Invoice Approval"
        status: "Pending Approval"
        assignedDivision: "Owner"
        progress: 30
        nextActionDescription: "Tinjau dan setujui/tolak Faktur DP"
        transitions:
          approved:
            targetStatus: "Pending Admin Files"
            targetAssignedDivision: "Admin Proyek"
            targetNextActionDescription: "Unggah Berkas Administrasi"
            targetProgress: 40
            notification:
              division: "Admin Proyek"
              message: "Faktur DP untuk proyek '{projectName}' telah disetujui. Mohon unggah berkas administrasi."
          rejected:
            targetStatus: "Pending DP Invoice"
            targetAssignedDivision: "General Admin"
            targetNextActionDescription: "Revisi dan Unggah Ulang Faktur DP"
            targetProgress: 25
            notification:
              division: "General Admin"
              message: "Faktur DP untuk proyek '{projectName}' ditolak oleh Owner. Mohon direvisi."

      - stepName: "Admin Files Submission"
        status: "Pending Admin Files"
        assignedDivision: "Admin Proyek"
        progress: 40
        nextActionDescription: "Unggah Berkas Administrasi"
        transitions:
          submitted:
            targetStatus: "Pending Architect Files"
            targetAssignedDivision: "Arsitek"
            targetNextActionDescription: "Unggah Berkas Arsitektur"
            targetProgress: 50
            notification:
              division: "Arsitek"
              message: "Berkas administrasi untuk '{projectName}' lengkap. Mohon unggah berkas arsitektur."

      - stepName: "Architect Files Submission"
        status: "Pending Architect Files"
        assignedDivision: "Arsitek"
        progress: 50
        nextActionDescription: "Unggah Berkas Arsitektur"
        transitions:
          submitted:
            targetStatus: "Pending Structure Files"
            targetAssignedDivision: "Struktur"
            targetNextActionDescription: "Unggah Berkas Struktur"
            targetProgress: 70
            notification:
              division: "Struktur"
              message: "Berkas arsitektur untuk '{projectName}' lengkap. Mohon unggah berkas struktur."

      - stepName: "Structure Files Submission"
        status: "Pending Structure Files"
        assignedDivision: "Struktur"
        progress: 70
        nextActionDescription: "Unggah Berkas Struktur"
        transitions:
          submitted:
            targetStatus: "Pending MEP Files"
            targetAssignedDivision: "Admin Proyek"
            targetNextActionDescription: "Unggah Berkas MEP"
            targetProgress: 80
            notification:
              division: "Admin Proyek"
              message: "Berkas struktur untuk '{projectName}' lengkap. Mohon unggah berkas MEP."

      - stepName: "MEP Files Submission"
        status: "Pending MEP Files"
        assignedDivision: "Admin Proyek"
        progress: 80
        nextActionDescription: "Unggah Berkas MEP"
        transitions:
          submitted:
            targetStatus: "Pending Scheduling"
            targetAssignedDivision: "Admin Proyek"
            targetNextActionDescription: "Jadwalkan Sidang"
            targetProgress: 90
            notification:
              division: "Admin Proyek"
              message: "Semua berkas teknis untuk '{projectName}' lengkap. Mohon jadwalkan sidang."

      - stepName: "Sidang Scheduling"
        status: "Pending Scheduling"
        assignedDivision: "Admin Proyek"
        progress: 90
        nextActionDescription: "Jadwalkan Sidang"
        transitions:
          scheduled:
            targetStatus: "Scheduled"
            targetAssignedDivision: "Owner"
            targetNextActionDescription: "Nyatakan Hasil Sidang"
            targetProgress: 95
            notification:
              division: "Owner"
              message: "Sidang untuk proyek '{projectName}' telah dijadwalkan. Mohon nyatakan hasilnya setelah selesai."

      - stepName: "Sidang Outcome Declaration"
        status: "Scheduled"
        assignedDivision: "Owner"
        progress: 95
        nextActionDescription: "Nyatakan Hasil Sidang (Sukses/Revisi/Batal)"
        transitions:
          completed:
            targetStatus: "Completed"
            targetAssignedDivision: ""
            targetNextActionDescription: null
            targetProgress: 100
            notification: null
          revise_after_sidang:
            targetStatus: "Pending Admin Files"
            targetAssignedDivision: "Admin Proyek"
            targetNextActionDescription: "Lakukan Revisi Pasca Sidang"
            targetProgress: 40
            notification:
              division: "Admin Proyek"
              message: "Proyek '{projectName}' memerlukan revisi setelah sidang. Mohon perbarui berkas yang diperlukan."
          canceled_after_sidang:
            targetStatus: "Canceled"
            targetAssignedDivision: ""
            targetNextActionDescription: null
            targetProgress: 95
            notification: null

      - stepName: "Project Completed"
        status: "Completed"
        assignedDivision: ""
        progress: 100
        nextActionDescription: null
        transitions: null

      # Cancellation keeps the progress reached; one terminal step per exit
      - stepName: "Offer Canceled"
        status: "Canceled"
        assignedDivision: ""
        progress: 20
        nextActionDescription: null
        transitions: null

      - stepName: "Project Canceled"
        status: "Canceled"
        assignedDivision: ""
        progress: 95
        nextActionDescription: null
        transitions: null
"""


# ---------------------------------------------------------------------------
# Workflow document loader
# ---------------------------------------------------------------------------


def load_workflow_definitions(workflows_yaml: dict[str, Any]) -> list[WorkflowDefinition]:
    """
    Parse a workflows document into WorkflowDefinition objects.

    The document has a top-level `workflows` list; each entry carries id,
    name, description and an ordered `steps` list (entry step first). Step
    and transition keys use the camelCase field names of the stored records.
    Definitions are parsed only; consistency checks happen in WorkflowStore.
    """
    return [
        WorkflowDefinition.from_dict(wf_dict)
        for wf_dict in workflows_yaml.get("workflows") or []
    ]


def default_workflow() -> WorkflowDefinition:
    """Return a freshly parsed copy of the built-in standard workflow."""
    (workflow,) = load_workflow_definitions(yaml.safe_load(DEFAULT_WORKFLOW_YAML))
    return workflow


def read_workflow_file(path: str | Path) -> list[WorkflowDefinition]:
    """Load workflow definitions from a YAML file on disk."""
    doc = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return load_workflow_definitions(doc)


# ---------------------------------------------------------------------------
# config.yaml loader
# ---------------------------------------------------------------------------


def load_engine_config(
    project_root: str | Path,
    config_yaml_path: str | Path | None = None,
) -> EngineConfig:
    """
    Load EngineConfig from .projflow/config.yaml.

    Args:
        project_root: Root of the hosting application.
        config_yaml_path: Override path for config.yaml (default: .projflow/config.yaml).

    Returns:
        EngineConfig with all settings resolved (defaults applied where missing).
    """
    project_root = Path(project_root)
    config_path = (
        Path(config_yaml_path) if config_yaml_path
        else project_root / ".projflow" / "config.yaml"
    )

    config_doc: dict[str, Any] = {}
    if config_path.exists():
        config_doc = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}

    defaults = EngineConfig()

    # Database settings; relative paths resolve against project_root
    db_section = config_doc.get("database") or {}
    db_path = db_section.get("path", defaults.db_path)
    if not Path(db_path).is_absolute():
        db_path = str(project_root / db_path)

    # Workflow settings
    workflows_section = config_doc.get("workflows") or {}
    default_workflow_id = workflows_section.get("default_id", defaults.default_workflow_id)
    definitions_path = workflows_section.get("definitions")
    if definitions_path and not Path(definitions_path).is_absolute():
        definitions_path = str(project_root / definitions_path)

    # Notification settings
    notifications_section = config_doc.get("notifications") or {}
    notification_limit = int(notifications_section.get("limit", defaults.notification_limit))
    coordinating_role = notifications_section.get("coordinating_role", Role.ADMIN_PROYEK)

    # Role directory: role -> user ids; a bare string is a single member
    role_members: dict[str, list[str]] = {}
    for role, members in (config_doc.get("roles") or {}).items():
        if members is None:
            role_members[role] = []
        elif isinstance(members, str):
            role_members[role] = [members]
        else:
            role_members[role] = [str(m) for m in members]

    actions_section = config_doc.get("actions") or {}
    extra_actions = list(actions_section.get("extra") or [])

    engine_section = config_doc.get("engine") or {}
    offer_stage_progress = int(engine_section.get("offer_stage_progress", defaults.offer_stage_progress))
    max_retries = int(engine_section.get("max_retries", defaults.max_retries))

    return EngineConfig(
        db_path=db_path,
        default_workflow_id=default_workflow_id,
        definitions_path=definitions_path,
        notification_limit=notification_limit,
        coordinating_role=coordinating_role,
        offer_stage_progress=offer_stage_progress,
        max_retries=max_retries,
        extra_actions=extra_actions,
        role_members=role_members,
    )
