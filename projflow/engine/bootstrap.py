#!/usr/bin/env python3
"""
Project Lifecycle Engine Bootstrap

Wires the engine's collaborators from a hosting application's root
directory:

    .projflow/config.yaml  -> EngineConfig
    database.path          -> SQLitePersistence + SQLiteNotificationStore
    roles                  -> StaticRoleDirectory
    workflows.definitions  -> imported into the WorkflowStore

The built-in standard workflow is seeded on first open.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .config import load_engine_config, read_workflow_file
from .models import EngineConfig, utc_now
from .notifications import SQLiteNotificationStore, StaticRoleDirectory
from .persistence import SQLitePersistence
from .projects import ProjectStateMachine
from .workflows import WorkflowStore

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    """The assembled engine. Close it to release database connections."""
    config: EngineConfig
    persistence: SQLitePersistence
    workflows: WorkflowStore
    notifications: SQLiteNotificationStore
    projects: ProjectStateMachine

    def close(self) -> None:
        self.persistence.close()


def build_engine(config: EngineConfig, clock: Callable[[], str] = utc_now) -> Engine:
    """Assemble an Engine from an already loaded config."""
    persistence = SQLitePersistence(config.db_path)
    workflows = WorkflowStore(
        persistence,
        default_workflow_id=config.default_workflow_id,
        known_actions=config.known_actions,
    )
    workflows.ensure_default()
    if config.definitions_path:
        imported = workflows.import_definitions(read_workflow_file(config.definitions_path))
        logger.info("Loaded %d workflow(s) from %s", len(imported), config.definitions_path)

    notifications = SQLiteNotificationStore(
        persistence.connections,
        StaticRoleDirectory(config.role_members),
        limit=config.notification_limit,
        clock=clock,
    )
    projects = ProjectStateMachine(persistence, workflows, notifications, config, clock=clock)
    return Engine(config, persistence, workflows, notifications, projects)


def open_engine(project_root: str | Path, config_yaml_path: str | Path | None = None) -> Engine:
    """Load .projflow/config.yaml under project_root and assemble the engine."""
    config = load_engine_config(project_root, config_yaml_path)
    logger.info("Opening engine database at %s", config.db_path)
    return build_engine(config)
