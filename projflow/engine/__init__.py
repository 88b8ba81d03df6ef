"""
Project Lifecycle Engine: workflow-driven state machine for design projects.

Drives each project through the named steps of a configurable workflow,
resolves action-triggered transitions, keeps an append-only audit trail, and
fans out role-based notifications. Storage and notification delivery sit
behind small protocols; SQLite implementations of both ship with the engine.

Deployment-specific settings (database path, role membership, extra
workflows) come from the hosting application's .projflow/ directory.
"""
