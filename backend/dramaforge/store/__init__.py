"""Project state storage."""

from dramaforge.store.project_store import ProjectNotFound, ProjectStore

__all__ = ["ProjectNotFound", "ProjectStore"]
