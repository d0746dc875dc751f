"""In-memory project store with atomic read-modify-write updates.

All reads hand out deep copies; all writes run a caller-supplied mutator
against a copy of the current project under one re-entrant lock, then
swap the copy in. Two folds for different items of the same project can
therefore never overwrite each other's fields.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from dramaforge.schemas.project import Character, Project, Sequence

logger = logging.getLogger(__name__)

Mutator = Callable[[Project], None]
Guard = Callable[[Project], bool]
SnapshotListener = Callable[[list[dict]], None]


class ProjectNotFound(KeyError):
    """No project with the given id exists (never created, or deleted)."""

    def __init__(self, project_id: str) -> None:
        super().__init__(project_id)
        self.project_id = project_id

    def __str__(self) -> str:
        return f"Project {self.project_id} not found"


class ProjectStore:
    """Single source of truth for every project's state."""

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}
        self._lock = threading.RLock()
        self._listeners: list[SnapshotListener] = []

    # -- reads ---------------------------------------------------------------

    def get(self, project_id: str) -> Project:
        """Return a deep copy of the project.

        Raises:
            ProjectNotFound: If project_id is unknown.
        """
        with self._lock:
            return self._require(project_id).model_copy(deep=True)

    def exists(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._projects

    def list(self) -> list[Project]:
        """All projects, newest first."""
        with self._lock:
            projects = [p.model_copy(deep=True) for p in self._projects.values()]
        return sorted(projects, key=lambda p: p.created_at, reverse=True)

    def snapshot(self) -> list[dict]:
        """Every project as JSON-compatible dicts (the persisted state shape)."""
        return [p.model_dump(mode="json") for p in self.list()]

    # -- writes --------------------------------------------------------------

    def add(self, project: Project) -> Project:
        with self._lock:
            if project.id in self._projects:
                raise ValueError(f"Project {project.id} already exists")
            self._projects[project.id] = project.model_copy(deep=True)
            self._notify()
        logger.debug("Project %s added", project.id)
        return project.model_copy(deep=True)

    def delete(self, project_id: str) -> None:
        with self._lock:
            self._require(project_id)
            del self._projects[project_id]
            self._notify()
        logger.debug("Project %s deleted", project_id)

    def update(
        self,
        project_id: str,
        mutator: Mutator,
        guard: Optional[Guard] = None,
    ) -> Optional[Project]:
        """Apply mutator atomically and return the updated copy.

        When guard is given and returns False for the current state, nothing
        is written and None is returned.

        Raises:
            ProjectNotFound: If project_id is unknown.
        """
        with self._lock:
            current = self._require(project_id)
            if guard is not None and not guard(current):
                return None
            draft = current.model_copy(deep=True)
            mutator(draft)
            self._projects[project_id] = draft
            self._notify()
            return draft.model_copy(deep=True)

    def update_character(
        self,
        project_id: str,
        name: str,
        mutator: Callable[[Character], None],
        guard: Optional[Guard] = None,
    ) -> Optional[Project]:
        """Mutate the character called name; skipped if it no longer exists."""
        applied = False

        def _apply(project: Project) -> None:
            nonlocal applied
            character = project.find_character(name)
            if character is not None:
                mutator(character)
                applied = True

        result = self.update(project_id, _apply, guard)
        if result is not None and not applied:
            logger.debug("Project %s: character %r gone, update dropped", project_id, name)
        return result if applied else None

    def update_sequence(
        self,
        project_id: str,
        sequence_id: str,
        mutator: Callable[[Sequence], None],
        guard: Optional[Guard] = None,
    ) -> Optional[Project]:
        """Mutate the sequence with sequence_id; skipped if it no longer exists."""
        applied = False

        def _apply(project: Project) -> None:
            nonlocal applied
            sequence = project.find_sequence(sequence_id)
            if sequence is not None:
                mutator(sequence)
                applied = True

        result = self.update(project_id, _apply, guard)
        if result is not None and not applied:
            logger.debug("Project %s: sequence %s gone, update dropped", project_id, sequence_id)
        return result if applied else None

    # -- listeners -----------------------------------------------------------

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call listener with the full snapshot after every mutation.

        Returns a function that removes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _require(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFound(project_id)
        return project

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)
