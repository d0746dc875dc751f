"""Stage handler contract shared by the six pipeline stages.

A handler is ``async def handler(ctx: StageContext) -> StageResult``. It
reads its inputs from ``ctx.project`` (the snapshot taken when the stage
started), writes per-item results through the ctx.update_* helpers as
they land, and returns one of:

- StageResult.success(patch): the controller applies patch together with
  the stage's progress value in one atomic store update
- StageResult.cancelled(): the run's token fired
- StageResult.fatal(message): the stage failed as a whole
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from dramaforge.config import Settings
from dramaforge.orchestrator.batch import BatchResult
from dramaforge.orchestrator.cancellation import CancellationToken
from dramaforge.orchestrator.state import STAGE_LABELS
from dramaforge.schemas.project import Character, Project, Sequence
from dramaforge.services.ports import GeneratorPorts
from dramaforge.store import ProjectNotFound, ProjectStore

logger = logging.getLogger(__name__)

Patch = Callable[[Project], None]

SUCCESS = "success"
CANCELLED = "cancelled"
FATAL = "fatal"


@dataclass
class StageResult:
    outcome: str
    patch: Optional[Patch] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, patch: Optional[Patch] = None) -> "StageResult":
        return cls(SUCCESS, patch=patch)

    @classmethod
    def cancelled(cls) -> "StageResult":
        return cls(CANCELLED)

    @classmethod
    def fatal(cls, message: str) -> "StageResult":
        return cls(FATAL, message=message)


@dataclass
class StageContext:
    """Everything a stage handler may touch during one run."""

    project: Project
    store: ProjectStore
    ports: GeneratorPorts
    settings: Settings
    token: Optional[CancellationToken] = None
    is_current: Callable[[], bool] = field(default=lambda: True)

    @property
    def project_id(self) -> str:
        return self.project.id

    def _guard(self, _project: Project) -> bool:
        return self.is_current()

    def update(self, mutator: Patch) -> Optional[Project]:
        """Write to the project unless this run has been superseded."""
        try:
            return self.store.update(self.project_id, mutator, guard=self._guard)
        except ProjectNotFound:
            logger.debug("Project %s deleted mid-run, update dropped", self.project_id)
            return None

    def update_character(
        self, name: str, mutator: Callable[[Character], None]
    ) -> Optional[Project]:
        try:
            return self.store.update_character(
                self.project_id, name, mutator, guard=self._guard
            )
        except ProjectNotFound:
            return None

    def update_sequence(
        self, sequence_id: str, mutator: Callable[[Sequence], None]
    ) -> Optional[Project]:
        try:
            return self.store.update_sequence(
                self.project_id, sequence_id, mutator, guard=self._guard
            )
        except ProjectNotFound:
            return None


StageHandler = Callable[[StageContext], Awaitable[StageResult]]


def fold_batch_outcome(
    result: BatchResult,
    stage: str,
    items: str,
    verb: str = "generate",
) -> StageResult:
    """Apply the batch-level failure policy to a finished batch.

    - cancelled → cancelled
    - every pending item failed → fatal
    - some failed → success, with a warning
    """
    label = STAGE_LABELS[stage]
    if result.cancelled:
        return StageResult.cancelled()
    if result.all_failed:
        return StageResult.fatal(
            f"{label} failed: All {result.failed} {items} failed to {verb}"
        )
    if result.failed:
        logger.warning(
            "%s completed with %d successes and %d failures",
            label, result.succeeded, result.failed,
        )
    return StageResult.success()
