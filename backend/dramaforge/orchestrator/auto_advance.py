"""Auto mode: chain stages without user interaction.

After a stage of an auto-mode project completes, the next stage is
started after a short delay. The delay gives listeners (UI, storage) a
chance to observe the completed stage before the next one begins.
"""

import asyncio
import logging
from typing import Callable, Optional

from dramaforge.config import Settings
from dramaforge.orchestrator.pipeline import (
    InvalidTransition,
    PipelineController,
    StageCompleted,
)
from dramaforge.orchestrator.state import STEP_COMPLETED, can_advance
from dramaforge.store import ProjectNotFound

logger = logging.getLogger(__name__)


class AutoAdvanceDriver:
    """Schedules controller.advance for auto-mode projects."""

    def __init__(self, controller: PipelineController, cfg: Optional[Settings] = None) -> None:
        self.controller = controller
        self.settings = cfg or controller.settings
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.controller.subscribe(self.on_stage_completed)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_stage_completed(self, event: StageCompleted) -> None:
        try:
            project = self.controller.store.get(event.project_id)
        except ProjectNotFound:
            return
        if project.mode != "auto" or not can_advance(project.status, project.step_state):
            return
        self.controller.spawn(
            self._advance_later(event),
            name=f"auto-advance-{event.project_id}-{event.stage}",
        )

    async def _advance_later(self, event: StageCompleted) -> None:
        await asyncio.sleep(self.settings.pipeline.auto_advance_delay)

        if not self._still_waiting(event):
            logger.debug(
                "Project %s: scheduled advance after %s dropped",
                event.project_id, event.stage,
            )
            return

        try:
            await self.controller.advance(event.project_id)
        except (InvalidTransition, ProjectNotFound) as e:
            logger.debug("Project %s: auto advance skipped: %s", event.project_id, e)

    def _still_waiting(self, event: StageCompleted) -> bool:
        """True while the project sits where the completed stage left it."""
        try:
            project = self.controller.store.get(event.project_id)
        except ProjectNotFound:
            return False
        if self.controller.registry.current(event.project_id) is not None:
            return False
        return project.status == event.status and project.step_state == STEP_COMPLETED
