"""Pipeline controller: runs one stage at a time per project.

Coordinates stage execution with:
- State machine transitions (run, advance, retry, cancel)
- Supersession: starting a run cancels the project's previous run, and
  a superseded run never writes to the project again
- Atomic completion: a stage's result, progress and status land in one
  store update
- Failure state persistence (error + failed_stage) for retry
- StageCompleted events for the auto-advance driver and other listeners
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Optional

from dramaforge.config import Settings
from dramaforge.orchestrator.cancellation import (
    CancellationRegistry,
    CancellationToken,
    RunCancelled,
)
from dramaforge.orchestrator.state import (
    CANCELLED,
    COMPLETED,
    FAILED,
    STAGE_LABELS,
    STAGE_PROGRESS,
    STEP_COMPLETED,
    STEP_IDLE,
    STEP_PROCESSING,
    VIDEO_GENERATION,
    can_advance,
    default_stage,
    next_stage,
)
from dramaforge.pipeline import STAGE_HANDLERS, StageContext, StageHandler, StageResult
from dramaforge.pipeline.base import CANCELLED as RESULT_CANCELLED
from dramaforge.pipeline.base import FATAL as RESULT_FATAL
from dramaforge.schemas.project import Project
from dramaforge.services.ports import GeneratorPorts
from dramaforge.store import ProjectNotFound, ProjectStore

logger = logging.getLogger(__name__)


class InvalidTransition(Exception):
    """The requested command is not allowed from the project's current state."""


class RunOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    CANCELLED = "cancelled"
    FAILED = "failed"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class StageCompleted:
    """Emitted after a stage finished successfully and its result was stored."""

    project_id: str
    stage: str
    status: str
    generation: int


StageListener = Callable[[StageCompleted], Any]


class PipelineController:
    """Owns stage execution for every project in a ProjectStore."""

    def __init__(
        self,
        store: ProjectStore,
        ports: GeneratorPorts,
        cfg: Optional[Settings] = None,
        registry: Optional[CancellationRegistry] = None,
        handlers: Optional[dict[str, StageHandler]] = None,
    ) -> None:
        if cfg is None:
            from dramaforge.config import settings as cfg
        self.store = store
        self.ports = ports
        self.settings = cfg
        self.registry = registry or CancellationRegistry()
        self.handlers = handlers if handlers is not None else dict(STAGE_HANDLERS)
        self._listeners: list[StageListener] = []
        self._tasks: set[asyncio.Task] = set()

    # -- transitions -----------------------------------------------------------

    def resolve_stage(self, project_id: str, target_stage: Optional[str] = None) -> str:
        """Return the stage run_stage would execute.

        Raises:
            ProjectNotFound: If project_id is unknown.
            InvalidTransition: If no stage can be run.
        """
        project = self.store.get(project_id)
        if target_stage is None:
            try:
                target_stage = default_stage(project.status)
            except ValueError as exc:
                raise InvalidTransition(str(exc)) from exc
        if target_stage not in self.handlers:
            raise InvalidTransition(f"Unknown stage '{target_stage}'")
        return target_stage

    def advance_target(self, project_id: str) -> str:
        project = self.store.get(project_id)
        if not can_advance(project.status, project.step_state):
            raise InvalidTransition(
                f"Cannot advance from status '{project.status}' "
                f"with step state '{project.step_state}'"
            )
        return next_stage(project.status)

    def retry_target(self, project_id: str) -> str:
        project = self.store.get(project_id)
        if project.status != FAILED or not project.failed_stage:
            raise InvalidTransition(f"Project {project_id} has no failed stage to retry")
        return project.failed_stage

    # -- execution -------------------------------------------------------------

    async def run_stage(self, project_id: str, target_stage: Optional[str] = None) -> RunOutcome:
        """Run one stage to completion, superseding any in-flight run.

        Raises:
            ProjectNotFound: If project_id is unknown.
            InvalidTransition: If no stage can be resolved.
        """
        stage = self.resolve_stage(project_id, target_stage)
        handler = self.handlers[stage]
        token = self.registry.issue(project_id)

        def _start(p: Project) -> None:
            p.status = stage
            p.step_state = STEP_PROCESSING
            p.error = None
            p.failed_stage = None

        snapshot = self.store.update(project_id, _start, guard=self._guard(token))
        if snapshot is None:
            return self._stale_outcome(token)

        ctx = StageContext(
            project=snapshot,
            store=self.store,
            ports=self.ports,
            settings=self.settings,
            token=token,
            is_current=lambda: self.registry.is_current(token),
        )

        label = STAGE_LABELS[stage]
        logger.info("Project %s: starting %s (run %d)", project_id, label, token.generation)
        step_start = time.monotonic()
        try:
            result = await handler(ctx)
        except RunCancelled:
            result = StageResult.cancelled()
        except asyncio.CancelledError:
            token.cancel()
            self.registry.release(token)
            raise
        except Exception as e:
            logger.exception("Project %s: %s raised %s", project_id, label, type(e).__name__)
            result = StageResult.fatal(f"{label} failed: {type(e).__name__}: {e}")

        try:
            outcome = self._finish(project_id, stage, token, result)
        except ProjectNotFound:
            logger.info("Project %s deleted while %s was running", project_id, label)
            outcome = RunOutcome.CANCELLED
        finally:
            self.registry.release(token)

        step_duration = time.monotonic() - step_start
        logger.info(
            "Project %s: %s finished as %s in %.2fs",
            project_id, label, outcome.value, step_duration,
        )

        if outcome is RunOutcome.SUCCEEDED:
            status = COMPLETED if stage == VIDEO_GENERATION else stage
            await self._emit(StageCompleted(project_id, stage, status, token.generation))
        return outcome

    def _finish(
        self,
        project_id: str,
        stage: str,
        token: CancellationToken,
        result: StageResult,
    ) -> RunOutcome:
        """Write the stage result unless the run is no longer current."""
        guard = self._guard(token)

        if result.outcome == RESULT_CANCELLED:
            def _cancelled(p: Project) -> None:
                p.status = CANCELLED
                p.step_state = STEP_COMPLETED

            if self.store.update(project_id, _cancelled, guard=guard) is None:
                return self._stale_outcome(token)
            return RunOutcome.CANCELLED

        if result.outcome == RESULT_FATAL:
            def _failed(p: Project) -> None:
                p.status = FAILED
                p.failed_stage = stage
                p.error = result.message or "Unknown error"
                p.step_state = STEP_IDLE

            if self.store.update(project_id, _failed, guard=guard) is None:
                return self._stale_outcome(token)
            logger.error("Project %s: %s", project_id, result.message)
            return RunOutcome.FAILED

        def _succeeded(p: Project) -> None:
            if result.patch is not None:
                result.patch(p)
            p.progress = STAGE_PROGRESS[stage]
            p.step_state = STEP_COMPLETED
            p.status = COMPLETED if stage == VIDEO_GENERATION else stage

        if self.store.update(project_id, _succeeded, guard=guard) is None:
            return self._stale_outcome(token)
        return RunOutcome.SUCCEEDED

    def _guard(self, token: CancellationToken) -> Callable[[Project], bool]:
        return lambda _project: self.registry.is_current(token)

    @staticmethod
    def _stale_outcome(token: CancellationToken) -> RunOutcome:
        return RunOutcome.SUPERSEDED if token.superseded else RunOutcome.CANCELLED

    async def advance(self, project_id: str) -> RunOutcome:
        """Run the stage after the current one.

        Raises:
            InvalidTransition: Unless the current stage completed and the
                project is not completed, failed or cancelled.
        """
        return await self.run_stage(project_id, self.advance_target(project_id))

    async def retry(self, project_id: str) -> RunOutcome:
        """Re-run the stage recorded in failed_stage.

        Raises:
            InvalidTransition: If the project has no failed stage.
        """
        return await self.run_stage(project_id, self.retry_target(project_id))

    def cancel(self, project_id: str) -> None:
        """Signal the active run and mark the project cancelled.

        Does not wait for the handler to unwind; in-flight results of the
        cancelled run are discarded.
        """
        self.registry.cancel(project_id)

        def _cancelled(p: Project) -> None:
            p.status = CANCELLED
            p.step_state = STEP_COMPLETED

        self.store.update(project_id, _cancelled)
        logger.info("Project %s cancelled", project_id)

    # -- events ----------------------------------------------------------------

    def subscribe(self, listener: StageListener) -> Callable[[], None]:
        """Register a sync or async StageCompleted listener.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def _emit(self, event: StageCompleted) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("StageCompleted listener %r failed", listener)

    # -- background tasks ------------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        """Run coro as a tracked background task (awaited by wait_idle)."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s: %s", task.get_name(), type(exc).__name__, exc)

    def start_stage(self, project_id: str, target_stage: Optional[str] = None) -> asyncio.Task:
        """Validate synchronously, then run the stage in the background.

        Raises:
            ProjectNotFound: If project_id is unknown.
            InvalidTransition: If no stage can be resolved.
        """
        stage = self.resolve_stage(project_id, target_stage)
        return self.spawn(self.run_stage(project_id, stage), name=f"run-{project_id}-{stage}")

    async def wait_idle(self) -> None:
        """Wait until no tracked run or scheduled advance remains."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every active run and tracked task."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
