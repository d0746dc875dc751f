"""Per-project cancellation tokens with run generations.

Every pipeline run gets a fresh CancellationToken tagged with a
monotonically increasing generation. Issuing a new token for a project
cancels the previous one in the same step, so a superseded run can never
observe itself as current again. Folds into the project store check
``registry.is_current(token)`` before writing.
"""

import asyncio
import itertools
import logging
import threading
from typing import Awaitable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunCancelled(Exception):
    """Raised inside a run once its cancellation token has fired.

    Cancellation is not an error: it is never recorded on the project.
    """


class CancellationToken:
    """Cooperative cancellation signal for one pipeline run."""

    def __init__(self, project_id: str, generation: int) -> None:
        self.project_id = project_id
        self.generation = generation
        self._event = asyncio.Event()
        self._cancelled = False
        # Set when a newer run replaced this one
        self.superseded = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RunCancelled(f"Run {self.generation} for project {self.project_id} cancelled")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, waking early and raising if cancelled."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<CancellationToken project={self.project_id} gen={self.generation} {state}>"


class CancellationRegistry:
    """Maps project id to the token of its single active run."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._generations = itertools.count(1)
        self._lock = threading.Lock()

    def issue(self, project_id: str) -> CancellationToken:
        """Cancel any previous run of project_id and return a fresh token.

        Replacement and cancellation happen under one lock so no fold can
        see both tokens as current.
        """
        with self._lock:
            previous = self._tokens.get(project_id)
            token = CancellationToken(project_id, next(self._generations))
            self._tokens[project_id] = token
            if previous is not None:
                previous.superseded = True
                previous.cancel()
        if previous is not None:
            logger.info(
                "Project %s: run %d superseded by run %d",
                project_id, previous.generation, token.generation,
            )
        return token

    def cancel(self, project_id: str) -> bool:
        """Signal the active run of project_id. Returns True if one existed."""
        with self._lock:
            token = self._tokens.pop(project_id, None)
        if token is None:
            return False
        token.cancel()
        logger.info("Project %s: run %d cancelled", project_id, token.generation)
        return True

    def current(self, project_id: str) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.get(project_id)

    def is_current(self, token: Optional[CancellationToken]) -> bool:
        """True while token is the live, uncancelled token for its project."""
        if token is None:
            return True
        with self._lock:
            return self._tokens.get(token.project_id) is token and not token.cancelled

    def release(self, token: CancellationToken) -> None:
        """Forget token once its run has finished, if it is still current."""
        with self._lock:
            if self._tokens.get(token.project_id) is token:
                del self._tokens[token.project_id]


async def cancellable(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """Await awaitable, abandoning it as soon as token is cancelled.

    The pending work is cancelled and RunCancelled raised, so a provider
    request in flight does not hold the run open after cancel().
    """
    if token is None:
        return await awaitable
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if not work.done():
        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        token.raise_if_cancelled()
    return work.result()
