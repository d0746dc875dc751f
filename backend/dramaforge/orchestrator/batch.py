"""Bounded-concurrency batch executor.

Runs independent work items in consecutive groups of at most
``concurrency`` items. Items inside a group run concurrently; the next
group starts only after every item of the current one has settled. The
cancellation token is checked before each group: in-flight items are
never interrupted by the executor, it simply stops launching new groups
(items receive the token themselves and may abort on their own).

Each item's outcome is handed to the caller's ``fold`` callback the
moment it settles, so progress becomes visible incrementally.

Usage:
    result = await run_batch(
        pending, generate_one, fold_one,
        concurrency=3, token=token, label="character design",
    )
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from dramaforge.orchestrator.cancellation import CancellationToken, RunCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[T], Awaitable[Any]]
Fold = Callable[[T, Any, Optional[BaseException]], None]


@dataclass
class BatchResult:
    """Aggregate outcome of one run_batch call."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    groups_started: int = 0
    cancelled: bool = False

    @property
    def all_failed(self) -> bool:
        """True when there was work and every attempted item failed."""
        return self.total > 0 and self.failed == self.total

    @property
    def partially_failed(self) -> bool:
        return 0 < self.failed < self.total


async def run_batch(
    items: Sequence[T],
    operation: Operation,
    fold: Fold,
    *,
    concurrency: int,
    token: Optional[CancellationToken] = None,
    before_group: Optional[Callable[[Sequence[T]], None]] = None,
    label: str = "batch",
) -> BatchResult:
    """Run operation over items in groups of `concurrency`.

    Args:
        items: Ordered work items.
        operation: Async callable producing the item's result.
        fold: Called as fold(item, result, error) as soon as an item
            settles; error is None on success.
        concurrency: Maximum group size (C).
        token: Run cancellation token, checked before each group.
        before_group: Optional hook called with each group just before it
            launches (used to mark items as in flight).
        label: Name used in log lines.

    Returns:
        BatchResult with success/failure counts. Items raising RunCancelled
        count as neither and mark the batch as cancelled.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")

    result = BatchResult(total=len(items))

    async def _run_one(item: T) -> None:
        try:
            value = await operation(item)
        except RunCancelled:
            result.cancelled = True
            return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            result.failed += 1
            logger.warning("%s: item failed: %s: %s", label, type(exc).__name__, exc)
            fold(item, None, exc)
            return
        result.succeeded += 1
        fold(item, value, None)

    for start in range(0, len(items), concurrency):
        if token is not None and token.cancelled:
            result.cancelled = True
            logger.info(
                "%s: cancelled before group %d, %d item(s) not started",
                label, result.groups_started + 1, len(items) - start,
            )
            break

        group = items[start:start + concurrency]
        result.groups_started += 1
        if before_group is not None:
            before_group(group)
        logger.debug(
            "%s: group %d launching %d item(s)", label, result.groups_started, len(group)
        )
        await asyncio.gather(*(_run_one(item) for item in group))

    if result.failed:
        logger.info(
            "%s: %d succeeded, %d failed of %d",
            label, result.succeeded, result.failed, result.total,
        )
    return result
