"""Cancellation tokens, the per-project registry and cancellable()."""

import asyncio

import pytest

from dramaforge.orchestrator.cancellation import (
    CancellationRegistry,
    CancellationToken,
    RunCancelled,
    cancellable,
)


@pytest.mark.asyncio
async def test_issue_supersedes_previous_run():
    registry = CancellationRegistry()
    first = registry.issue("p1")
    second = registry.issue("p1")

    assert first.cancelled
    assert first.superseded
    assert not registry.is_current(first)
    assert registry.is_current(second)
    assert second.generation > first.generation


@pytest.mark.asyncio
async def test_cancel_removes_the_active_token():
    registry = CancellationRegistry()
    token = registry.issue("p1")

    assert registry.cancel("p1")
    assert token.cancelled
    assert not token.superseded
    assert registry.current("p1") is None
    assert not registry.cancel("p1")


@pytest.mark.asyncio
async def test_release_only_forgets_the_current_token():
    registry = CancellationRegistry()
    old = registry.issue("p1")
    new = registry.issue("p1")

    registry.release(old)
    assert registry.current("p1") is new

    registry.release(new)
    assert registry.current("p1") is None


@pytest.mark.asyncio
async def test_raise_if_cancelled():
    token = CancellationToken("p1", 1)
    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(RunCancelled):
        token.raise_if_cancelled()


@pytest.mark.asyncio
async def test_sleep_wakes_early_on_cancel():
    token = CancellationToken("p1", 1)
    asyncio.get_running_loop().call_soon(token.cancel)

    with pytest.raises(RunCancelled):
        await token.sleep(30)


@pytest.mark.asyncio
async def test_cancellable_abandons_pending_work():
    token = CancellationToken("p1", 1)
    never = asyncio.Event()
    asyncio.get_running_loop().call_soon(token.cancel)

    with pytest.raises(RunCancelled):
        await cancellable(never.wait(), token)


@pytest.mark.asyncio
async def test_cancellable_passes_results_through():
    async def work():
        return 42

    assert await cancellable(work(), CancellationToken("p1", 1)) == 42
    assert await cancellable(work(), None) == 42
