import asyncio

import pytest

from pulsesync.core.errors import SyncInProgressError
from pulsesync.sync.coordinator import POLICY_REJECT, SyncCoordinator


@pytest.mark.asyncio
async def test_concurrent_callers_join_the_inflight_run():
    coordinator = SyncCoordinator()
    started = asyncio.Event()
    release = asyncio.Event()
    runs = {"count": 0}

    async def work():
        runs["count"] += 1
        started.set()
        await release.wait()
        return "done"

    first = asyncio.create_task(coordinator.run_exclusive(work))
    await started.wait()
    assert coordinator.in_progress

    second = asyncio.create_task(coordinator.run_exclusive(work))
    await asyncio.sleep(0)
    release.set()

    assert await first == "done"
    assert await second == "done"
    assert runs["count"] == 1
    assert not coordinator.in_progress


@pytest.mark.asyncio
async def test_reject_policy_raises_while_running():
    coordinator = SyncCoordinator(policy=POLICY_REJECT)
    started = asyncio.Event()
    release = asyncio.Event()

    async def work():
        started.set()
        await release.wait()
        return 1

    first = asyncio.create_task(coordinator.run_exclusive(work))
    await started.wait()

    with pytest.raises(SyncInProgressError):
        await coordinator.run_exclusive(work)

    release.set()
    assert await first == 1


@pytest.mark.asyncio
async def test_runs_again_after_previous_finished():
    coordinator = SyncCoordinator()

    async def work():
        return "ok"

    assert await coordinator.run_exclusive(work) == "ok"
    assert await coordinator.run_exclusive(work) == "ok"


@pytest.mark.asyncio
async def test_failure_clears_inflight_state():
    coordinator = SyncCoordinator()

    async def broken():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await coordinator.run_exclusive(broken)

    assert not coordinator.in_progress


def test_unknown_policy_rejected():
    with pytest.raises(ValueError):
        SyncCoordinator(policy="queue")


def test_failing_handler_does_not_affect_others():
    coordinator = SyncCoordinator()
    received = []

    def broken(event):
        raise RuntimeError("handler bug")

    coordinator.subscribe("sync.completed", broken)
    coordinator.subscribe("sync.completed", received.append)

    delivered = coordinator.emit("sync.completed", {"uploaded": 3})

    assert delivered == 1
    assert received == [{"kind": "sync.completed", "uploaded": 3}]


def test_unsubscribe_and_wildcard():
    coordinator = SyncCoordinator()
    specific, everything = [], []

    unsubscribe = coordinator.subscribe("day.rollover", specific.append)
    coordinator.subscribe("*", everything.append)

    coordinator.emit("day.rollover", {"day_key": "2025-06-02"})
    unsubscribe()
    coordinator.emit("day.rollover", {"day_key": "2025-06-03"})
    coordinator.emit("sync.started")

    assert [e["day_key"] for e in specific] == ["2025-06-02"]
    assert [e["kind"] for e in everything] == ["day.rollover", "day.rollover", "sync.started"]


@pytest.mark.asyncio
async def test_failing_async_handler_is_logged_and_isolated(caplog):
    coordinator = SyncCoordinator()
    received = []

    async def broken(event):
        raise RuntimeError("boom")

    coordinator.subscribe("sync.completed", broken)
    coordinator.subscribe("sync.completed", received.append)

    delivered = coordinator.emit("sync.completed")
    await coordinator.drain()

    assert delivered == 2
    assert received == [{"kind": "sync.completed"}]
    assert coordinator._pending == set()
    assert "boom" in caplog.text


def test_async_handler_without_running_loop_counts_as_failure():
    coordinator = SyncCoordinator()

    async def handler(event):
        pass

    coordinator.subscribe("day.rollover", handler)

    assert coordinator.emit("day.rollover") == 0
