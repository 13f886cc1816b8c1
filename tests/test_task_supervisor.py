import asyncio

import pytest

from advisory_engine.services.task_supervisor import TaskPriority, TaskSupervisor, maybe_await


async def _value(value, delay=0.0):
    await asyncio.sleep(delay)
    return value


async def _boom():
    raise ValueError("stage failed")


@pytest.mark.asyncio
async def test_on_result_merges_each_task_independently():
    supervisor = TaskSupervisor()
    merged = []

    async def merge(value):
        merged.append(value)

    slow = supervisor.spawn(_value("slow", 0.05), name="slow", on_result=merge)
    fast = supervisor.spawn(_value("fast"), name="fast", on_result=merged.append)
    await asyncio.gather(slow, fast)

    assert merged == ["fast", "slow"]
    assert supervisor.active() == []


@pytest.mark.asyncio
async def test_on_error_absorbs_failures():
    supervisor = TaskSupervisor()
    errors = []

    absorbed = supervisor.spawn(_boom(), name="absorbed", on_error=errors.append)
    assert await absorbed is None
    assert isinstance(errors[0], ValueError)

    raw = supervisor.spawn(_boom(), name="raw")
    with pytest.raises(ValueError):
        await raw


@pytest.mark.asyncio
async def test_cancel_session_only_touches_that_session():
    supervisor = TaskSupervisor()
    gate = asyncio.Event()
    mine = supervisor.spawn(gate.wait(), name="mine", session_id="s1")
    other = supervisor.spawn(gate.wait(), name="other", session_id="s2")
    await asyncio.sleep(0)

    assert [t["name"] for t in supervisor.active("s1")] == ["mine"]
    assert supervisor.cancel_session("s1") == 1

    with pytest.raises(asyncio.CancelledError):
        await mine
    assert not other.done()

    gate.set()
    await other


@pytest.mark.asyncio
async def test_graceful_shutdown_waits_for_high_priority():
    supervisor = TaskSupervisor()
    gate = asyncio.Event()
    important = supervisor.spawn(_value("done", 0.02), name="important", priority=TaskPriority.HIGH)
    background = supervisor.spawn(gate.wait(), name="background")

    results = await supervisor.graceful_shutdown(timeout=1)

    assert sorted(results.values()) == ["cancelled", "completed"]
    assert important.result() == "done"
    assert background.cancelled()
    assert supervisor.is_shutting_down()


@pytest.mark.asyncio
async def test_maybe_await_accepts_plain_values():
    assert await maybe_await(3) == 3
    assert await maybe_await(_value(4)) == 4
