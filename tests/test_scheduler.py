import asyncio

import pytest

from linemark.scheduler import DebouncedTask


class Recorder:
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_triggers_within_delay_coalesce():
    action = Recorder()
    task = DebouncedTask(action, delay=0.05)
    for _ in range(5):
        task.trigger()
    await asyncio.sleep(0.2)
    assert action.calls == 1
    assert not task.pending


@pytest.mark.asyncio
async def test_flush_runs_immediately():
    action = Recorder()
    task = DebouncedTask(action, delay=60)
    task.trigger()
    await task.flush()
    assert action.calls == 1
    await task.flush()
    assert action.calls == 1


@pytest.mark.asyncio
async def test_cancel_keeps_work_pending():
    action = Recorder()
    task = DebouncedTask(action, delay=0.01)
    task.trigger()
    task.cancel()
    await asyncio.sleep(0.05)
    assert action.calls == 0
    assert task.pending
    await task.flush()
    assert action.calls == 1


@pytest.mark.asyncio
async def test_background_failure_goes_to_on_error():
    errors = []
    task = DebouncedTask(Recorder(fail=True), delay=0, on_error=errors.append)
    task.trigger()
    await asyncio.sleep(0.05)
    assert [str(e) for e in errors] == ["boom"]
    assert task.pending


@pytest.mark.asyncio
async def test_flush_failure_propagates():
    task = DebouncedTask(Recorder(fail=True), delay=60)
    task.trigger()
    with pytest.raises(RuntimeError):
        await task.flush()
    assert task.pending


def test_trigger_without_loop_defers_to_flush():
    action = Recorder()
    task = DebouncedTask(action, delay=0)
    task.trigger()
    assert task.pending
    asyncio.run(task.flush())
    assert action.calls == 1
