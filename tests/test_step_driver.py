import asyncio

import pytest

from stepy.stepy_datatypes import Wait
from stepy.stepy_runtime import StepDriver


class RecordingDriver(StepDriver):
    """A driver that records pauses instead of sleeping for them."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.pauses = []

    async def _pause(self, seconds):
        self.pauses.append(seconds)
        await asyncio.sleep(0)


def callbacks():
    calls = {'error': [], 'complete': 0}

    def on_error(msg):
        calls['error'].append(msg)

    def on_complete():
        calls['complete'] += 1

    return calls, on_error, on_complete


@pytest.mark.asyncio
async def test_steps_and_waits_use_their_own_delays():
    def op():
        yield None
        yield Wait(1.5)
        yield None

    driver = RecordingDriver(step_delay=0.25)
    assert await driver.run(op()) is True
    assert driver.pauses == [0.25, 1.5, 0.25]
    assert driver.steps == 3


@pytest.mark.asyncio
async def test_nested_generators_are_flattened_and_return_values():
    def inner():
        yield None
        yield None
        return 5

    def middle():
        value = yield inner()
        yield None
        return value * 2

    def outer(seen):
        seen.append((yield middle()))

    seen = []
    driver = RecordingDriver(step_delay=0)
    assert await driver.run(outer(seen)) is True
    assert seen == [10]
    # Two inner steps, one middle step
    assert driver.pauses == [0, 0, 0]


@pytest.mark.asyncio
async def test_awaitables_are_awaited_and_result_sent_back():
    async def fetch():
        await asyncio.sleep(0)
        return 7

    def op(seen):
        seen.append((yield fetch()))

    seen = []
    assert await StepDriver(step_delay=0).run(op(seen)) is True
    assert seen == [7]


@pytest.mark.asyncio
async def test_completion_callback_fires_exactly_once():
    calls, on_error, on_complete = callbacks()

    def op():
        yield None

    driver = StepDriver(step_delay=0, on_error=on_error, on_complete=on_complete)
    assert await driver.run(op()) is True
    assert calls == {'error': [], 'complete': 1}


@pytest.mark.asyncio
async def test_error_callback_fires_exactly_once_with_description():
    calls, on_error, on_complete = callbacks()

    def op():
        yield None
        raise ValueError("boom")

    driver = StepDriver(step_delay=0, on_error=on_error, on_complete=on_complete)
    assert await driver.run(op()) is False
    assert calls == {'error': ["ValueError: boom"], 'complete': 0}
    assert isinstance(driver.error, ValueError)


@pytest.mark.asyncio
async def test_nested_failure_is_thrown_into_parent():
    cleaned = []

    def failing():
        yield None
        raise KeyError("inner")

    def parent():
        try:
            yield failing()
        except KeyError:
            cleaned.append("caught")
        yield None

    calls, on_error, on_complete = callbacks()
    driver = StepDriver(step_delay=0, on_error=on_error, on_complete=on_complete)
    assert await driver.run(parent()) is True
    assert cleaned == ["caught"]
    assert calls['complete'] == 1


@pytest.mark.asyncio
async def test_nested_failure_runs_parent_cleanup_then_reports():
    cleaned = []

    def failing():
        raise RuntimeError("nope")
        yield

    def parent():
        try:
            yield failing()
        finally:
            cleaned.append("parent")

    calls, on_error, on_complete = callbacks()
    driver = StepDriver(step_delay=0, on_error=on_error, on_complete=on_complete)
    assert await driver.run(parent()) is False
    assert cleaned == ["parent"]
    assert calls['error'] == ["RuntimeError: nope"]


@pytest.mark.asyncio
async def test_cancel_stops_at_next_step_without_callbacks():
    calls, on_error, on_complete = callbacks()
    cleaned = []
    driver = StepDriver(step_delay=0, on_error=on_error, on_complete=on_complete)

    def op():
        try:
            yield None
            driver.cancel()
            yield None
            cleaned.append("unreachable")
        finally:
            cleaned.append("closed")

    assert await driver.run(op()) is False
    assert driver.cancelled
    assert cleaned == ["closed"]
    assert calls == {'error': [], 'complete': 0}


@pytest.mark.asyncio
async def test_task_cancellation_after_cancel_flag_is_quiet():
    calls, on_error, on_complete = callbacks()
    driver = StepDriver(step_delay=10, on_error=on_error, on_complete=on_complete)

    def op():
        while True:
            yield None

    task = asyncio.ensure_future(driver.run(op()))
    await asyncio.sleep(0)
    driver.cancel()
    task.cancel()
    assert await task is False
    assert calls == {'error': [], 'complete': 0}


@pytest.mark.asyncio
async def test_unflagged_task_cancellation_propagates():
    driver = StepDriver(step_delay=10)

    def op():
        yield None

    task = asyncio.ensure_future(driver.run(op()))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_unknown_yield_is_an_error():
    def op():
        yield 42

    driver = StepDriver(step_delay=0)
    assert await driver.run(op()) is False
    assert isinstance(driver.error, TypeError)


@pytest.mark.asyncio
async def test_driver_is_single_use():
    def op():
        yield None

    driver = StepDriver(step_delay=0)
    await driver.run(op())
    with pytest.raises(RuntimeError):
        await driver.run(op())


@pytest.mark.asyncio
async def test_real_step_delay_paces_execution():
    def op():
        for _ in range(3):
            yield None

    loop = asyncio.get_running_loop()
    started = loop.time()
    await StepDriver(step_delay=0.05).run(op())
    assert loop.time() - started >= 0.1
