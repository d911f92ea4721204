import asyncio

import pytest

from bingo.errors import ValidationError
from bingo.game.auto_caller import AutoCaller


# ---- Utilities ------------------------------------------------

class GatedAutoCaller(AutoCaller):
    """AutoCaller whose waits block until the test releases them."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.waits = []
        self.gate = asyncio.Semaphore(0)

    async def _wait(self, seconds: float) -> None:
        self.waits.append(seconds)
        await self.gate.acquire()


class TickRecorder:
    def __init__(self, ticks_allowed=None):
        self.generations = []
        self.ticks_allowed = ticks_allowed

    async def __call__(self, generation: int) -> bool:
        self.generations.append(generation)
        if self.ticks_allowed is not None:
            return len(self.generations) < self.ticks_allowed
        return True


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _release(caller: GatedAutoCaller, ticks: int = 1) -> None:
    for _ in range(ticks):
        caller.gate.release()
        await _settle()


# ---- Clamping -------------------------------------------------

@pytest.mark.parametrize("value, expected", [
    (500, 2000),
    (2000, 2000),
    (4500, 4500),
    (30000, 30000),
    (60000, 30000),
    (2500.7, 2500),
])
def test_interval_is_clamped(value, expected):
    caller = AutoCaller(TickRecorder())
    assert caller.clamp(value) == expected


@pytest.mark.parametrize("value", ["3000", None, True, float("nan"), [3000]])
def test_non_numeric_interval_rejected(value):
    caller = AutoCaller(TickRecorder())
    with pytest.raises(ValidationError):
        caller.clamp(value)


def test_default_interval():
    assert AutoCaller(TickRecorder()).interval_ms == 5000
    assert AutoCaller(TickRecorder(), interval_ms=100).interval_ms == 2000


# ---- Loop -----------------------------------------------------

@pytest.mark.asyncio
async def test_ticks_once_per_wait():
    ticks = TickRecorder()
    caller = GatedAutoCaller(ticks, interval_ms=2000)
    caller.start()
    await _settle()

    assert caller.enabled
    assert caller.waits == [2.0]
    await _release(caller, 3)
    assert len(ticks.generations) == 3
    assert set(ticks.generations) == {caller.generation}

    caller.stop()


@pytest.mark.asyncio
async def test_start_replaces_running_loop():
    """Starting twice never layers two timers."""
    ticks = TickRecorder()
    caller = GatedAutoCaller(ticks, interval_ms=2000)
    caller.start()
    await _settle()
    first_task = caller._task
    caller.start(3000)
    await _settle()

    assert first_task.cancelled() or first_task.done()
    assert caller.interval_ms == 3000
    await _release(caller)
    assert len(ticks.generations) == 1

    caller.stop()


@pytest.mark.asyncio
async def test_scenario_d_interval_change_applies_to_next_tick():
    ticks = TickRecorder()
    caller = GatedAutoCaller(ticks)
    assert caller.start(2000) == 2000
    await _settle()
    assert caller.waits == [2.0]

    assert caller.set_interval(30000) == 30000
    # The wait already scheduled finishes first, then the new interval is used
    await _release(caller)
    assert caller.waits == [2.0, 30.0]
    await _release(caller)
    assert caller.waits == [2.0, 30.0, 30.0]

    # One tick per released wait, all from the same loop
    assert len(ticks.generations) == 2
    assert len(set(ticks.generations)) == 1

    caller.stop()


@pytest.mark.asyncio
async def test_stop_prevents_further_ticks():
    ticks = TickRecorder()
    caller = GatedAutoCaller(ticks)
    caller.start()
    await _release(caller)
    assert caller.stop()
    await _release(caller, 3)

    assert len(ticks.generations) == 1
    assert not caller.enabled
    assert not caller.stop()


@pytest.mark.asyncio
async def test_in_flight_tick_is_invalidated_by_stop():
    """A tick already running when stop arrives sees a stale generation."""
    lock = asyncio.Lock()
    drawn = []

    async def tick(generation):
        async with lock:
            if not caller.is_current(generation):
                return False
            drawn.append(generation)
            return True

    caller = GatedAutoCaller(tick)
    caller.start()
    await _settle()

    async with lock:
        caller.gate.release()
        await _settle()
        # The tick is now waiting on the lock
        caller.stop()
    await _settle()

    assert drawn == []


@pytest.mark.asyncio
async def test_loop_ends_when_tick_returns_false():
    ticks = TickRecorder(ticks_allowed=2)
    caller = GatedAutoCaller(ticks)
    caller.start()
    await _release(caller, 2)

    assert len(ticks.generations) == 2
    assert not caller.enabled
    assert caller._task is None


@pytest.mark.asyncio
async def test_loop_ends_when_tick_raises(caplog):
    async def broken(generation):
        raise RuntimeError("boom")

    caller = GatedAutoCaller(broken, name="SESSION1")
    caller.start()
    await _release(caller)

    assert not caller.enabled
    assert "Auto caller tick failed" in caplog.text


@pytest.mark.asyncio
async def test_failing_tick_reports_through_callback():
    reports = []

    async def broken(generation):
        raise RuntimeError("boom")

    async def on_failure():
        reports.append("stopped")

    caller = GatedAutoCaller(broken, on_failure=on_failure)
    caller.start()
    await _release(caller)

    assert not caller.enabled
    assert reports == ["stopped"]


@pytest.mark.asyncio
async def test_loop_ending_normally_skips_failure_callback():
    reports = []

    async def on_failure():
        reports.append("stopped")

    caller = GatedAutoCaller(TickRecorder(ticks_allowed=1), on_failure=on_failure)
    caller.start()
    await _release(caller)
    assert not caller.enabled

    caller.start()
    await _settle()
    caller.stop()
    await _settle()

    assert reports == []
