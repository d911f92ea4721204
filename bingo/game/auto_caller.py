"""
Auto Caller

Timer loop that draws numbers for a session at a fixed interval.

Each caller owns at most one asyncio task. A generation counter is
bumped on every start and stop; a tick belonging to an older
generation never draws, even if it was already waiting for the
session lock when the stop arrived. A loop that dies on an error reports
it through the optional failure callback.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from ..errors import ValidationError
from ..utils.logging_config import get_logger

# Logger setup
logger = get_logger(__name__)

DEFAULT_INTERVAL_MS = 5000
MIN_INTERVAL_MS = 2000
MAX_INTERVAL_MS = 30000

TickCallback = Callable[[int], Awaitable[bool]]
FailureCallback = Callable[[], Awaitable[None]]


class AutoCaller:
    """
    Periodic number caller for one session.

    The tick callback receives the generation it was scheduled under and
    returns False to end the loop (session no longer playing).
    """

    def __init__(
        self,
        tick: TickCallback,
        interval_ms: Optional[int] = None,
        min_interval_ms: int = MIN_INTERVAL_MS,
        max_interval_ms: int = MAX_INTERVAL_MS,
        name: str = "",
        on_failure: Optional[FailureCallback] = None,
    ):
        self._tick = tick
        self._on_failure = on_failure
        self.min_interval_ms = min_interval_ms
        self.max_interval_ms = max_interval_ms
        self.name = name
        self.interval_ms = self.clamp(interval_ms if interval_ms is not None else DEFAULT_INTERVAL_MS)
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        """True while the loop scheduled under `generation` is still the live one."""
        return self.enabled and generation == self._generation

    def clamp(self, interval_ms: Any) -> int:
        """
        Clamp an interval into the allowed range.

        Raises:
            ValidationError: If the value is not a number
        """
        if isinstance(interval_ms, bool) or not isinstance(interval_ms, (int, float)):
            raise ValidationError("interval must be a number of milliseconds")
        if interval_ms != interval_ms:  # NaN
            raise ValidationError("interval must be a number of milliseconds")
        return int(max(self.min_interval_ms, min(self.max_interval_ms, interval_ms)))

    def start(self, interval_ms: Optional[Any] = None) -> int:
        """
        Start (or restart) the loop.

        A running loop is replaced, never layered.

        Returns:
            int: The interval in use
        """
        if interval_ms is not None:
            interval = self.clamp(interval_ms)
        else:
            interval = self.interval_ms
        self.stop()
        self.interval_ms = interval
        self._generation += 1
        self._task = asyncio.create_task(self._run(self._generation))
        logger.info(f"Auto caller started - session_id: {self.name}, interval_ms: {self.interval_ms}")
        return self.interval_ms

    def stop(self) -> bool:
        """
        Stop the loop and invalidate any in-flight tick.

        Returns:
            bool: True if the loop was running
        """
        was_running = self.enabled
        self._generation += 1
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if was_running:
            logger.info(f"Auto caller stopped - session_id: {self.name}")
        return was_running

    def set_interval(self, interval_ms: Any) -> int:
        """
        Change the interval; the running loop picks it up on its next wait.

        Returns:
            int: The clamped interval
        """
        self.interval_ms = self.clamp(interval_ms)
        return self.interval_ms

    async def _wait(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def _run(self, generation: int) -> None:
        failed = False
        try:
            while generation == self._generation:
                await self._wait(self.interval_ms / 1000)
                if generation != self._generation:
                    break
                if not await self._tick(generation):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Auto caller tick failed - session_id: {self.name}, error: {e}", exc_info=True)
            failed = generation == self._generation
        finally:
            if generation == self._generation:
                # Loop ended on its own; clear our own handle
                self._generation += 1
                self._task = None

        if failed and self._on_failure is not None:
            try:
                await self._on_failure()
            except Exception as e:
                logger.error(f"Auto caller failure handler failed - session_id: {self.name}, error: {e}")
