# File: rustowl_client/commands/debounce.py

"""Cancellable delayed execution for cursor-driven queries."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTask:
    """One pending delayed callback. Cancelling it before it fires drops it."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self.delay = delay
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Debounced callback failed: {e}")

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        """Waits for the task to finish or be cancelled."""
        await asyncio.wait([self._task])


class Debouncer:
    """Runs only the last callback scheduled within the delay window.

    Args:
        delay_provider: Returns the delay in seconds; read on every `schedule`
            so configuration changes apply immediately.
    """

    def __init__(self, delay_provider: Callable[[], float]):
        self._delay_provider = delay_provider
        self._scheduled: Optional[ScheduledTask] = None

    def schedule(self, callback: Callable[[], Awaitable[None]]) -> ScheduledTask:
        self.cancel()
        self._scheduled = ScheduledTask(self._delay_provider(), callback)
        return self._scheduled

    def cancel(self) -> None:
        if self._scheduled is not None:
            self._scheduled.cancel()
            self._scheduled = None

    @property
    def pending(self) -> bool:
        return self._scheduled is not None and not self._scheduled.done
