"""
The Link Phone - Call Timers

Named one-shot and repeating timers backed by asyncio tasks. A phone widget
keeps one CallTimers instance and cancels everything on teardown.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Union

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Union[None, Awaitable[Any]]]

# Timer names used by PhoneWidget
DURATION_TICK = "duration_tick"
AUTO_DECLINE = "auto_decline"
POST_CALL_RESET = "post_call_reset"


class CallTimers:
    """
    Registry of named timers.

    Scheduling a name that is already pending replaces it. A callback may
    cancel its own timer (or all timers) while running.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task] = {}

    def __contains__(self, name: str) -> bool:
        return self.active(name)

    def active(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def schedule(self, name: str, delay: float, callback: TimerCallback) -> None:
        """Run ``callback`` once after ``delay`` seconds."""
        self.cancel(name)
        self._tasks[name] = asyncio.create_task(
            self._run_once(name, delay, callback), name=f"timer:{name}"
        )

    def every(self, name: str, interval: float, callback: TimerCallback) -> None:
        """Run ``callback`` every ``interval`` seconds until cancelled."""
        self.cancel(name)
        self._tasks[name] = asyncio.create_task(
            self._run_repeating(name, interval, callback), name=f"timer:{name}"
        )

    def cancel(self, name: str) -> bool:
        """Cancel a pending timer. Returns True if one was pending."""
        task = self._tasks.pop(name, None)
        if task is None or task.done():
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every pending timer. Returns how many were pending."""
        return sum(1 for name in list(self._tasks) if self.cancel(name))

    async def _run_once(self, name: str, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)
        if self._tasks.get(name) is asyncio.current_task():
            del self._tasks[name]
        await self._invoke(name, callback)

    async def _run_repeating(self, name: str, interval: float, callback: TimerCallback) -> None:
        current = asyncio.current_task()
        while self._tasks.get(name) is current:
            await asyncio.sleep(interval)
            if self._tasks.get(name) is not current:
                return
            await self._invoke(name, callback)

    async def _invoke(self, name: str, callback: TimerCallback) -> None:
        try:
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Timer callback failed: %s", name)
