"""Cancellable one-shot and repeating timers on the running event loop."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[None, Awaitable[Any]]]
ErrorHook = Callable[[BaseException, str], Any]


async def _invoke(callback: Callback) -> None:
    result = callback()
    if inspect.isawaitable(result):
        await result


class OneShotTimer:
    """Fires ``callback`` once after a delay. Re-arming cancels the pending shot."""

    def __init__(self, name: str, *, on_error: Optional[ErrorHook] = None) -> None:
        self.name = name
        self._on_error = on_error
        self._task: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, delay: float, callback: Callback) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._fire(max(0.0, delay), callback))

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _fire(self, delay: float, callback: Callback) -> None:
        try:
            await asyncio.sleep(delay)
            await _invoke(callback)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Timer %s failed: %s", self.name, exc)
            if self._on_error:
                self._on_error(exc, self.name)


class RepeatingTimer:
    """Runs ``callback`` every ``period`` seconds until cancelled.

    The next period starts after the previous callback finished, so runs
    never overlap. Exceptions are logged and the timer keeps going.
    """

    def __init__(self, name: str, period: float, *, on_error: Optional[ErrorHook] = None) -> None:
        self.name = name
        self.period = period
        self._on_error = on_error
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, callback: Callback) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._loop(callback))

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _loop(self, callback: Callback) -> None:
        me = asyncio.current_task()
        while self._task is me:
            await asyncio.sleep(self.period)
            if self._task is not me:
                break
            try:
                await _invoke(callback)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Error in %s loop: %s", self.name, exc)
                if self._on_error:
                    self._on_error(exc, self.name)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


__all__ = ["OneShotTimer", "RepeatingTimer"]
