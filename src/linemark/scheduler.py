"""Debounced async task: run a coroutine after a quiet period, or right now."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger("linemark.scheduler")


class DebouncedTask:
    """Calls `action` once `delay` seconds pass without another trigger().

    trigger() outside a running event loop only marks the task dirty; the
    next flush() (e.g. at shutdown) still runs the action. Failures of a
    delayed run go to on_error; failures of flush() propagate to its caller.
    """

    def __init__(
        self,
        action: Callable[[], Awaitable[Any]],
        delay: float = 0.5,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self.action = action
        self.delay = delay
        self.on_error = on_error
        self._timer: asyncio.Task[None] | None = None
        self._running: asyncio.Task[Any] | None = None
        self._dirty = False

    @property
    def pending(self) -> bool:
        return self._dirty

    def trigger(self) -> None:
        """(Re)start the delay."""
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_timer()
        self._timer = loop.create_task(self._wait_then_run())

    async def flush(self) -> None:
        """Skip the delay: run now if anything is pending, and wait for completion."""
        self._cancel_timer()
        if self._running is not None and not self._running.done():
            with contextlib.suppress(Exception):
                await asyncio.shield(self._running)
        if self._dirty:
            await self._run()

    def cancel(self) -> None:
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _wait_then_run(self) -> None:
        await asyncio.sleep(self.delay)
        # From here on the run is no longer cancellable by a new trigger.
        self._timer = None
        try:
            await self._run()
        except Exception as exc:
            if self.on_error is not None:
                self.on_error(exc)
            else:
                logger.exception("debounced action failed")

    async def _run(self) -> None:
        self._dirty = False
        self._running = asyncio.ensure_future(self.action())
        try:
            await self._running
        except BaseException:
            self._dirty = True
            raise
        finally:
            self._running = None
