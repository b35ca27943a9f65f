from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Set

from .session import Session

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


class Scheduler:
    """Deferred callbacks on the host event loop.

    Scheduled callbacks cannot be cancelled; a callback whose target went
    away is expected to notice and do nothing. Exceptions are logged.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: Set["asyncio.Task[None]"] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def _guard(self, fn: Callback) -> Callback:
        def run() -> None:
            try:
                fn()
            except Exception:
                logger.exception("Scheduled callback failed")

        return run

    def schedule(self, fn: Callback) -> None:
        """Run ``fn`` on the next loop iteration."""
        self.loop.call_soon(self._guard(fn))

    def defer(self, fn: Callback, delay: float) -> None:
        self.loop.call_later(max(0.0, delay), self._guard(fn))

    def when_ready(self, session: Session, fn: Callback, timeout: float) -> None:
        """Run ``fn`` once ``session`` is ready, or after ``timeout`` seconds.

        Backends without a readiness signal only get the timer.
        """
        if not session.supports_readiness:
            self.defer(fn, timeout)
            return
        if session.ready.is_set():
            self.schedule(fn)
            return

        guarded = self._guard(fn)

        async def wait() -> None:
            try:
                await asyncio.wait_for(session.ready.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.debug("%s not ready after %.1fs", session.id, timeout)
            guarded()

        task = self.loop.create_task(wait())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
