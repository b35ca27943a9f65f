from __future__ import annotations

import asyncio
import collections
import logging
from typing import TYPE_CHECKING, Deque, List, Optional

from .events import EventBus, EventType, get_event_bus

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)


class TerminalHandle:
    """Visibility and focus state of the UI surface showing one session.

    Drawing is left to the host, which follows the terminal events published
    on the bus. The handle keeps a bounded scrollback of the session output
    so a widget opened late can catch up.
    """

    def __init__(self, session: "Session", *, bus: Optional[EventBus] = None, scrollback: int = 2000) -> None:
        self.session = session
        self._bus = bus or get_event_bus()
        self._open = False
        self._focused = False
        self._closed = False
        self.scrollback: Deque[str] = collections.deque(maxlen=max(1, scrollback))
        session.subscribe(self._on_output)

    def __repr__(self) -> str:
        return f"<TerminalHandle {self.session.id} open={self._open} focused={self._focused}>"

    def _on_output(self, chunk: str) -> None:
        self.scrollback.append(chunk)

    def _emit(self, event_type: EventType) -> None:
        self._bus.emit(event_type, self.session.id, tool=self.session.tool.name)

    def is_open(self) -> bool:
        return self._open

    def is_focused(self) -> bool:
        return self._open and self._focused

    def show(self) -> None:
        if self._open or self._closed:
            return
        self._open = True
        self._emit(EventType.TERMINAL_SHOWN)

    def hide(self) -> None:
        if not self._open:
            return
        self.blur()
        self._open = False
        self._emit(EventType.TERMINAL_HIDDEN)

    def toggle(self) -> None:
        if self._open:
            self.hide()
        else:
            self.show()

    def focus(self) -> None:
        self.show()
        if not self._open or self._focused:
            return
        self._focused = True
        self._emit(EventType.TERMINAL_FOCUSED)

    def blur(self) -> None:
        if not self._focused:
            return
        self._focused = False
        self._emit(EventType.TERMINAL_BLURRED)

    def output(self) -> str:
        return "".join(self.scrollback)

    def lines(self, limit: Optional[int] = None) -> List[str]:
        lines = self.output().splitlines()
        return lines[-limit:] if limit else lines

    def resize(self, cols: int, rows: int) -> None:
        if self._closed:
            return
        task = asyncio.ensure_future(self.session.backend.resize(self.session, cols, rows))
        task.add_done_callback(_log_resize_failure)

    def close(self) -> None:
        """Hide and release the handle; it cannot be shown again."""
        if self._closed:
            return
        self.hide()
        self._closed = True
        self.session.unsubscribe(self._on_output)


def _log_resize_failure(task: "asyncio.Future[None]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Terminal resize failed: %s", exc)
