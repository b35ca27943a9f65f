from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set
from asyncio import Queue as AsyncQueue
import asyncio
import time

class EventType(Enum):
    STATE_CREATED = "state.created"
    STATE_ATTACHED = "state.attached"
    STATE_DETACHED = "state.detached"
    SESSION_SPAWNED = "session.spawned"
    SESSION_READY = "session.ready"
    SESSION_EXITED = "session.exited"
    SESSION_OUTPUT = "session.output"
    TERMINAL_SHOWN = "terminal.shown"
    TERMINAL_HIDDEN = "terminal.hidden"
    TERMINAL_FOCUSED = "terminal.focused"
    TERMINAL_BLURRED = "terminal.blurred"

@dataclass
class SessionEvent:
    type: EventType
    session_id: str
    tool: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "session_id": self.session_id,
            "tool": self.tool,
            "timestamp": self.timestamp,
            "data": self.data,
        }

class EventBus:
    """In-process event bus with subscription support.

    The bus is local to the host process; subscribers are the host UI (terminal
    widgets) and the websocket endpoint.
    """

    def __init__(self):
        self._subscribers: Set[AsyncQueue[SessionEvent]] = set()

    def subscribe(self) -> AsyncQueue[SessionEvent]:
        q: AsyncQueue[SessionEvent] = AsyncQueue()
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: AsyncQueue[SessionEvent]) -> None:
        self._subscribers.discard(q)

    async def publish(self, event: SessionEvent) -> None:
        for q in list(self._subscribers):
            try:
                await q.put(event)
            except RuntimeError:
                self._subscribers.discard(q)

    def publish_nowait(self, event: SessionEvent) -> None:
        """Publish from synchronous code (queues are unbounded)."""
        for q in list(self._subscribers):
            try:
                q.put_nowait(event)
            except (asyncio.QueueFull, RuntimeError):
                self._subscribers.discard(q)

    def emit(self, event_type: EventType, session_id: str, *, tool: Optional[str] = None, **data: Any) -> None:
        self.publish_nowait(SessionEvent(type=event_type, session_id=session_id, tool=tool, data=data))

# Singleton
_bus: Optional[EventBus] = None

def get_event_bus() -> EventBus:
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus
