from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .events import EventBus, EventType, get_event_bus
from .session import Session
from .terminal import TerminalHandle
from .tool import Tool

logger = logging.getLogger(__name__)


class State:
    """One addressable instance: a tool, its session and an optional terminal."""

    def __init__(self, tool: Tool, session: Session, terminal: Optional[TerminalHandle] = None) -> None:
        self.tool = tool
        self.session = session
        self.terminal = terminal

    def __repr__(self) -> str:
        return f"<State {self.session.id} attached={self.attached} terminal={self.terminal is not None}>"

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def id(self) -> str:
        return self.session.id

    @property
    def attached(self) -> bool:
        return self.session.started and self.session.is_alive()

    def to_payload(self) -> Dict[str, Any]:
        payload = self.session.to_payload()
        payload["attached"] = self.attached
        payload["terminal"] = None
        if self.terminal is not None:
            payload["terminal"] = {"open": self.terminal.is_open(), "focused": self.terminal.is_focused()}
        return payload


@dataclass(frozen=True)
class Filter:
    """Conjunctive predicate over States; ``None`` fields match anything."""

    name: Optional[str] = None
    attached: Optional[bool] = None
    terminal: Optional[bool] = None
    cwd: Optional[str] = None
    session: Optional[str] = None

    def matches(self, state: State) -> bool:
        if self.name is not None and state.name != self.name:
            return False
        if self.session is not None and state.id != self.session:
            return False
        if self.cwd is not None and state.session.cwd != self.cwd:
            return False
        if self.terminal is not None and (state.terminal is not None) != self.terminal:
            return False
        if self.attached is not None and state.attached != self.attached:
            return False
        return True

    def merge(self, other: "FilterLike" = None, **fields: Any) -> "Filter":
        """New filter with the non-None fields of ``other`` and ``fields`` taking precedence."""
        updates = {k: v for k, v in dataclasses.asdict(Filter.coerce(other)).items() if v is not None}
        updates.update({k: v for k, v in fields.items() if v is not None})
        return dataclasses.replace(self, **updates)

    @classmethod
    def coerce(cls, value: "FilterLike") -> "Filter":
        if value is None:
            return cls()
        if isinstance(value, Filter):
            return value
        if isinstance(value, Mapping):
            known = {f.name for f in dataclasses.fields(cls)}
            unknown = set(value) - known
            if unknown:
                raise ValueError(f"Unknown filter fields: {', '.join(sorted(unknown))}")
            return cls(**dict(value))
        raise TypeError(f"Cannot build a Filter from {type(value).__name__}")

    def is_empty(self) -> bool:
        return all(v is None for v in dataclasses.astuple(self))


FilterLike = Union[Filter, Mapping[str, Any], None]


class StateRegistry:
    """Every live State, keyed by session id, in creation order.

    Mutations happen synchronously on the event loop thread, so no locking.
    """

    def __init__(self, *, bus: Optional[EventBus] = None, scrollback: int = 2000) -> None:
        self._states: Dict[str, State] = {}
        self._bus = bus or get_event_bus()
        self.scrollback = scrollback

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[State]:
        return iter(list(self._states.values()))

    def __contains__(self, state: object) -> bool:
        return isinstance(state, State) and self._states.get(state.id) is state

    def by_id(self, session_id: str) -> Optional[State]:
        return self._states.get(session_id)

    def get(self, filter: FilterLike = None) -> List[State]:
        flt = Filter.coerce(filter)
        return [state for state in list(self._states.values()) if flt.matches(state)]

    def get_state(self, session: Session) -> State:
        state = self._states.get(session.id)
        if state is None:
            state = State(session.tool, session)
            self._states[session.id] = state
            self._bus.emit(EventType.STATE_CREATED, session.id, tool=session.tool.name)
        return state

    def attach(self, state: State, *, show: bool = False, focus: Optional[bool] = None) -> State:
        """Start the session if needed and give the State a terminal."""
        if state.id not in self._states:
            self._states[state.id] = state
        if not state.session.started:
            state.session.start()
            self._bus.emit(EventType.STATE_ATTACHED, state.id, tool=state.name)
        terminal = self.ensure_terminal(state)
        if show:
            terminal.show()
        if focus:
            terminal.focus()
        return state

    def ensure_terminal(self, state: State) -> TerminalHandle:
        if state.terminal is None:
            state.terminal = TerminalHandle(state.session, bus=self._bus, scrollback=self.scrollback)
        return state.terminal

    def detach(self, state: State, *, terminate: bool = True) -> None:
        if self._states.get(state.id) is not state:
            return
        del self._states[state.id]
        state.session.detach(terminate=terminate)
        if state.terminal is not None:
            state.terminal.close()
        self._bus.emit(EventType.STATE_DETACHED, state.id, tool=state.name)
        logger.info("Detached %s", state.id)

    def clear(self) -> None:
        for state in list(self._states.values()):
            self.detach(state)
