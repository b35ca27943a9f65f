from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .state import Filter, State, StateRegistry

logger = logging.getLogger(__name__)

# action(state, attached) where ``attached`` is True when this very call
# attached the State.
Action = Callable[[State, bool], Any]
NoMatchHandler = Callable[["WithOptions", Callable[[State], Any]], Any]
Notify = Callable[[str, str], Any]


@dataclass(frozen=True)
class WithOptions:
    filter: Filter = field(default_factory=Filter)
    all: bool = False
    attach: bool = False
    show: bool = False
    focus: Optional[bool] = None


class Dispatcher:
    """Resolve States through a Filter and run an action against them."""

    def __init__(
        self,
        registry: StateRegistry,
        *,
        notify: Optional[Notify] = None,
        on_no_match: Optional[NoMatchHandler] = None,
    ) -> None:
        self.registry = registry
        self._notify = notify
        self.on_no_match = on_no_match

    def with_(self, action: Action, opts: Optional[WithOptions] = None) -> Any:
        opts = opts or WithOptions()
        states = self.registry.get(opts.filter)

        if not states:
            if opts.attach and self.on_no_match is not None:
                self.on_no_match(opts, lambda state: self._apply(action, state, opts))
            return [] if opts.all else None

        if not opts.all:
            return self._apply(action, states[0], opts)

        results: List[Any] = []
        for state in states:
            results.append(self._apply(action, state, opts))
        return results

    def _apply(self, action: Action, state: State, opts: WithOptions) -> Any:
        try:
            attached = False
            if opts.attach and not state.attached:
                self.registry.attach(state, show=True)
                attached = True
            if opts.show:
                self.registry.ensure_terminal(state).show()
            result = action(state, attached)
            if opts.focus is True and state.terminal is not None:
                state.terminal.focus()
            return result
        except Exception as exc:
            # One failing State must not stop the others
            logger.exception("Action failed for %s", state.id)
            if self._notify is not None:
                self._notify("error", f"{state.name}: {exc}")
            return None
