"""Assistant Shells - drive terminal AI assistants from an editing host."""

from .commands import (
    Candidate,
    CloseOptions,
    Commands,
    HideOptions,
    NewOptions,
    PromptOptions,
    SelectOptions,
    SendOptions,
    ShowOptions,
)
from .config import Config, load_config
from .dispatch import Dispatcher, WithOptions
from .events import EventBus, EventType, SessionEvent, get_event_bus
from .hooks import EditorHooks
from .record import SessionRecord
from .render import TemplateRenderer
from .scheduler import Scheduler
from .session import BackendPool, Session, normalize_backend, register_backend, setup
from .state import Filter, State, StateRegistry
from .store import RuntimeStore
from .terminal import TerminalHandle
from .tool import Tool
from .toolspec import ToolRegistry

from typing import Any, Dict, Optional

# Singleton command surface
_cli_instance: Optional[Commands] = None
_cli_kwargs: Optional[Dict[str, Any]] = None


def get_cli(**kwargs: Any) -> Commands:
    """Get or create the process-wide Commands instance.

    Without an explicit ``config`` the configuration is loaded from disk. If
    kwargs are provided after the instance is created, they must match the
    original creation kwargs.
    """
    global _cli_instance
    global _cli_kwargs
    if _cli_instance is not None:
        if kwargs and _cli_kwargs is not None and kwargs != _cli_kwargs:
            raise ValueError("Commands singleton already created with different configuration")
        return _cli_instance

    _cli_kwargs = dict(kwargs)
    if "config" not in kwargs:
        kwargs["config"] = load_config()
    _cli_instance = Commands(**kwargs)
    return _cli_instance


def reset_cli() -> None:
    """Detach every State and drop the singleton."""
    global _cli_instance
    global _cli_kwargs
    if _cli_instance is not None:
        _cli_instance.registry.clear()
    _cli_instance = None
    _cli_kwargs = None


__all__ = [
    "BackendPool",
    "Candidate",
    "CloseOptions",
    "Commands",
    "Config",
    "Dispatcher",
    "EditorHooks",
    "EventBus",
    "EventType",
    "Filter",
    "HideOptions",
    "NewOptions",
    "PromptOptions",
    "RuntimeStore",
    "Scheduler",
    "SelectOptions",
    "SendOptions",
    "Session",
    "SessionEvent",
    "SessionRecord",
    "ShowOptions",
    "State",
    "StateRegistry",
    "TemplateRenderer",
    "TerminalHandle",
    "Tool",
    "ToolRegistry",
    "WithOptions",
    "get_cli",
    "get_event_bus",
    "load_config",
    "normalize_backend",
    "register_backend",
    "reset_cli",
    "setup",
]
