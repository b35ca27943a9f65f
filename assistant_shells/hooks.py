from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, List, Mapping, Optional

if TYPE_CHECKING:
    from .tool import Tool

logger = logging.getLogger(__name__)

MaybeAwaitable = Any


@dataclass(frozen=True)
class EditorHooks:
    """Optional callbacks connecting the orchestration layer to its host.

    The host is the editing environment: it owns notifications, the visual
    selection, pickers and the template context. Callbacks may be sync or
    async, except the query hooks (`in_visual_mode`, `context`) which must
    return synchronously. Failures are logged and never propagate.
    """

    # User-facing notice; level is "info" | "warn" | "error".
    notify: Optional[Callable[[str, str], MaybeAwaitable]] = None

    # A tool's executable is not on PATH (offer to open `tool.url`, ...).
    on_missing_tool: Optional[Callable[["Tool"], MaybeAwaitable]] = None

    in_visual_mode: Optional[Callable[[], bool]] = None
    # Pending messages are delivered once this returns or its awaitable finishes.
    exit_visual_mode: Optional[Callable[[], MaybeAwaitable]] = None

    # Values for `{placeholder}` expansion when rendering messages.
    context: Optional[Callable[[], Mapping[str, Any]]] = None

    # Pickers: called with the choices and a callback taking the choice or None.
    select_prompt: Optional[Callable[[List[str], Callable[[Optional[str]], Any]], MaybeAwaitable]] = None
    select_session: Optional[Callable[[List[Any], Callable[[Optional[Any]], Any]], MaybeAwaitable]] = None


def _log_task_failure(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Async hook failed", exc_info=exc)


def _hook_task(result: Any) -> "asyncio.Future[Any]":
    task = asyncio.ensure_future(result)
    task.add_done_callback(_log_task_failure)
    return task


def fire_hook(result: Any) -> Any:
    """Schedule an awaitable hook result; plain values are returned as-is."""
    if result is None or not inspect.isawaitable(result):
        return result
    _hook_task(result)
    return None


def run_hook(hook: Optional[Callable[..., Any]], *args: Any, default: Any = None) -> Any:
    if hook is None:
        return default
    try:
        return fire_hook(hook(*args))
    except Exception:
        logger.exception("Hook %s failed", getattr(hook, "__name__", hook))
        return default


def start_hook(hook: Optional[Callable[..., Any]], *args: Any) -> Optional["asyncio.Future[Any]"]:
    """Call an action hook; when it is async, return the task running it."""
    if hook is None:
        return None
    try:
        result = hook(*args)
    except Exception:
        logger.exception("Hook %s failed", getattr(hook, "__name__", hook))
        return None
    if result is None or not inspect.isawaitable(result):
        return None
    return _hook_task(result)
