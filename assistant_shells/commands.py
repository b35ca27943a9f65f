"""Public command surface.

Every command accepts a bare string shorthand, a mapping, or its options
dataclass; `_filter_opts` turns any of those into the dataclass before the
command runs. Commands resolve their target States through the dispatcher
and never raise into the host: failures become notices.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple, Type, TypeVar

from .config import Config
from .dispatch import Dispatcher, WithOptions
from .events import EventBus, get_event_bus
from .hooks import EditorHooks, run_hook, start_hook
from .record import SessionRecord
from .render import TemplateRenderer, Text
from .scheduler import Scheduler
from .session import BackendPool, Session, setup
from .state import Filter, State, StateRegistry
from .store import RuntimeStore
from .tool import Tool
from .toolspec import ToolRegistry

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


# ------------------------------------------------------------------
# Options


@dataclass
class NewOptions:
    name: Optional[str] = None
    focus: Optional[bool] = None
    backend: Optional[str] = None
    cwd: Optional[str] = None


@dataclass
class ShowOptions:
    name: Optional[str] = None
    filter: Filter = field(default_factory=Filter)
    all: bool = False
    focus: Optional[bool] = None

    def __post_init__(self) -> None:
        self.filter = Filter.coerce(self.filter).merge(name=self.name)


@dataclass
class HideOptions:
    name: Optional[str] = None
    filter: Filter = field(default_factory=Filter)
    all: bool = False

    def __post_init__(self) -> None:
        self.filter = Filter.coerce(self.filter).merge(name=self.name)


@dataclass
class CloseOptions(HideOptions):
    # False leaves tmux/dtach processes running for later discovery
    terminate: bool = True


@dataclass
class SendOptions(ShowOptions):
    msg: Optional[str] = None
    prompt: Optional[str] = None
    text: Optional[Text] = None
    submit: bool = False


@dataclass
class PromptOptions:
    name: Optional[str] = None
    focus: Optional[bool] = None
    # cb(msg, text) with the rendered prompt, or (None, None) when cancelled
    cb: Optional[Callable[[Optional[str], Optional[Text]], Any]] = None


@dataclass
class SelectOptions:
    name: Optional[str] = None
    filter: Filter = field(default_factory=Filter)
    focus: Optional[bool] = None
    cb: Optional[Callable[[Optional[State]], Any]] = None

    def __post_init__(self) -> None:
        self.filter = Filter.coerce(self.filter).merge(name=self.name)


O = TypeVar("O")


def _filter_opts(opts: Any, cls: Type[O], shorthand: str = "name") -> O:
    """Normalise a string, mapping, callback or options instance into ``cls``."""
    names = {f.name for f in dataclasses.fields(cls)}
    if opts is None:
        values: Dict[str, Any] = {}
    elif isinstance(opts, str):
        values = {shorthand: opts}
    elif isinstance(opts, cls):
        values = {name: getattr(opts, name) for name in names}
    elif isinstance(opts, Mapping):
        values = dict(opts)
        unknown = set(values) - names
        if unknown:
            raise ValueError(f"Unknown {cls.__name__} fields: {', '.join(sorted(unknown))}")
    elif callable(opts) and "cb" in names:
        values = {"cb": opts}
    else:
        raise TypeError(f"Cannot build {cls.__name__} from {type(opts).__name__}")

    return cls(**values)


# ------------------------------------------------------------------
# Select candidates


@dataclass(frozen=True)
class Candidate:
    """One entry offered by the session picker."""

    kind: str  # "state" | "session" | "tool"
    tool: Tool
    state: Optional[State] = None
    record: Optional[SessionRecord] = None

    @property
    def label(self) -> str:
        if self.state is not None:
            mark = "attached" if self.state.attached else "detached"
            return f"{self.tool.name} [{self.state.session.backend.name}, {mark}] {self.state.session.cwd}"
        if self.record is not None:
            return f"{self.tool.name} [{self.record.backend}] {self.record.cwd}"
        return f"{self.tool.name} (new)"


# ------------------------------------------------------------------
# Deprecations

_deprecation_shown: Set[str] = set()


class Commands:
    def __init__(
        self,
        *,
        config: Optional[Config] = None,
        tools: Optional[ToolRegistry] = None,
        hooks: Optional[EditorHooks] = None,
        registry: Optional[StateRegistry] = None,
        store: Optional[RuntimeStore] = None,
        renderer: Optional[TemplateRenderer] = None,
        scheduler: Optional[Scheduler] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config or Config()
        self.tools = tools or ToolRegistry.from_config(self.config.tools, tools_file=self.config.tools_file)
        self.hooks = hooks or EditorHooks()
        self.bus = bus or get_event_bus()
        self.registry = registry or StateRegistry(bus=self.bus, scrollback=self.config.scrollback)
        self.store = store or RuntimeStore()
        self.backends = BackendPool(self.store)
        self.renderer = renderer or TemplateRenderer(self.config.prompts, context=self.hooks.context)
        self.scheduler = scheduler or Scheduler()
        self.dispatcher = Dispatcher(self.registry, notify=self.notify, on_no_match=self._select_for)

    # ------------------------------------------------------------------
    # Host helpers

    def notify(self, level: str, msg: str) -> None:
        logger.log(_LOG_LEVELS.get(level, logging.INFO), msg)
        run_hook(self.hooks.notify, level, msg)

    def _deprecate(self, old: str, new: str) -> None:
        if old in _deprecation_shown:
            return
        _deprecation_shown.add(old)
        message = f"{old}() is deprecated, use {new}() instead"
        warnings.warn(message, DeprecationWarning, stacklevel=3)
        self.notify("warn", message)

    def _on_missing(self, tool: Tool) -> None:
        if self.hooks.on_missing_tool is not None:
            run_hook(self.hooks.on_missing_tool, tool)
            return
        hint = f" See {tool.url}" if tool.url else ""
        self.notify("warn", f"{tool.name} is not installed ({tool.executable} not found on PATH).{hint}")

    def _session_for(self, tool: Tool, backend_name: Optional[str], *, cwd: Optional[str] = None,
                     record: Optional[SessionRecord] = None) -> Session:
        setup()
        backend = self.backends.get(backend_name or self.config.backend)
        if not backend.available():
            raise RuntimeError(f"Backend not available: {backend.name}")
        return Session(
            tool,
            backend,
            cwd=cwd,
            record=record,
            ready_timeout=self.config.ready_timeout,
            bus=self.bus,
            on_error=lambda msg: self.notify("error", msg),
        )

    # ------------------------------------------------------------------
    # Commands

    def new(self, opts: Any = None) -> Optional[State]:
        """Start a new session of a tool, without looking for existing ones."""
        opts = _filter_opts(opts, NewOptions)
        name = opts.name or self.config.default_tool
        tool = self.tools.get_tool(name)
        if tool is None:
            self.notify("error", f"Unknown tool: {name}")
            return None
        if not tool.is_installed():
            self._on_missing(tool)
            return None
        try:
            session = self._session_for(tool, opts.backend, cwd=opts.cwd)
        except (KeyError, RuntimeError) as exc:
            self.notify("error", str(exc).strip("'\""))
            return None
        state = self.registry.get_state(session)
        self.registry.attach(state, show=True, focus=opts.focus)
        logger.info("Started %s session %s on %s", tool.name, session.id, session.backend.name)
        return state

    def show(self, opts: Any = None) -> Any:
        opts = _filter_opts(opts, ShowOptions)
        return self.dispatcher.with_(
            lambda state, attached: None,
            WithOptions(filter=opts.filter, all=opts.all, attach=True, show=True, focus=opts.focus),
        )

    def toggle(self, opts: Any = None) -> Any:
        opts = _filter_opts(opts, ShowOptions)

        def action(state: State, attached: bool) -> None:
            if state.terminal is None:
                return
            # A State attached by this call is already shown
            if not attached:
                state.terminal.toggle()
            if state.terminal.is_open() and opts.focus is not False:
                state.terminal.focus()

        return self.dispatcher.with_(action, WithOptions(filter=opts.filter, attach=True))

    def focus(self, opts: Any = None) -> Any:
        """Flip focus of the terminal, showing it first if needed."""
        opts = _filter_opts(opts, ShowOptions)

        def action(state: State, attached: bool) -> None:
            if state.terminal is None:
                return
            if state.terminal.is_focused():
                state.terminal.blur()
            else:
                state.terminal.focus()

        return self.dispatcher.with_(
            action, WithOptions(filter=opts.filter, attach=True, show=True, focus=False)
        )

    def hide(self, opts: Any = None) -> Any:
        opts = _filter_opts(opts, HideOptions)
        return self.dispatcher.with_(
            lambda state, attached: state.terminal.hide() if state.terminal else None,
            WithOptions(filter=opts.filter.merge(terminal=True), all=opts.all),
        )

    def close(self, opts: Any = None) -> Any:
        opts = _filter_opts(opts, CloseOptions)
        return self.dispatcher.with_(
            lambda state, attached: self.registry.detach(state, terminate=opts.terminate),
            WithOptions(filter=opts.filter, all=opts.all),
        )

    def render(self, opts: Any = None) -> Tuple[str, Optional[Text]]:
        opts = _filter_opts(opts, SendOptions, shorthand="msg")
        return self.renderer.render(opts.msg, opts.prompt)

    def send(self, opts: Any = None) -> Any:
        """Render a message or prompt and deliver it to a session."""
        opts = _filter_opts(opts, SendOptions, shorthand="msg")

        msg = opts.msg
        if msg is None and opts.prompt is None and opts.text is None:
            if run_hook(self.hooks.in_visual_mode, default=False):
                msg = "{selection}"

        text = opts.text
        if text is None:
            rendered, text = self.renderer.render(msg, opts.prompt)
            if rendered == "" or text is None:
                self.notify("warn", "Nothing to send.")
                return None
            if rendered == "\n":
                # An explicit empty line
                text = []

        payload_text: Text = text

        def action(state: State, attached: bool) -> None:
            leaving_visual = start_hook(self.hooks.exit_visual_mode)

            def deliver() -> None:
                if state not in self.registry or not state.session.is_alive():
                    logger.debug("Skipping delivery to %s: no longer attached", state.id)
                    return
                payload = state.tool.format(payload_text)
                state.session.send(payload + "\n")
                if opts.submit:
                    state.session.submit()

            if leaving_visual is None:
                self.scheduler.schedule(deliver)
            else:
                # The host may finish leaving visual mode asynchronously
                leaving_visual.add_done_callback(lambda _: self.scheduler.schedule(deliver))

        return self.dispatcher.with_(
            action, WithOptions(filter=opts.filter, attach=True, show=True, focus=opts.focus)
        )

    def my_send(self, opts: Any = None) -> Any:
        """Send to an attached session, starting one first if there is none."""
        opts = _filter_opts(opts, SendOptions, shorthand="msg")
        if self.registry.get(opts.filter.merge(attached=True)):
            return self.send(opts)

        state = self.new(NewOptions(name=opts.filter.name or self.config.default_tool, focus=opts.focus))
        if state is None:
            return None
        pinned = dataclasses.replace(opts, filter=opts.filter.merge(session=state.id))
        self.scheduler.when_ready(
            state.session, self._if_attached(state, lambda: self.send(pinned)), self.config.send_delay
        )
        return state

    def prompt(self, opts: Any = None) -> None:
        """Pick a configured prompt through the host and hand it to ``opts.cb``."""
        opts = _filter_opts(opts, PromptOptions)
        name = opts.name

        def default_cb(msg: Optional[str], text: Optional[Text]) -> None:
            if text is not None:
                self.send(SendOptions(name=name, text=text))

        cb = opts.cb or default_cb
        if self.hooks.select_prompt is None:
            self.notify("warn", "No prompt picker configured.")
            return None

        def on_choice(choice: Optional[str]) -> None:
            try:
                if not choice:
                    cb(None, None)
                    return
                msg, text = self.renderer.render(prompt=choice)
                cb(msg, text)
            except Exception as exc:
                logger.exception("Prompt callback failed")
                self.notify("error", f"Prompt failed: {exc}")

        run_hook(self.hooks.select_prompt, sorted(self.renderer.prompts), on_choice)
        return None

    def my_prompt(self, opts: Any = None) -> Any:
        opts = _filter_opts(opts, PromptOptions)
        existing = self.registry.get(Filter(name=opts.name, attached=True))
        if existing:
            return self.prompt(self._prompt_to(existing[0], opts))

        state = self.new(NewOptions(name=opts.name or self.config.default_tool, focus=opts.focus))
        if state is None:
            return None
        self.scheduler.when_ready(
            state.session,
            self._if_attached(state, lambda: self.prompt(self._prompt_to(state, opts))),
            self.config.prompt_delay,
        )
        return state

    def _prompt_to(self, state: State, opts: PromptOptions) -> PromptOptions:
        """Options whose default callback sends the picked prompt to ``state`` only."""
        if opts.cb is not None:
            return opts

        def cb(msg: Optional[str], text: Optional[Text]) -> None:
            if text is not None:
                self.send(SendOptions(filter=Filter(session=state.id), text=text))

        return dataclasses.replace(opts, cb=cb)

    def _if_attached(self, state: State, fn: Callable[[], Any]) -> Callable[[], None]:
        def run() -> None:
            # Closed or exited while waiting
            if state not in self.registry or not state.attached:
                logger.debug("Skipping deferred call for %s: no longer attached", state.id)
                return
            fn()

        return run

    # ------------------------------------------------------------------
    # Select

    def _tools_for(self, flt: Filter) -> List[Tool]:
        if flt.name:
            tool = self.tools.get_tool(flt.name)
            return [tool] if tool else []
        return list(self.tools)

    async def discover(self, filter: Any = None) -> List[SessionRecord]:
        """Sessions left running by persistent backends and not in the registry."""
        flt = Filter.coerce(filter)
        setup()
        tools = self._tools_for(flt)
        out: List[SessionRecord] = []
        for backend in self.backends.available():
            if not backend.persistent:
                continue
            try:
                records = await backend.discover(tools)
            except Exception:
                logger.exception("Discovery failed for %s", backend.name)
                continue
            for record in records:
                if self.registry.by_id(record.id) is not None:
                    continue
                if flt.cwd is not None and record.cwd != flt.cwd:
                    continue
                if flt.session is not None and record.id != flt.session:
                    continue
                out.append(record)
        return out

    async def candidates(self, filter: Any = None) -> List[Candidate]:
        flt = Filter.coerce(filter)
        out = [Candidate("state", state.tool, state=state) for state in self.registry.get(flt)]
        # Discovered sessions and fresh tools are neither attached nor shown
        if flt.attached or flt.terminal:
            return out

        running = {c.tool.name for c in out}
        for record in await self.discover(flt):
            tool = self.tools.get_tool(record.tool)
            if tool is None:
                continue
            out.append(Candidate("session", tool, record=record))
            running.add(tool.name)

        if flt.session is None:
            for tool in self._tools_for(flt):
                if tool.name not in running and tool.is_installed():
                    out.append(Candidate("tool", tool))
        return out

    def resolve(self, candidate: Candidate) -> Optional[State]:
        """State for a picked candidate; not attached yet unless it already was."""
        if candidate.state is not None:
            return candidate.state
        if candidate.record is not None:
            session = self._session_for(candidate.tool, candidate.record.backend, record=candidate.record)
            return self.registry.get_state(session)
        session = self._session_for(candidate.tool, None)
        return self.registry.get_state(session)

    def select(self, opts: Any = None) -> Optional["asyncio.Future[None]"]:
        """Pick a session or tool through the host and hand the State to ``opts.cb``."""
        opts = _filter_opts(opts, SelectOptions)
        if self.hooks.select_session is None:
            self.notify("warn", "No session picker configured.")
            return None
        focus = opts.focus

        def default_cb(state: Optional[State]) -> None:
            if state is not None:
                self.registry.attach(state, show=True, focus=focus)

        return self._select(opts.filter, opts.cb or default_cb)

    def _select_for(self, opts: WithOptions, apply: Callable[[State], Any]) -> None:
        # Nothing matched a dispatch that wanted to attach
        if self.hooks.select_session is None:
            return
        self._select(opts.filter, lambda state: apply(state) if state is not None else None)

    def _select(self, flt: Filter, cb: Callable[[Optional[State]], Any]) -> "asyncio.Future[None]":
        async def run() -> None:
            candidates = await self.candidates(flt)

            def on_choice(choice: Optional[Candidate]) -> None:
                try:
                    cb(self.resolve(choice) if choice is not None else None)
                except Exception as exc:
                    logger.exception("Select callback failed")
                    self.notify("error", f"Select failed: {exc}")

            run_hook(self.hooks.select_session, candidates, on_choice)

        task = asyncio.ensure_future(run())
        task.add_done_callback(_log_select_failure)
        return task

    # ------------------------------------------------------------------
    # Deprecated aliases

    def select_prompt(self, *args: Any, **kwargs: Any) -> Any:
        self._deprecate("select_prompt", "prompt")
        return self.prompt(*args, **kwargs)

    def select_tool(self, *args: Any, **kwargs: Any) -> Any:
        self._deprecate("select_tool", "select")
        return self.select(*args, **kwargs)

    def ask(self, *args: Any, **kwargs: Any) -> Any:
        self._deprecate("ask", "send")
        return self.send(*args, **kwargs)


def _log_select_failure(task: "asyncio.Future[None]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Session picker failed", exc_info=exc)
