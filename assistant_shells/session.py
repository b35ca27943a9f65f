from __future__ import annotations

import asyncio
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Type

from .backends.base import Backend
from .events import EventBus, EventType, get_event_bus
from .process_snapshot import ProcessRecord
from .record import SessionRecord
from .store import RuntimeStore
from .tool import Tool

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]

# ------------------------------------------------------------------
# Backend registry

_BACKENDS: Dict[str, Type[Backend]] = {}


def register_backend(name: str, backend_cls: Type[Backend]) -> None:
    _BACKENDS[name] = backend_cls


def registered_backends() -> List[str]:
    return sorted(_BACKENDS)


def setup() -> None:
    """Register the built-in backends. Safe to call repeatedly."""
    from .backends import BUILTIN_BACKENDS

    for name, backend_cls in BUILTIN_BACKENDS.items():
        _BACKENDS.setdefault(name, backend_cls)


def normalize_backend(value: Optional[str], default: str = "terminal") -> str:
    v = (value or "").strip().lower()
    if not v:
        return default
    if v in ("terminal", "term", "pty", "proc", "process"):
        return "terminal"
    if v in ("tmux",):
        return "tmux"
    if v in ("dtach",):
        return "dtach"
    return v


class BackendPool:
    """Backend instances shared by all sessions of one host."""

    def __init__(self, store: RuntimeStore) -> None:
        self.store = store
        self._instances: Dict[str, Backend] = {}

    def get(self, name: str) -> Backend:
        name = normalize_backend(name)
        if name not in self._instances:
            backend_cls = _BACKENDS.get(name)
            if backend_cls is None:
                raise KeyError(f"Unknown backend: {name}")
            self._instances[name] = backend_cls(self.store)
        return self._instances[name]

    def available(self) -> List[Backend]:
        return [self.get(name) for name in registered_backends() if _BACKENDS[name].available()]


# ------------------------------------------------------------------
# Session

_SUBMIT = object()


class Session:
    """A handle to one running tool process, hosted by a backend.

    `send` and `submit` only enqueue. A single writer task per session
    delivers the queue in order, once the process is spawned and, when the
    backend can tell, ready for input.
    """

    def __init__(
        self,
        tool: Tool,
        backend: Backend,
        *,
        cwd: Optional[str] = None,
        record: Optional[SessionRecord] = None,
        ready_timeout: float = 10.0,
        bus: Optional[EventBus] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.tool = tool
        self.backend = backend
        self.ready_timeout = ready_timeout
        self._bus = bus or get_event_bus()
        self._on_error = on_error
        self._reattach = record is not None

        if record is None:
            session_id = f"{tool.name}_{int(time.time())}_{uuid.uuid4().hex[:8]}"
            now = time.time()
            record = SessionRecord(
                id=session_id,
                tool=tool.name,
                backend=backend.name,
                command=list(tool.cmd),
                cwd=str(Path(os.path.expanduser(cwd or os.getcwd())).resolve()),
                pid=None,
                status="pending",
                created_at=now,
                updated_at=now,
                launcher_pid=os.getpid(),
            )
        self.record = record

        self.started = False
        self.ready = asyncio.Event()
        self._spawned = asyncio.Event()
        self._queue: "asyncio.Queue[Tuple[object, str]]" = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None
        self._start_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._subscribers: List[OutputCallback] = []
        self._ready_re = re.compile(tool.ready_pattern) if tool.ready_pattern else None
        self._tail = ""
        self._detached = False
        self._launched = False
        self._store_lock = asyncio.Lock()
        self._save_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<Session {self.id} tool={self.tool.name} backend={self.backend.name} status={self.status}>"

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def status(self) -> str:
        return self.record.status

    @property
    def cwd(self) -> str:
        return self.record.cwd

    @property
    def supports_readiness(self) -> bool:
        return self.backend.supports_readiness and self._ready_re is not None

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> None:
        """Spawn (or re-attach to) the process in the background."""
        if self.started or self._detached:
            return
        self.started = True
        self._start_task = asyncio.ensure_future(self._start())

    async def _start(self) -> None:
        try:
            if self._reattach:
                await self.backend.reattach(self)
            else:
                await self.backend.spawn(self)
        except Exception as exc:
            logger.exception("Failed to start %s session %s", self.tool.name, self.id)
            self.mark_exited(None)
            self._spawned.set()
            if self._on_error:
                self._on_error(f"Failed to start {self.tool.name}: {exc}")
            return

        if self._detached:
            # Closed while the spawn was in flight
            await self.backend.detach(self)
            self._spawned.set()
            return

        self._launched = True
        self.record.status = "running"
        self.record.updated_at = time.time()
        await self._save()
        if self._reattach:
            # An adopted process is past its start-up
            self.ready.set()
        self._spawned.set()
        self._bus.emit(EventType.SESSION_SPAWNED, self.id, tool=self.tool.name, pid=self.record.pid)

    def is_alive(self) -> bool:
        status = self.record.status
        if status == "exited":
            return False
        if self.started and not self._spawned.is_set():
            # Spawn or re-attach still in flight
            return True
        if status == "pending":
            return False
        if self.backend.is_alive(self):
            return True
        self.mark_exited(None)
        return False

    def is_proc(self, proc: ProcessRecord) -> bool:
        return self.tool.matches(proc)

    def mark_exited(self, exit_code: Optional[int]) -> None:
        if self.record.status == "exited":
            return
        was_running = self.record.status == "running"
        self.record.status = "exited"
        self.record.exit_code = exit_code
        self.record.updated_at = time.time()
        self._bus.emit(EventType.SESSION_EXITED, self.id, tool=self.tool.name, exit_code=exit_code)
        if was_running and not self._detached:
            # Exited on its own
            self._save_task = asyncio.ensure_future(self._save())
            self._save_task.add_done_callback(_log_failure)

    def detach(self, terminate: bool = True) -> None:
        """Stop delivering input and drop the process. Idempotent.

        With ``terminate=False`` a persistent backend only releases its
        connection and the process keeps running, to be discovered later.
        Sessions of non-persistent backends are always terminated.
        """
        if self._detached:
            return
        self._detached = True
        if self._writer and not self._writer.done():
            self._writer.cancel()
        terminate = terminate or not self.backend.persistent
        self.mark_exited(self.record.exit_code)
        # While the spawn is in flight `_start` tears down once it returns
        if self._launched:
            self._teardown_task = asyncio.ensure_future(self._teardown(terminate))
            self._teardown_task.add_done_callback(_log_failure)

    async def _teardown(self, terminate: bool) -> None:
        if not terminate:
            await self.backend.release(self)
            return
        await self.backend.detach(self)
        async with self._store_lock:
            await self.backend.store.remove(self.id)

    async def _save(self) -> None:
        async with self._store_lock:
            await self.backend.store.save(self.record)

    # ------------------------------------------------------------------
    # Input

    def send(self, text: str) -> bool:
        return self._enqueue(("text", text))

    def submit(self) -> bool:
        return self._enqueue((_SUBMIT, ""))

    def _enqueue(self, item: Tuple[object, str]) -> bool:
        if self._detached or not self.is_alive():
            logger.debug("Dropping input for %s session %s", self.status, self.id)
            return False
        self._queue.put_nowait(item)
        if self._writer is None or self._writer.done():
            self._writer = asyncio.ensure_future(self._write_loop())
        return True

    async def _write_loop(self) -> None:
        await self._spawned.wait()
        if self.supports_readiness and not self.ready.is_set():
            try:
                await asyncio.wait_for(self.ready.wait(), timeout=self.ready_timeout)
            except asyncio.TimeoutError:
                logger.debug("%s not ready after %.1fs, writing anyway", self.id, self.ready_timeout)

        while True:
            kind, data = await self._queue.get()
            try:
                if not self.is_alive():
                    continue
                if kind is _SUBMIT:
                    await self.backend.submit(self)
                else:
                    await self.backend.write(self, data)
            except (OSError, KeyError, RuntimeError) as exc:
                logger.warning("Write to %s failed: %s", self.id, exc)
                if not self.backend.is_alive(self):
                    self.mark_exited(None)
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until everything queued so far has been handed to the backend."""
        if self._writer is None or self._writer.done():
            return
        await self._queue.join()

    async def wait_spawned(self) -> bool:
        """Wait for `start` to finish; True when the process is running."""
        if not self.started:
            return False
        await self._spawned.wait()
        return self.record.status == "running"

    async def wait_closed(self) -> None:
        if self._teardown_task is not None:
            await asyncio.shield(self._teardown_task)

    # ------------------------------------------------------------------
    # Output

    def subscribe(self, callback: OutputCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: OutputCallback) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def feed_output(self, chunk: str) -> None:
        """Called by backends with decoded process output."""
        if self._ready_re is not None and not self.ready.is_set():
            self._tail = (self._tail + chunk)[-4096:]
            if self._ready_re.search(self._tail):
                self.ready.set()
                self._tail = ""
                self._bus.emit(EventType.SESSION_READY, self.id, tool=self.tool.name)
        for callback in list(self._subscribers):
            try:
                callback(chunk)
            except Exception:
                logger.exception("Output subscriber failed for %s", self.id)
        self._bus.emit(EventType.SESSION_OUTPUT, self.id, tool=self.tool.name, chunk=chunk)

    def attach_command(self) -> Optional[List[str]]:
        return self.backend.attach_command(self)

    def to_payload(self) -> Dict[str, object]:
        payload = self.record.to_payload()
        payload["alive"] = self.is_alive()
        payload["ready"] = self.ready.is_set()
        payload["attach_command"] = self.attach_command()
        return payload


def _log_failure(task: "asyncio.Future[object]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Session teardown failed", exc_info=exc)
