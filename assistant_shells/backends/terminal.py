from __future__ import annotations

import asyncio
import codecs
import logging
import os
import pty
import select
import signal
from typing import TYPE_CHECKING, Dict, Optional

import aiofiles

from ..process_snapshot import is_pid_alive
from ..pty import PTYState, make_raw, set_winsize
from .base import Backend, wait_process

if TYPE_CHECKING:
    from ..session import Session

logger = logging.getLogger(__name__)


class TerminalBackend(Backend):
    """Tool process spawned directly on a pseudo-terminal owned by the host."""

    name = "terminal"
    supports_readiness = True

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._pty: Dict[str, PTYState] = {}

    async def spawn(self, session: "Session") -> None:
        record = session.record
        master_fd, slave_fd = await asyncio.to_thread(pty.openpty)
        envp = session.tool.build_env()
        envp.setdefault("TERM", "xterm-256color")
        make_raw(slave_fd)

        try:
            proc = await asyncio.create_subprocess_exec(
                *record.command,
                cwd=record.cwd,
                env=envp,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
            )
        except OSError:
            await asyncio.to_thread(os.close, master_fd)
            raise
        finally:
            await asyncio.to_thread(os.close, slave_fd)

        record.pid = proc.pid
        record.stdout_log = str(self.store.log_path(session.id))
        state = PTYState(master_fd=master_fd, session_id=session.id, process=proc)
        state.reader = asyncio.create_task(self._pty_reader(session, state))
        self._pty[session.id] = state

    async def _pty_reader(self, session: "Session", state: PTYState) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        loop = asyncio.get_running_loop()
        log_path = self.store.log_path(session.id)
        async with aiofiles.open(log_path, "ab") as log_fh:
            while not state.closed:
                try:
                    rlist, _, _ = await asyncio.wait_for(
                        loop.run_in_executor(None, select.select, [state.master_fd], [], [], 0.5),
                        timeout=0.6,
                    )
                    if not rlist:
                        continue
                    data = await asyncio.to_thread(os.read, state.master_fd, 4096)
                    if not data:
                        break
                    await log_fh.write(data)
                    await log_fh.flush()
                    text = decoder.decode(data)
                    if text:
                        session.feed_output(text)
                except asyncio.TimeoutError:
                    continue
                except (OSError, ValueError):
                    # EIO once the child side closes; EBADF after detach
                    break

        self._close_fd(state)
        exit_code = await wait_process(state.process, timeout=1.0) if state.process else None
        if not state.closed:
            session.mark_exited(exit_code)
        if self._pty.get(session.id) is state:
            del self._pty[session.id]

    def _close_fd(self, state: PTYState) -> None:
        if state.master_fd < 0:
            return
        try:
            os.close(state.master_fd)
        except OSError:
            pass
        state.master_fd = -1

    async def write(self, session: "Session", data: str) -> None:
        state = self._pty.get(session.id)
        if not state or state.master_fd < 0:
            raise KeyError(f"No PTY for session {session.id}")
        await asyncio.to_thread(os.write, state.master_fd, data.encode("utf-8"))

    def is_alive(self, session: "Session") -> bool:
        state = self._pty.get(session.id)
        if not state or state.closed:
            return False
        if state.process is not None and state.process.returncode is not None:
            return False
        return is_pid_alive(session.record.pid)

    async def resize(self, session: "Session", cols: int, rows: int) -> None:
        state = self._pty.get(session.id)
        if not state or state.master_fd < 0:
            return
        try:
            await asyncio.to_thread(set_winsize, state.master_fd, cols, rows)
        except OSError as exc:
            logger.debug("resize failed for %s: %s", session.id, exc)

    async def _stop_pty(self, session_id: str) -> Optional[PTYState]:
        state = self._pty.pop(session_id, None)
        if not state:
            return None
        state.closed = True
        if state.reader:
            state.reader.cancel()
        if state.proxy_pid:
            try:
                os.kill(state.proxy_pid, signal.SIGTERM)
            except ProcessLookupError:
                pass
        self._close_fd(state)
        return state

    async def release(self, session: "Session") -> None:
        await self._stop_pty(session.id)

    async def detach(self, session: "Session") -> None:
        state = await self._stop_pty(session.id)
        pid = session.record.pid
        if not pid or not is_pid_alive(pid):
            return
        try:
            os.killpg(os.getpgid(pid), signal.SIGTERM)
        except (ProcessLookupError, PermissionError):
            return
        code = await wait_process(state.process if state else None, timeout=2.0)
        if code is None and is_pid_alive(pid):
            try:
                os.killpg(os.getpgid(pid), signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass
