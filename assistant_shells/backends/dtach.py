from __future__ import annotations

import asyncio
import logging
import os
import pty
import shlex
import shutil
import signal
import time
from typing import TYPE_CHECKING, Iterable, List, Optional

import aiofiles

from ..process_snapshot import is_pid_alive
from ..pty import PTYState, make_raw
from ..record import SessionRecord
from ..tool import Tool
from .terminal import TerminalBackend

if TYPE_CHECKING:
    from ..session import Session

logger = logging.getLogger(__name__)


def _env_prefix(tool: Tool) -> str:
    """`env` invocation applying the tool's overrides inside the dtach shell."""
    if not tool.env:
        return ""
    parts = ["env"]
    for key, value in tool.env.items():
        if value is None:
            parts += ["-u", key]
    for key, value in tool.env.items():
        if value is not None:
            parts.append(f"{key}={value}")
    return " ".join(shlex.quote(p) for p in parts) + " "


class DtachBackend(TerminalBackend):
    """Tool process hosted by a detached `dtach` master.

    The process outlives the host; I/O goes through a local `dtach -a` client
    running on a pty, exactly like a terminal session.
    """

    name = "dtach"
    persistent = True

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._dtach_bin = shutil.which("dtach")

    @classmethod
    def available(cls) -> bool:
        return shutil.which("dtach") is not None

    async def spawn(self, session: "Session") -> None:
        if not self._dtach_bin:
            raise RuntimeError("dtach binary not found")

        record = session.record
        socket_path = self.store.socket_path(session.id)
        pid_file = self.store.pid_path(session.id)
        if socket_path.exists():
            socket_path.unlink()

        cmd_str = " ".join(shlex.quote(x) for x in record.command)
        # Capture the pid of the tool itself; dtach only reports its own
        wrapper_cmd = f"echo $$ > {shlex.quote(str(pid_file))}; exec {_env_prefix(session.tool)}{cmd_str}"
        dtach_cmd = [self._dtach_bin, "-n", str(socket_path), "-E", "sh", "-c", wrapper_cmd]

        env = os.environ.copy()
        env.setdefault("TERM", "xterm-256color")
        proc = await asyncio.create_subprocess_exec(
            *dtach_cmd,
            cwd=record.cwd,
            env=env,
            start_new_session=True,
        )
        await proc.wait()

        found_pid = None
        deadline = time.monotonic() + 5.0
        while time.monotonic() < deadline:
            if pid_file.exists():
                async with aiofiles.open(pid_file, "r") as f:
                    content = (await f.read()).strip()
                if content.isdigit():
                    found_pid = int(content)
                    break
            await asyncio.sleep(0.1)

        if not found_pid:
            raise RuntimeError("Failed to capture PID from dtach session")

        record.pid = found_pid
        record.mux = {"socket": str(socket_path)}
        await self._attach_proxy(session)

    async def reattach(self, session: "Session") -> None:
        await self._attach_proxy(session)

    async def _attach_proxy(self, session: "Session") -> None:
        socket_path = self.store.socket_path(session.id)
        if not socket_path.exists():
            raise RuntimeError(f"dtach socket missing for {session.id}")

        master_fd, slave_fd = await asyncio.to_thread(pty.openpty)
        make_raw(slave_fd)

        env = os.environ.copy()
        env["TERM"] = "xterm-256color"
        # -E: no detach character, arbitrary text is written through
        cmd = [self._dtach_bin or "dtach", "-a", str(socket_path), "-E", "-r", "winch"]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=slave_fd,
                stdin=slave_fd,
                stderr=slave_fd,
                cwd=session.record.cwd,
                env=env,
                start_new_session=True,
            )
        finally:
            await asyncio.to_thread(os.close, slave_fd)

        session.record.stdout_log = str(self.store.log_path(session.id))
        state = PTYState(master_fd=master_fd, session_id=session.id, proxy_pid=proc.pid)
        state.reader = asyncio.create_task(self._pty_reader(session, state))
        self._pty[session.id] = state

    def is_alive(self, session: "Session") -> bool:
        return is_pid_alive(session.record.pid)

    async def detach(self, session: "Session") -> None:
        await self._stop_pty(session.id)
        pid = session.record.pid
        if pid:
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                pass
        for path in (self.store.socket_path(session.id), self.store.pid_path(session.id)):
            if path.exists():
                try:
                    path.unlink()
                except OSError:
                    pass

    async def discover(self, tools: Iterable[Tool]) -> List[SessionRecord]:
        names = {tool.name for tool in tools}
        out: List[SessionRecord] = []
        async for record in self.store.aiter_records():
            if record.backend != self.name or record.tool not in names:
                continue
            if not is_pid_alive(record.pid):
                continue
            if not self.store.socket_path(record.id).exists():
                continue
            record.adopted = True
            out.append(record)
        return out

    def attach_command(self, session: "Session") -> Optional[List[str]]:
        return [self._dtach_bin or "dtach", "-a", str(self.store.socket_path(session.id))]
