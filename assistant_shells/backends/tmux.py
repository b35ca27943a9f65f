from __future__ import annotations

import asyncio
import logging
import re
import shutil
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from ..process_snapshot import collect_processes, is_pid_alive
from ..record import SessionRecord
from ..tool import Tool
from .base import Backend

if TYPE_CHECKING:
    from ..session import Session

logger = logging.getLogger(__name__)

PANE_FORMAT = "#{session_name}\t#{pane_id}\t#{pane_pid}\t#{pane_current_path}"
_NAME_RE = re.compile(r"[^\w-]")


class TmuxError(RuntimeError):
    pass


def parse_panes(output: str) -> List[Tuple[str, str, int, str]]:
    panes: List[Tuple[str, str, int, str]] = []
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 4:
            continue
        try:
            pane_pid = int(parts[2])
        except ValueError:
            continue
        panes.append((parts[0], parts[1], pane_pid, parts[3]))
    return panes


class TmuxBackend(Backend):
    """Tool process hosted in a detached tmux session.

    Text goes through a named paste buffer so multi-line messages arrive as
    one bracketed paste; submit is a separate Enter key.
    """

    name = "tmux"
    persistent = True

    @classmethod
    def available(cls) -> bool:
        return shutil.which("tmux") is not None

    async def _tmux(self, *args: str, input: Optional[bytes] = None) -> str:
        proc = await asyncio.create_subprocess_exec(
            "tmux",
            *args,
            stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        out, err = await proc.communicate(input)
        if proc.returncode != 0:
            raise TmuxError(f"tmux {args[0]} failed: {err.decode('utf-8', errors='replace').strip()}")
        return out.decode("utf-8", errors="replace")

    def _pane(self, session: "Session") -> str:
        pane = session.record.mux.get("pane")
        if not pane:
            raise KeyError(f"No tmux pane for session {session.id}")
        return str(pane)

    async def spawn(self, session: "Session") -> None:
        record = session.record
        tool = session.tool
        name = _NAME_RE.sub("-", session.id)

        args = ["new-session", "-d", "-s", name, "-c", record.cwd, "-P", "-F", "#{pane_id}\t#{pane_pid}"]
        for key, value in tool.env.items():
            if value is not None:
                args += ["-e", f"{key}={value}"]
        command = list(record.command)
        unset = [key for key, value in tool.env.items() if value is None]
        if unset:
            prefix = ["env"]
            for key in unset:
                prefix += ["-u", key]
            command = prefix + command

        out = await self._tmux(*args, *command)
        pane_id, _, pane_pid = out.strip().partition("\t")
        if not pane_id or not pane_pid.isdigit():
            raise TmuxError(f"unexpected new-session output: {out!r}")
        record.pid = int(pane_pid)
        record.mux = {"session": name, "pane": pane_id}

    async def reattach(self, session: "Session") -> None:
        # Nothing to connect: every command addresses the pane directly
        self._pane(session)

    async def write(self, session: "Session", data: str) -> None:
        pane = self._pane(session)
        if session.tool.mux_focus:
            await self._tmux("select-pane", "-t", pane)
        buffer = f"ash-{session.id}"
        await self._tmux("load-buffer", "-b", buffer, "-", input=data.encode("utf-8"))
        await self._tmux("paste-buffer", "-d", "-p", "-b", buffer, "-t", pane)

    async def submit(self, session: "Session") -> None:
        await self._tmux("send-keys", "-t", self._pane(session), "Enter")

    def is_alive(self, session: "Session") -> bool:
        return is_pid_alive(session.record.pid)

    async def detach(self, session: "Session") -> None:
        # Only the pane: adopted panes may share a tmux session with others
        target = session.record.mux.get("pane")
        if not target:
            return
        try:
            await self._tmux("kill-pane", "-t", str(target))
        except TmuxError as exc:
            logger.debug("kill-pane %s: %s", target, exc)

    async def list_panes(self) -> List[Tuple[str, str, int, str]]:
        try:
            out = await self._tmux("list-panes", "-a", "-F", PANE_FORMAT)
        except (TmuxError, FileNotFoundError) as exc:
            # No server running
            logger.debug("tmux list-panes: %s", exc)
            return []
        return parse_panes(out)

    async def discover(self, tools: Iterable[Tool]) -> List[SessionRecord]:
        tools = list(tools)
        known: Dict[str, SessionRecord] = {}
        async for record in self.store.aiter_records():
            if record.backend == self.name and record.mux.get("pane"):
                known[str(record.mux["pane"])] = record

        out: List[SessionRecord] = []
        for session_name, pane_id, pane_pid, cwd in await self.list_panes():
            procs = await collect_processes(self.process_provider, root_pids=[pane_pid])
            tool = next((t for t in tools if any(t.matches(p) for p in procs)), None)
            if tool is None:
                continue
            record = known.get(pane_id)
            if record is None or record.tool != tool.name:
                matched = next(p for p in procs if tool.matches(p))
                record = SessionRecord(
                    id=_NAME_RE.sub("-", f"tmux-{session_name}-{pane_id.lstrip('%')}"),
                    tool=tool.name,
                    backend=self.name,
                    command=matched.cmdline.split(),
                    cwd=cwd,
                    pid=pane_pid,
                    status="running",
                    created_at=0.0,
                    updated_at=0.0,
                    mux={"session": session_name, "pane": pane_id},
                )
            record.status = "running"
            record.adopted = True
            out.append(record)
        return out

    def attach_command(self, session: "Session") -> Optional[List[str]]:
        target = session.record.mux.get("session")
        if not target:
            return None
        return ["tmux", "attach-session", "-t", str(target)]
