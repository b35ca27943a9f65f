from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import psutil


@dataclass(frozen=True)
class ProcessRecord:
    """A live OS process as seen by tool identity rules.

    `cmdline` is the space-joined argv, which is what string `is_proc` rules
    are matched against.
    """

    pid: int
    parent_pid: Optional[int] = None
    name: str = ""
    cmdline: str = ""
    cwd: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ProcessProvider(Protocol):
    """Source of candidate processes. Implementations may be sync or async."""

    def list_processes(self, *, root_pids: Optional[List[int]] = None) -> Any:  # pragma: no cover
        raise NotImplementedError


async def _maybe_await(value: Any) -> Any:
    if asyncio.iscoroutine(value) or asyncio.isfuture(value):
        return await value
    return value


def is_pid_alive(pid: Optional[int]) -> bool:
    if not pid:
        return False
    try:
        proc = psutil.Process(pid)
        return proc.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def _to_record(proc: psutil.Process) -> Optional[ProcessRecord]:
    try:
        with proc.oneshot():
            cmdline = proc.cmdline()
            try:
                cwd = proc.cwd()
            except (psutil.AccessDenied, psutil.ZombieProcess):
                cwd = None
            return ProcessRecord(
                pid=proc.pid,
                parent_pid=proc.ppid(),
                name=proc.name(),
                cmdline=" ".join(cmdline),
                cwd=cwd,
            )
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None


class PsutilProcessProvider:
    """Process discovery backed by psutil.

    With `root_pids` the roots and their descendants are returned (bounded by
    `max_processes`); without, every visible process is.
    """

    def __init__(self, *, max_processes: int = 4096) -> None:
        self._max_processes = max_processes

    def list_processes(self, *, root_pids: Optional[List[int]] = None) -> List[ProcessRecord]:
        out: List[ProcessRecord] = []
        if root_pids is None:
            for proc in psutil.process_iter():
                rec = _to_record(proc)
                if rec:
                    out.append(rec)
                if len(out) >= self._max_processes:
                    break
            return out

        visited: set[int] = set()
        for root in root_pids:
            try:
                root_proc = psutil.Process(int(root))
                family = [root_proc] + root_proc.children(recursive=True)
            except (psutil.NoSuchProcess, psutil.AccessDenied, ValueError):
                continue
            for proc in family:
                if proc.pid in visited:
                    continue
                visited.add(proc.pid)
                rec = _to_record(proc)
                if rec:
                    out.append(rec)
                if len(out) >= self._max_processes:
                    return out
        return out


async def collect_processes(
    provider: ProcessProvider,
    *,
    root_pids: Optional[List[int]] = None,
) -> List[ProcessRecord]:
    """Call a provider that may be sync or async."""
    if isinstance(provider, PsutilProcessProvider):
        value = await asyncio.to_thread(provider.list_processes, root_pids=root_pids)
    else:
        value = provider.list_processes(root_pids=root_pids)
    processes = await _maybe_await(value)
    if not isinstance(processes, list):
        return []
    return [item for item in processes if isinstance(item, ProcessRecord)]
