from __future__ import annotations

import abc
import asyncio
import logging
from typing import TYPE_CHECKING, ClassVar, Iterable, List, Optional

from ..process_snapshot import PsutilProcessProvider, ProcessProvider
from ..record import SessionRecord
from ..store import RuntimeStore
from ..tool import Tool

if TYPE_CHECKING:
    from ..session import Session

logger = logging.getLogger(__name__)


class Backend(abc.ABC):
    """How a session's process is hosted.

    One instance per backend name is shared by every session using it; per
    session state is keyed by session id.
    """

    name: ClassVar[str] = ""
    # Output is streamed through `Session.feed_output`, so a tool's
    # `ready_pattern` can signal readiness.
    supports_readiness: ClassVar[bool] = False
    # Sessions survive the host process and can be discovered later.
    persistent: ClassVar[bool] = False

    def __init__(self, store: RuntimeStore, *, process_provider: Optional[ProcessProvider] = None) -> None:
        self.store = store
        self.process_provider = process_provider or PsutilProcessProvider()

    @classmethod
    def available(cls) -> bool:
        return True

    @abc.abstractmethod
    async def spawn(self, session: "Session") -> None:
        """Start the tool process and fill in `session.record` (pid, mux)."""

    async def reattach(self, session: "Session") -> None:
        raise RuntimeError(f"{self.name} sessions cannot be re-attached")

    @abc.abstractmethod
    async def write(self, session: "Session", data: str) -> None:
        ...

    async def submit(self, session: "Session") -> None:
        await self.write(session, "\r")

    @abc.abstractmethod
    def is_alive(self, session: "Session") -> bool:
        ...

    @abc.abstractmethod
    async def detach(self, session: "Session") -> None:
        """Tear down the session; the process does not outlive this call."""

    async def release(self, session: "Session") -> None:
        """Drop the host's connection to a persistent session, leaving it running."""
        return None

    async def resize(self, session: "Session", cols: int, rows: int) -> None:
        return None

    async def discover(self, tools: Iterable[Tool]) -> List[SessionRecord]:
        return []

    def attach_command(self, session: "Session") -> Optional[List[str]]:
        """Command a terminal view runs to display the session, if any."""
        return None


async def wait_process(proc: Optional[asyncio.subprocess.Process], timeout: float) -> Optional[int]:
    if proc is None:
        return None
    try:
        return await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        return None
