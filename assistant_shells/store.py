from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import shutil
from pathlib import Path
from typing import AsyncIterator, List, Optional

import aiofiles

from .record import SessionRecord

logger = logging.getLogger(__name__)


def _compute_fingerprint_from_cwd() -> str:
    cwd = Path.cwd().resolve()
    return hashlib.sha256(str(cwd).encode("utf-8")).hexdigest()[:16]


def _default_base_dir() -> Path:
    return Path.home() / ".cache" / "assistant_shells"


def get_base_dir() -> Path:
    base_dir = os.environ.get("ASSISTANT_SHELLS_BASE_DIR")
    if base_dir:
        return Path(os.path.expanduser(base_dir)).resolve()
    return _default_base_dir()


class RuntimeStore:
    """Namespaced storage for session records, output logs and mux sockets.

    Records are persisted so sessions hosted by an external multiplexer can be
    found again by a later host process started from the same directory.
    """

    def __init__(self, base_dir: Optional[Path] = None, *, fingerprint: Optional[str] = None):
        base = base_dir or get_base_dir()
        fingerprint = fingerprint or os.environ.get("ASSISTANT_SHELLS_FINGERPRINT") or _compute_fingerprint_from_cwd()

        self.root = base / "runtimes" / fingerprint
        self.metadata_dir = self.root / "meta"
        self.logs_dir = self.root / "logs"
        self.sockets_dir = self.root / "sockets"

        for d in (self.metadata_dir, self.logs_dir, self.sockets_dir):
            d.mkdir(parents=True, exist_ok=True)

    def log_path(self, session_id: str) -> Path:
        return self.logs_dir / f"{session_id}.log"

    def socket_path(self, session_id: str) -> Path:
        return self.sockets_dir / f"{session_id}.sock"

    def pid_path(self, session_id: str) -> Path:
        return self.sockets_dir / f"{session_id}.pid"

    # ------------------------------------------------------------------
    # Persistence

    async def save(self, record: SessionRecord) -> None:
        record_dir = self.metadata_dir / record.id
        await asyncio.to_thread(record_dir.mkdir, parents=True, exist_ok=True)
        tmp_path = record_dir / "meta.json.tmp"
        meta_path = record_dir / "meta.json"

        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as fh:
            await fh.write(json.dumps(record.to_dict(), indent=2))
        await asyncio.to_thread(tmp_path.replace, meta_path)

    async def load(self, session_id: str) -> Optional[SessionRecord]:
        meta_path = self.metadata_dir / session_id / "meta.json"
        if not meta_path.exists():
            return None
        try:
            async with aiofiles.open(meta_path, "r", encoding="utf-8") as fh:
                data = json.loads(await fh.read())
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable session record %s: %s", meta_path, exc)
            return None
        if not isinstance(data, dict):
            return None
        return SessionRecord.from_dict(data, default_id=session_id)

    async def aiter_records(self) -> AsyncIterator[SessionRecord]:
        meta_paths = sorted(self.metadata_dir.glob("*/meta.json"))
        for meta in meta_paths:
            record = await self.load(meta.parent.name)
            if record:
                yield record

    async def list_records(self) -> List[SessionRecord]:
        records = [record async for record in self.aiter_records()]
        return sorted(records, key=lambda rec: rec.created_at)

    async def remove(self, session_id: str) -> None:
        meta_dir = self.metadata_dir / session_id
        if meta_dir.exists():
            await asyncio.to_thread(shutil.rmtree, meta_dir, ignore_errors=True)
        for path in (self.log_path(session_id), self.socket_path(session_id), self.pid_path(session_id)):
            if path.exists():
                try:
                    await asyncio.to_thread(path.unlink)
                except OSError:
                    pass
