from __future__ import annotations

import time

import pytest

from assistant_shells.record import SessionRecord
from assistant_shells.store import RuntimeStore


def _record(session_id: str, created_at: float) -> SessionRecord:
    return SessionRecord(
        id=session_id,
        tool="alpha",
        backend="tmux",
        command=["sh"],
        cwd="/work",
        pid=123,
        status="running",
        created_at=created_at,
        updated_at=created_at,
        mux={"session": f"ash-{session_id}", "pane": "%1"},
    )


@pytest.mark.asyncio
async def test_save_load_list_remove(tmp_path):
    store = RuntimeStore(tmp_path, fingerprint="store-tests")
    now = time.time()
    await store.save(_record("second", now + 1))
    await store.save(_record("first", now))

    loaded = await store.load("first")
    assert loaded == _record("first", now)
    assert loaded.mux_session == "ash-first"
    assert [r.id for r in await store.list_records()] == ["first", "second"]

    store.log_path("first").write_text("output")
    await store.remove("first")
    assert await store.load("first") is None
    assert not store.log_path("first").exists()
    assert [r.id for r in await store.list_records()] == ["second"]


@pytest.mark.asyncio
async def test_unreadable_record_is_skipped(tmp_path):
    store = RuntimeStore(tmp_path, fingerprint="store-tests")
    broken = store.metadata_dir / "broken"
    broken.mkdir()
    (broken / "meta.json").write_text("{not json")
    assert await store.load("broken") is None
    assert await store.list_records() == []


def test_store_is_namespaced_by_fingerprint(tmp_path, monkeypatch):
    monkeypatch.setenv("ASSISTANT_SHELLS_BASE_DIR", str(tmp_path / "base"))
    one = RuntimeStore(fingerprint="one")
    two = RuntimeStore(fingerprint="two")
    assert one.root != two.root
    assert one.root.parent == (tmp_path / "base" / "runtimes").resolve()
    assert one.socket_path("s").parent == one.sockets_dir
