from __future__ import annotations

import asyncio

import pytest

from assistant_shells.backends.dtach import DtachBackend
from assistant_shells.backends.terminal import TerminalBackend
from assistant_shells.backends.tmux import TmuxBackend, parse_panes
from assistant_shells.events import EventBus
from assistant_shells.session import Session, registered_backends, setup
from assistant_shells.store import RuntimeStore
from assistant_shells.tool import Tool


def test_parse_panes_skips_malformed_lines():
    output = "\n".join([
        "ash-alpha_1\t%3\t4321\t/work/project",
        "garbage",
        "ash-beta_2\t%4\tnot-a-pid\t/work",
        "mine\t%5\t99\t/home/me\twith\ttabs",
    ])
    assert parse_panes(output) == [
        ("ash-alpha_1", "%3", 4321, "/work/project"),
        ("mine", "%5", 99, "/home/me"),
    ]


def test_builtin_backends_are_registered():
    setup()
    names = registered_backends()
    for name in ("terminal", "tmux", "dtach"):
        assert name in names


def test_readiness_follows_streamed_output():
    # dtach output is streamed through its local proxy, tmux output is not
    assert TerminalBackend.supports_readiness
    assert DtachBackend.supports_readiness
    assert not TmuxBackend.supports_readiness


@pytest.mark.asyncio
async def test_terminal_session_that_exits_is_cleaned_up(tmp_path):
    store = RuntimeStore(tmp_path, fingerprint="terminal-tests")
    backend = TerminalBackend(store)
    session = Session(Tool(name="quick", cmd=["true"]), backend, cwd=str(tmp_path), bus=EventBus())
    session.start()
    await session.wait_spawned()

    for _ in range(100):
        if session.status == "exited" and session.id not in backend._pty:
            break
        await asyncio.sleep(0.05)
    assert session.status == "exited"
    assert session.id not in backend._pty

    session.detach()
    await session.wait_closed()
    assert await store.load(session.id) is None
    assert not store.log_path(session.id).exists()
