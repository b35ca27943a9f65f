from __future__ import annotations

import pytest

from assistant_shells.events import EventBus, EventType
from assistant_shells.session import Session
from assistant_shells.store import RuntimeStore
from assistant_shells.terminal import TerminalHandle
from assistant_shells.tool import Tool

from tests.fakes import FakeBackend


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def session(tmp_path, bus):
    return Session(Tool(name="alpha", cmd=["sh"]), FakeBackend(RuntimeStore(tmp_path)), bus=bus)


def _drain(q):
    out = []
    while not q.empty():
        out.append(q.get_nowait().type)
    return out


def test_transitions_are_idempotent(session, bus):
    q = bus.subscribe()
    term = TerminalHandle(session, bus=bus)

    term.hide()
    assert not term.is_open()
    term.show()
    term.show()
    assert term.is_open() and not term.is_focused()
    term.focus()
    term.focus()
    term.blur()
    term.blur()
    term.hide()
    term.hide()

    assert _drain(q) == [
        EventType.TERMINAL_SHOWN,
        EventType.TERMINAL_FOCUSED,
        EventType.TERMINAL_BLURRED,
        EventType.TERMINAL_HIDDEN,
    ]


def test_focus_on_closed_terminal_shows_it(session, bus):
    term = TerminalHandle(session, bus=bus)
    term.focus()
    assert term.is_open() and term.is_focused()
    term.hide()
    assert not term.is_focused()


def test_toggle_opens_and_closes(session, bus):
    term = TerminalHandle(session, bus=bus)
    term.toggle()
    assert term.is_open()
    term.toggle()
    assert not term.is_open()


def test_scrollback_is_bounded(session, bus):
    term = TerminalHandle(session, bus=bus, scrollback=3)
    for chunk in ("a\n", "b\n", "c\n", "d\n"):
        session.feed_output(chunk)
    assert term.output() == "b\nc\nd\n"
    assert term.lines(2) == ["c", "d"]


def test_close_releases_handle(session, bus):
    term = TerminalHandle(session, bus=bus)
    term.focus()
    term.close()
    assert not term.is_open()
    session.feed_output("ignored")
    assert term.output() == ""
    term.show()
    assert not term.is_open()
