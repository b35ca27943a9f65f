from __future__ import annotations

from pathlib import Path
from typing import Any, List, Tuple

import pytest

from assistant_shells import commands as commands_module
from assistant_shells.backends.dtach import DtachBackend
from assistant_shells.backends.tmux import TmuxBackend
from assistant_shells.commands import Commands
from assistant_shells.config import Config
from assistant_shells.events import EventBus
from assistant_shells.hooks import EditorHooks
from assistant_shells.session import register_backend
from assistant_shells.store import RuntimeStore
from assistant_shells.tool import Tool
from assistant_shells.toolspec import ToolRegistry

from tests.fakes import FakeBackend, PersistentFakeBackend, ReadyFakeBackend


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path_factory, monkeypatch):
    """Force tests to use a temporary HOME/XDG dirs and runtime store."""
    base = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(base))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(base / ".config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(base / ".cache"))
    monkeypatch.setenv("ASSISTANT_SHELLS_BASE_DIR", str(base / "runtime"))
    for name in (
        "ASSISTANT_SHELLS_CONFIG",
        "ASSISTANT_SHELLS_DEFAULT_TOOL",
        "ASSISTANT_SHELLS_BACKEND",
        "ASSISTANT_SHELLS_SEND_DELAY",
        "ASSISTANT_SHELLS_PROMPT_DELAY",
        "ASSISTANT_SHELLS_READY_TIMEOUT",
        "ASSISTANT_SHELLS_LOG_LEVEL",
        "ASSISTANT_SHELLS_LOG_STDERR",
        "ASSISTANT_SHELLS_FINGERPRINT",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(Path, "home", lambda: base)


@pytest.fixture(autouse=True)
def _fake_backends(monkeypatch):
    register_backend(FakeBackend.name, FakeBackend)
    register_backend(ReadyFakeBackend.name, ReadyFakeBackend)
    register_backend(PersistentFakeBackend.name, PersistentFakeBackend)
    # Never touch the real tmux server or dtach sockets
    monkeypatch.setattr(TmuxBackend, "available", classmethod(lambda cls: False))
    monkeypatch.setattr(DtachBackend, "available", classmethod(lambda cls: False))
    commands_module._deprecation_shown.clear()


class HostRecorder:
    """Collects what the orchestration layer asks of its host."""

    def __init__(self) -> None:
        self.notices: List[Tuple[str, str]] = []
        self.missing: List[Tool] = []
        self.visual = False
        self.exited_visual = 0
        self.context = {"selection": "selected text", "file": "main.py"}
        self.prompt_pickers: List[Any] = []
        self.session_pickers: List[Any] = []

    def hooks(self, *, pickers: bool = True) -> EditorHooks:
        return EditorHooks(
            notify=lambda level, msg: self.notices.append((level, msg)),
            on_missing_tool=self.missing.append,
            in_visual_mode=lambda: self.visual,
            exit_visual_mode=self._exit_visual,
            context=lambda: self.context,
            select_prompt=(lambda names, cb: self.prompt_pickers.append((names, cb))) if pickers else None,
            select_session=(lambda items, cb: self.session_pickers.append((items, cb))) if pickers else None,
        )

    def _exit_visual(self) -> None:
        self.visual = False
        self.exited_visual += 1

    def warnings(self) -> List[str]:
        return [msg for level, msg in self.notices if level == "warn"]

    def errors(self) -> List[str]:
        return [msg for level, msg in self.notices if level == "error"]


@pytest.fixture
def host() -> HostRecorder:
    return HostRecorder()


@pytest.fixture
def tools() -> ToolRegistry:
    return ToolRegistry({
        "alpha": Tool(name="alpha", cmd=["sh"]),
        "beta": Tool(name="beta", cmd=["sh"]),
        "gamma": Tool(name="gamma", cmd=["sh"], ready_pattern=r"READY>"),
        "ghost": Tool(name="ghost", cmd=["ash-test-no-such-binary"], url="https://example.invalid/ghost"),
    })


@pytest.fixture
def config() -> Config:
    return Config(
        default_tool="alpha",
        backend="fake",
        send_delay=0.05,
        prompt_delay=0.02,
        ready_timeout=0.3,
    )


@pytest.fixture
def cli(tmp_path, config, tools, host) -> Commands:
    return Commands(
        config=config,
        tools=tools,
        hooks=host.hooks(),
        store=RuntimeStore(tmp_path / "runtime", fingerprint="tests"),
        bus=EventBus(),
    )


@pytest.fixture
def backend(cli) -> FakeBackend:
    return cli.backends.get("fake")

