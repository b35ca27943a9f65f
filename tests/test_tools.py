from __future__ import annotations

import os

import pytest

from assistant_shells.process_snapshot import ProcessRecord, PsutilProcessProvider, collect_processes, is_pid_alive
from assistant_shells.tool import Tool
from assistant_shells.toolspec import BUILTIN_TOOLS, ToolRegistry, load_tools_file, parse_tools_data


def test_builtin_catalogue():
    registry = ToolRegistry.from_config()
    for name in ("claude", "codex", "gemini", "aider", "copilot", "opencode", "cursor", "grok", "qwen", "amazon_q", "crush"):
        assert name in registry
    assert registry.get_tool("cursor").cmd == ["cursor-agent"]
    assert registry.get_tool("codex").env == {"NO_COLOR": None}
    assert registry.get_tool("crush").mux_focus is True
    assert registry.get_tool("nope") is None
    assert registry.get_tool(None) is None
    assert len(registry) == len(BUILTIN_TOOLS)


def test_overrides_merge_over_builtins():
    registry = ToolRegistry.from_config(
        {"claude": {"cmd": ["claude", "--continue"]}, "gemini": False, "mine": {"cmd": "my-agent --fast"}},
    )
    assert registry.get_tool("claude").cmd == ["claude", "--continue"]
    assert registry.get_tool("claude").url == BUILTIN_TOOLS["claude"]["url"]
    assert "gemini" not in registry
    assert registry.get_tool("mine").cmd == ["my-agent", "--fast"]


def test_tools_file_renders_env_templates(tmp_path):
    path = tmp_path / "tools.yaml"
    path.write_text(
        "tools:\n"
        "  local:\n"
        "    cmd: ['${env:AGENT_BIN}', '--model', '${MODEL}']\n"
        "    env:\n"
        "      TOKEN: '${env:AGENT_TOKEN}'\n"
        "      NO_COLOR: false\n"
        "    ready_pattern: '^> '\n"
    )
    registry = ToolRegistry.from_config(
        tools_file=path,
        include_builtins=False,
        env={"AGENT_BIN": "/opt/agent", "MODEL": "large", "AGENT_TOKEN": "t0k"},
    )
    tool = registry.get_tool("local")
    assert tool.cmd == ["/opt/agent", "--model", "large"]
    assert tool.env == {"TOKEN": "t0k", "NO_COLOR": None}
    assert tool.ready_pattern == "^> "
    assert registry.names() == ["local"]


def test_tools_directory_rejects_duplicates(tmp_path):
    (tmp_path / "a.yaml").write_text("one:\n  cmd: [one]\n")
    (tmp_path / "b.yml").write_text("one:\n  cmd: [uno]\n")
    with pytest.raises(ValueError, match="duplicate tool 'one'"):
        load_tools_file(tmp_path)


def test_invalid_definitions_name_the_tool():
    with pytest.raises(ValueError, match="'broken'"):
        parse_tools_data({"broken": {"url": "https://example.invalid"}})
    with pytest.raises(ValueError, match="'weird'"):
        parse_tools_data({"weird": "not a mapping"})
    with pytest.raises(ValueError, match="'badenv'"):
        parse_tools_data({"badenv": {"cmd": ["x"], "env": ["A=1"]}})


def test_tool_build_env_sets_and_unsets():
    tool = Tool(name="t", cmd=["t"], env={"ADDED": "1", "REMOVED": None})
    env = tool.build_env({"REMOVED": "x", "KEPT": "y"})
    assert env == {"ADDED": "1", "KEPT": "y"}


def test_tool_requires_command():
    with pytest.raises(ValueError):
        Tool(name="empty", cmd=[])


def test_tool_is_installed(tmp_path, monkeypatch):
    exe = tmp_path / "fake-agent"
    exe.write_text("#!/bin/sh\n")
    exe.chmod(0o755)
    monkeypatch.setenv("PATH", str(tmp_path))
    assert Tool(name="fake", cmd=["fake-agent"]).is_installed()
    assert not Tool(name="other", cmd=["other-agent"]).is_installed()


def test_tool_format_falls_back_to_literal():
    text = [[("fix ", "text"), ("main.py", "file")], [("now", "text")]]
    assert Tool(name="t", cmd=["t"]).format(text) == "fix main.py\nnow"
    at_refs = Tool(
        name="t",
        cmd=["t"],
        format_fn=lambda text, s: "".join(f"@{c}" if k == "file" else c for line in text for c, k in line),
    )
    assert at_refs.format(text) == "fix @main.pynow"
    declines = Tool(name="t", cmd=["t"], format_fn=lambda text, s: None)
    assert declines.format(text) == "fix main.py\nnow"
    assert Tool(name="t", cmd=["t"]).format([]) == ""


def test_tool_matches_falls_back_to_process_name():
    tool = Tool(name="claude", cmd=["claude"])
    assert tool.matches(ProcessRecord(pid=1, name="claude", cmdline=""))
    assert not tool.matches(ProcessRecord(pid=1, name="claudette", cmdline=""))


def test_is_pid_alive():
    assert is_pid_alive(os.getpid())
    assert not is_pid_alive(None)
    assert not is_pid_alive(0)


@pytest.mark.asyncio
async def test_collect_processes_includes_root():
    procs = await collect_processes(PsutilProcessProvider(), root_pids=[os.getpid()])
    assert os.getpid() in [p.pid for p in procs]
