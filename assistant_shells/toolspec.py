from __future__ import annotations

import logging
import os
import re
import shlex
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

import yaml

from .tool import Tool

logger = logging.getLogger(__name__)


BUILTIN_TOOLS: Dict[str, Dict[str, Any]] = {
    "claude": {
        "cmd": ["claude"],
        "url": "https://github.com/anthropics/claude-code",
        "ready_pattern": r"(?m)^\s*>\s",
    },
    "codex": {
        "cmd": ["codex", "--search"],
        "env": {"NO_COLOR": None},
        "url": "https://github.com/openai/codex",
        "ready_pattern": r"(?m)^\s*›\s",
    },
    "gemini": {
        "cmd": ["gemini"],
        "url": "https://github.com/google-gemini/gemini-cli",
        "ready_pattern": r"(?m)^\s*>\s",
    },
    "aider": {
        "cmd": ["aider"],
        "url": "https://github.com/Aider-AI/aider",
        "is_proc": r"\baider\b",
    },
    "copilot": {
        "cmd": ["copilot", "--banner"],
        "url": "https://github.com/github/copilot-cli",
    },
    "opencode": {
        "cmd": ["opencode"],
        "env": {"OPENCODE_THEME": "system"},
        "url": "https://github.com/sst/opencode",
        "is_proc": r"\bopencode\b",
    },
    "cursor": {
        "cmd": ["cursor-agent"],
        "url": "https://cursor.com/cli",
        "is_proc": r"\bcursor-agent\b",
    },
    "grok": {
        "cmd": ["grok"],
        "url": "https://github.com/superagent-ai/grok-cli",
    },
    "qwen": {
        "cmd": ["qwen"],
        "url": "https://github.com/QwenLM/qwen-code",
    },
    "amazon_q": {
        "cmd": ["q", "chat"],
        "url": "https://github.com/aws/amazon-q-developer-cli",
        "is_proc": r"\bq\s+chat\b",
    },
    "crush": {
        "cmd": ["crush"],
        "url": "https://github.com/charmbracelet/crush",
        "mux_focus": True,
    },
}


_TEMPLATE_RE = re.compile(r"\$\{([^}]+)\}")


def _render_string(template: str, *, env: Mapping[str, str]) -> str:
    def _replace(match: re.Match) -> str:
        key = match.group(1).strip()
        if key.startswith("env:"):
            key = key.split(":", 1)[1]
        return str(env.get(key, ""))

    return _TEMPLATE_RE.sub(_replace, template)


def _tool_from_dict(name: str, raw: Dict[str, Any], *, env: Mapping[str, str]) -> Tool:
    command = raw.get("cmd", raw.get("command"))
    if not command:
        raise ValueError(f"tool '{name}' missing cmd")
    if isinstance(command, str):
        command = shlex.split(command)
    if not isinstance(command, list) or not all(isinstance(x, (str, int, float)) for x in command):
        raise ValueError(f"tool '{name}' cmd must be a string or a list of scalars")

    env_raw = raw.get("env") or {}
    if not isinstance(env_raw, dict):
        raise ValueError(f"tool '{name}' env must be a mapping")
    tool_env: Dict[str, Optional[str]] = {}
    for key, value in env_raw.items():
        # `false`/`null` unset the variable
        tool_env[str(key)] = None if value is None or value is False else _render_string(str(value), env=env)

    is_proc = raw.get("is_proc")
    if is_proc is not None and not (isinstance(is_proc, str) or callable(is_proc)):
        raise ValueError(f"tool '{name}' is_proc must be a regex or a callable")

    keys = raw.get("keys") or {}
    if not isinstance(keys, dict):
        keys = {}

    return Tool(
        name=name,
        cmd=[_render_string(str(part), env=env) for part in command],
        env=tool_env,
        url=raw.get("url"),
        is_proc=is_proc,
        mux_focus=bool(raw.get("mux_focus", False)),
        format_fn=raw.get("format") if callable(raw.get("format")) else None,
        native_scroll=bool(raw.get("native_scroll", False)),
        ready_pattern=raw.get("ready_pattern"),
        keys=dict(keys),
    )


def parse_tools_data(raw: Any, *, env: Optional[Mapping[str, str]] = None) -> Dict[str, Tool]:
    """Parse a tools document into a mapping of name -> Tool.

    Supported shapes:
    - Compose-like: {tools: {name: {...}}}
    - Bare mapping: {name: {...}}
    A definition of `false` disables a tool.
    """
    if not isinstance(raw, dict):
        return {}
    env_map = dict(os.environ if env is None else env)
    defs = raw.get("tools") if isinstance(raw.get("tools"), dict) else raw

    out: Dict[str, Tool] = {}
    for name, tool_def in defs.items():
        if tool_def is False:
            continue
        if not isinstance(tool_def, dict):
            raise ValueError(f"tool '{name}' definition must be a mapping")
        out[str(name)] = _tool_from_dict(str(name), tool_def, env=env_map)
    return out


def load_tools_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Load raw tool definitions from a YAML file or a directory of them."""
    p = Path(path)
    if not p.exists():
        return {}

    if p.is_dir():
        merged: Dict[str, Any] = {}
        for child in sorted(p.iterdir()):
            if child.suffix.lower() not in (".yaml", ".yml"):
                continue
            for name, tool_def in load_tools_file(child).items():
                if name in merged:
                    raise ValueError(f"duplicate tool '{name}' in {p}")
                merged[name] = tool_def
        return merged

    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{p}: expected a mapping of tools")
    defs = raw.get("tools") if isinstance(raw.get("tools"), dict) else raw
    return dict(defs)


class ToolRegistry:
    """Catalogue of known tools. Read-only once built."""

    def __init__(self, tools: Optional[Mapping[str, Tool]] = None) -> None:
        self._tools: Dict[str, Tool] = dict(tools or {})

    @classmethod
    def from_config(
        cls,
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        tools_file: Optional[Union[str, Path]] = None,
        include_builtins: bool = True,
        env: Optional[Mapping[str, str]] = None,
    ) -> "ToolRegistry":
        defs: Dict[str, Any] = {}
        if include_builtins:
            defs.update({name: dict(d) for name, d in BUILTIN_TOOLS.items()})

        layers: List[Mapping[str, Any]] = []
        if tools_file:
            layers.append(load_tools_file(tools_file))
        if overrides:
            layers.append(overrides)
        for layer in layers:
            for name, tool_def in layer.items():
                if isinstance(tool_def, dict) and isinstance(defs.get(name), dict):
                    defs[name] = {**defs[name], **tool_def}
                else:
                    defs[name] = tool_def

        tools = parse_tools_data({"tools": defs}, env=env)
        logger.debug("Loaded %d tool definitions", len(tools))
        return cls(tools)

    def get_tool(self, name: Optional[str]) -> Optional[Tool]:
        if not name:
            return None
        return self._tools.get(name)

    def names(self) -> List[str]:
        return sorted(self._tools)

    def installed(self) -> List[Tool]:
        return [self._tools[name] for name in self.names() if self._tools[name].is_installed()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._tools)
