from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


DEFAULT_PROMPTS: Dict[str, str] = {
    "changes": "Can you review my changes?",
    "diagnostics": "Can you help me fix the diagnostics in {file}?\n{diagnostics}",
    "document": "Add documentation to {this}",
    "explain": "Explain {this}",
    "fix": "Can you fix {this}?",
    "optimize": "How can {this} be optimized?",
    "review": "Can you review {file} for any issues or improvements?",
    "tests": "Can you write tests for {this}?",
    "file": "{file}",
    "position": "{position}",
    "selection": "{selection}",
}


def _truthy_env(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    val = str(raw).strip().lower()
    return val in {"1", "true", "yes", "y", "on"}


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def default_config_path() -> Path:
    override = os.environ.get("ASSISTANT_SHELLS_CONFIG")
    if override:
        return Path(os.path.expanduser(override))
    xdg = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(xdg) / "assistant_shells" / "config.yaml"


@dataclass(frozen=True)
class Config:
    default_tool: str = "claude"
    backend: str = "terminal"
    # Grace periods (seconds) before the first delivery to a new session
    send_delay: float = 2.0
    prompt_delay: float = 0.5
    # Upper bound on waiting for a readiness signal before writing anyway
    ready_timeout: float = 10.0
    scrollback: int = 2000
    tools: Dict[str, Any] = field(default_factory=dict)
    tools_file: Optional[str] = None
    prompts: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PROMPTS))
    log_level: str = "INFO"
    log_stderr: bool = False

    def with_overrides(self, **kwargs: Any) -> "Config":
        return replace(self, **kwargs)


def _config_from_dict(raw: Dict[str, Any]) -> Config:
    base = Config()
    prompts = dict(base.prompts)
    if isinstance(raw.get("prompts"), dict):
        prompts.update({str(k): str(v) for k, v in raw["prompts"].items()})

    tools = raw.get("tools") or {}
    if not isinstance(tools, dict):
        raise ValueError("config 'tools' must be a mapping")

    return Config(
        default_tool=str(raw.get("default_tool") or base.default_tool),
        backend=str(raw.get("backend") or base.backend),
        send_delay=float(raw.get("send_delay", base.send_delay)),
        prompt_delay=float(raw.get("prompt_delay", base.prompt_delay)),
        ready_timeout=float(raw.get("ready_timeout", base.ready_timeout)),
        scrollback=int(raw.get("scrollback", base.scrollback)),
        tools=dict(tools),
        tools_file=raw.get("tools_file"),
        prompts=prompts,
        log_level=str(raw.get("log_level") or base.log_level),
        log_stderr=bool(raw.get("log_stderr", base.log_stderr)),
    )


def load_config(path: Optional[Union[str, Path]] = None) -> Config:
    """Load config from YAML, then apply ASSISTANT_SHELLS_* environment overrides."""
    p = Path(path) if path else default_config_path()
    raw: Dict[str, Any] = {}
    if p.exists():
        with p.open("r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"{p}: expected a mapping")
        raw = loaded

    config = _config_from_dict(raw)
    return config.with_overrides(
        default_tool=os.environ.get("ASSISTANT_SHELLS_DEFAULT_TOOL") or config.default_tool,
        backend=os.environ.get("ASSISTANT_SHELLS_BACKEND") or config.backend,
        send_delay=_float_env("ASSISTANT_SHELLS_SEND_DELAY", config.send_delay),
        prompt_delay=_float_env("ASSISTANT_SHELLS_PROMPT_DELAY", config.prompt_delay),
        ready_timeout=_float_env("ASSISTANT_SHELLS_READY_TIMEOUT", config.ready_timeout),
        log_level=os.environ.get("ASSISTANT_SHELLS_LOG_LEVEL") or config.log_level,
        log_stderr=_truthy_env("ASSISTANT_SHELLS_LOG_STDERR", config.log_stderr),
    )
