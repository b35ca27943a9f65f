from __future__ import annotations

import os
import re
import shutil
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .process_snapshot import ProcessRecord
from .render import Text, text_to_str

ProcMatcher = Callable[["Tool", ProcessRecord], bool]
Formatter = Callable[[Text, str], Optional[str]]


@dataclass(frozen=True)
class Tool:
    """A configured external assistant CLI.

    `env` values of `None` unset the variable for the spawned process.
    `is_proc` is either a regex searched in a process command line or a
    predicate; when absent the tool name must appear as a word.
    """

    name: str
    cmd: List[str]
    env: Dict[str, Optional[str]] = field(default_factory=dict)
    url: Optional[str] = None
    is_proc: Union[str, ProcMatcher, None] = None
    mux_focus: bool = False
    format_fn: Optional[Formatter] = None
    native_scroll: bool = False
    ready_pattern: Optional[str] = None
    keys: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.cmd:
            raise ValueError(f"tool '{self.name}' has an empty command")

    @property
    def executable(self) -> str:
        return self.cmd[0]

    def is_installed(self) -> bool:
        return shutil.which(self.executable) is not None

    def build_env(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = dict(os.environ if base is None else base)
        for key, value in self.env.items():
            if value is None:
                env.pop(key, None)
            else:
                env[key] = value
        return env

    def matches(self, proc: ProcessRecord) -> bool:
        rule = self.is_proc
        if callable(rule):
            return bool(rule(self, proc))
        pattern = rule or rf"\b{re.escape(self.name)}\b"
        return re.search(pattern, proc.cmdline or proc.name) is not None

    def format(self, text: Text) -> str:
        literal = text_to_str(text)
        if self.format_fn is None:
            return literal
        formatted = self.format_fn(text, literal)
        return literal if formatted is None else formatted

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "cmd": list(self.cmd),
            "url": self.url,
            "mux_focus": self.mux_focus,
            "native_scroll": self.native_scroll,
            "installed": self.is_installed(),
        }
