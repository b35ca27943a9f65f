"""Default message renderer.

A message is a template such as ``"Explain {selection}"``. Rendering expands
named prompts and ``{placeholder}`` variables supplied by the host context and
returns both the literal string and a structured form: a list of lines, each a
list of ``(text, kind)`` chunks where ``kind`` is ``"text"`` for literal parts
and the placeholder name for expanded values. Tools use the structured form to
format references their own way.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

Chunk = Tuple[str, str]
Line = List[Chunk]
Text = List[Line]

ContextProvider = Callable[[], Mapping[str, Any]]

_VAR_RE = re.compile(r"\{(\w+)\}")


def text_to_str(text: Text) -> str:
    return "\n".join("".join(chunk for chunk, _ in line) for line in text)


def _split_lines(chunks: List[Chunk]) -> Text:
    lines: Text = [[]]
    for value, kind in chunks:
        parts = value.split("\n")
        for i, part in enumerate(parts):
            if i > 0:
                lines.append([])
            if part:
                lines[-1].append((part, kind))
    return lines


class TemplateRenderer:
    def __init__(
        self,
        prompts: Optional[Mapping[str, str]] = None,
        context: Optional[ContextProvider] = None,
    ) -> None:
        self.prompts = dict(prompts or {})
        self._context = context

    def _resolve(self, name: str, ctx: Mapping[str, Any]) -> Optional[str]:
        if name not in ctx:
            return None
        value = ctx[name]
        if callable(value):
            value = value()
        return None if value is None else str(value)

    def render(self, msg: Optional[str] = None, prompt: Optional[str] = None) -> Tuple[str, Optional[Text]]:
        template = msg or ""
        if prompt:
            body = self.prompts.get(prompt)
            if body is None:
                logger.warning("Unknown prompt: %s", prompt)
                return "", None
            template = f"{body}\n{msg}" if msg else body
        if not template:
            return "", None

        ctx = dict(self._context() if self._context else {})
        chunks: List[Chunk] = []
        pos = 0
        for match in _VAR_RE.finditer(template):
            if match.start() > pos:
                chunks.append((template[pos:match.start()], "text"))
            name = match.group(1)
            if name in ctx:
                value = self._resolve(name, ctx)
                if value:
                    chunks.append((value, name))
            else:
                # Unknown placeholders are literal text
                chunks.append((match.group(0), "text"))
            pos = match.end()
        if pos < len(template):
            chunks.append((template[pos:], "text"))

        text = _split_lines(chunks)
        rendered = text_to_str(text)
        if not rendered:
            return "", None
        return rendered, text
