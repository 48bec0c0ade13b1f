"""Where the event processor sends live turn output."""

from __future__ import annotations

import sys
from typing import Protocol, TextIO, runtime_checkable


@runtime_checkable
class OutputSink(Protocol):
    def text(self, content: str) -> None: ...
    def tool(self, name: str, title: str) -> None: ...


_TOOL_LABELS = {
    "bash": "Bash",
    "read": "Read",
    "write": "Write",
    "edit": "Edit",
    "glob": "Glob",
    "grep": "Grep",
    "list": "List",
    "webfetch": "Fetch",
    "todowrite": "Todo",
    "todoread": "Todo",
    "task": "Task",
}


class ConsoleSink:
    """Plain-text sink: assistant text verbatim, one labelled line per finished tool call."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout

    def text(self, content: str) -> None:
        self._stream.write(content.rstrip("\n") + "\n")
        self._stream.flush()

    def tool(self, name: str, title: str) -> None:
        label = _TOOL_LABELS.get(name.lower(), name)
        line = f"| {label:<7} {title}".rstrip()
        self._stream.write(line + "\n")
        self._stream.flush()


class NullSink:
    """Discards everything."""

    def text(self, content: str) -> None:
        return None

    def tool(self, name: str, title: str) -> None:
        return None
