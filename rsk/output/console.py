"""Console output used for all operator-facing progress and diagnostics.

Services never print directly: they receive a ``ConsoleProtocol`` so that
the coordinator's state transitions show up in CI logs through Rich, and
tests can assert on them through ``MockConsole``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Protocol

__all__ = [
    "Style",
    "ConsoleProtocol",
    "RichConsole",
    "MockConsole",
    "OutputRecord",
]


class Style(Enum):
    DEFAULT = auto()
    SUCCESS = auto()
    ERROR = auto()
    WARNING = auto()
    INFO = auto()
    DIM = auto()
    BOLD = auto()
    HEADER = auto()

    def __str__(self) -> str:
        return self.name.lower()


# Rich style per Style; the shorthand levels also get a label prefix.
_RICH_STYLES: dict[Style, str] = {
    Style.DEFAULT: "",
    Style.SUCCESS: "green",
    Style.ERROR: "red bold",
    Style.WARNING: "yellow",
    Style.INFO: "cyan",
    Style.DIM: "dim",
    Style.BOLD: "bold",
    Style.HEADER: "blue bold",
}

_LABELS: dict[Style, str] = {
    Style.SUCCESS: "OK",
    Style.ERROR: "error:",
    Style.WARNING: "warning:",
    Style.INFO: "info:",
}


class ConsoleProtocol(Protocol):
    """Minimal styled-output surface.

    Implementations must be safe to call from worker threads: build jobs
    report their progress concurrently.
    """

    def print(self, message: str, style: Style = Style.DEFAULT) -> None: ...

    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...

    def header(self, message: str) -> None: ...

    def newline(self) -> None: ...


class _Levels:
    """Shorthand levels expressed through ``_level``; subclasses render."""

    def _level(self, style: Style, message: str) -> None:
        raise NotImplementedError

    def success(self, message: str) -> None:
        self._level(Style.SUCCESS, message)

    def error(self, message: str) -> None:
        self._level(Style.ERROR, message)

    def warning(self, message: str) -> None:
        self._level(Style.WARNING, message)

    def info(self, message: str) -> None:
        self._level(Style.INFO, message)


class RichConsole(_Levels):
    """Rich-backed console (production)."""

    def __init__(self, *, stderr: bool = False) -> None:
        # Rich is only needed when actually rendering.
        from rich.console import Console
        from rich.text import Text

        self._console = Console(stderr=stderr, highlight=False)
        self._text = Text
        self._lock = threading.Lock()

    def _emit(self, *parts: tuple[str, Style]) -> None:
        # Text objects are never parsed as markup: build logs contain "[crun]".
        line = self._text()
        for i, (chunk, style) in enumerate(parts):
            if i:
                line.append(" ")
            line.append(chunk, style=_RICH_STYLES[style])
        with self._lock:
            self._console.print(line)

    def print(self, message: str, style: Style = Style.DEFAULT) -> None:
        self._emit((message, style))

    def _level(self, style: Style, message: str) -> None:
        self._emit((_LABELS[style], style), (message, Style.DEFAULT))

    def header(self, message: str) -> None:
        with self._lock:
            self._console.print()
        self._emit((message, Style.HEADER))

    def newline(self) -> None:
        with self._lock:
            self._console.print()


@dataclass(frozen=True, slots=True)
class OutputRecord:
    message: str
    style: Style


@dataclass
class MockConsole(_Levels):
    """Captures output for assertions in tests."""

    outputs: list[OutputRecord] = field(default_factory=lambda: [])

    def print(self, message: str, style: Style = Style.DEFAULT) -> None:
        self.outputs.append(OutputRecord(message, style))

    def _level(self, style: Style, message: str) -> None:
        self.outputs.append(OutputRecord(f"{_LABELS[style]} {message}", style))

    def header(self, message: str) -> None:
        self.outputs.append(OutputRecord(message, Style.HEADER))

    def newline(self) -> None:
        self.outputs.append(OutputRecord("", Style.DEFAULT))

    @property
    def messages(self) -> list[str]:
        return [o.message for o in self.outputs]

    @property
    def text(self) -> str:
        return "\n".join(self.messages)

    def has_error(self) -> bool:
        return any(o.style == Style.ERROR for o in self.outputs)

    def find(self, substring: str) -> list[OutputRecord]:
        return [o for o in self.outputs if substring in o.message]
