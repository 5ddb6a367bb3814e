"""Per-stream output pipeline: bytes -> text -> styled runs.

project-runner-mcp runtime module v0.1.0

One :class:`OutputStream` exists per (project, stream kind). It owns the
state that must survive chunk boundaries:
- undecoded trailing bytes (see :mod:`.decoder`)
- a trailing escape sequence cut in half by the chunk boundary
- the SGR style state (see :mod:`.ansi`)

Chunks of one stream must be fed in arrival order, never concurrently.
Different streams share nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from . import ansi, decoder
from .ansi import DEFAULT_STYLE, StyledRun, StyleState

__all__ = [
    "OutputStream",
    "StreamKind",
]


class StreamKind(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass
class OutputStream:
    """Stateful bytes-to-styled-runs converter for a single stream."""

    kind: StreamKind = StreamKind.STDOUT
    buffer: bytes = b""
    pending_escape: str = ""
    style: StyleState = field(default=DEFAULT_STYLE)

    def feed(self, chunk: bytes) -> list[StyledRun]:
        """Convert one chunk; returns the runs that are complete so far."""
        text, self.buffer = decoder.feed(self.buffer, chunk)
        text, self.pending_escape = ansi.split_incomplete_escape(self.pending_escape + text)
        return self._interpret(text)

    def flush(self) -> list[StyledRun]:
        """Drain everything still held back once the stream has ended."""
        text = self.pending_escape + decoder.flush(self.buffer)
        self.buffer = b""
        self.pending_escape = ""
        return self._interpret(text)

    def reset(self) -> None:
        self.buffer = b""
        self.pending_escape = ""
        self.style = DEFAULT_STYLE

    @property
    def has_pending(self) -> bool:
        return bool(self.buffer or self.pending_escape)

    def _interpret(self, text: str) -> list[StyledRun]:
        if not text:
            return []
        runs, self.style = ansi.apply(self.style, text)
        return runs
