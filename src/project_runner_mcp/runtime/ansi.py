"""ANSI/SGR style interpreter for streamed process output.

project-runner-mcp runtime module v0.1.0

Turns decoded text with embedded escape sequences into styled text runs.

Only Select Graphic Rendition (``ESC [ ... m``) changes the style. Other CSI
sequences, OSC strings and charset selections are recognised so they do not
leak into the text, but have no effect (this is not a terminal emulator).

The interpreter is pure: :func:`apply` takes a :class:`StyleState` and
returns the runs plus the new state. The caller keeps one state per
(project, stream) so styles never leak between streams.

SGR parameters are decoded in two phases: :func:`parse_sgr` turns the
parameter string into typed operations (multi-parameter colours consume
their arguments there), then :func:`apply_ops` folds them over the state.
"""

from __future__ import annotations

import html
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Union

__all__ = [
    "Attribute",
    "Color",
    "DEFAULT_STYLE",
    "Reset",
    "SetAttribute",
    "SetBackground",
    "SetForeground",
    "SgrOp",
    "StyleState",
    "StyledRun",
    "apply",
    "apply_ops",
    "indexed_color",
    "parse_sgr",
    "runs_to_html",
    "split_incomplete_escape",
]

# Any escape sequence we swallow: CSI (7-bit and 8-bit introducer), OSC
# terminated by BEL or ST, and two-byte charset selections such as ESC ( B.
_CONTROL_RE = re.compile(
    r"(?:\x1b\[|\x9b)(?P<params>[0-9;:<=>?]*)[ -/]*(?P<final>[@-~])"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[()*+][0-9A-Za-z]"
)

# Prefixes that may still become one of the sequences above.
_PARTIAL_RE = re.compile(
    r"(?:\x1b\[|\x9b)[0-9;:<=>?]*[ -/]*\Z"
    r"|\x1b\][^\x07\x1b]*\x1b?\Z"
    r"|\x1b[()*+]?\Z"
)

MAX_PENDING_ESCAPE = 256


@dataclass(frozen=True)
class Color:
    """24-bit colour."""

    r: int
    g: int
    b: int

    @property
    def hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    @classmethod
    def from_hex(cls, value: str) -> "Color":
        value = value.lstrip("#")
        return cls(int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))


# 30-37 / 40-47
STANDARD_COLORS = tuple(
    Color.from_hex(v)
    for v in (
        "#000000", "#cd3131", "#0dbc79", "#e5e510",
        "#2472c8", "#bc3fbc", "#11a8cd", "#e5e5e5",
    )
)

# 90-97 / 100-107
BRIGHT_COLORS = tuple(
    Color.from_hex(v)
    for v in (
        "#666666", "#f14c4c", "#23d18b", "#f5f543",
        "#3b8eea", "#d670d6", "#29b8db", "#e5e5e5",
    )
)

# 38;5;0-15
PALETTE_16 = tuple(
    Color.from_hex(v)
    for v in (
        "#000000", "#800000", "#008000", "#808000",
        "#000080", "#800080", "#008080", "#c0c0c0",
        "#808080", "#ff0000", "#00ff00", "#ffff00",
        "#0000ff", "#ff00ff", "#00ffff", "#ffffff",
    )
)

CUBE_LEVELS = (0, 95, 135, 175, 215, 255)


def indexed_color(index: int) -> Color | None:
    """Resolve a 256-colour palette index (``38;5;N``).

    0-15 fixed palette, 16-231 a 6x6x6 cube, 232-255 a 24-step gray ramp.
    Out-of-range indexes return None.
    """
    if index < 0 or index > 255:
        return None
    if index < 16:
        return PALETTE_16[index]
    if index < 232:
        i = index - 16
        return Color(CUBE_LEVELS[i // 36], CUBE_LEVELS[(i % 36) // 6], CUBE_LEVELS[i % 6])
    gray = 8 + (index - 232) * 10
    return Color(gray, gray, gray)


@dataclass(frozen=True)
class StyleState:
    """Graphic attributes in effect for one output stream."""

    bold: bool = False
    dim: bool = False
    italic: bool = False
    underline: bool = False
    foreground: Color | None = None
    background: Color | None = None

    @property
    def is_default(self) -> bool:
        return self == DEFAULT_STYLE

    def css(self) -> str | None:
        """Inline CSS for this state, or None when nothing is set."""
        parts = []
        if self.bold:
            parts.append("font-weight: bold")
        if self.dim:
            parts.append("opacity: 0.5")
        if self.italic:
            parts.append("font-style: italic")
        if self.underline:
            parts.append("text-decoration: underline")
        if self.foreground is not None:
            parts.append(f"color: {self.foreground.hex}")
        if self.background is not None:
            parts.append(f"background-color: {self.background.hex}")
        return "; ".join(parts) if parts else None


DEFAULT_STYLE = StyleState()


@dataclass(frozen=True)
class StyledRun:
    """A span of text sharing one style snapshot (None = default attributes)."""

    text: str
    style: StyleState | None = None

    @property
    def effective_style(self) -> StyleState:
        return self.style if self.style is not None else DEFAULT_STYLE

    def to_html(self) -> str:
        escaped = html.escape(self.text)
        css = self.style.css() if self.style is not None else None
        return f'<span style="{css}">{escaped}</span>' if css else escaped


# =============================================================================
# SGR operations
# =============================================================================


class Attribute(Enum):
    BOLD = "bold"
    DIM = "dim"
    ITALIC = "italic"
    UNDERLINE = "underline"


@dataclass(frozen=True)
class Reset:
    """SGR 0."""


@dataclass(frozen=True)
class SetAttribute:
    attribute: Attribute
    enabled: bool


@dataclass(frozen=True)
class SetForeground:
    color: Color | None  # None = default foreground


@dataclass(frozen=True)
class SetBackground:
    color: Color | None  # None = default background


SgrOp = Union[Reset, SetAttribute, SetForeground, SetBackground]

_SIMPLE_CODES: dict[int, tuple[SgrOp, ...]] = {
    0: (Reset(),),
    1: (SetAttribute(Attribute.BOLD, True),),
    2: (SetAttribute(Attribute.DIM, True),),
    3: (SetAttribute(Attribute.ITALIC, True),),
    4: (SetAttribute(Attribute.UNDERLINE, True),),
    22: (SetAttribute(Attribute.BOLD, False), SetAttribute(Attribute.DIM, False)),
    23: (SetAttribute(Attribute.ITALIC, False),),
    24: (SetAttribute(Attribute.UNDERLINE, False),),
    39: (SetForeground(None),),
    49: (SetBackground(None),),
}


def _to_int(value: str) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        return -1


def _extended_color(codes: Sequence[int], i: int) -> tuple[Color | None, int]:
    """Decode ``38;5;N`` / ``38;2;R;G;B`` starting at the introducer ``codes[i]``.

    A truncated or unknown form swallows the rest of the sequence, so its
    colour components are never reinterpreted as attribute codes.

    Returns:
        Tuple of (colour or None if unusable, number of parameters consumed)
    """
    remaining = len(codes) - i
    if remaining < 2:
        return None, remaining
    mode = codes[i + 1]
    if mode == 5 and remaining >= 3:
        return indexed_color(codes[i + 2]), 3
    if mode == 2 and remaining >= 5:
        r, g, b = codes[i + 2], codes[i + 3], codes[i + 4]
        if all(0 <= c <= 255 for c in (r, g, b)):
            return Color(r, g, b), 5
        return None, 5
    return None, remaining


def parse_sgr(params: str) -> list[SgrOp]:
    """Decode an SGR parameter string (the part between ``ESC [`` and ``m``).

    Parameters are semicolon separated integers; empty means 0, so both
    ``ESC [ m`` and ``ESC [ ; m`` reset. Unknown codes are dropped.
    """
    codes = [_to_int(p) for p in params.split(";")] if params else [0]
    ops: list[SgrOp] = []
    i = 0
    while i < len(codes):
        code = codes[i]
        if code in _SIMPLE_CODES:
            ops.extend(_SIMPLE_CODES[code])
            i += 1
        elif code in (38, 48):
            color, consumed = _extended_color(codes, i)
            if color is not None:
                ops.append(SetForeground(color) if code == 38 else SetBackground(color))
            i += consumed
        elif 30 <= code <= 37:
            ops.append(SetForeground(STANDARD_COLORS[code - 30]))
            i += 1
        elif 90 <= code <= 97:
            ops.append(SetForeground(BRIGHT_COLORS[code - 90]))
            i += 1
        elif 40 <= code <= 47:
            ops.append(SetBackground(STANDARD_COLORS[code - 40]))
            i += 1
        elif 100 <= code <= 107:
            ops.append(SetBackground(BRIGHT_COLORS[code - 100]))
            i += 1
        else:
            i += 1
    return ops


def apply_ops(state: StyleState, ops: Iterable[SgrOp]) -> StyleState:
    """Fold SGR operations over a style state."""
    for op in ops:
        if isinstance(op, Reset):
            state = DEFAULT_STYLE
        elif isinstance(op, SetAttribute):
            state = replace(state, **{op.attribute.value: op.enabled})
        elif isinstance(op, SetForeground):
            state = replace(state, foreground=op.color)
        elif isinstance(op, SetBackground):
            state = replace(state, background=op.color)
    return state


# =============================================================================
# Text
# =============================================================================


def _append_run(runs: list[StyledRun], text: str, state: StyleState) -> None:
    if not text:
        return
    style = None if state.is_default else state
    if runs and runs[-1].style == style:
        runs[-1] = StyledRun(runs[-1].text + text, style)
    else:
        runs.append(StyledRun(text, style))


def apply(state: StyleState, text: str) -> tuple[list[StyledRun], StyleState]:
    """Split ``text`` into styled runs, starting from ``state``.

    Text before the first SGR sequence uses the incoming state; text after a
    sequence uses the state that sequence produced. Adjacent runs with the
    same style are merged.

    Returns:
        Tuple of (runs, state after the last sequence)
    """
    runs: list[StyledRun] = []
    last = 0
    for match in _CONTROL_RE.finditer(text):
        _append_run(runs, text[last:match.start()], state)
        params = match.group("params")
        # Private-mode parameters (ESC [ > 4 m and friends) are not SGR.
        if match.group("final") == "m" and not params.startswith(("<", "=", ">", "?")):
            state = apply_ops(state, parse_sgr(params))
        last = match.end()
    _append_run(runs, text[last:], state)
    return runs, state


def split_incomplete_escape(text: str) -> tuple[str, str]:
    """Split off a trailing escape sequence that a chunk boundary cut short.

    Returns:
        Tuple of (text safe to interpret now, tail to prepend to the next text).
        Tails longer than ``MAX_PENDING_ESCAPE`` are not held back.
    """
    start = max(text.rfind("\x1b"), text.rfind("\x9b"))
    if start < 0:
        return text, ""
    # A lone trailing ESC may be the first half of the ST closing an open OSC.
    osc = text.rfind("\x1b]")
    if 0 <= osc < start and _PARTIAL_RE.match(text, osc):
        start = osc
    if len(text) - start > MAX_PENDING_ESCAPE:
        return text, ""
    if text.endswith("\x1b\\") or _CONTROL_RE.match(text, start):
        return text, ""
    if _PARTIAL_RE.match(text, start):
        return text[:start], text[start:]
    return text, ""


def runs_to_html(runs: Iterable[StyledRun]) -> str:
    """Render runs as HTML, escaping all process-supplied text."""
    return "".join(run.to_html() for run in runs)
