"""Runtime module: sequencing, supervision and output decoding.

This module provides isolated process execution with reliable tree
termination, plus the byte-accurate decoder and SGR interpreter that turn
raw pipe chunks into styled text runs.

The supervisor lives in :mod:`.supervisor` and is imported from there; it
depends on the event models, which in turn depend on the pure modules
re-exported here.
"""

from __future__ import annotations

from .ansi import DEFAULT_STYLE, StyledRun, StyleState, apply, parse_sgr, runs_to_html
from .decoder import feed, flush
from .sequencer import ShellDialect, Step, build_shell_argv, compile_steps, default_dialect
from .stream import OutputStream, StreamKind

__all__ = [
    "DEFAULT_STYLE",
    "OutputStream",
    "ShellDialect",
    "Step",
    "StreamKind",
    "StyleState",
    "StyledRun",
    "apply",
    "build_shell_argv",
    "compile_steps",
    "default_dialect",
    "feed",
    "flush",
    "parse_sgr",
    "runs_to_html",
]
