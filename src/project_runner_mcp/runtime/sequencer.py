"""Command sequencer: compile an ordered list of steps into one shell script.

project-runner-mcp runtime module v0.1.0

Every step after the first runs only if all previous steps succeeded.
Success is the shell's own notion of "last command succeeded", so the
compiled script is a pure function of the steps and the dialect.

Dialects:
- POSIX: the status of each step is kept in ``__prm_rc`` and each later step
  is guarded on it; the script ends with ``exit "$__prm_rc"`` so the process
  exit code is the code of the step that failed (or of the last step).
- PowerShell: guards are nested (``s0; if ($?) { s1; if ($?) { s2 } }``),
  since an untaken ``if`` would otherwise reset ``$?`` for the next guard.
"""

from __future__ import annotations

import sys
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from ..errors import InvalidSequenceError

__all__ = [
    "ShellDialect",
    "Step",
    "build_shell_argv",
    "compile_steps",
    "default_dialect",
    "validate_steps",
]

IS_WINDOWS = sys.platform == "win32"

DEFAULT_POSIX_SHELL = "/bin/sh"
POSIX_STATUS_VAR = "__prm_rc"
POWERSHELL_UTF8_PREAMBLE = "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8; "


class ShellDialect(Enum):
    """Shell used to run a compiled sequence."""

    POSIX = "posix"
    POWERSHELL = "powershell"

    @classmethod
    def from_string(cls, value: str) -> "ShellDialect":
        """Parse a dialect name, falling back to the platform default."""
        value = value.lower().strip()
        for dialect in cls:
            if dialect.value == value:
                return dialect
        return default_dialect()


def default_dialect() -> ShellDialect:
    """PowerShell on Windows, POSIX sh everywhere else."""
    return ShellDialect.POWERSHELL if IS_WINDOWS else ShellDialect.POSIX


@dataclass(frozen=True)
class Step:
    """One shell invocation within a sequence.

    Attributes:
        command: Shell command text (required, non-empty)
        name: Optional display name
    """

    command: str
    name: str | None = None

    def label(self, index: int) -> str:
        """Display label, falling back to the 1-based position."""
        return self.name or f"step {index + 1}"


def validate_steps(steps: Sequence[Step]) -> None:
    """Reject an empty sequence or a step without a command.

    Raises:
        InvalidSequenceError: If the sequence cannot be compiled
    """
    if not steps:
        raise InvalidSequenceError("Step sequence is empty")
    for index, step in enumerate(steps):
        if not isinstance(step.command, str) or not step.command.strip():
            raise InvalidSequenceError(
                f"Step {index + 1} has an empty command", index=index
            )


def compile_steps(
    steps: Sequence[Step],
    dialect: ShellDialect | None = None,
) -> str:
    """Compile steps into a single conditionally chained script body.

    Args:
        steps: Ordered steps, length >= 1
        dialect: Target shell (defaults to the platform shell)

    Returns:
        Script text to pass to the shell's "run this command" flag

    Raises:
        InvalidSequenceError: If ``steps`` is empty or has an empty command
    """
    validate_steps(steps)
    dialect = dialect or default_dialect()

    if dialect == ShellDialect.POWERSHELL:
        return _compile_powershell(steps)
    return _compile_posix(steps)


def _compile_posix(steps: Sequence[Step]) -> str:
    lines = [steps[0].command, f"{POSIX_STATUS_VAR}=$?"]
    for step in steps[1:]:
        lines.append(f'if [ "${POSIX_STATUS_VAR}" -eq 0 ]; then')
        lines.append(step.command)
        lines.append(f"{POSIX_STATUS_VAR}=$?")
        lines.append("fi")
    lines.append(f'exit "${POSIX_STATUS_VAR}"')
    return "\n".join(lines)


def _compile_powershell(steps: Sequence[Step]) -> str:
    # Built inside out: the innermost guard wraps the last step.
    script = steps[-1].command
    for step in reversed(steps[:-1]):
        script = f"{step.command}; if ($?) {{ {script} }}"
    return script


def build_shell_argv(
    script: str,
    dialect: ShellDialect | None = None,
    shell_path: str | None = None,
) -> list[str]:
    """Build the argv that runs a compiled script under the host shell.

    Args:
        script: Output of :func:`compile_steps`
        dialect: Target shell
        shell_path: POSIX shell executable (default ``/bin/sh``)

    Returns:
        argv list for ``asyncio.create_subprocess_exec``
    """
    dialect = dialect or default_dialect()
    if dialect == ShellDialect.POWERSHELL:
        return [
            "powershell.exe",
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            POWERSHELL_UTF8_PREAMBLE + script,
        ]
    return [shell_path or DEFAULT_POSIX_SHELL, "-c", script]
