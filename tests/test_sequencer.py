"""Command sequencer unit tests.

Test coverage:
- Validation of empty sequences and empty commands
- POSIX compilation (guards, order, final exit status)
- PowerShell compilation (nested guards)
- Shell argv construction
"""

from __future__ import annotations

import pytest

from project_runner_mcp.errors import InvalidSequenceError
from project_runner_mcp.runtime.sequencer import (
    DEFAULT_POSIX_SHELL,
    POWERSHELL_UTF8_PREAMBLE,
    ShellDialect,
    Step,
    build_shell_argv,
    compile_steps,
    validate_steps,
)


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    """Test step validation."""

    def test_empty_sequence_rejected(self):
        with pytest.raises(InvalidSequenceError) as exc_info:
            validate_steps([])
        assert exc_info.value.index is None

    def test_blank_command_rejected_with_index(self):
        steps = [Step("echo a"), Step("   "), Step("echo c")]
        with pytest.raises(InvalidSequenceError) as exc_info:
            validate_steps(steps)
        assert exc_info.value.index == 1
        assert "Step 2" in str(exc_info.value)

    def test_compile_validates_first(self):
        with pytest.raises(InvalidSequenceError):
            compile_steps([], ShellDialect.POSIX)

    def test_step_label_falls_back_to_position(self):
        assert Step("make").label(0) == "step 1"
        assert Step("make", name="build").label(0) == "build"


# =============================================================================
# POSIX
# =============================================================================


class TestPosixCompilation:
    """Test POSIX script compilation."""

    def test_single_step_has_no_guard(self):
        script = compile_steps([Step("echo A")], ShellDialect.POSIX)
        assert "if [" not in script
        assert script.splitlines()[0] == "echo A"
        assert script.endswith('exit "$__prm_rc"')

    @pytest.mark.parametrize("count", [1, 2, 3, 7])
    def test_n_steps_have_n_minus_one_guards(self, count: int):
        steps = [Step(f"echo step{i}") for i in range(count)]
        script = compile_steps(steps, ShellDialect.POSIX)
        lines = script.splitlines()

        guards = [line for line in lines if line.startswith("if [")]
        assert len(guards) == count - 1

        bodies = [line for line in lines if line.startswith("echo step")]
        assert bodies == [f"echo step{i}" for i in range(count)]

    def test_each_later_step_is_guarded_on_previous_status(self):
        script = compile_steps([Step("exit 1"), Step("echo never")], ShellDialect.POSIX)
        lines = script.splitlines()

        guard_index = lines.index('if [ "$__prm_rc" -eq 0 ]; then')
        assert lines.index("exit 1") < guard_index < lines.index("echo never")

    def test_multiline_command_kept_intact(self):
        command = "for i in 1 2; do\n  echo $i\ndone"
        script = compile_steps([Step("true"), Step(command)], ShellDialect.POSIX)
        assert command in script


# =============================================================================
# PowerShell
# =============================================================================


class TestPowerShellCompilation:
    """Test PowerShell script compilation."""

    def test_single_step(self):
        assert compile_steps([Step("npm start")], ShellDialect.POWERSHELL) == "npm start"

    def test_guards_are_nested(self):
        script = compile_steps(
            [Step("a"), Step("b"), Step("c")],
            ShellDialect.POWERSHELL,
        )
        assert script == "a; if ($?) { b; if ($?) { c } }"

    @pytest.mark.parametrize("count", [2, 4])
    def test_guard_count(self, count: int):
        steps = [Step(f"cmd{i}") for i in range(count)]
        script = compile_steps(steps, ShellDialect.POWERSHELL)
        assert script.count("if ($?)") == count - 1
        positions = [script.index(f"cmd{i}") for i in range(count)]
        assert positions == sorted(positions)


# =============================================================================
# argv
# =============================================================================


class TestShellArgv:
    """Test shell argv construction."""

    def test_posix_default_shell(self):
        assert build_shell_argv("echo hi", ShellDialect.POSIX) == [DEFAULT_POSIX_SHELL, "-c", "echo hi"]

    def test_posix_custom_shell(self):
        assert build_shell_argv("echo hi", ShellDialect.POSIX, "/bin/bash")[0] == "/bin/bash"

    def test_powershell_sets_utf8_output(self):
        argv = build_shell_argv("echo hi", ShellDialect.POWERSHELL)
        assert argv[0] == "powershell.exe"
        assert "-NoProfile" in argv
        assert argv[-2] == "-Command"
        assert argv[-1] == POWERSHELL_UTF8_PREAMBLE + "echo hi"


class TestShellDialect:
    """Test dialect parsing."""

    def test_from_string(self):
        assert ShellDialect.from_string("posix") == ShellDialect.POSIX
        assert ShellDialect.from_string(" PowerShell ") == ShellDialect.POWERSHELL
