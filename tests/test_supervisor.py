"""ProcessSupervisor integration tests.

Test coverage:
- Sequence execution (stdout/stderr, working directory, exit code)
- Abort on first failing step
- Styled output and trailing output flushed before the exit event
- Stop and process tree termination
- Replacing a running process under the same key
- Spawn failures and invalid sequences
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from unittest import mock

import pytest

from project_runner_mcp.events import ExitEvent, OutputEvent, ProcessErrorEvent
from project_runner_mcp.runtime.sequencer import IS_WINDOWS, ShellDialect, Step
from project_runner_mcp.runtime.supervisor import ProcessSupervisor

pytestmark = [
    pytest.mark.skipif(IS_WINDOWS, reason="POSIX shell required"),
    pytest.mark.timeout(30),
]


# =============================================================================
# Helpers
# =============================================================================


class Recorder:
    """Collects supervisor events."""

    def __init__(self) -> None:
        self.events: list = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def output(self, stream: str = "stdout", pid: int | None = None) -> str:
        return "".join(
            e.text
            for e in self.events
            if isinstance(e, OutputEvent) and e.stream == stream and (pid is None or e.pid == pid)
        )

    def exits(self, pid: int | None = None) -> list[ExitEvent]:
        return [e for e in self.events if isinstance(e, ExitEvent) and (pid is None or e.pid == pid)]

    async def wait_exit(self, pid: int | None = None, timeout: float = 10.0) -> ExitEvent:
        async def _poll() -> ExitEvent:
            while True:
                exits = self.exits(pid)
                if exits:
                    return exits[0]
                await asyncio.sleep(0.02)

        return await asyncio.wait_for(_poll(), timeout)


def is_alive(pid: int) -> bool:
    """True if pid exists and is not a zombie."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    stat = Path(f"/proc/{pid}/stat")
    if stat.exists():
        try:
            state = stat.read_text().rsplit(")", 1)[1].split()[0]
        except (OSError, IndexError):
            return True
        return state != "Z"
    return True


async def wait_dead(pid: int, timeout: float = 5.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if not is_alive(pid):
            return True
        await asyncio.sleep(0.05)
    return not is_alive(pid)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def supervisor(recorder: Recorder):
    sup = ProcessSupervisor(dialect=ShellDialect.POSIX, drain_timeout=0.5)
    sup.add_listener(recorder)
    yield sup
    sup.close()


# =============================================================================
# Execution
# =============================================================================


class TestExecution:
    """Test running step sequences."""

    @pytest.mark.asyncio
    async def test_single_step(self, supervisor: ProcessSupervisor, recorder: Recorder):
        result = await supervisor.start("p1", [Step("echo hello")])
        assert result.success
        assert result.pid

        exit_event = await recorder.wait_exit()
        assert exit_event.exit_code == 0
        assert exit_event.stopped is False
        assert exit_event.pid == result.pid
        assert recorder.output() == "hello\n"
        assert not supervisor.is_running("p1")

    @pytest.mark.asyncio
    async def test_steps_run_in_order(self, supervisor: ProcessSupervisor, recorder: Recorder):
        await supervisor.start("p1", [Step("echo A"), Step("echo B"), Step("echo C")])
        exit_event = await recorder.wait_exit()
        assert exit_event.exit_code == 0
        assert recorder.output() == "A\nB\nC\n"

    @pytest.mark.asyncio
    async def test_failing_step_aborts_sequence(self, supervisor: ProcessSupervisor, recorder: Recorder):
        await supervisor.start("p1", [Step("exit 1"), Step("echo never")])
        exit_event = await recorder.wait_exit()
        assert exit_event.exit_code == 1
        assert "never" not in recorder.output()

    @pytest.mark.asyncio
    async def test_exit_code_of_failing_middle_step(self, supervisor: ProcessSupervisor, recorder: Recorder):
        await supervisor.start("p1", [Step("echo one"), Step("exit 7"), Step("echo three")])
        exit_event = await recorder.wait_exit()
        assert exit_event.exit_code == 7
        assert recorder.output() == "one\n"

    @pytest.mark.asyncio
    async def test_stderr_is_separate(self, supervisor: ProcessSupervisor, recorder: Recorder):
        await supervisor.start("p1", [Step("echo out; echo err 1>&2")])
        await recorder.wait_exit()
        assert recorder.output("stdout") == "out\n"
        assert recorder.output("stderr") == "err\n"

    @pytest.mark.asyncio
    async def test_working_directory(self, supervisor: ProcessSupervisor, recorder: Recorder, tmp_path: Path):
        await supervisor.start("p1", [Step("pwd")], tmp_path)
        await recorder.wait_exit()
        assert recorder.output().strip() == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_styled_output(self, supervisor: ProcessSupervisor, recorder: Recorder):
        await supervisor.start("p1", [Step(r"printf '\033[31mred\033[0m plain'")])
        await recorder.wait_exit()

        runs = [run for e in recorder.events if isinstance(e, OutputEvent) for run in e.runs]
        assert "".join(run.text for run in runs) == "red plain"
        assert runs[0].text == "red"
        assert runs[0].style == "color: #cd3131"
        assert runs[-1].style is None

    @pytest.mark.asyncio
    async def test_output_without_newline_precedes_exit(self, supervisor: ProcessSupervisor, recorder: Recorder):
        await supervisor.start("p1", [Step("printf abc")])
        await recorder.wait_exit()

        kinds = [type(e) for e in recorder.events]
        assert recorder.output() == "abc"
        assert kinds.index(ExitEvent) == len(kinds) - 1

    @pytest.mark.asyncio
    async def test_utf8_output(self, supervisor: ProcessSupervisor, recorder: Recorder):
        await supervisor.start("p1", [Step("printf '日本語 café'")])
        await recorder.wait_exit()
        assert recorder.output() == "日本語 café"

    @pytest.mark.asyncio
    async def test_background_child_holding_pipe_does_not_block_exit(
        self, supervisor: ProcessSupervisor, recorder: Recorder
    ):
        await supervisor.start("p1", [Step("sleep 30 & echo done")])
        exit_event = await recorder.wait_exit(timeout=5.0)
        assert exit_event.exit_code == 0
        assert "done" in recorder.output()

    @pytest.mark.asyncio
    async def test_background_child_dies_with_its_shell(
        self, supervisor: ProcessSupervisor, recorder: Recorder
    ):
        await supervisor.start("p1", [Step("sleep 30 & echo $!")])
        exit_event = await recorder.wait_exit(timeout=5.0)
        assert exit_event.exit_code == 0
        child = int(recorder.output().split()[0])

        await supervisor.shutdown(timeout=5.0)
        assert await wait_dead(child)

    @pytest.mark.asyncio
    async def test_background_child_without_pipes_dies_with_its_shell(
        self, supervisor: ProcessSupervisor, recorder: Recorder
    ):
        await supervisor.start("p1", [Step("sleep 30 >/dev/null 2>&1 & echo $!")])
        await recorder.wait_exit(timeout=5.0)
        child = int(recorder.output().split()[0])
        assert await wait_dead(child)


# =============================================================================
# Stop
# =============================================================================


class TestStop:
    """Test stopping and tree termination."""

    @pytest.mark.asyncio
    async def test_stop_running(self, supervisor: ProcessSupervisor, recorder: Recorder):
        result = await supervisor.start("p1", [Step("sleep 30")])
        assert supervisor.is_running("p1")

        assert supervisor.stop("p1") is True
        assert not supervisor.is_running("p1")

        exit_event = await recorder.wait_exit()
        assert exit_event.stopped is True
        assert exit_event.pid == result.pid
        assert await wait_dead(result.pid)

    @pytest.mark.asyncio
    async def test_stop_unknown_key(self, supervisor: ProcessSupervisor):
        assert supervisor.stop("missing") is False

    @pytest.mark.asyncio
    async def test_stop_immediately_after_start(self, supervisor: ProcessSupervisor, recorder: Recorder):
        result = await supervisor.start("p1", [Step("echo A")])
        supervisor.stop("p1")
        assert not supervisor.is_running("p1")

        await supervisor.shutdown(timeout=5.0)
        assert len(recorder.exits()) <= 1
        assert await wait_dead(result.pid)

    @pytest.mark.asyncio
    async def test_stop_kills_descendants(self, supervisor: ProcessSupervisor, recorder: Recorder):
        await supervisor.start("p1", [Step("sleep 30 & echo $!; wait")])

        async def _child_pid() -> int:
            while not recorder.output().strip():
                await asyncio.sleep(0.02)
            return int(recorder.output().split()[0])

        child = await asyncio.wait_for(_child_pid(), 5.0)
        assert is_alive(child)

        supervisor.stop("p1")
        await recorder.wait_exit()
        assert await wait_dead(child)

    @pytest.mark.asyncio
    async def test_stop_all_and_shutdown(self, supervisor: ProcessSupervisor, recorder: Recorder):
        await supervisor.start("a", [Step("sleep 30")])
        await supervisor.start("b", [Step("sleep 30")])
        assert supervisor.running_keys() == ["a", "b"]

        await supervisor.shutdown(timeout=5.0)

        assert len(supervisor) == 0
        assert {e.project_id for e in recorder.exits()} == {"a", "b"}
        assert all(e.stopped for e in recorder.exits())

    @pytest.mark.asyncio
    async def test_sigterm_first_when_term_timeout_set(self, recorder: Recorder):
        sup = ProcessSupervisor(dialect=ShellDialect.POSIX, term_timeout=0.5)
        sup.add_listener(recorder)
        try:
            await sup.start("p1", [Step("sleep 30")])
            sup.stop("p1")
            exit_event = await recorder.wait_exit()
            assert exit_event.exit_code == -signal.SIGTERM
        finally:
            sup.close()

    @pytest.mark.asyncio
    async def test_shutdown_drops_exit_hook(self):
        with mock.patch("project_runner_mcp.runtime.supervisor.atexit") as atexit_mock:
            sup = ProcessSupervisor(dialect=ShellDialect.POSIX)
            await sup.start("p1", [Step("sleep 30")])
            await sup.shutdown(timeout=5.0)

        atexit_mock.register.assert_called_once_with(sup._kill_all_sync)
        atexit_mock.unregister.assert_called_once_with(sup._kill_all_sync)

    @pytest.mark.asyncio
    async def test_close_kills_stopped_but_unreaped_tree(self, supervisor: ProcessSupervisor):
        result = await supervisor.start("p1", [Step("sleep 30")])
        supervisor.stop("p1")
        supervisor.close()
        assert await wait_dead(result.pid)


# =============================================================================
# Replace
# =============================================================================


class TestReplace:
    """Test starting a key that is already running."""

    @pytest.mark.asyncio
    async def test_start_replaces_running_process(self, supervisor: ProcessSupervisor, recorder: Recorder):
        first = await supervisor.start("p1", [Step("sleep 30")])
        second = await supervisor.start("p1", [Step("echo second; sleep 30")])

        assert first.pid != second.pid
        assert len(supervisor) == 1
        assert supervisor.get("p1").pid == second.pid

        old_exit = await recorder.wait_exit(pid=first.pid)
        assert old_exit.stopped is True
        assert await wait_dead(first.pid)

        # The old watcher must not deregister the new process.
        assert supervisor.is_running("p1")
        supervisor.stop("p1")
        await recorder.wait_exit(pid=second.pid)

    @pytest.mark.asyncio
    async def test_concurrent_starts_keep_one_entry(self, supervisor: ProcessSupervisor, recorder: Recorder):
        results = await asyncio.gather(*(supervisor.start("p1", [Step("sleep 30")]) for _ in range(3)))
        assert all(r.success for r in results)
        assert len(supervisor) == 1
        assert supervisor.get("p1").pid == results[-1].pid

        await supervisor.shutdown(timeout=5.0)
        for r in results:
            assert await wait_dead(r.pid)


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    """Test spawn failures and invalid input."""

    @pytest.mark.asyncio
    async def test_missing_working_directory(self, supervisor: ProcessSupervisor, recorder: Recorder, tmp_path: Path):
        result = await supervisor.start("p1", [Step("echo hi")], tmp_path / "missing")

        assert result.success is False
        assert result.error
        assert not supervisor.is_running("p1")
        errors = [e for e in recorder.events if isinstance(e, ProcessErrorEvent)]
        assert len(errors) == 1
        assert errors[0].project_id == "p1"

    @pytest.mark.asyncio
    async def test_missing_shell(self, recorder: Recorder):
        sup = ProcessSupervisor(dialect=ShellDialect.POSIX, shell_path="/nonexistent/sh")
        sup.add_listener(recorder)
        result = await sup.start("p1", [Step("echo hi")])

        assert result.success is False
        assert not sup.is_running("p1")
        assert isinstance(recorder.events[-1], ProcessErrorEvent)

    @pytest.mark.asyncio
    async def test_invalid_sequence(self, supervisor: ProcessSupervisor, recorder: Recorder):
        result = await supervisor.start("p1", [])
        assert result.success is False
        assert "empty" in result.error
        assert recorder.events == []

        result = await supervisor.start("p1", [Step("echo a"), Step("")])
        assert result.success is False
        assert not supervisor.is_running("p1")

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_supervisor(self, supervisor: ProcessSupervisor, recorder: Recorder):
        def broken(event):
            raise RuntimeError("boom")

        supervisor.add_listener(broken)
        await supervisor.start("p1", [Step("echo ok")])
        exit_event = await recorder.wait_exit()
        assert exit_event.exit_code == 0

        supervisor.remove_listener(broken)
