"""Process supervisor: at most one live command sequence per project.

project-runner-mcp runtime module v0.1.0

This module provides:
- One running process per project key (starting again replaces the old one)
- Cross-platform subprocess isolation (new session/process group)
- Forceful termination of the whole process tree, not just the shell
- Stdout/stderr streaming through per-stream decoder + SGR interpreter
- Exit reporting after residual buffered output has been flushed

Key design points:
- POSIX: start_new_session=True, so the shell's pid is the process group id
  and ``killpg`` reaches every descendant that did not leave the group
- Windows: CREATE_NEW_PROCESS_GROUP plus ``taskkill /T /F`` for the tree
- All registry mutation happens on the event loop thread; ``start`` calls
  are serialised by an asyncio.Lock
- ``stop`` only requests termination; the watcher task reaps the process
- Once the shell has exited, whatever is left of its group is killed, so a
  background descendant cannot outlive its project or hold the pipes open
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import os
import signal
import subprocess
import sys
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio

from ..errors import InvalidSequenceError, SpawnError, TerminationError
from ..events import (
    EventListener,
    ExitEvent,
    ProcessErrorEvent,
    SupervisorEvent,
    make_event_id,
    make_output_event,
)
from .sequencer import ShellDialect, Step, build_shell_argv, compile_steps, default_dialect
from .stream import OutputStream, StreamKind

__all__ = [
    "ProcessSupervisor",
    "RunningProcess",
    "StartResult",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

DEFAULT_READ_SIZE = 4096
DEFAULT_DRAIN_TIMEOUT = 0.5  # seconds to wait for pipe EOF after the shell exited
DEFAULT_TERM_TIMEOUT = 0.0  # 0 = SIGKILL immediately; >0 = SIGTERM first
EXIT_POLL_INTERVAL = 0.1


@dataclass(frozen=True)
class StartResult:
    """Outcome of :meth:`ProcessSupervisor.start`.

    Attributes:
        success: Whether the process was spawned and registered
        error: Error message when ``success`` is False
        pid: Process id of the spawned shell
    """

    success: bool
    error: str | None = None
    pid: int | None = None


@dataclass
class RunningProcess:
    """A live process owned by the supervisor under one project key."""

    key: str
    process: asyncio.subprocess.Process
    steps: tuple[Step, ...]
    cwd: Path
    streams: dict[StreamKind, OutputStream] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)
    watcher: asyncio.Task | None = None
    stopped: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at

    def __repr__(self) -> str:
        return (
            f"RunningProcess(key={self.key}, pid={self.pid}, "
            f"steps={len(self.steps)}, uptime={self.uptime:.1f}s)"
        )


class ProcessSupervisor:
    """Owns the project key -> running process registry.

    Example:
        supervisor = ProcessSupervisor()
        supervisor.add_listener(print)

        result = await supervisor.start(
            "web",
            [Step("npm install"), Step("npm run dev")],
            "/path/to/web",
        )
        ...
        supervisor.stop("web")
    """

    def __init__(
        self,
        *,
        dialect: ShellDialect | None = None,
        shell_path: str | None = None,
        read_size: int = DEFAULT_READ_SIZE,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        env: dict[str, str] | None = None,
    ) -> None:
        self.dialect = dialect or default_dialect()
        self.shell_path = shell_path
        self.read_size = read_size
        self.drain_timeout = drain_timeout
        self.term_timeout = term_timeout
        self.env = env

        self._processes: dict[str, RunningProcess] = {}
        # pid -> process whose tree has not been reaped yet, registered or not
        self._alive: dict[int, RunningProcess] = {}
        self._watchers: set[asyncio.Task] = set()
        self._listeners: list[EventListener] = []
        self._start_lock = asyncio.Lock()

        # Last line of defence: nothing may outlive the interpreter.
        atexit.register(self._kill_all_sync)

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: SupervisorEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Error in event listener: {e}")

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def start(
        self,
        key: str,
        steps: Sequence[Step],
        working_dir: str | Path | None = None,
    ) -> StartResult:
        """Compile ``steps`` and run them under ``key``.

        A process already registered under ``key`` is tree-killed and
        deregistered before the new one is spawned, so the registry never
        holds two entries for one key.

        Args:
            key: Project key
            steps: Ordered steps, length >= 1
            working_dir: Working directory (default: current directory)

        Returns:
            StartResult; on spawn failure a ProcessErrorEvent is also emitted
        """
        try:
            script = compile_steps(steps, self.dialect)
        except InvalidSequenceError as e:
            logger.warning(f"Rejected step sequence for {key}: {e}")
            return StartResult(success=False, error=str(e))

        cwd = Path(working_dir) if working_dir else Path.cwd()
        argv = build_shell_argv(script, self.dialect, self.shell_path)

        async with self._start_lock:
            previous = self._processes.pop(key, None)
            if previous is not None:
                logger.info(f"Replacing running process for {key}: {previous}")
                previous.stopped = True
                self._terminate_tree(previous)

            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    **self._build_subprocess_kwargs(),
                )
            except OSError as e:
                error = SpawnError(key, f"Failed to start process: {e}")
                logger.warning(f"Spawn failed: {error}")
                self._emit(
                    ProcessErrorEvent(
                        event_id=make_event_id(key, "error"),
                        project_id=key,
                        message=error.message,
                    )
                )
                return StartResult(success=False, error=error.message)

            running = RunningProcess(
                key=key,
                process=process,
                steps=tuple(steps),
                cwd=cwd,
                streams={
                    StreamKind.STDOUT: OutputStream(StreamKind.STDOUT),
                    StreamKind.STDERR: OutputStream(StreamKind.STDERR),
                },
            )
            self._processes[key] = running
            self._alive[running.pid] = running
            running.watcher = asyncio.create_task(self._watch(running), name=f"watch-{key}")
            self._watchers.add(running.watcher)
            running.watcher.add_done_callback(self._watchers.discard)

        logger.info(
            f"Started {key} pid={process.pid} steps={len(steps)} cwd={cwd}"
        )
        return StartResult(success=True, pid=process.pid)

    def stop(self, key: str) -> bool:
        """Tree-kill the process registered under ``key`` and deregister it.

        Does not wait for the process to die; the watcher reaps it and emits
        the exit event.

        Returns:
            True if a process was registered, False otherwise
        """
        running = self._processes.pop(key, None)
        if running is None:
            return False
        running.stopped = True
        logger.info(f"Stopping {key}: {running}")
        self._terminate_tree(running)
        return True

    def stop_all(self) -> int:
        """Stop every registered process.

        Returns:
            Number of processes that were stopped
        """
        keys = list(self._processes)
        for key in keys:
            self.stop(key)
        if keys:
            logger.info(f"Stopped {len(keys)} running process(es)")
        return len(keys)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop everything, wait (bounded) for the watchers to reap, then close."""
        self.stop_all()
        watchers = list(self._watchers)
        if watchers:
            with anyio.move_on_after(timeout) as scope:
                await asyncio.gather(*watchers, return_exceptions=True)
            if scope.cancelled_caught:
                logger.warning(f"{len(self._watchers)} watcher(s) still running after shutdown")
        self.close()

    def close(self) -> None:
        """Kill every tree not yet reaped and drop the atexit hook."""
        self._kill_all_sync()
        atexit.unregister(self._kill_all_sync)

    def is_running(self, key: str) -> bool:
        return key in self._processes

    def get(self, key: str) -> RunningProcess | None:
        return self._processes.get(key)

    def running_keys(self) -> list[str]:
        return sorted(self._processes)

    def has_running(self) -> bool:
        return bool(self._processes)

    def __len__(self) -> int:
        return len(self._processes)

    def __contains__(self, key: str) -> bool:
        return key in self._processes

    # -------------------------------------------------------------------------
    # Streaming and reaping
    # -------------------------------------------------------------------------

    async def _watch(self, running: RunningProcess) -> None:
        """Pump both streams, reap the process, flush, report exit."""
        process = running.process
        pumps = [
            asyncio.create_task(self._pump(running, StreamKind.STDOUT, process.stdout)),
            asyncio.create_task(self._pump(running, StreamKind.STDERR, process.stderr)),
        ]
        try:
            exit_code = await self._wait_exit(process, pumps)
            # Descendants may still hold the pipes open; give them a moment.
            _, pending = await asyncio.wait(pumps, timeout=self.drain_timeout)
            self._kill_leftovers(running, pipes_open=bool(pending))
            if pending:
                _, pending = await asyncio.wait(pending, timeout=self.drain_timeout)
            if pending:
                logger.debug(f"Pipes of {running.key} still open after exit, closing")
        except asyncio.CancelledError:
            self._terminate_tree(running)
            raise
        finally:
            for pump in pumps:
                if not pump.done():
                    pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            self._close_pipes(process)
            self._alive.pop(running.pid, None)

        for kind in (StreamKind.STDOUT, StreamKind.STDERR):
            runs = running.streams[kind].flush()
            if runs:
                self._emit(make_output_event(running.key, kind.value, runs, pid=running.pid))

        logger.info(
            f"Process {running.key} pid={running.pid} exited "
            f"returncode={exit_code} stopped={running.stopped}"
        )
        self._emit(
            ExitEvent(
                event_id=make_event_id(running.key, "exit"),
                project_id=running.key,
                pid=running.pid,
                exit_code=exit_code,
                stopped=running.stopped,
            )
        )

        # The key may already belong to a newer process.
        if self._processes.get(running.key) is running:
            del self._processes[running.key]

    async def _wait_exit(
        self,
        process: asyncio.subprocess.Process,
        pumps: list[asyncio.Task],
    ) -> int:
        """Wait for the shell itself to exit.

        Process.wait() only returns once every pipe is closed, which a
        background descendant can postpone indefinitely. While the pipes are
        open the return code is polled instead.
        """
        pending = set(pumps)
        while process.returncode is None:
            if not pending:
                return await process.wait()
            _, pending = await asyncio.wait(pending, timeout=EXIT_POLL_INTERVAL)
        return process.returncode

    def _kill_leftovers(self, running: RunningProcess, *, pipes_open: bool) -> None:
        """Kill descendants that survived their shell.

        On POSIX the group is signalled unconditionally; an empty group just
        raises ProcessLookupError. On Windows the tree is only reachable
        through taskkill, which is spawned when something still holds a pipe.
        """
        if IS_WINDOWS:
            if pipes_open:
                self._terminate_tree(running)
            return
        try:
            os.killpg(running.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            return
        logger.info(f"Killed leftover descendants of {running.key} pgid={running.pid}")

    @staticmethod
    def _close_pipes(process: asyncio.subprocess.Process) -> None:
        """Release the pipe file descriptors once streaming is over."""
        if process.stdin is not None:
            process.stdin.close()
        transport = getattr(process, "_transport", None)
        if transport is not None:
            transport.close()

    async def _pump(
        self,
        running: RunningProcess,
        kind: StreamKind,
        reader: asyncio.StreamReader | None,
    ) -> None:
        """Feed one stream's chunks, in arrival order, through its pipeline."""
        if reader is None:
            return
        stream = running.streams[kind]
        while True:
            chunk = await reader.read(self.read_size)
            if not chunk:
                break
            runs = stream.feed(chunk)
            if runs:
                self._emit(make_output_event(running.key, kind.value, runs, pid=running.pid))

    # -------------------------------------------------------------------------
    # Platform specifics
    # -------------------------------------------------------------------------

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if self.env is not None:
            kwargs["env"] = dict(self.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs

    def _terminate_tree(self, running: RunningProcess) -> None:
        """Request termination of the whole tree; failures are only logged."""
        try:
            if IS_WINDOWS:
                self._windows_kill_tree(running.process)
            else:
                self._posix_kill_tree(running.process)
        except TerminationError as e:
            logger.warning(f"Failed to terminate {running.key}: {e}")

    def _posix_kill_tree(self, process: asyncio.subprocess.Process) -> None:
        """Signal the process group on POSIX systems.

        The shell was started as a session leader, so its pid is the pgid.
        The group is signalled even if the leader already exited, because
        its descendants may still be alive.
        """
        pgid = process.pid
        first = signal.SIGTERM if self.term_timeout > 0 else signal.SIGKILL
        try:
            os.killpg(pgid, first)
            logger.debug(f"Sent {first.name} to process group pgid={pgid}")
        except ProcessLookupError:
            return
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            try:
                process.kill()
            except ProcessLookupError:
                return
            except OSError as kill_error:
                raise TerminationError(pgid, str(kill_error)) from kill_error
            return

        if first == signal.SIGTERM:
            asyncio.get_running_loop().call_later(
                self.term_timeout, self._posix_force_kill, pgid
            )

    @staticmethod
    def _posix_force_kill(pgid: int) -> None:
        try:
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except (ProcessLookupError, PermissionError):
            pass

    def _windows_kill_tree(self, process: asyncio.subprocess.Process) -> None:
        """Force kill the tree on Windows with taskkill /T /F."""
        try:
            subprocess.Popen(
                ["taskkill", "/pid", str(process.pid), "/f", "/t"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            logger.debug(f"Spawned taskkill for pid={process.pid}")
        except OSError as e:
            logger.debug(f"taskkill failed, falling back to kill: {e}")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            except OSError as kill_error:
                raise TerminationError(process.pid, str(kill_error)) from kill_error

    def _kill_all_sync(self) -> None:
        """atexit hook: tree-kill whatever is registered or not yet reaped."""
        pending = {running.pid: running for running in self._processes.values()}
        pending.update(self._alive)
        self._processes.clear()
        self._alive.clear()
        for running in pending.values():
            running.stopped = True
            try:
                if IS_WINDOWS:
                    self._windows_kill_tree(running.process)
                else:
                    os.killpg(running.pid, signal.SIGKILL)
            except (OSError, TerminationError):
                pass
