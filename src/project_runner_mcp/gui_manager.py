"""项目查看器进程管理器。

设计目标：
1. 单例 - 一个 MCP 进程最多一个查看器窗口
2. 关闭恢复 - 用户关闭窗口后自动重开，新窗口回放各项目本次运行的输出和状态
3. 保留窗口 - PRM_KEEP_UI 时服务器退出后窗口保留

架构：
- pywebview 需要占用主线程，所以窗口运行在独立子进程中
- 监管事件（pydantic 模型或字典）经 multiprocessing.Queue 以字典形式传递
- ProjectTimeline 在主进程里按项目记录事件，窗口（重新）打开时整体回放
- 心跳只用于让子进程发现主进程被 SIGKILL
"""

from __future__ import annotations

import atexit
import itertools
import logging
import multiprocessing as mp
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from .events import SupervisorEvent, running_state

__all__ = ["GUIManager", "GUIConfig", "ProjectTimeline"]

logger = logging.getLogger(__name__)

EventDict = dict[str, Any]


@dataclass
class GUIConfig:
    """查看器配置。"""

    title: str = "Project Runner"
    detail_mode: bool = False
    keep_on_exit: bool = False  # 服务器退出后是否保留窗口
    replay_limit: int = 2000  # 每个项目保留用于回放的事件数

    # 窗口被关闭后的重开策略
    restart_delay: float = 0.5
    startup_grace_period: float = 3.0  # 启动后这段时间内不检测窗口退出
    max_restart_attempts: int = 5  # restart_window 内最多重开次数
    restart_window: float = 60.0
    initial_delay: float = 1.0

    heartbeat_interval: float = 2.0
    heartbeat_timeout: float = 10.0

    # 窗口就绪（回放完成）后调用，用于重发服务器级通知
    on_restart: Callable[[], None] | None = None


# =============================================================================
# Project timeline
# =============================================================================


@dataclass
class _ProjectRun:
    name: str
    events: deque
    banner: tuple[int, EventDict] | None = None
    running: bool = False


class ProjectTimeline:
    """按项目记录最近一次运行的查看器事件。

    启动横幅（kind="run_start"）开启新一次运行并丢弃该项目的旧记录；横幅单独
    保存，不会被有界 deque 挤出。没有 project_id 的服务器通知不记录。
    所有方法都是线程安全的。
    """

    def __init__(self, limit: int = 2000) -> None:
        self.limit = limit
        self._runs: dict[str, _ProjectRun] = {}
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def record(self, event: EventDict) -> None:
        project_id = event.get("project_id")
        if not project_id:
            return
        run_start = event.get("kind") == "run_start"
        with self._lock:
            entry = (next(self._seq), event)
            run = self._runs.get(project_id)
            if run is None or run_start:
                name = run.name if run else project_id
                run = self._runs[project_id] = _ProjectRun(
                    name=name, events=deque(maxlen=self.limit)
                )
            run.name = event.get("project_name") or run.name
            if run_start:
                run.banner = entry
            else:
                run.events.append(entry)
            state = running_state(event)
            if state is not None:
                run.running = state

    def snapshot(self) -> list[EventDict]:
        """所有项目的记录，按到达顺序。"""
        with self._lock:
            entries = []
            for run in self._runs.values():
                if run.banner is not None:
                    entries.append(run.banner)
                entries.extend(run.events)
        entries.sort(key=lambda entry: entry[0])
        return [event for _, event in entries]

    def running_projects(self) -> list[str]:
        with self._lock:
            return sorted(project_id for project_id, run in self._runs.items() if run.running)

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)


# =============================================================================
# Viewer process side
# =============================================================================


@dataclass
class _Channels:
    """主进程与窗口子进程之间的 IPC 资源，每次打开窗口都重建。"""

    events: Any
    ready: Any
    shutdown: Any
    heartbeat: Any = None  # None 表示不做心跳检测（keep_on_exit）

    @classmethod
    def create(cls, with_heartbeat: bool) -> "_Channels":
        return cls(
            events=mp.Queue(maxsize=5000),
            ready=mp.Event(),
            shutdown=mp.Event(),
            heartbeat=mp.Queue(maxsize=10) if with_heartbeat else None,
        )


class _ViewerProcess:
    """子进程侧：运行窗口，转发事件，监视主进程。"""

    def __init__(self, channels: _Channels, settings: dict[str, Any]) -> None:
        from .gui import LiveViewer, ViewerConfig

        self.channels = channels
        self.heartbeat_timeout = settings.get("heartbeat_timeout", 10.0)
        self.viewer = LiveViewer(
            ViewerConfig(
                title=settings.get("title", "Project Runner"),
                detail_mode=settings.get("detail_mode", False),
            )
        )
        self._done = threading.Event()
        self._last_beat = time.monotonic()

    def run(self) -> None:
        threading.Thread(target=self._forward_events, daemon=True, name="viewer_events").start()
        threading.Thread(target=self._watch_parent, daemon=True, name="viewer_parent").start()
        self.channels.ready.set()
        self.viewer.start(blocking=True)  # 阻塞直到窗口关闭
        self._done.set()
        logger.debug("Viewer process exiting")

    def _active(self) -> bool:
        return not self._done.is_set() and not self.viewer.is_closed

    def _close(self, reason: str) -> None:
        logger.debug(f"Closing viewer: {reason}")
        self._done.set()
        self.viewer.close()

    def _forward_events(self) -> None:
        while self._active():
            try:
                event = self.channels.events.get(timeout=0.1)
            except queue.Empty:
                continue
            except (EOFError, OSError) as e:
                logger.debug(f"Event queue closed: {e}")
                return
            if event is None:
                self._close("stop sentinel")
                return
            self.viewer.push_event(event)

    def _watch_parent(self) -> None:
        beats = self.channels.heartbeat
        while self._active():
            if self.channels.shutdown.is_set():
                self._close("shutdown requested")
                return
            if beats is None:
                time.sleep(0.5)
                continue
            try:
                beats.get(timeout=0.5)
                self._last_beat = time.monotonic()
            except queue.Empty:
                if time.monotonic() - self._last_beat > self.heartbeat_timeout:
                    logger.warning("Heartbeat timeout, server process may have died")
                    self._close("heartbeat timeout")
                    return


def _viewer_entry(channels: _Channels, settings: dict[str, Any]) -> None:
    """窗口子进程入口。"""
    _ViewerProcess(channels, settings).run()


# =============================================================================
# Manager (server process side)
# =============================================================================


class GUIManager:
    """查看器进程管理器。

    push_event 在窗口未就绪时也会把项目事件记入时间线；每次窗口打开后先回放
    时间线，再转发实时事件，两者之间不会重复或乱序。

    Example:
        manager = GUIManager(GUIConfig(title="Project Runner"))
        manager.start()
        manager.push_event(exit_event, project_name="web")
        # 程序退出时自动清理（或调用 stop()）
    """

    _instances: list["GUIManager"] = []
    _atexit_registered = False

    def __init__(self, config: GUIConfig | None = None) -> None:
        self.config = config or GUIConfig()
        self.timeline = ProjectTimeline(self.config.replay_limit)

        self._process: mp.Process | None = None
        self._channels: _Channels | None = None
        self._forwarding = False  # 回放完成后才转发实时事件
        self._forward_lock = threading.Lock()

        self._running = False
        self._started_at = 0.0
        self._restart_times: deque[float] = deque()
        self._lock = threading.Lock()

        GUIManager._track(self)

    @classmethod
    def _track(cls, instance: "GUIManager") -> None:
        if not cls._atexit_registered:
            atexit.register(cls._cleanup_all)
            cls._atexit_registered = True
        cls._instances.append(instance)

    @classmethod
    def _cleanup_all(cls) -> None:
        for instance in cls._instances:
            try:
                instance.stop()
            except Exception as e:
                logger.debug(f"Cleanup error: {e}")

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """在后台线程中延迟打开窗口，不阻塞 MCP 服务器。"""
        with self._lock:
            if self._running:
                return True
            self._running = True
            self._started_at = time.monotonic()
            self._restart_times.clear()

        threading.Thread(target=self._supervise, daemon=True, name="gui_supervisor").start()
        return True

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False

        if self.config.keep_on_exit:
            with self._forward_lock:
                self._forwarding = False
            logger.info("GUI Manager stopped (GUI window kept alive)")
            return

        self._close_window()
        logger.info("GUI Manager stopped")

    def push_event(
        self,
        event: SupervisorEvent | EventDict,
        project_name: str | None = None,
    ) -> bool:
        """记录事件，窗口就绪时转发。

        Args:
            event: 监管事件模型或已序列化的事件字典
            project_name: 项目显示名称

        Returns:
            是否已送入窗口的事件队列
        """
        event_dict = event if isinstance(event, dict) else event.model_dump(mode="json")
        if project_name:
            event_dict = {**event_dict, "project_name": project_name}

        with self._forward_lock:
            self.timeline.record(event_dict)
            if not self._forwarding:
                return False
            return self._enqueue(event_dict)

    @property
    def is_running(self) -> bool:
        """窗口进程是否存活。"""
        return (
            self._running
            and self._process is not None
            and self._process.is_alive()
        )

    # -------------------------------------------------------------------------
    # Window lifecycle
    # -------------------------------------------------------------------------

    def _supervise(self) -> None:
        """后台线程：延迟打开窗口，之后发送心跳并在窗口关闭时重开。"""
        if self.config.initial_delay > 0:
            logger.info(f"GUI will start in {self.config.initial_delay}s...")
            time.sleep(self.config.initial_delay)

        if not self._running:
            return  # 延迟期间被 stop()

        if not self._open_window():
            logger.warning("Failed to start GUI")
            return
        logger.info("GUI Manager started")

        next_beat = 0.0
        while self._running:
            now = time.monotonic()
            if now >= next_beat:
                self._send_heartbeat()
                next_beat = now + self.config.heartbeat_interval

            process = self._process
            in_grace = now - self._started_at < self.config.startup_grace_period
            if process is not None and not in_grace and not process.is_alive():
                logger.info(f"GUI window closed (exit code: {process.exitcode})")
                if not self._reopen_allowed():
                    break
                time.sleep(self.config.restart_delay)
                if self._running:
                    self._open_window()

            time.sleep(0.5)

    def _reopen_allowed(self) -> bool:
        """滑动窗口内的重开次数限制。"""
        now = time.monotonic()
        while self._restart_times and now - self._restart_times[0] > self.config.restart_window:
            self._restart_times.popleft()

        if len(self._restart_times) >= self.config.max_restart_attempts:
            logger.error(f"Max restart attempts ({self.config.max_restart_attempts}) reached")
            return False

        self._restart_times.append(now)
        logger.info(
            f"Reopening GUI ({len(self._restart_times)}/{self.config.max_restart_attempts})..."
        )
        return True

    def _open_window(self) -> bool:
        """关闭旧窗口，重建 IPC，启动新窗口并回放项目记录。"""
        self._close_window()

        channels = _Channels.create(with_heartbeat=not self.config.keep_on_exit)
        settings = {
            "title": self.config.title,
            "detail_mode": self.config.detail_mode,
            "heartbeat_timeout": self.config.heartbeat_timeout,
        }
        try:
            process = mp.Process(
                target=_viewer_entry,
                args=(channels, settings),
                daemon=not self.config.keep_on_exit,
                name="gui_process",
            )
            process.start()
        except (OSError, RuntimeError) as e:
            logger.exception(f"Failed to spawn GUI: {e}")
            return False

        self._process, self._channels = process, channels

        if not channels.ready.wait(timeout=10):
            logger.error("GUI startup timeout")
            self._close_window()
            return False

        if not self._running:
            self._close_window()
            return False

        logger.info(
            f"GUI process started (PID: {process.pid}, "
            f"heartbeat={'enabled' if channels.heartbeat is not None else 'disabled'})"
        )
        self._replay()
        self._fire_on_restart()
        return True

    def _replay(self) -> None:
        """把时间线送进新窗口，然后开始转发实时事件。"""
        with self._forward_lock:
            events = self.timeline.snapshot()
            sent = 0
            for event in events:
                if not self._enqueue(event):
                    break
                sent += 1
            self._forwarding = True

        if events:
            running = self.timeline.running_projects()
            logger.info(
                f"Replayed {sent}/{len(events)} event(s) to GUI "
                f"(running: {', '.join(running) or 'none'})"
            )

    def _fire_on_restart(self) -> None:
        if self.config.on_restart:
            try:
                self.config.on_restart()
            except Exception as e:
                logger.debug(f"Restart callback error: {e}")

    def _enqueue(self, event: EventDict) -> bool:
        channels = self._channels
        if channels is None:
            return False
        try:
            channels.events.put_nowait(event)
            return True
        except queue.Full:
            logger.warning("GUI event queue full")
            return False
        except (OSError, ValueError):
            return False

    def _send_heartbeat(self) -> None:
        channels = self._channels
        if channels is None or channels.heartbeat is None:
            return
        try:
            channels.heartbeat.put_nowait(time.time())
        except queue.Full:
            pass  # 窗口没在消费，可能已关闭
        except (OSError, ValueError) as e:
            logger.debug(f"Heartbeat failed: {e}")

    def _close_window(self) -> None:
        """停止转发并关闭窗口进程：先请求退出，再 terminate，最后 kill。"""
        with self._forward_lock:
            self._forwarding = False
            process, channels = self._process, self._channels
            self._process = self._channels = None

        if process is None:
            return

        try:
            if process.is_alive():
                if channels is not None:
                    channels.shutdown.set()
                    try:
                        channels.events.put_nowait(None)
                    except queue.Full:
                        pass
                process.join(timeout=2)

            if process.is_alive():
                logger.debug("Force terminating GUI process")
                process.terminate()
                process.join(timeout=1)

            if process.is_alive():
                process.kill()
                process.join(timeout=1)
        except (OSError, ValueError) as e:
            logger.debug(f"Terminate error: {e}")
