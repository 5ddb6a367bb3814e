"""信号管理模块。

把终端信号翻译成项目级操作：
- SIGINT: 按 PRM_SIGINT_MODE 停止运行中的项目或请求退出
- SIGTERM: 停止所有项目并请求退出

项目运行在各自独立的会话中，终端的 Ctrl+C 到不了它们，
所以必须由这里显式地停止。被信号停止的项目会通过 notify 回调
以系统通知的形式出现在查看器中。
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import SigintMode, get_config
from .events import EventListener, SystemEvent
from .runtime.supervisor import ProcessSupervisor

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


class SignalManager:
    """信号管理器。

    Example:
        ```python
        signal_manager = SignalManager(supervisor, on_shutdown=close_stdin)

        await signal_manager.start()
        try:
            await server.run(...)
        finally:
            await signal_manager.stop()
        ```

    Attributes:
        supervisor: 进程监管器
        sigint_mode: SIGINT 处理模式
        double_tap_window: 两次 SIGINT 视为"强制退出"的时间窗口（秒）
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
        notify: Optional[EventListener] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            supervisor: 进程监管器
            sigint_mode: SIGINT 处理模式（默认从配置读取）
            double_tap_window: 双击窗口（默认从配置读取）
            on_shutdown: 请求退出时的回调
            notify: 接收"项目被信号停止"等系统通知的监听器
        """
        self.supervisor = supervisor

        config = get_config()
        self.sigint_mode = sigint_mode if sigint_mode is not None else config.sigint_mode
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown
        self._notify = notify

        self._last_sigint: float = 0.0
        self._shutdown_requested = False
        self._force_exit = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._original_sigint_handler = None
        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """是否在双击窗口内收到第二次 SIGINT。"""
        return self._force_exit

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """安装信号处理器，必须在事件循环中调用。"""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if IS_WINDOWS:
            # Windows 事件循环不支持 add_signal_handler
            self._original_sigint_handler = signal.signal(
                signal.SIGINT, lambda sig, frame: self._handle_sigint()
            )
        else:
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
        logger.debug(
            f"Signal handlers installed (mode={self.sigint_mode.value}, "
            f"double_tap_window={self.double_tap_window}s)"
        )

    async def stop(self) -> None:
        """恢复原来的信号处理。"""
        if not self._running:
            return
        self._running = False

        try:
            if IS_WINDOWS:
                if self._original_sigint_handler is not None:
                    signal.signal(signal.SIGINT, self._original_sigint_handler)
            elif self._loop:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
        except (ValueError, RuntimeError, OSError) as e:
            logger.debug(f"Error restoring signal handlers: {e}")

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """等待直到收到退出请求。"""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    # -------------------------------------------------------------------------
    # Signal handlers
    # -------------------------------------------------------------------------

    def _handle_sigint(self) -> None:
        """处理 SIGINT。

        - 双击窗口内的第二次 SIGINT（且已请求过退出）：强制退出
        - EXIT 模式：直接请求退出
        - 没有运行中的项目：请求退出
        - STOP 模式：停止项目，服务器继续运行
        - STOP_THEN_EXIT 模式：停止项目，并等待第二次 SIGINT
        """
        now = time.monotonic()
        double_tap = now - self._last_sigint < self.double_tap_window
        self._last_sigint = now

        if double_tap and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        mode = self.sigint_mode
        if mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            self._request_shutdown()
            return

        stopped = self._stop_projects(f"SIGINT (mode={mode.value})")
        if not stopped:
            logger.info(f"SIGINT received (mode={mode.value}), nothing running, requesting shutdown")
            self._request_shutdown()
        elif mode == SigintMode.STOP_THEN_EXIT:
            # 只做标记，第二次 SIGINT 才真正退出
            self._shutdown_requested = True
            self._post(
                f"Press Ctrl+C again within {self.double_tap_window}s to exit.",
                severity="warning",
            )

    def _handle_sigterm(self) -> None:
        logger.info("SIGTERM received, initiating graceful shutdown")
        self._stop_projects("SIGTERM")
        self._request_shutdown()

    def request_graceful_shutdown(self) -> None:
        """程序化请求优雅退出。"""
        logger.info("Programmatic shutdown requested")
        self._stop_projects("Shutdown")
        self._request_shutdown()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _stop_projects(self, reason: str) -> int:
        """停止所有运行中的项目并通知查看器。

        Returns:
            停止的项目数
        """
        if not self.supervisor.has_running():
            return 0
        keys = list(self.supervisor.running_keys())
        count = self.supervisor.stop_all()
        message = f"{reason}: stopped {count} project(s) {', '.join(keys)}".rstrip()
        logger.info(message)
        self._post(message, severity="warning")
        return count

    def _post(self, message: str, severity: str = "info") -> None:
        if self._notify is None:
            return
        try:
            self._notify(SystemEvent(message=message, severity=severity))
        except Exception as e:
            logger.warning(f"Error in notify callback: {e}")

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True
        self._notify_shutdown()

    def _force_shutdown(self) -> None:
        """强制退出：实际的进程退出由 run_server() 清理完成后执行。"""
        self._force_exit = True
        self._shutdown_requested = True
        self._stop_projects("Force shutdown")
        self._notify_shutdown()

    def _notify_shutdown(self) -> None:
        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)
