"""pywebview 窗口管理。

project-runner-mcp gui v0.1.0

提供 pywebview 窗口和 Queue 通信机制。

Example:
    viewer = LiveViewer(title="Project Runner")
    viewer.start()
    viewer.push_event(event.model_dump(mode="json"))
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any

from ..events import running_state
from .renderer import EventRenderer, RenderConfig
from .template import generate_html

logger = logging.getLogger(__name__)

__all__ = [
    "LiveViewer",
    "ViewerConfig",
]


@dataclass
class ViewerConfig:
    """查看器配置。

    Attributes:
        title: 窗口标题
        width: 窗口宽度
        height: 窗口高度
        detail_mode: 详细模式（显示 stderr 标记）
        queue_max_size: 事件队列最大大小
        poll_interval_ms: 队列轮询间隔（毫秒）
    """
    title: str = "Project Runner"
    width: int = 1000
    height: int = 650
    detail_mode: bool = False
    queue_max_size: int = 5000
    poll_interval_ms: int = 50


class LiveViewer:
    """实时输出查看器。

    使用 pywebview 显示所有项目的输出流，侧边栏按项目分组。
    push_event 是线程安全的，渲染在单一后台轮询线程中进行。
    """

    def __init__(
        self,
        config: ViewerConfig | None = None,
        *,
        title: str | None = None,
    ) -> None:
        self.config = config or ViewerConfig()
        if title is not None:
            self.config.title = title

        self._renderer = EventRenderer(RenderConfig(detail_mode=self.config.detail_mode))

        self._queue: queue.Queue[dict[str, Any] | None] = queue.Queue(
            maxsize=self.config.queue_max_size
        )

        # 窗口引用
        self._window = None
        self._started = threading.Event()
        self._closed = threading.Event()
        self._poll_thread: threading.Thread | None = None

    def start(self, blocking: bool = True) -> None:
        """启动查看器。

        Args:
            blocking: 是否阻塞当前线程
        """
        if blocking:
            self._run()
        else:
            thread = threading.Thread(target=self._run, daemon=True)
            thread.start()
            self._started.wait(timeout=10)

    def _run(self) -> None:
        """运行 pywebview 主循环。"""
        import webview

        self._window = webview.create_window(
            self.config.title,
            html=generate_html(title=self.config.title),
            width=self.config.width,
            height=self.config.height,
            min_size=(600, 400),
        )

        def on_loaded():
            self._started.set()
            self._poll_thread = threading.Thread(
                target=self._poll_queue_loop, daemon=True
            )
            self._poll_thread.start()

        def on_closed():
            self._closed.set()
            self._queue.put(None)  # Signal to stop polling

        self._window.events.loaded += on_loaded
        self._window.events.closed += on_closed

        webview.start()

    def _poll_queue_loop(self) -> None:
        """后台轮询线程主循环。"""
        poll_interval = self.config.poll_interval_ms / 1000

        while not self._closed.is_set() and self._window is not None:
            events_processed = 0
            while events_processed < 100:  # 每次最多处理 100 个事件
                try:
                    event = self._queue.get_nowait()
                except queue.Empty:
                    break
                if event is None:
                    return  # 收到停止信号
                self._render_event(event)
                events_processed += 1

            time.sleep(poll_interval)

    def _render_event(self, event: dict[str, Any]) -> None:
        """渲染单个事件到窗口。"""
        if self._window is None:
            return

        try:
            html = self._renderer.render(event)
            project_id = str(event.get("project_id", "") or "")
            project_name = event.get("project_name") or project_id

            args = ", ".join(
                json.dumps(value)
                for value in (html, project_id, project_name, running_state(event))
            )
            self._window.evaluate_js(f"addEvent({args})")
        except Exception as e:
            # 渲染失败不影响后续事件
            logger.warning(f"Render error: {e}")

    def push_event(self, event: dict[str, Any]) -> bool:
        """推送事件到显示队列。

        Returns:
            是否成功入队（队列满时返回 False）
        """
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            return False

    def close(self) -> None:
        """关闭查看器窗口。"""
        if self._window:
            try:
                self._window.destroy()
            except Exception as e:
                logger.debug(f"Window destroy error: {e}")

    @property
    def is_running(self) -> bool:
        """查看器是否正在运行。"""
        return self._started.is_set() and not self._closed.is_set()

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    def wait_closed(self, timeout: float | None = None) -> bool:
        """等待窗口关闭。"""
        return self._closed.wait(timeout=timeout)
