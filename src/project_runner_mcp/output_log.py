"""每个项目的有界输出记录。

project-runner-mcp v0.1.0

OutputLog 作为监管器的事件监听器，把输出片段按项目保存在有界 deque 中，
供 read_output 工具以纯文本或 HTML 形式读取。
"""

from __future__ import annotations

import html
import logging
from collections import deque
from collections.abc import Sequence

from .events import (
    ExitEvent,
    OutputEvent,
    ProcessErrorEvent,
    RunPayload,
    SupervisorEvent,
)
from .runtime.sequencer import Step

__all__ = ["OutputLog"]

logger = logging.getLogger(__name__)

ERROR_STYLE = "color: #f14c4c"
NOTICE_STYLE = "opacity: 0.5"


class OutputLog:
    """按项目保存最近的输出片段。

    begin() 之后、attach() 之前到达的带 pid 的事件来自被替换的旧进程，会被丢弃；
    attach() 之后只接受当前 pid 的事件。没有调用过 begin() 的项目接受所有事件。

    Attributes:
        limit: 每个项目最多保留的片段数
    """

    def __init__(self, limit: int = 2000) -> None:
        self.limit = limit
        self._logs: dict[str, deque[RunPayload]] = {}
        self._pids: dict[str, int | None] = {}

    def __call__(self, event: SupervisorEvent) -> None:
        self.handle(event)

    def handle(self, event: SupervisorEvent) -> None:
        """消费一个监管事件。"""
        if not self._accepts(event):
            return
        if isinstance(event, OutputEvent):
            self._extend(event.project_id, event.runs)
        elif isinstance(event, ExitEvent):
            code = "unknown" if event.exit_code is None else event.exit_code
            self.append(event.project_id, f"\n[process exited, code {code}]\n", NOTICE_STYLE)
        elif isinstance(event, ProcessErrorEvent):
            self.append(event.project_id, f"[error: {event.message}]\n", ERROR_STYLE)

    def _accepts(self, event: SupervisorEvent) -> bool:
        pid = getattr(event, "pid", None)
        if pid is None or event.project_id not in self._pids:
            return True
        return self._pids[event.project_id] == pid

    def begin(self, project_id: str, steps: Sequence[Step]) -> None:
        """开始新的一次运行：清空旧输出并写入待执行步骤横幅。"""
        self._logs[project_id] = deque(maxlen=self.limit)
        self._pids[project_id] = None
        lines = ["steps to execute:"]
        for index, step in enumerate(steps):
            lines.append(f"{index + 1}. [{step.label(index)}] {step.command}")
        self.append(project_id, "\n".join(lines) + "\n\n", NOTICE_STYLE)

    def attach(self, project_id: str, pid: int) -> None:
        """记录本次运行的进程 pid。"""
        self._pids[project_id] = pid

    def append(self, project_id: str, text: str, style: str | None = None) -> None:
        self._extend(project_id, [RunPayload(text=text, style=style)])

    def _extend(self, project_id: str, runs: Sequence[RunPayload]) -> None:
        log = self._logs.get(project_id)
        if log is None:
            log = self._logs[project_id] = deque(maxlen=self.limit)
        log.extend(runs)

    def runs(self, project_id: str) -> list[RunPayload]:
        return list(self._logs.get(project_id, ()))

    def text(self, project_id: str, tail: int | None = None) -> str:
        """纯文本输出。

        Args:
            project_id: 项目 ID
            tail: 只返回最后 N 行（None 表示全部）
        """
        content = "".join(run.text for run in self._logs.get(project_id, ()))
        if tail is not None and tail > 0:
            content = "\n".join(content.splitlines()[-tail:])
        return content

    def html(self, project_id: str) -> str:
        """HTML 输出，文本已转义。"""
        parts = []
        for run in self._logs.get(project_id, ()):
            escaped = html.escape(run.text)
            parts.append(f'<span style="{run.style}">{escaped}</span>' if run.style else escaped)
        return "".join(parts)

    def forget(self, project_id: str) -> None:
        self._logs.pop(project_id, None)
        self._pids.pop(project_id, None)

    def __contains__(self, project_id: str) -> bool:
        return project_id in self._logs
