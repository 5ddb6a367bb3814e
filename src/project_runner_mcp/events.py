"""进程监管事件模型。

project-runner-mcp v0.1.0

监管器向调用方推送的事件，GUI 和 MCP 工具都消费这些模型。
设计原则：
1. 粗粒度分类 - output / exit / error / system 四类
2. 向前兼容 - 使用 extra='ignore' 忽略未知字段
3. 可直接序列化 - model_dump() 的结果可以穿过 multiprocessing.Queue
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Callable, Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .runtime.ansi import StyledRun, runs_to_html

__all__ = [
    "EventCategory",
    "RunPayload",
    "SupervisorEventBase",
    "OutputEvent",
    "ExitEvent",
    "ProcessErrorEvent",
    "SystemEvent",
    "SupervisorEvent",
    "EventListener",
    "make_event_id",
    "make_output_event",
    "running_state",
]


class EventCategory(str, Enum):
    OUTPUT = "output"
    EXIT = "exit"
    ERROR = "error"
    SYSTEM = "system"


def make_event_id(project_id: str, hint: str = "") -> str:
    """生成事件 ID。

    格式: {project_id}_{hint}_{uuid短码}
    """
    short_uuid = uuid.uuid4().hex[:8]
    if hint:
        return f"{project_id}_{hint}_{short_uuid}"
    return f"{project_id}_{short_uuid}"


class RunPayload(BaseModel):
    """可序列化的样式片段。

    Attributes:
        text: 原始文本（未转义）
        style: 内联 CSS，None 表示默认样式
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    text: str
    style: str | None = None

    @classmethod
    def from_run(cls, run: StyledRun) -> "RunPayload":
        return cls(text=run.text, style=run.style.css() if run.style else None)


class SupervisorEventBase(BaseModel):
    """所有监管事件的基类。

    Attributes:
        event_id: 唯一 ID
        timestamp: Unix 时间戳（秒）
        project_id: 项目 ID（系统事件为空字符串）
        category: 事件分类
    """

    model_config = ConfigDict(
        extra="ignore",
        frozen=False,
    )

    event_id: str = Field(default_factory=lambda: make_event_id("event"))
    timestamp: float = Field(default_factory=time.time)
    project_id: str = ""
    category: EventCategory


class OutputEvent(SupervisorEventBase):
    """进程输出事件。

    text 是去掉控制序列后的纯文本，html 是已转义的 HTML 片段。
    """

    category: Literal[EventCategory.OUTPUT] = EventCategory.OUTPUT
    pid: int | None = None
    stream: Literal["stdout", "stderr"] = "stdout"
    text: str = ""
    runs: list[RunPayload] = Field(default_factory=list)
    html: str = ""


class ExitEvent(SupervisorEventBase):
    """进程退出事件。

    exit_code 是 shell 最终报告的退出码，不对应具体步骤。
    stopped=True 表示进程是被 stop() 强制终止的。
    """

    category: Literal[EventCategory.EXIT] = EventCategory.EXIT
    pid: int | None = None
    exit_code: int | None = None
    stopped: bool = False


class ProcessErrorEvent(SupervisorEventBase):
    """进程创建失败事件（找不到 shell、权限不足等）。"""

    category: Literal[EventCategory.ERROR] = EventCategory.ERROR
    message: str = ""


class SystemEvent(SupervisorEventBase):
    """服务器系统通知。

    kind="run_start" 是 start_project 推送的步骤横幅，标志项目新一次运行的开始。
    """

    category: Literal[EventCategory.SYSTEM] = EventCategory.SYSTEM
    kind: Literal["notice", "run_start"] = "notice"
    severity: Literal["debug", "info", "warning", "error"] = "info"
    message: str = ""


SupervisorEvent = OutputEvent | ExitEvent | ProcessErrorEvent | SystemEvent

EventListener = Callable[[SupervisorEvent], None]


def make_output_event(
    project_id: str,
    stream: str,
    runs: Sequence[StyledRun],
    pid: int | None = None,
) -> OutputEvent:
    """由样式片段构建输出事件。"""
    return OutputEvent(
        event_id=make_event_id(project_id, stream),
        project_id=project_id,
        pid=pid,
        stream=stream,
        text="".join(run.text for run in runs),
        runs=[RunPayload.from_run(run) for run in runs],
        html=runs_to_html(runs),
    )


def running_state(event: dict[str, Any]) -> bool | None:
    """从序列化后的事件推断项目运行状态。

    Returns:
        True（启动横幅或输出）、False（退出或启动失败），无关事件返回 None
    """
    category = event.get("category")
    if category == EventCategory.OUTPUT.value:
        return True
    if category == EventCategory.SYSTEM.value and event.get("kind") == "run_start":
        return True
    if category in (EventCategory.EXIT.value, EventCategory.ERROR.value):
        return False
    return None
