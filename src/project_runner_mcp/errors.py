"""项目运行器异常类。

project-runner-mcp v0.1.0

所有失败都只作用于单个项目 key，不会导致整个服务退出。
解码错误不是异常：无法解码的字节会被替换为 U+FFFD。
"""

from __future__ import annotations

__all__ = [
    "RunnerError",
    "InvalidSequenceError",
    "SpawnError",
    "TerminationError",
    "ProjectConfigError",
]


class RunnerError(Exception):
    """项目运行器基础异常。"""
    pass


class InvalidSequenceError(RunnerError):
    """命令序列无效（为空或某一步缺少命令）。

    在启动进程之前同步抛出。

    Attributes:
        index: 出错步骤的下标（序列为空时为 None）
    """

    def __init__(self, message: str, index: int | None = None) -> None:
        self.index = index
        super().__init__(message)


class SpawnError(RunnerError):
    """操作系统拒绝创建进程（找不到可执行文件、权限不足等）。

    Attributes:
        project_id: 项目 ID
        message: 错误消息
    """

    def __init__(self, project_id: str, message: str) -> None:
        self.project_id = project_id
        self.message = message
        super().__init__(f"[{project_id}] {message}")


class TerminationError(RunnerError):
    """强制终止进程树失败。

    仅记录日志，不会从 stop() 中抛出。

    Attributes:
        pid: 目标进程 ID
    """

    def __init__(self, pid: int, message: str) -> None:
        self.pid = pid
        super().__init__(f"pid={pid}: {message}")


class ProjectConfigError(RunnerError):
    """项目配置无效。"""
    pass
