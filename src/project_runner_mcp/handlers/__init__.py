"""Tool Handlers 模块。

提供工具处理器抽象和具体实现。
"""

from .base import ToolContext, ToolHandler, format_error_response, format_response
from .projects import (
    DeleteProjectHandler,
    ListProjectsHandler,
    ProjectStatusHandler,
    ReadOutputHandler,
    SaveProjectHandler,
    ShellInfoHandler,
    StartProjectHandler,
    StopProjectHandler,
    parse_steps,
)

HANDLERS: dict[str, type[ToolHandler]] = {
    handler.tool_name: handler
    for handler in (
        ListProjectsHandler,
        StartProjectHandler,
        StopProjectHandler,
        ProjectStatusHandler,
        ReadOutputHandler,
        SaveProjectHandler,
        DeleteProjectHandler,
        ShellInfoHandler,
    )
}

__all__ = [
    "HANDLERS",
    "ToolContext",
    "ToolHandler",
    "DeleteProjectHandler",
    "ListProjectsHandler",
    "ProjectStatusHandler",
    "ReadOutputHandler",
    "SaveProjectHandler",
    "ShellInfoHandler",
    "StartProjectHandler",
    "StopProjectHandler",
    "format_error_response",
    "format_response",
    "parse_steps",
]
