"""Tool Handler 基础抽象。

定义工具处理器的协议和上下文。
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from mcp.types import TextContent

from ..tool_schema import TOOL_DESCRIPTIONS, create_tool_schema

if TYPE_CHECKING:
    from ..config import Config
    from ..output_log import OutputLog
    from ..projects import ProjectStore
    from ..runtime.supervisor import ProcessSupervisor

__all__ = [
    "ToolContext",
    "ToolHandler",
    "format_error_response",
    "format_response",
]


def format_response(data: Any) -> list[TextContent]:
    """把结果序列化为 JSON 文本响应。"""
    return [TextContent(type="text", text=json.dumps(data, ensure_ascii=False, indent=2))]


def format_error_response(error: str) -> list[TextContent]:
    """统一的错误响应格式。

    所有错误都以 {"success": false, "error": ...} 返回，保持 API 契约一致性。
    """
    return format_response({"success": False, "error": error})


@dataclass
class ToolContext:
    """工具执行上下文。

    封装工具执行所需的所有依赖，避免在函数间传递大量参数。
    """

    config: "Config"
    supervisor: "ProcessSupervisor"
    store: "ProjectStore"
    output_log: "OutputLog"
    push_to_gui: Callable[[dict[str, Any]], None]


class ToolHandler(ABC):
    """工具处理器协议。

    所有工具处理器必须实现此接口。
    """

    #: 工具名称，对应 tool_schema 中的键
    tool_name: str = ""

    @property
    def name(self) -> str:
        """工具名称。"""
        return self.tool_name

    @property
    def description(self) -> str:
        """工具描述。"""
        return TOOL_DESCRIPTIONS[self.tool_name]

    def get_input_schema(self) -> dict[str, Any]:
        """获取输入参数 schema。"""
        return create_tool_schema(self.tool_name)

    @abstractmethod
    async def handle(
        self,
        arguments: dict[str, Any],
        ctx: ToolContext,
    ) -> list[TextContent]:
        """处理工具调用。

        Args:
            arguments: 工具参数
            ctx: 执行上下文

        Returns:
            TextContent 列表
        """
        ...

    def validate(self, arguments: dict[str, Any]) -> str | None:
        """验证参数。

        Returns:
            错误消息，如果验证通过则返回 None
        """
        required = self.get_input_schema().get("required", [])
        for key in required:
            value = arguments.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                return f"Missing required argument '{key}'"
        return None
