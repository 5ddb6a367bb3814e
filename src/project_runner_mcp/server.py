"""Project Runner MCP Server。

管理本地项目的长时间运行命令序列，并把带样式的输出推送给 GUI。

环境变量:
    PRM_CONFIG_FILE: 项目配置文件路径
    PRM_SHELL: shell 方言 (posix/powershell)
    PRM_GUI: 是否启动 GUI (默认 true)
    PRM_GUI_DETAIL: GUI 详细模式 (默认 false)
    PRM_SIGINT_MODE: SIGINT 处理模式 (stop/exit/stop_then_exit)

用法:
    uvx project-runner-mcp
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import TextContent, Tool

from .errors import RunnerError
from .events import SupervisorEvent
from .gui_manager import GUIManager
from .handlers import HANDLERS, ToolContext, format_error_response
from .projects import ProjectStore
from .tool_schema import SUPPORTED_TOOLS, TOOL_DESCRIPTIONS, create_tool_schema

__all__ = ["GUIForwarder", "create_server"]

logger = logging.getLogger(__name__)


class GUIForwarder:
    """把监管事件连同项目名称交给 GUI 管理器。

    同时作为 ToolContext.push_to_gui 使用；项目名称按需从配置读取并缓存。
    窗口未打开时事件仍会交给管理器，由它记录下来供窗口打开后回放。
    """

    def __init__(self, gui_manager: GUIManager | None, store: ProjectStore) -> None:
        self.gui_manager = gui_manager
        self.store = store
        self._names: dict[str, str] = {}

    def __call__(self, event: SupervisorEvent) -> None:
        if self.gui_manager is None:
            return
        name = self.project_name(event.project_id) if event.project_id else None
        self.gui_manager.push_event(event, project_name=name)

    def push(self, event_dict: dict[str, Any]) -> None:
        """推送已经是字典的事件。"""
        project_id = event_dict.get("project_id")
        name = event_dict.get("project_name")
        if project_id and name:
            self._names[project_id] = name
        if self.gui_manager is not None:
            self.gui_manager.push_event(event_dict)

    def project_name(self, project_id: str) -> str:
        name = self._names.get(project_id)
        if name is None:
            project = self.store.get(project_id)
            name = self._names[project_id] = project.name if project else project_id
        return name


def create_server(ctx: ToolContext) -> Server:
    """创建 MCP Server 实例。

    Args:
        ctx: 工具执行上下文（监管器、配置存储、输出记录）
    """
    server = Server("project-runner-mcp")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """列出可用工具。"""
        tools = [
            Tool(
                name=name,
                description=TOOL_DESCRIPTIONS[name],
                inputSchema=create_tool_schema(name),
            )
            for name in SUPPORTED_TOOLS
        ]
        logger.debug(f"[MCP] list_tools called, returning {len(tools)} tools")
        return tools

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """调用工具。"""
        arguments = arguments or {}
        logger.debug(
            f"[MCP] call_tool request: {name} "
            f"{json.dumps(arguments, ensure_ascii=False, default=str)[:500]}"
        )

        handler_cls = HANDLERS.get(name)
        if handler_cls is None:
            return format_error_response(f"Unknown tool '{name}'")

        handler = handler_cls()
        error = handler.validate(arguments)
        if error:
            return format_error_response(error)

        try:
            return await handler.handle(arguments, ctx)

        except asyncio.CancelledError:
            logger.info(f"Tool '{name}' cancelled")
            raise

        except RunnerError as e:
            logger.warning(f"Tool '{name}' failed: {e}")
            return format_error_response(str(e))

        except Exception as e:
            logger.error(f"Tool '{name}' error: type={type(e).__name__}, msg={e}")
            return format_error_response(str(e))

    return server
