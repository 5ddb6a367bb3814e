"""Tool Schema 定义。

包含工具描述、参数 schema 和 schema 创建函数。
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SUPPORTED_TOOLS",
    "TOOL_DESCRIPTIONS",
    "create_tool_schema",
]

# 支持的工具列表（顺序即 list_tools 返回顺序）
SUPPORTED_TOOLS = (
    "list_projects",
    "start_project",
    "stop_project",
    "project_status",
    "read_output",
    "save_project",
    "delete_project",
    "shell_info",
)

TOOL_DESCRIPTIONS = {
    "list_projects": """List configured projects with their steps and running status.""",

    "start_project": """Start a project's command sequence.

Steps run in order in one shell; each step runs only if every previous step
succeeded. Starting a project that is already running stops the old process
tree first.

Pass `steps` to run an ad-hoc sequence under `project_id` without consulting
the saved configuration.

Output is streamed to the live viewer (if enabled) and kept for read_output.""",

    "stop_project": """Force-stop a running project, including every child process it spawned.

Returns whether a process was running.""",

    "project_status": """Get running state, pid, uptime and steps of a project.""",

    "read_output": """Read the recent output of a project.

format=text returns plain text with escape sequences removed.
format=html returns escaped HTML with ANSI colours as inline styles.""",

    "save_project": """Create or update a saved project.

A running project is stopped before it is updated.""",

    "delete_project": """Delete a saved project. A running project is stopped first.""",

    "shell_info": """Report the shell used to run sequences and its version.""",
}

STEP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {
            "type": "string",
            "description": "Optional display name of the step.",
        },
        "command": {
            "type": "string",
            "description": "Shell command to run.",
        },
    },
    "required": ["command"],
}

PROJECT_ID_PROPERTY: dict[str, Any] = {
    "type": "string",
    "description": "Project ID.",
}


def create_tool_schema(tool: str) -> dict[str, Any]:
    """创建工具的 JSON Schema。

    Args:
        tool: 工具名称

    Raises:
        KeyError: 未知工具
    """
    if tool not in TOOL_DESCRIPTIONS:
        raise KeyError(tool)

    if tool in ("list_projects", "shell_info"):
        return {"type": "object", "properties": {}, "required": []}

    if tool in ("stop_project", "project_status", "delete_project"):
        return {
            "type": "object",
            "properties": {"project_id": PROJECT_ID_PROPERTY},
            "required": ["project_id"],
        }

    if tool == "start_project":
        return {
            "type": "object",
            "properties": {
                "project_id": PROJECT_ID_PROPERTY,
                "steps": {
                    "type": "array",
                    "items": STEP_SCHEMA,
                    "minItems": 1,
                    "description": "Ad-hoc steps. Omit to run the saved project.",
                },
                "working_dir": {
                    "type": "string",
                    "description": "Working directory for ad-hoc steps. Defaults to the server's current directory.",
                },
            },
            "required": ["project_id"],
        }

    if tool == "read_output":
        return {
            "type": "object",
            "properties": {
                "project_id": PROJECT_ID_PROPERTY,
                "tail": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Only return the last N lines (text format only).",
                },
                "format": {
                    "type": "string",
                    "enum": ["text", "html"],
                    "default": "text",
                },
            },
            "required": ["project_id"],
        }

    # save_project
    return {
        "type": "object",
        "properties": {
            "project_id": {
                "type": "string",
                "description": "Existing project ID to update. Omit to create a new project.",
            },
            "name": {"type": "string", "description": "Display name."},
            "working_dir": {
                "type": "string",
                "description": "Working directory. Defaults to the server's current directory.",
            },
            "steps": {
                "type": "array",
                "items": STEP_SCHEMA,
                "minItems": 1,
            },
        },
        "required": ["name", "steps"],
    }
