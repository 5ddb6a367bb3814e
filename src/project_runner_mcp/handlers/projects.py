"""项目工具处理器。

处理 list_projects / start_project / stop_project / project_status /
read_output / save_project / delete_project / shell_info 工具调用。
"""

from __future__ import annotations

import logging
import time
from typing import Any

from mcp.types import TextContent
from pydantic import ValidationError

from ..errors import InvalidSequenceError, ProjectConfigError
from ..events import SystemEvent, make_event_id
from ..projects import Project, StepModel
from ..runtime.sequencer import Step, validate_steps
from ..runtime.shell_detect import detect_shell
from .base import ToolContext, ToolHandler, format_error_response, format_response

__all__ = [
    "DeleteProjectHandler",
    "ListProjectsHandler",
    "ProjectStatusHandler",
    "ReadOutputHandler",
    "SaveProjectHandler",
    "ShellInfoHandler",
    "StartProjectHandler",
    "StopProjectHandler",
    "parse_steps",
]

logger = logging.getLogger(__name__)


def parse_steps(raw: Any) -> list[Step]:
    """把工具参数中的 steps 转换为 Step 列表。

    Raises:
        InvalidSequenceError: steps 不是由对象组成的数组
    """
    if not isinstance(raw, list):
        raise InvalidSequenceError("steps must be a list")
    steps = []
    for index, item in enumerate(raw):
        if isinstance(item, str):
            steps.append(Step(command=item))
        elif isinstance(item, dict):
            name = item.get("name")
            steps.append(Step(command=str(item.get("command") or ""), name=str(name) if name else None))
        else:
            raise InvalidSequenceError(f"Step {index + 1} must be an object", index=index)
    return steps


def _steps_to_dicts(steps: list[Step]) -> list[dict[str, Any]]:
    return [{"name": step.label(index), "command": step.command} for index, step in enumerate(steps)]


class ListProjectsHandler(ToolHandler):
    tool_name = "list_projects"

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        projects = []
        known = set()
        for project in ctx.store.list_projects():
            known.add(project.id)
            projects.append({
                "id": project.id,
                "name": project.name,
                "working_dir": project.working_dir,
                "status": "running" if ctx.supervisor.is_running(project.id) else "stopped",
                "steps": _steps_to_dicts(project.steps()),
            })
        # 通过 steps 参数临时启动的项目不在配置中
        for key in ctx.supervisor.running_keys():
            if key not in known:
                running = ctx.supervisor.get(key)
                projects.append({
                    "id": key,
                    "name": key,
                    "working_dir": str(running.cwd) if running else None,
                    "status": "running",
                    "steps": _steps_to_dicts(list(running.steps)) if running else [],
                    "ad_hoc": True,
                })
        return format_response({"projects": projects})


class StartProjectHandler(ToolHandler):
    tool_name = "start_project"

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        project_id = str(arguments["project_id"])
        raw_steps = arguments.get("steps")

        try:
            if raw_steps is not None:
                steps = parse_steps(raw_steps)
                working_dir = arguments.get("working_dir") or None
                project_name = project_id
            else:
                project = ctx.store.get(project_id)
                if project is None:
                    return format_error_response(f"Project '{project_id}' not found")
                steps = project.steps()
                working_dir = project.working_dir
                project_name = project.name
            validate_steps(steps)
        except InvalidSequenceError as e:
            return format_error_response(str(e))

        ctx.output_log.begin(project_id, steps)
        banner = "\n".join(
            f"{index + 1}. [{step.label(index)}] {step.command}"
            for index, step in enumerate(steps)
        )
        ctx.push_to_gui(
            SystemEvent(
                event_id=make_event_id(project_id, "start"),
                project_id=project_id,
                kind="run_start",
                message=f"steps to execute:\n{banner}",
            ).model_dump(mode="json") | {"project_name": project_name}
        )

        result = await ctx.supervisor.start(project_id, steps, working_dir)
        if not result.success:
            return format_error_response(result.error or "Failed to start process")

        ctx.output_log.attach(project_id, result.pid)
        logger.info(f"start_project: {project_id} pid={result.pid}")
        return format_response({
            "success": True,
            "project_id": project_id,
            "pid": result.pid,
            "steps": _steps_to_dicts(steps),
        })


class StopProjectHandler(ToolHandler):
    tool_name = "stop_project"

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        project_id = str(arguments["project_id"])
        stopped = ctx.supervisor.stop(project_id)
        return format_response({"success": True, "project_id": project_id, "stopped": stopped})


class ProjectStatusHandler(ToolHandler):
    tool_name = "project_status"

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        project_id = str(arguments["project_id"])
        running = ctx.supervisor.get(project_id)
        if running is not None:
            return format_response({
                "project_id": project_id,
                "running": True,
                "pid": running.pid,
                "uptime": round(running.uptime, 1),
                "working_dir": str(running.cwd),
                "steps": _steps_to_dicts(list(running.steps)),
            })

        project = ctx.store.get(project_id)
        if project is None and project_id not in ctx.output_log:
            return format_error_response(f"Project '{project_id}' not found")
        return format_response({
            "project_id": project_id,
            "running": False,
            "steps": _steps_to_dicts(project.steps()) if project else [],
        })


class ReadOutputHandler(ToolHandler):
    tool_name = "read_output"

    def validate(self, arguments: dict[str, Any]) -> str | None:
        error = super().validate(arguments)
        if error:
            return error
        if arguments.get("format", "text") not in ("text", "html"):
            return "format must be 'text' or 'html'"
        tail = arguments.get("tail")
        if tail is not None and (not isinstance(tail, int) or tail < 1):
            return "tail must be a positive integer"
        return None

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        project_id = str(arguments["project_id"])
        if arguments.get("format", "text") == "html":
            content = ctx.output_log.html(project_id)
        else:
            content = ctx.output_log.text(project_id, tail=arguments.get("tail"))
        return [TextContent(type="text", text=content)]


class SaveProjectHandler(ToolHandler):
    tool_name = "save_project"

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        project_id = str(arguments.get("project_id") or int(time.time() * 1000))
        try:
            steps = parse_steps(arguments.get("steps"))
            validate_steps(steps)
            project = Project(
                id=project_id,
                name=str(arguments["name"]).strip(),
                working_dir=(arguments.get("working_dir") or "").strip() or None,
                commands=[StepModel(name=step.name, command=step.command) for step in steps],
            )
        except (InvalidSequenceError, ValidationError) as e:
            return format_error_response(str(e))

        # 正在运行的项目先停止，新配置下次启动时生效
        was_running = ctx.supervisor.stop(project_id)

        try:
            saved = ctx.store.upsert(project)
        except ProjectConfigError as e:
            return format_error_response(str(e))
        if not saved:
            return format_error_response(f"Failed to save config to {ctx.store.path}")

        return format_response({
            "success": True,
            "project_id": project_id,
            "stopped": was_running,
        })


class DeleteProjectHandler(ToolHandler):
    tool_name = "delete_project"

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        project_id = str(arguments["project_id"])
        was_running = ctx.supervisor.stop(project_id)
        deleted = ctx.store.delete(project_id)
        ctx.output_log.forget(project_id)
        if not deleted and not was_running:
            return format_error_response(f"Project '{project_id}' not found")
        return format_response({
            "success": True,
            "project_id": project_id,
            "deleted": deleted,
            "stopped": was_running,
        })


class ShellInfoHandler(ToolHandler):
    tool_name = "shell_info"

    async def handle(self, arguments: dict[str, Any], ctx: ToolContext) -> list[TextContent]:
        info = await detect_shell(ctx.config.shell, ctx.config.shell_path)
        return format_response(info.to_dict())
