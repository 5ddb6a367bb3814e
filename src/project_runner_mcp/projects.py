"""项目配置存储。

project-runner-mcp v0.1.0

配置文件格式（JSON，UTF-8，缩进 2）:
    {
      "projects": [
        {"id": "1", "name": "web", "workingDir": "/srv/web", "command": "npm start"},
        {"id": "2", "name": "api", "commands": [
          {"name": "install", "command": "pip install -e ."},
          {"name": "serve", "command": "uvicorn app:app"}
        ]}
      ]
    }

兼容旧格式：只有单个 command 字段的项目等价于一个名为 "main" 的步骤。
保存时只有一个步骤的项目写回单数 command 形式，多个步骤写 commands。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ProjectConfigError
from .runtime.sequencer import Step

__all__ = [
    "LEGACY_STEP_NAME",
    "Project",
    "ProjectStore",
    "ProjectsConfig",
    "StepModel",
    "validate_config",
]

logger = logging.getLogger(__name__)

LEGACY_STEP_NAME = "main"


class StepModel(BaseModel):
    """配置文件中的单个命令。"""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    command: str

    def to_step(self) -> Step:
        return Step(command=self.command, name=self.name or None)


class Project(BaseModel):
    """项目定义。

    Attributes:
        id: 项目 ID（旧配置中的数字 ID 会被转成字符串）
        name: 显示名称
        working_dir: 工作目录，None 表示服务器当前目录
        commands: 有序步骤列表
        command: 旧格式的单条命令
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    working_dir: str | None = Field(default=None, alias="workingDir")
    commands: list[StepModel] = Field(default_factory=list)
    command: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("commands", mode="before")
    @classmethod
    def _none_commands(cls, value: Any) -> Any:
        return [] if value is None else value

    def steps(self) -> list[Step]:
        """规范化后的步骤列表。"""
        if self.commands:
            return [cmd.to_step() for cmd in self.commands]
        if self.command:
            return [Step(command=self.command, name=LEGACY_STEP_NAME)]
        return []

    def to_json_dict(self) -> dict[str, Any]:
        """按配置文件格式导出（camelCase，单步骤用 command 字段）。"""
        steps = self.steps()
        data: dict[str, Any] = {"id": self.id, "name": self.name}
        if len(steps) == 1:
            data["command"] = steps[0].command
        elif steps:
            data["commands"] = [
                {"name": step.name, "command": step.command} if step.name else {"command": step.command}
                for step in steps
            ]
        if self.working_dir:
            data["workingDir"] = self.working_dir
        return data


class ProjectsConfig(BaseModel):
    """配置文件根对象。"""

    model_config = ConfigDict(extra="ignore")

    projects: list[Project] = Field(default_factory=list)

    def get(self, project_id: str) -> Project | None:
        for project in self.projects:
            if project.id == project_id:
                return project
        return None

    def to_json_dict(self) -> dict[str, Any]:
        return {"projects": [project.to_json_dict() for project in self.projects]}


def validate_config(data: Any) -> ProjectsConfig:
    """校验原始配置数据并构建 ProjectsConfig。

    Args:
        data: json.loads 的结果

    Returns:
        校验通过的配置

    Raises:
        ProjectConfigError: 配置格式错误
    """
    if not isinstance(data, dict) or not isinstance(data.get("projects"), list):
        raise ProjectConfigError("invalid config: projects must be a list")

    for index, project in enumerate(data["projects"], start=1):
        if not isinstance(project, dict):
            raise ProjectConfigError(f"project {index} must be an object")
        if not project.get("id"):
            raise ProjectConfigError(f"project {index} is missing id")
        if not project.get("name"):
            raise ProjectConfigError(f"project {index} is missing name")
        commands = project.get("commands")
        if not commands and not project.get("command"):
            raise ProjectConfigError(f"project {index} is missing command or commands")
        if commands and not isinstance(commands, list):
            raise ProjectConfigError(f"project {index}: commands must be a list")
        for cmd_index, cmd in enumerate(commands or [], start=1):
            if not isinstance(cmd, dict) or not cmd.get("command"):
                raise ProjectConfigError(
                    f"project {index}: command {cmd_index} is missing command"
                )

    try:
        return ProjectsConfig.model_validate(data)
    except ValidationError as e:
        raise ProjectConfigError(f"invalid config: {e}") from e


class ProjectStore:
    """基于 JSON 文件的项目配置存储。

    每次操作都重新读取文件，外部编辑会立即生效。
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> ProjectsConfig:
        """读取配置；文件不存在或无效时返回空配置。"""
        if not self.path.exists():
            return ProjectsConfig()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return validate_config(data)
        except (OSError, ValueError, ProjectConfigError) as e:
            logger.warning(f"Failed to read config {self.path}: {e}")
            return ProjectsConfig()

    def save(self, config: ProjectsConfig) -> bool:
        """写入配置。

        Returns:
            是否写入成功
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(_dump(config), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to save config {self.path}: {e}")
            return False
        logger.debug(f"Saved {len(config.projects)} project(s) to {self.path}")
        return True

    def list_projects(self) -> list[Project]:
        return self.load().projects

    def get(self, project_id: str) -> Project | None:
        return self.load().get(project_id)

    def upsert(self, project: Project) -> bool:
        """新增或替换同 ID 的项目。"""
        if not project.steps():
            raise ProjectConfigError(f"project {project.id} has no commands")
        config = self.load()
        for index, existing in enumerate(config.projects):
            if existing.id == project.id:
                config.projects[index] = project
                break
        else:
            config.projects.append(project)
        return self.save(config)

    def delete(self, project_id: str) -> bool:
        """删除项目。

        Returns:
            项目存在且已删除返回 True
        """
        config = self.load()
        remaining = [p for p in config.projects if p.id != project_id]
        if len(remaining) == len(config.projects):
            return False
        config.projects = remaining
        return self.save(config)

    def export_to(self, path: str | Path) -> Path:
        """把当前配置导出到指定文件。"""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(_dump(self.load()), encoding="utf-8")
        logger.info(f"Exported config to {target}")
        return target

    def import_from(self, path: str | Path) -> ProjectsConfig:
        """从文件导入配置并替换当前配置。

        Raises:
            ProjectConfigError: 文件无法读取或格式错误
        """
        source = Path(path)
        try:
            data = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ProjectConfigError(f"failed to read {source}: {e}") from e
        config = validate_config(data)
        if not self.save(config):
            raise ProjectConfigError(f"failed to save imported config to {self.path}")
        logger.info(f"Imported {len(config.projects)} project(s) from {source}")
        return config


def _dump(config: ProjectsConfig) -> str:
    return json.dumps(config.to_json_dict(), ensure_ascii=False, indent=2)
