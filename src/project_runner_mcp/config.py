"""PRM 环境变量配置管理。

环境变量:
    PRM_CONFIG_FILE: 项目配置文件路径
        - 默认 <用户配置目录>/project-runner-mcp/config.json
        - Windows 下用户配置目录为 %APPDATA%，其他平台为 $XDG_CONFIG_HOME 或 ~/.config

    PRM_SHELL: 执行命令序列使用的 shell 方言
        - posix = /bin/sh -c (非 Windows 默认)
        - powershell = powershell.exe -Command (Windows 默认)

    PRM_SHELL_PATH: POSIX shell 可执行文件
        - 默认 /bin/sh

    PRM_GUI: 是否启动 GUI 窗口
        - true/1/yes = 启动 (默认)
        - false/0/no = 不启动

    PRM_GUI_DETAIL: GUI 详细模式
        - true/1/yes = 开启 (显示步骤横幅和 stderr 标记)
        - false/0/no = 关闭 (默认)

    PRM_KEEP_UI: 主进程退出时是否保留 GUI 窗口
        - true/1/yes = 保留 (GUI 继续运行)
        - false/0/no = 关闭 (默认，随主进程退出)

    PRM_OUTPUT_LIMIT: 每个项目保留的输出片段数（read_output 使用）
        - 默认 2000，限制在 100-100000

    PRM_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    PRM_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - stop = 停止所有运行中的项目（没有运行中的项目则退出）(默认)
        - exit = 直接退出进程
        - stop_then_exit = 先停止项目，第二次才退出

    PRM_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
        - 在此时间窗口内第二次 Ctrl+C 将强制退出
"""

from __future__ import annotations

import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from .runtime.sequencer import DEFAULT_POSIX_SHELL, ShellDialect, default_dialect

__all__ = ["Config", "load_config", "get_config", "reload_config", "SigintMode"]

APP_DIR_NAME = "project-runner-mcp"

DEFAULT_OUTPUT_LIMIT = 2000
MIN_OUTPUT_LIMIT = 100
MAX_OUTPUT_LIMIT = 100_000


class SigintMode(Enum):
    """SIGINT 处理模式。

    - STOP: 停止所有运行中的项目（如果没有运行中的项目则退出）
    - EXIT: 直接退出进程
    - STOP_THEN_EXIT: 先停止项目，第二次 SIGINT 才退出
    """

    STOP = "stop"
    EXIT = "exit"
    STOP_THEN_EXIT = "stop_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """从字符串解析模式。

        Args:
            value: 模式字符串 (stop/exit/stop_then_exit)

        Returns:
            对应的 SigintMode 枚举值，无效值返回 STOP
        """
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.STOP  # 默认值


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _user_config_dir() -> Path:
    """返回平台相关的用户配置目录。"""
    if sys.platform == "win32":
        base = os.environ.get("APPDATA")
        if base:
            return Path(base)
        return Path.home() / "AppData" / "Roaming"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg)
    return Path.home() / ".config"


def _default_config_file() -> str:
    return str(_user_config_dir() / APP_DIR_NAME / "config.json")


def _parse_shell(value: str | None) -> ShellDialect:
    """解析 shell 方言环境变量。"""
    if not value or not value.strip():
        return default_dialect()
    return ShellDialect.from_string(value)


def _parse_output_limit(value: str | None) -> int:
    """解析输出保留数量环境变量。"""
    if not value:
        return DEFAULT_OUTPUT_LIMIT
    try:
        limit = int(value)
    except ValueError:
        return DEFAULT_OUTPUT_LIMIT
    return max(MIN_OUTPUT_LIMIT, min(limit, MAX_OUTPUT_LIMIT))


@dataclass
class Config:
    """PRM 配置。

    Attributes:
        config_file: 项目配置文件路径
        shell: shell 方言
        shell_path: POSIX shell 可执行文件
        gui_enabled: 是否启动 GUI
        gui_detail: GUI 详细模式
        gui_keep: 主进程退出时是否保留 GUI
        output_limit: 每个项目保留的输出片段数
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_mode: SIGINT 处理模式
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    config_file: str = ""
    shell: ShellDialect = ShellDialect.POSIX
    shell_path: str = DEFAULT_POSIX_SHELL
    gui_enabled: bool = True
    gui_detail: bool = False
    gui_keep: bool = False
    output_limit: int = DEFAULT_OUTPUT_LIMIT
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.STOP
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(config_file={self.config_file}, "
            f"shell={self.shell.value}, "
            f"shell_path={self.shell_path}, "
            f"gui_enabled={self.gui_enabled}, "
            f"gui_detail={self.gui_detail}, "
            f"gui_keep={self.gui_keep}, "
            f"output_limit={self.output_limit}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / APP_DIR_NAME
    log_dir.mkdir(parents=True, exist_ok=True)

    # 生成带时间戳的文件名
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"prm_debug_{timestamp}.log"

    return str(log_file.resolve())


def _parse_sigint_mode(value: str | None) -> SigintMode:
    """解析 SIGINT 模式环境变量。"""
    if not value:
        return SigintMode.STOP
    return SigintMode.from_string(value)


def _parse_double_tap_window(value: str | None) -> float:
    """解析双击窗口时间环境变量。"""
    if not value:
        return 1.0
    try:
        window = float(value)
        return max(0.1, min(window, 10.0))  # 限制在 0.1-10 秒范围
    except ValueError:
        return 1.0


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("PRM_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        config_file=os.environ.get("PRM_CONFIG_FILE") or _default_config_file(),
        shell=_parse_shell(os.environ.get("PRM_SHELL")),
        shell_path=os.environ.get("PRM_SHELL_PATH") or DEFAULT_POSIX_SHELL,
        gui_enabled=_parse_bool(os.environ.get("PRM_GUI"), default=True),
        gui_detail=_parse_bool(os.environ.get("PRM_GUI_DETAIL"), default=False),
        gui_keep=_parse_bool(os.environ.get("PRM_KEEP_UI"), default=False),
        output_limit=_parse_output_limit(os.environ.get("PRM_OUTPUT_LIMIT")),
        log_debug=log_debug,
        log_file=log_file,
        sigint_mode=_parse_sigint_mode(os.environ.get("PRM_SIGINT_MODE")),
        sigint_double_tap_window=_parse_double_tap_window(
            os.environ.get("PRM_SIGINT_DOUBLE_TAP_WINDOW")
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
