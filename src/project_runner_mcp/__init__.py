"""Project Runner MCP - 本地项目命令序列运行器。

环境变量:
    PRM_CONFIG_FILE: 项目配置文件路径
    PRM_GUI: 是否启动 GUI (默认 true)
    PRM_GUI_DETAIL: GUI 详细模式 (默认 false)

用法:
    uvx project-runner-mcp
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
