"""GUI 颜色方案。

project-runner-mcp gui v0.1.0

深色主题颜色配置，参考 VS Code 风格。
"""

from __future__ import annotations

import zlib

__all__ = [
    "COLORS",
    "PROJECT_COLORS",
    "project_color",
]

# 基础颜色方案
COLORS = {
    # 背景和边框
    "bg": "#1E1E1E",
    "bg_secondary": "#252526",
    "border": "#3C3C3C",
    "hover": "#2A2A2A",
    "selection": "#264F78",

    # 文本基础
    "fg": "#D4D4D4",
    "fg_dim": "#5A5A5A",
    "fg_muted": "#6A6A6A",

    # 时间戳和标签
    "timestamp": "#5A5A5A",
    "label": "#569CD6",
    "project": "#4EC9B0",

    # 输出流
    "stdout": "#CCCCCC",
    "stderr": "#E5A07B",

    # 状态
    "success": "#89D185",
    "error": "#F44747",
    "warning": "#DCDCAA",
    "running": "#4FC1FF",
}

# 项目标签颜色（按项目 ID 稳定分配）
PROJECT_COLORS = (
    "#4285F4",
    "#10A37F",
    "#CC785C",
    "#8B5CF6",
    "#FFD700",
    "#10B981",
    "#E06C75",
    "#56B6C2",
)


def project_color(project_id: str) -> str:
    """为项目分配稳定的标签颜色。"""
    if not project_id:
        return COLORS["fg_muted"]
    return PROJECT_COLORS[zlib.crc32(project_id.encode("utf-8")) % len(PROJECT_COLORS)]
