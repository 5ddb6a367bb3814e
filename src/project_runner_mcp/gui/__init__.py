"""实时输出查看器。

project-runner-mcp gui v0.1.0

    from project_runner_mcp.gui import LiveViewer
    viewer = LiveViewer(title="Project Runner")
    viewer.start()
    viewer.push_event(event_dict)
"""

from __future__ import annotations

from .colors import COLORS, PROJECT_COLORS, project_color
from .renderer import EventRenderer, RenderConfig
from .template import generate_html
from .window import LiveViewer, ViewerConfig

__all__ = [
    # Colors
    "COLORS",
    "PROJECT_COLORS",
    "project_color",
    # Renderer
    "EventRenderer",
    "RenderConfig",
    # Template
    "generate_html",
    # Window
    "LiveViewer",
    "ViewerConfig",
]
