"""事件渲染器。

project-runner-mcp gui v0.1.0

将监管事件（SupervisorEvent.model_dump()）渲染为 HTML 片段。
输出事件自带已转义的 html 字段；其他字段一律在这里转义。
"""

from __future__ import annotations

import html
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .colors import project_color

__all__ = [
    "EventRenderer",
    "RenderConfig",
]


@dataclass
class RenderConfig:
    """渲染配置。

    Attributes:
        detail_mode: 详细模式（显示 stderr 标记和时间戳）
        max_message_chars: 通知消息最大字符数（超出截断）
        show_raw_on_unknown: 未知事件是否显示原始 JSON
    """
    detail_mode: bool = False
    max_message_chars: int = 2000
    show_raw_on_unknown: bool = True


class EventRenderer:
    """事件渲染器。

    Example:
        renderer = EventRenderer(RenderConfig(detail_mode=True))
        html = renderer.render(event.model_dump(mode="json"))
    """

    def __init__(self, config: RenderConfig | None = None) -> None:
        self.config = config or RenderConfig()

    def render(self, event: dict[str, Any]) -> str:
        """渲染单个事件为 HTML。

        Args:
            event: 事件字典

        Returns:
            HTML 字符串
        """
        category = event.get("category", "")
        project_id = str(event.get("project_id", "") or "")

        if category == "output":
            return self._render_output(event, project_id)

        prefix = self._prefix(event, project_id)
        if category == "exit":
            return self._render_exit(event, project_id, prefix)
        elif category == "error":
            return self._render_error(event, project_id, prefix)
        elif category == "system":
            return self._render_system(event, project_id, prefix)
        else:
            return self._render_unknown(event, prefix)

    def _prefix(self, event: dict[str, Any], project_id: str) -> str:
        timestamp = self._format_timestamp(event.get("timestamp"))
        parts = [f'<span class="ts">[{timestamp}]</span>']
        if project_id:
            label = event.get("project_name") or project_id
            color = project_color(project_id)
            parts.append(f'<span class="src" style="color:{color}">[{self._esc(label)}]</span>')
        return " ".join(parts)

    def _format_timestamp(self, ts: float | int | None) -> str:
        """格式化时间戳为 HH:MM:SS。"""
        if ts is None:
            return datetime.now().strftime("%H:%M:%S")
        try:
            return datetime.fromtimestamp(float(ts)).strftime("%H:%M:%S")
        except (ValueError, TypeError, OSError):
            return datetime.now().strftime("%H:%M:%S")

    def _render_output(self, event: dict[str, Any], project_id: str) -> str:
        """渲染输出片段（行内，不换行）。"""
        body = event.get("html")
        if body is None:
            body = self._esc(event.get("text", ""))
        stream = event.get("stream", "stdout")
        cls = "o err-stream" if stream == "stderr" else "o"
        tag = ""
        if self.config.detail_mode and stream == "stderr":
            tag = '<span class="dm">[stderr] </span>'
        return (
            f'<span class="{cls}" data-project="{self._esc(project_id)}">'
            f'{tag}{body}</span>'
        )

    def _render_exit(self, event: dict[str, Any], project_id: str, prefix: str) -> str:
        code = event.get("exit_code")
        if event.get("stopped"):
            status_html = '<span class="wrn">stopped</span>'
        elif code == 0:
            status_html = '<span class="ok">exited, code 0</span>'
        else:
            shown = "unknown" if code is None else code
            status_html = f'<span class="err">exited, code {self._esc(shown)}</span>'
        return (
            f'<div class="e" data-project="{self._esc(project_id)}">'
            f'{prefix} <span class="lb">[EXIT]</span> {status_html}'
            f'</div>'
        )

    def _render_error(self, event: dict[str, Any], project_id: str, prefix: str) -> str:
        message = self._escape_and_truncate(event.get("message", ""))
        return (
            f'<div class="e" data-project="{self._esc(project_id)}">'
            f'{prefix} <span class="err">[ERROR]</span> '
            f'<span class="err">{message}</span>'
            f'</div>'
        )

    def _render_system(self, event: dict[str, Any], project_id: str, prefix: str) -> str:
        severity = event.get("severity", "info")
        message = self._escape_and_truncate(event.get("message", ""))
        severity_cls = {"error": "err", "warning": "wrn"}.get(severity, "dm")
        label = str(severity).upper()
        return (
            f'<div class="e" data-project="{self._esc(project_id)}">'
            f'{prefix} <span class="{severity_cls}">[{self._esc(label)}]</span> '
            f'<span class="{severity_cls}">{message}</span>'
            f'</div>'
        )

    def _render_unknown(self, event: dict[str, Any], prefix: str) -> str:
        raw_preview = ""
        if self.config.show_raw_on_unknown:
            raw_str = json.dumps(event, ensure_ascii=False, default=str)[:100]
            raw_preview = f' <span class="dm">{self._esc(raw_str)}...</span>'
        return f'<div class="e">{prefix} <span class="dm">[?]</span>{raw_preview}</div>'

    def _esc(self, text: Any) -> str:
        """HTML 转义。"""
        return html.escape(str(text))

    def _escape_and_truncate(self, text: str) -> str:
        """HTML 转义并截断。"""
        text = str(text).strip()
        if len(text) > self.config.max_message_chars:
            text = text[: self.config.max_message_chars] + "..."
        return html.escape(text).replace("\n", "<br>")
