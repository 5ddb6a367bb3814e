"""HTML 模板生成。

project-runner-mcp gui v0.1.0

生成带项目侧边栏的 HTML 模板，事件通过 evaluate_js 调用 addEvent() 推入。
"""

from __future__ import annotations

import html

from .colors import COLORS

__all__ = [
    "generate_html",
]


def generate_html(*, title: str = "Project Runner") -> str:
    """生成 HTML 模板。

    Args:
        title: 窗口标题

    Returns:
        完整的 HTML 字符串
    """
    return f'''<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<title>{html.escape(title)}</title>
<style>
* {{ margin: 0; padding: 0; box-sizing: border-box; }}
html {{ overscroll-behavior: none; }}
body {{
    background: {COLORS["bg"]};
    color: {COLORS["fg"]};
    font-family: Monaco, Menlo, Consolas, 'Courier New', monospace;
    font-size: 12px;
    line-height: 1.4;
    height: 100vh;
    display: flex;
    flex-direction: column;
    overscroll-behavior: none;
}}

/* Toolbar */
#toolbar {{
    background: {COLORS["bg_secondary"]};
    border-bottom: 1px solid {COLORS["border"]};
    padding: 4px 8px;
    display: flex;
    gap: 8px;
    align-items: center;
    flex-shrink: 0;
}}
#toolbar input {{
    background: #333;
    border: 1px solid {COLORS["border"]};
    color: {COLORS["fg"]};
    padding: 3px 8px;
    font-size: 11px;
    width: 180px;
    font-family: inherit;
    border-radius: 3px;
}}
#toolbar input:focus {{ outline: none; border-color: {COLORS["project"]}; }}
#toolbar button {{
    background: #333;
    border: 1px solid {COLORS["border"]};
    color: {COLORS["fg"]};
    padding: 3px 10px;
    cursor: pointer;
    font-size: 11px;
    border-radius: 3px;
}}
#toolbar button:hover {{ background: {COLORS["hover"]}; }}
#event-count {{ color: {COLORS["fg_dim"]}; margin-left: auto; }}
.status-text {{
    font-size: 10px;
    color: {COLORS["fg_muted"]};
    padding: 2px 6px;
    background: {COLORS["bg"]};
    border-radius: 3px;
}}
.status-text.paused {{ color: {COLORS["warning"]}; }}

/* Main container */
#main {{ flex: 1; display: flex; overflow: hidden; }}

/* Content area */
#content {{
    flex: 1;
    overflow-y: auto;
    padding: 4px 8px;
    white-space: pre-wrap;
    word-wrap: break-word;
    user-select: text;
    -webkit-user-select: text;
    overscroll-behavior: none;
}}

/* Sidebar */
#sidebar {{
    width: 160px;
    background: {COLORS["bg_secondary"]};
    border-left: 1px solid {COLORS["border"]};
    display: flex;
    flex-direction: column;
    flex-shrink: 0;
}}
#sidebar.collapsed {{ width: 0; overflow: hidden; border-left: none; }}
#sidebar-header {{
    padding: 6px 8px;
    border-bottom: 1px solid {COLORS["border"]};
    font-size: 11px;
    color: {COLORS["fg_muted"]};
}}
#sidebar-content {{ flex: 1; overflow-y: auto; padding: 4px 0; }}
.sidebar-item {{
    padding: 4px 8px;
    cursor: pointer;
    display: flex;
    justify-content: space-between;
    font-size: 11px;
    color: {COLORS["fg_muted"]};
}}
.sidebar-item:hover {{ background: {COLORS["hover"]}; }}
.sidebar-item.active {{ background: {COLORS["selection"]}; color: {COLORS["fg"]}; }}
.sidebar-item .count {{ color: {COLORS["fg_dim"]}; }}
.sidebar-item .dot {{ color: {COLORS["fg_dim"]}; margin-right: 4px; }}
.sidebar-item .dot.running {{ color: {COLORS["running"]}; }}

/* Event styles */
.e {{ display: block; padding: 1px 0; }}
.o {{ color: {COLORS["stdout"]}; }}
.o.err-stream {{ color: {COLORS["stderr"]}; }}
.hidden {{ display: none !important; }}
.ts {{ color: {COLORS["timestamp"]}; }}
.src {{ font-weight: bold; }}
.lb {{ color: {COLORS["label"]}; }}
.ok {{ color: {COLORS["success"]}; }}
.err {{ color: {COLORS["error"]}; }}
.wrn {{ color: {COLORS["warning"]}; }}
.dm {{ color: {COLORS["fg_dim"]}; }}
.hl {{ background: #3A3A00; }}

/* Scrollbar */
::-webkit-scrollbar {{ width: 8px; height: 8px; }}
::-webkit-scrollbar-track {{ background: {COLORS["bg"]}; }}
::-webkit-scrollbar-thumb {{ background: {COLORS["border"]}; border-radius: 4px; }}
</style>
</head>
<body>

<div id="toolbar">
    <input type="text" id="search" placeholder="Search..." onkeyup="applyFilter()">
    <button onclick="clearLog()">Clear</button>
    <button onclick="toggleAutoScroll()" id="scroll-toggle-btn">
        <span id="scroll-icon">⏸</span>
    </button>
    <span id="scroll-status" class="status-text">Auto</span>
    <span id="event-count">0 events</span>
    <button onclick="toggleSidebar()" title="Toggle Projects panel">
        <span id="sidebar-icon">▶</span>
    </button>
</div>

<div id="main">
    <div id="content"></div>
    <div id="sidebar">
        <div id="sidebar-header"><span>Projects</span></div>
        <div id="sidebar-content">
            <div class="sidebar-item active" data-filter="all" onclick="filterByProject('all')">
                <span>All</span>
                <span class="count" id="all-count">0</span>
            </div>
            <div id="project-list"></div>
        </div>
    </div>
</div>

<script>
let autoScroll = true;
let eventCount = 0;
let currentFilter = 'all';
let projects = {{}};  // project_id -> {{ name, count, running }}
const content = document.getElementById('content');
const projectList = document.getElementById('project-list');

function escapeText(text) {{
    const div = document.createElement('div');
    div.textContent = text;
    return div.innerHTML;
}}

// Add rendered event; running is true/false/null (null leaves the indicator alone)
function addEvent(html, projectId, projectName, running) {{
    const div = document.createElement('div');
    div.innerHTML = html;
    const eventEl = div.firstChild;
    if (eventEl) {{
        eventEl.dataset.raw = eventEl.textContent.toLowerCase();
        content.appendChild(eventEl);
        applyFilterTo(eventEl);
    }}

    eventCount++;
    document.getElementById('event-count').textContent = eventCount + ' events';
    document.getElementById('all-count').textContent = eventCount;

    if (projectId) {{
        if (!projects[projectId]) {{
            projects[projectId] = {{ name: projectName || projectId, count: 0, running: false }};
        }}
        const info = projects[projectId];
        info.count++;
        if (running === true || running === false) info.running = running;
        updateProjectList();
    }}

    if (autoScroll) {{
        content.scrollTop = content.scrollHeight;
    }}
}}

function updateProjectList() {{
    let html = '';
    for (const [pid, info] of Object.entries(projects)) {{
        const active = currentFilter === pid ? ' active' : '';
        const dot = info.running ? 'dot running' : 'dot';
        html += `<div class="sidebar-item${{active}}" data-filter="${{escapeText(pid)}}">
            <span><span class="${{dot}}">●</span>${{escapeText(info.name)}}</span>
            <span class="count">${{info.count}}</span>
        </div>`;
    }}
    projectList.innerHTML = html;
    projectList.querySelectorAll('.sidebar-item').forEach(el => {{
        el.onclick = () => filterByProject(el.dataset.filter);
    }});
}}

function filterByProject(projectId) {{
    currentFilter = projectId;
    document.querySelectorAll('.sidebar-item').forEach(el => {{
        el.classList.toggle('active', el.dataset.filter === projectId);
    }});
    applyFilter();
}}

function applyFilterTo(el) {{
    const searchQuery = document.getElementById('search').value.toLowerCase();
    let visible = true;
    if (currentFilter !== 'all') {{
        visible = (el.dataset.project || '') === currentFilter;
    }}
    if (visible && searchQuery) {{
        visible = el.dataset.raw && el.dataset.raw.includes(searchQuery);
    }}
    el.classList.toggle('hidden', !visible);
    el.classList.toggle('hl', !!searchQuery && visible);
}}

function applyFilter() {{
    content.childNodes.forEach(el => {{
        if (el.nodeType === 1) applyFilterTo(el);
    }});
}}

function clearLog() {{
    content.innerHTML = '';
    eventCount = 0;
    for (const info of Object.values(projects)) info.count = 0;
    document.getElementById('event-count').textContent = '0 events';
    document.getElementById('all-count').textContent = '0';
    updateProjectList();
}}

function setAutoScroll(enabled) {{
    autoScroll = enabled;
    const icon = document.getElementById('scroll-icon');
    const status = document.getElementById('scroll-status');
    icon.textContent = enabled ? '⏸' : '▶';
    status.textContent = enabled ? 'Auto' : 'Paused';
    status.classList.toggle('paused', !enabled);
}}

function toggleAutoScroll() {{
    setAutoScroll(!autoScroll);
}}

function toggleSidebar() {{
    const sidebar = document.getElementById('sidebar');
    sidebar.classList.toggle('collapsed');
    document.getElementById('sidebar-icon').textContent =
        sidebar.classList.contains('collapsed') ? '◀' : '▶';
}}

content.addEventListener('scroll', () => {{
    const atBottom = content.scrollHeight - content.scrollTop - content.clientHeight < 30;
    if (atBottom && !autoScroll) {{
        setAutoScroll(true);
    }} else if (!atBottom && autoScroll) {{
        setAutoScroll(false);
    }}
}});
</script>
</body>
</html>'''
