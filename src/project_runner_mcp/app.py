"""Project Runner MCP 应用入口。

包含服务器生命周期管理和主入口点。
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys

from mcp.server.stdio import stdio_server

from .config import get_config
from .events import SystemEvent
from .gui_manager import GUIConfig, GUIManager
from .handlers import ToolContext
from .output_log import OutputLog
from .projects import ProjectStore
from .runtime.shell_detect import detect_shell
from .runtime.supervisor import ProcessSupervisor
from .server import GUIForwarder, create_server
from .signal_manager import SignalManager

__all__ = ["run_server", "main"]

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 5.0


async def run_server() -> None:
    """运行 MCP Server。

    启动 MCP 服务器，并集成信号管理器以支持：
    - SIGINT: 停止运行中的项目（而不是直接退出）
    - SIGTERM: 优雅退出

    使用并发任务架构：
    - server_task: 运行 MCP server
    - shutdown_watcher: 监听 shutdown 事件并取消 server_task

    无论以何种方式退出，finally 中都会停止所有项目并等待进程回收。
    """
    config = get_config()
    logger.info(f"Starting Project Runner MCP Server: {config}")

    supervisor = ProcessSupervisor(dialect=config.shell, shell_path=config.shell_path)
    store = ProjectStore(config.config_file)
    output_log = OutputLog(limit=config.output_limit)
    supervisor.add_listener(output_log)

    shell = await detect_shell(config.shell, config.shell_path)
    if shell.available:
        logger.info(f"Shell: {shell.executable} ({shell.version or 'version unknown'})")
    else:
        logger.warning(f"Shell for dialect {config.shell.value} not found, starts will fail")

    gui_manager: GUIManager | None = None
    signal_manager: SignalManager | None = None
    server_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None

    # 启动 GUI（如果启用）
    if config.gui_enabled:
        def push_log_debug_notice():
            if gui_manager and config.log_debug and config.log_file:
                gui_manager.push_event(SystemEvent(message=f"Debug log: {config.log_file}"))

        gui_manager = GUIManager(
            GUIConfig(
                title="Project Runner",
                detail_mode=config.gui_detail,
                keep_on_exit=config.gui_keep,
                replay_limit=config.output_limit,
                on_restart=push_log_debug_notice,  # 窗口打开并回放后调用
            )
        )
        if gui_manager.start():
            logger.info("GUI starting in background...")
        else:
            logger.warning("Failed to start GUI, continuing without it")
            gui_manager = None

    forwarder = GUIForwarder(gui_manager, store)
    supervisor.add_listener(forwarder)

    def on_shutdown():
        """信号管理器触发的关闭回调。"""
        logger.info("Shutdown callback triggered")
        if gui_manager:
            gui_manager.stop()
        # 关闭 stdin 以中断 stdio_server 的阻塞读取
        try:
            sys.stdin.close()
            logger.debug("stdin closed to unblock stdio_server")
        except OSError as e:
            logger.debug(f"Error closing stdin: {e}")

    signal_manager = SignalManager(supervisor, on_shutdown=on_shutdown, notify=forwarder)

    ctx = ToolContext(
        config=config,
        supervisor=supervisor,
        store=store,
        output_log=output_log,
        push_to_gui=forwarder.push,
    )
    server = create_server(ctx)

    async def _run_server_impl():
        """运行 MCP server（stdio transport）。"""
        logger.debug("Starting MCP server with stdio transport")
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
        logger.debug("MCP server completed normally")

    async def _watch_shutdown():
        """监听 shutdown 事件并取消 server task。"""
        await signal_manager.wait_for_shutdown()
        logger.info("Shutdown signal received, cancelling server task...")
        if server_task and not server_task.done():
            server_task.cancel()

    try:
        await signal_manager.start()
        logger.info(
            f"Signal manager started (mode={signal_manager.sigint_mode.value}, "
            f"double_tap_window={signal_manager.double_tap_window}s)"
        )

        server_task = asyncio.create_task(_run_server_impl(), name="mcp-server")
        shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")

        try:
            await server_task
        except asyncio.CancelledError:
            logger.info("Server task cancelled by shutdown signal")

    finally:
        logger.info("run_server: entering finally block")

        if shutdown_watcher and not shutdown_watcher.done():
            shutdown_watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await shutdown_watcher

        # 任何退出路径都不能遗留子进程
        stopped = supervisor.stop_all()
        if stopped:
            logger.info(f"Stopped {stopped} running project(s) on shutdown")
        await supervisor.shutdown(timeout=SHUTDOWN_TIMEOUT)

        if signal_manager:
            await signal_manager.stop()

        if gui_manager:
            gui_manager.stop()

        logger.info("run_server: cleanup completed")

        if signal_manager and signal_manager.is_force_exit:
            logger.warning("Force exit requested, terminating with exit code 130")
            sys.exit(130)  # 128 + SIGINT(2) = 130


class JsonSerializingFormatter(logging.Formatter):
    """尝试将日志参数中的对象 JSON 序列化。"""

    def format(self, record: logging.LogRecord) -> str:
        if record.args and isinstance(record.args, tuple):
            new_args = []
            for arg in record.args:
                try:
                    if hasattr(arg, "model_dump"):
                        # Pydantic 模型
                        new_args.append(json.dumps(arg.model_dump(mode="json"), ensure_ascii=False))
                    elif isinstance(arg, dict):
                        new_args.append(json.dumps(arg, ensure_ascii=False, default=str))
                    else:
                        new_args.append(arg)
                except (TypeError, ValueError):
                    new_args.append(arg)
            record.args = tuple(new_args)
        return super().format(record)


def main() -> None:
    """主入口点。"""
    config = get_config()

    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(JsonSerializingFormatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        ))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr（stdout 留给 MCP stdio transport）
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 project_runner_mcp 命名空间启用详细日志
    logging.getLogger("project_runner_mcp").setLevel(log_level)

    asyncio.run(run_server())


if __name__ == "__main__":
    main()
