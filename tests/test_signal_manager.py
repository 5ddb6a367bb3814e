"""SignalManager 模块测试。

测试信号管理器的基本功能：
- 信号处理策略
- 配置支持
- 双击退出
"""

from __future__ import annotations

import asyncio
import os
import sys
from unittest import mock

import pytest

from project_runner_mcp.config import SigintMode
from project_runner_mcp.events import SystemEvent
from project_runner_mcp.runtime.supervisor import ProcessSupervisor
from project_runner_mcp.signal_manager import SignalManager


def make_supervisor(running: bool) -> mock.MagicMock:
    """构造带有/没有运行中项目的监管器 mock。"""
    supervisor = mock.MagicMock(spec=ProcessSupervisor)
    supervisor.has_running.return_value = running
    supervisor.running_keys.return_value = ["web"] if running else []
    supervisor.stop_all.return_value = 1 if running else 0
    return supervisor


def make_manager(supervisor, **kwargs) -> SignalManager:
    manager = SignalManager(supervisor, **kwargs)
    manager._shutdown_event = asyncio.Event()
    manager._loop = mock.MagicMock()
    return manager


class TestSigintMode:
    """SigintMode 枚举测试。"""

    def test_from_string_valid(self):
        """有效字符串解析。"""
        assert SigintMode.from_string("stop") == SigintMode.STOP
        assert SigintMode.from_string("exit") == SigintMode.EXIT
        assert SigintMode.from_string("stop_then_exit") == SigintMode.STOP_THEN_EXIT

    def test_from_string_case_insensitive(self):
        """大小写不敏感。"""
        assert SigintMode.from_string("STOP") == SigintMode.STOP
        assert SigintMode.from_string("Stop_Then_Exit") == SigintMode.STOP_THEN_EXIT

    def test_from_string_invalid(self):
        """无效字符串返回默认值 STOP。"""
        assert SigintMode.from_string("invalid") == SigintMode.STOP
        assert SigintMode.from_string("") == SigintMode.STOP


class TestSignalManagerInit:
    """SignalManager 初始化测试。"""

    @pytest.mark.usefixtures("clean_env")
    def test_init_with_defaults(self):
        """使用默认配置初始化。"""
        from project_runner_mcp.config import reload_config
        reload_config()

        supervisor = make_supervisor(False)
        manager = SignalManager(supervisor)

        assert manager.supervisor is supervisor
        assert manager.sigint_mode == SigintMode.STOP
        assert manager.double_tap_window == 1.0

    def test_init_with_custom_values(self):
        """使用自定义值初始化。"""
        manager = SignalManager(
            make_supervisor(False),
            sigint_mode=SigintMode.EXIT,
            double_tap_window=2.0,
        )

        assert manager.sigint_mode == SigintMode.EXIT
        assert manager.double_tap_window == 2.0


class TestSignalManagerSigintStop:
    """SIGINT STOP 模式测试。"""

    def test_sigint_with_running_projects_stops_all(self):
        """有运行中的项目时 SIGINT 停止所有项目。"""
        supervisor = make_supervisor(True)
        manager = make_manager(supervisor, sigint_mode=SigintMode.STOP)

        manager._handle_sigint()

        supervisor.stop_all.assert_called_once()
        assert manager.is_shutdown_requested is False

    def test_sigint_without_running_projects_shuts_down(self):
        """没有运行中的项目时 SIGINT 请求关闭。"""
        supervisor = make_supervisor(False)
        manager = make_manager(supervisor, sigint_mode=SigintMode.STOP)

        manager._handle_sigint()

        supervisor.stop_all.assert_not_called()
        assert manager.is_shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_called_once()


class TestSignalManagerSigintExit:
    """SIGINT EXIT 模式测试。"""

    def test_sigint_always_shuts_down(self):
        """EXIT 模式下 SIGINT 始终请求关闭，不单独停止项目。"""
        supervisor = make_supervisor(True)
        manager = make_manager(supervisor, sigint_mode=SigintMode.EXIT)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        supervisor.stop_all.assert_not_called()


class TestSignalManagerSigintStopThenExit:
    """SIGINT STOP_THEN_EXIT 模式测试。"""

    def test_sigint_first_stops(self):
        """第一次停止项目，只标记关闭请求。"""
        supervisor = make_supervisor(True)
        manager = make_manager(
            supervisor,
            sigint_mode=SigintMode.STOP_THEN_EXIT,
            double_tap_window=1.0,
        )

        manager._handle_sigint()

        supervisor.stop_all.assert_called_once()
        assert manager._shutdown_requested is True
        manager._loop.call_soon_threadsafe.assert_not_called()

    def test_second_sigint_within_window_forces_exit(self):
        """窗口内第二次 SIGINT 强制退出。"""
        supervisor = make_supervisor(True)
        manager = make_manager(
            supervisor,
            sigint_mode=SigintMode.STOP_THEN_EXIT,
            double_tap_window=5.0,
        )

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True
        manager._loop.call_soon_threadsafe.assert_called()

    def test_sigint_without_running_projects_shuts_down(self):
        """没有运行中的项目时直接关闭。"""
        manager = make_manager(make_supervisor(False), sigint_mode=SigintMode.STOP_THEN_EXIT)

        manager._handle_sigint()

        assert manager.is_shutdown_requested is True
        assert manager.is_force_exit is False


class TestSignalManagerSigterm:
    """SIGTERM 测试。"""

    def test_sigterm_stops_all_and_shuts_down(self):
        """SIGTERM 停止所有项目并关闭。"""
        supervisor = make_supervisor(True)
        manager = make_manager(supervisor)

        manager._handle_sigterm()

        supervisor.stop_all.assert_called_once()
        assert manager.is_shutdown_requested is True


class TestSignalManagerCallbacks:
    """回调测试。"""

    def test_on_shutdown_callback(self):
        """关闭时调用回调。"""
        callback = mock.MagicMock()
        manager = make_manager(
            make_supervisor(False),
            sigint_mode=SigintMode.EXIT,
            on_shutdown=callback,
        )

        manager._handle_sigint()

        callback.assert_called_once()

    def test_failing_callback_still_notifies(self):
        """回调异常不影响 shutdown event。"""
        manager = make_manager(
            make_supervisor(False),
            sigint_mode=SigintMode.EXIT,
            on_shutdown=mock.MagicMock(side_effect=RuntimeError("boom")),
        )

        manager._handle_sigint()

        manager._loop.call_soon_threadsafe.assert_called_once()

    def test_stopped_projects_are_announced(self):
        """被信号停止的项目以系统通知推送给 notify。"""
        notify = mock.MagicMock()
        manager = make_manager(make_supervisor(True), sigint_mode=SigintMode.STOP, notify=notify)

        manager._handle_sigint()

        event = notify.call_args[0][0]
        assert isinstance(event, SystemEvent)
        assert event.severity == "warning"
        assert "stopped 1 project(s) web" in event.message

    def test_stop_then_exit_announces_second_press(self):
        """STOP_THEN_EXIT 第一次 SIGINT 提示再按一次退出。"""
        notify = mock.MagicMock()
        manager = make_manager(
            make_supervisor(True),
            sigint_mode=SigintMode.STOP_THEN_EXIT,
            double_tap_window=2.0,
            notify=notify,
        )

        manager._handle_sigint()

        messages = [call.args[0].message for call in notify.call_args_list]
        assert messages[-1] == "Press Ctrl+C again within 2.0s to exit."

    def test_nothing_running_posts_nothing(self):
        """没有项目可停时不推送通知。"""
        notify = mock.MagicMock()
        manager = make_manager(make_supervisor(False), sigint_mode=SigintMode.STOP, notify=notify)

        manager._handle_sigint()

        notify.assert_not_called()

    def test_failing_notify_is_contained(self):
        """notify 异常不影响停止项目。"""
        supervisor = make_supervisor(True)
        manager = make_manager(
            supervisor,
            sigint_mode=SigintMode.STOP,
            notify=mock.MagicMock(side_effect=RuntimeError("boom")),
        )

        manager._handle_sigint()

        supervisor.stop_all.assert_called_once()

    def test_request_graceful_shutdown(self):
        """程序化请求优雅退出。"""
        supervisor = make_supervisor(True)
        manager = make_manager(supervisor)

        manager.request_graceful_shutdown()

        supervisor.stop_all.assert_called_once()
        assert manager.is_shutdown_requested is True


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal handling")
class TestSignalManagerStartStop:
    """启动/停止测试（仅 POSIX）。"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """启动和停止信号管理器。"""
        manager = SignalManager(make_supervisor(False), sigint_mode=SigintMode.STOP)

        await manager.start()
        assert manager._running is True
        assert manager._loop is not None

        await manager.stop()
        assert manager._running is False

    @pytest.mark.asyncio
    async def test_wait_for_shutdown_after_sigterm(self):
        """SIGTERM 后 wait_for_shutdown 返回。"""
        manager = SignalManager(make_supervisor(False))
        await manager.start()
        try:
            manager._handle_sigterm()
            await asyncio.wait_for(manager.wait_for_shutdown(), timeout=1.0)
        finally:
            await manager.stop()


class TestConfigParsing:
    """信号相关配置解析测试。"""

    def test_parse_sigint_mode_from_env(self):
        """从环境变量解析 SIGINT 模式。"""
        from project_runner_mcp.config import load_config

        with mock.patch.dict(os.environ, {"PRM_SIGINT_MODE": "exit"}):
            assert load_config().sigint_mode == SigintMode.EXIT

        with mock.patch.dict(os.environ, {"PRM_SIGINT_MODE": "stop_then_exit"}):
            assert load_config().sigint_mode == SigintMode.STOP_THEN_EXIT

    def test_parse_double_tap_window_clamped(self):
        """双击窗口时间被限制在范围内。"""
        from project_runner_mcp.config import load_config

        with mock.patch.dict(os.environ, {"PRM_SIGINT_DOUBLE_TAP_WINDOW": "0.01"}):
            assert load_config().sigint_double_tap_window == 0.1

        with mock.patch.dict(os.environ, {"PRM_SIGINT_DOUBLE_TAP_WINDOW": "100"}):
            assert load_config().sigint_double_tap_window == 10.0

    def test_parse_double_tap_window_invalid(self):
        """无效值返回默认值。"""
        from project_runner_mcp.config import load_config

        with mock.patch.dict(os.environ, {"PRM_SIGINT_DOUBLE_TAP_WINDOW": "invalid"}):
            assert load_config().sigint_double_tap_window == 1.0
