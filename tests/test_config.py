"""Config 模块测试。

测试 PRM_* 环境变量解析和配置管理。
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest import mock

import pytest

from project_runner_mcp.config import (
    DEFAULT_OUTPUT_LIMIT,
    SigintMode,
    get_config,
    load_config,
    reload_config,
)
from project_runner_mcp.runtime.sequencer import DEFAULT_POSIX_SHELL, ShellDialect, default_dialect


@pytest.mark.usefixtures("clean_env")
class TestDefaults:
    """测试默认值。"""

    def test_defaults(self):
        config = load_config()
        assert config.shell == default_dialect()
        assert config.shell_path == DEFAULT_POSIX_SHELL
        assert config.gui_enabled is True
        assert config.gui_detail is False
        assert config.gui_keep is False
        assert config.output_limit == DEFAULT_OUTPUT_LIMIT
        assert config.log_debug is False
        assert config.log_file is None
        assert config.sigint_mode == SigintMode.STOP
        assert config.sigint_double_tap_window == 1.0

    def test_default_config_file_under_xdg(self, tmp_path: Path):
        """非 Windows 平台使用 XDG_CONFIG_HOME。"""
        with mock.patch("project_runner_mcp.config.sys.platform", "linux"):
            with mock.patch.dict(os.environ, {"XDG_CONFIG_HOME": str(tmp_path)}):
                config = load_config()
        assert config.config_file == str(tmp_path / "project-runner-mcp" / "config.json")

    def test_default_config_file_under_appdata(self, tmp_path: Path):
        """Windows 使用 APPDATA。"""
        with mock.patch("project_runner_mcp.config.sys.platform", "win32"):
            with mock.patch.dict(os.environ, {"APPDATA": str(tmp_path)}):
                config = load_config()
        assert config.config_file == str(tmp_path / "project-runner-mcp" / "config.json")


@pytest.mark.usefixtures("clean_env")
class TestParsing:
    """测试环境变量解析。"""

    def test_config_file(self):
        with mock.patch.dict(os.environ, {"PRM_CONFIG_FILE": "/tmp/x.json"}):
            assert load_config().config_file == "/tmp/x.json"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("posix", ShellDialect.POSIX), ("POWERSHELL", ShellDialect.POWERSHELL)],
    )
    def test_shell(self, value: str, expected: ShellDialect):
        with mock.patch.dict(os.environ, {"PRM_SHELL": value}):
            assert load_config().shell == expected

    def test_unknown_shell_falls_back(self):
        with mock.patch.dict(os.environ, {"PRM_SHELL": "fish"}):
            assert load_config().shell == default_dialect()

    def test_shell_path(self):
        with mock.patch.dict(os.environ, {"PRM_SHELL_PATH": "/bin/bash"}):
            assert load_config().shell_path == "/bin/bash"

    @pytest.mark.parametrize("value", ["false", "0", "no", "off"])
    def test_gui_disabled(self, value: str):
        with mock.patch.dict(os.environ, {"PRM_GUI": value}):
            assert load_config().gui_enabled is False

    @pytest.mark.parametrize("value", ["true", "1", "yes", "ON"])
    def test_gui_detail_and_keep(self, value: str):
        with mock.patch.dict(os.environ, {"PRM_GUI_DETAIL": value, "PRM_KEEP_UI": value}):
            config = load_config()
            assert config.gui_detail is True
            assert config.gui_keep is True

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("500", 500), ("1", 100), ("9999999", 100_000), ("abc", DEFAULT_OUTPUT_LIMIT)],
    )
    def test_output_limit(self, value: str, expected: int):
        with mock.patch.dict(os.environ, {"PRM_OUTPUT_LIMIT": value}):
            assert load_config().output_limit == expected

    def test_log_debug_generates_file_path(self):
        with mock.patch.dict(os.environ, {"PRM_LOG_DEBUG": "true"}):
            config = load_config()
        assert config.log_debug is True
        assert config.log_file
        assert Path(config.log_file).name.startswith("prm_debug_")
        assert Path(config.log_file).parent.is_dir()


@pytest.mark.usefixtures("clean_env")
class TestGlobalConfig:
    """测试全局配置实例。"""

    def test_get_config_is_cached(self):
        reload_config()
        assert get_config() is get_config()

    def test_reload_config_picks_up_changes(self):
        with mock.patch.dict(os.environ, {"PRM_GUI": "false"}):
            assert reload_config().gui_enabled is False
        assert reload_config().gui_enabled is True

    def test_repr(self):
        text = repr(load_config())
        assert text.startswith("Config(")
        assert "sigint_mode=stop" in text
