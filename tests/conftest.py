"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest import mock

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """临时项目配置文件路径（文件尚不存在）。"""
    return tmp_path / "config" / "config.json"


@pytest.fixture
def clean_env():
    """清除所有 PRM_* 环境变量。"""
    env = {k: v for k, v in os.environ.items() if not k.startswith("PRM_")}
    with mock.patch.dict(os.environ, env, clear=True):
        yield
