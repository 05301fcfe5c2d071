"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 测试脚本目录
FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    """测试脚本目录。"""
    return FIXTURES_DIR


@pytest.fixture
def foo_path() -> Path:
    """内容为 'foo' 的文件。"""
    return FIXTURES_DIR / "foo.txt"


@pytest.fixture
def missing_path() -> Path:
    """不存在的文件路径。"""
    return FIXTURES_DIR / "THIS_FILE_DOES_NOT_EXIST"


@pytest.fixture
def fork_script() -> Path:
    """fork 测试脚本。"""
    return FIXTURES_DIR / "fork_child.py"


@pytest.fixture
def stderr_script() -> Path:
    """写 stderr 但正常退出的脚本。"""
    return FIXTURES_DIR / "stderr_child.py"


@pytest.fixture(autouse=True)
def _fresh_config(monkeypatch: pytest.MonkeyPatch):
    """每个测试使用干净的环境变量配置。"""
    for name in (
        "PROCFUTURE_ENCODING",
        "PROCFUTURE_DECODE_ERRORS",
        "PROCFUTURE_MAX_BUFFER",
        "PROCFUTURE_TERM_TIMEOUT",
        "PROCFUTURE_KILL_TIMEOUT",
        "PROCFUTURE_LOG_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)

    from procfuture.config import reload_config

    reload_config()
    yield
    reload_config()
