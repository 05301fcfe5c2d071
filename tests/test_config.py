"""Config 模块测试。

测试 PROCFUTURE_* 环境变量解析和配置管理。
"""

from __future__ import annotations

import logging
import os
from unittest import mock

import pytest

from procfuture.config import (
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_MAX_BUFFER,
    DEFAULT_TERM_TIMEOUT,
    Config,
    get_config,
    load_config,
    reload_config,
)
from procfuture.logging_setup import setup_logging


class TestDefaults:
    """测试默认值。"""

    def test_defaults(self):
        config = load_config()
        assert config.encoding == "utf-8"
        assert config.decode_errors == "replace"
        assert config.max_buffer == DEFAULT_MAX_BUFFER
        assert config.term_timeout == DEFAULT_TERM_TIMEOUT
        assert config.kill_timeout == DEFAULT_KILL_TIMEOUT
        assert config.log_debug is False
        assert config.log_file is None


class TestParseEncoding:
    """测试编码解析。"""

    def test_valid_encoding_normalized(self):
        with mock.patch.dict(os.environ, {"PROCFUTURE_ENCODING": "UTF8"}, clear=False):
            assert load_config().encoding == "utf-8"

    def test_unknown_encoding_falls_back(self):
        with mock.patch.dict(os.environ, {"PROCFUTURE_ENCODING": "no-such-codec"}, clear=False):
            assert load_config().encoding == "utf-8"

    @pytest.mark.parametrize("value", ["strict", "IGNORE", " backslashreplace "])
    def test_decode_errors(self, value: str):
        with mock.patch.dict(os.environ, {"PROCFUTURE_DECODE_ERRORS": value}, clear=False):
            assert load_config().decode_errors == value.strip().lower()

    def test_invalid_decode_errors(self):
        with mock.patch.dict(os.environ, {"PROCFUTURE_DECODE_ERRORS": "explode"}, clear=False):
            assert load_config().decode_errors == "replace"


class TestParseNumbers:
    """测试数值解析。"""

    def test_max_buffer(self):
        with mock.patch.dict(os.environ, {"PROCFUTURE_MAX_BUFFER": "4096"}, clear=False):
            assert load_config().max_buffer == 4096

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_max_buffer(self, value: str):
        with mock.patch.dict(os.environ, {"PROCFUTURE_MAX_BUFFER": value}, clear=False):
            assert load_config().max_buffer == DEFAULT_MAX_BUFFER

    def test_timeouts_clamped(self):
        env = {"PROCFUTURE_TERM_TIMEOUT": "0.001", "PROCFUTURE_KILL_TIMEOUT": "999"}
        with mock.patch.dict(os.environ, env, clear=False):
            config = load_config()
            assert config.term_timeout == 0.1
            assert config.kill_timeout == 60.0

    def test_invalid_timeout(self):
        with mock.patch.dict(os.environ, {"PROCFUTURE_TERM_TIMEOUT": "soon"}, clear=False):
            assert load_config().term_timeout == DEFAULT_TERM_TIMEOUT


class TestParseBool:
    """测试布尔值解析。"""

    @pytest.mark.parametrize("value", ["true", "True", "TRUE", "1", "yes", "Yes", "on"])
    def test_truthy_values(self, value: str):
        with mock.patch.dict(os.environ, {"PROCFUTURE_LOG_DEBUG": value}, clear=False):
            config = load_config()
            assert config.log_debug is True
            assert config.log_file is not None
            assert config.log_file.endswith(".log")

    @pytest.mark.parametrize("value", ["false", "0", "no", "off", ""])
    def test_falsy_values(self, value: str):
        with mock.patch.dict(os.environ, {"PROCFUTURE_LOG_DEBUG": value}, clear=False):
            config = load_config()
            assert config.log_debug is False
            assert config.log_file is None


class TestGlobalConfig:
    """测试全局配置实例。"""

    def test_get_config_cached(self):
        assert get_config() is get_config()

    def test_reload_config(self):
        first = get_config()
        with mock.patch.dict(os.environ, {"PROCFUTURE_MAX_BUFFER": "10"}, clear=False):
            second = reload_config()
        assert second is not first
        assert second.max_buffer == 10
        assert get_config() is second

    def test_repr(self):
        text = repr(Config())
        assert "encoding=utf-8" in text
        assert "max_buffer=" in text


class TestSetupLogging:
    """测试日志配置。"""

    def test_stderr_mode(self):
        logger = setup_logging(Config())
        assert logger.name == "procfuture"
        assert logger.level == logging.INFO

    def test_debug_file_mode(self, tmp_path):
        log_file = tmp_path / "debug.log"
        logger = setup_logging(Config(log_debug=True, log_file=str(log_file)))
        assert logger.level == logging.DEBUG
