"""procfuture 环境变量配置管理。

环境变量:
    PROCFUTURE_ENCODING: 捕获输出的文本编码
        - 默认 utf-8

    PROCFUTURE_DECODE_ERRORS: 解码错误处理策略
        - strict / replace / ignore / backslashreplace / surrogateescape
        - 默认 replace，无效值回退为 replace

    PROCFUTURE_MAX_BUFFER: 缓冲模式 (run_buffered) 下 stdout/stderr 的字节上限
        - 默认 1048576 (1 MiB)
        - 超出时终止子进程并报错

    PROCFUTURE_TERM_TIMEOUT: terminate() 发送 SIGTERM 后的等待时间（秒）
        - 默认 2.0，限制在 0.1-60 秒范围

    PROCFUTURE_KILL_TIMEOUT: terminate() 发送 SIGKILL 后的等待时间（秒）
        - 默认 1.0，限制在 0.1-60 秒范围

    PROCFUTURE_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_ENCODING = "utf-8"
DEFAULT_DECODE_ERRORS = "replace"
DEFAULT_MAX_BUFFER = 1024 * 1024
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0

# 支持的解码错误策略
SUPPORTED_DECODE_ERRORS = frozenset(
    {"strict", "replace", "ignore", "backslashreplace", "surrogateescape"}
)


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_encoding(value: str | None) -> str:
    """解析编码环境变量，未知编码回退为默认值。"""
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


def _parse_decode_errors(value: str | None) -> str:
    """解析解码错误策略。"""
    if not value:
        return DEFAULT_DECODE_ERRORS
    value = value.lower().strip()
    if value in SUPPORTED_DECODE_ERRORS:
        return value
    return DEFAULT_DECODE_ERRORS


def _parse_max_buffer(value: str | None) -> int:
    """解析缓冲上限，非正数或无效值回退为默认值。"""
    if not value:
        return DEFAULT_MAX_BUFFER
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_MAX_BUFFER
    return size if size > 0 else DEFAULT_MAX_BUFFER


def _parse_timeout(value: str | None, default: float) -> float:
    """解析超时时间（秒）。"""
    if not value:
        return default
    try:
        timeout = float(value)
        return max(0.1, min(timeout, 60.0))  # 限制在 0.1-60 秒范围
    except ValueError:
        return default


@dataclass
class Config:
    """procfuture 配置。

    Attributes:
        encoding: 捕获输出的文本编码
        decode_errors: 解码错误处理策略
        max_buffer: 缓冲模式下单个流的字节上限
        term_timeout: SIGTERM 后的等待时间（秒）
        kill_timeout: SIGKILL 后的等待时间（秒）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    encoding: str = DEFAULT_ENCODING
    decode_errors: str = DEFAULT_DECODE_ERRORS
    max_buffer: int = DEFAULT_MAX_BUFFER
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(encoding={self.encoding}, "
            f"decode_errors={self.decode_errors}, "
            f"max_buffer={self.max_buffer}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "procfuture"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procfuture_debug_{timestamp}.log"
    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("PROCFUTURE_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        encoding=_parse_encoding(os.environ.get("PROCFUTURE_ENCODING")),
        decode_errors=_parse_decode_errors(os.environ.get("PROCFUTURE_DECODE_ERRORS")),
        max_buffer=_parse_max_buffer(os.environ.get("PROCFUTURE_MAX_BUFFER")),
        term_timeout=_parse_timeout(
            os.environ.get("PROCFUTURE_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_timeout(
            os.environ.get("PROCFUTURE_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
