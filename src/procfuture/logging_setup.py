"""日志配置。

默认输出到 stderr (INFO)；PROCFUTURE_LOG_DEBUG 开启时输出到临时文件 (DEBUG)。
root logger 保持 WARNING，只对 procfuture 命名空间启用详细日志。
"""

from __future__ import annotations

import json
import logging
import sys

from .config import Config, get_config

__all__ = ["setup_logging", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonSerializingFormatter(logging.Formatter):
    """尝试将日志参数中的对象 JSON 序列化。"""

    def format(self, record: logging.LogRecord) -> str:
        if record.args and isinstance(record.args, tuple):
            new_args = []
            for arg in record.args:
                try:
                    if isinstance(arg, dict):
                        new_args.append(json.dumps(arg, ensure_ascii=False, default=str))
                    elif isinstance(arg, (list, tuple)):
                        new_args.append(json.dumps(list(arg), ensure_ascii=False, default=str))
                    else:
                        new_args.append(arg)
                except (TypeError, ValueError):
                    new_args.append(arg)
            record.args = tuple(new_args)
        return super().format(record)


def setup_logging(config: Config | None = None) -> logging.Logger:
    """配置日志输出。

    Args:
        config: 配置实例（默认使用全局配置）

    Returns:
        procfuture 命名空间的 logger
    """
    config = config or get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(JsonSerializingFormatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 第三方库保持 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    package_logger = logging.getLogger("procfuture")
    package_logger.setLevel(log_level)
    return package_logger
