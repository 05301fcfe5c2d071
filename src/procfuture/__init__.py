"""procfuture - child processes as futures.

Run a process and get back a future that already exposes the live process
handle, supports promise-style chaining and settles exactly once.

环境变量:
    PROCFUTURE_ENCODING: 捕获输出的文本编码 (默认 utf-8)
    PROCFUTURE_MAX_BUFFER: run_buffered 的输出上限 (默认 1 MiB)
    PROCFUTURE_LOG_DEBUG: 日志输出到临时文件 (默认 false)

用法:
    from procfuture import RunOptions, run_streamed

    future = run_streamed("ls", ["-l"], RunOptions(capture=["stdout"]))
    print(future.process.argv)
    result = await future
"""

__version__ = "0.1.0"

from .config import get_config
from .errors import CommandFailedError, ProcessExecutionError
from .launch import run_buffered, run_forked, run_streamed
from .logging_setup import setup_logging
from .runtime.future import ProcessFuture
from .types import ExecutionResult, RunOptions

__all__ = [
    "__version__",
    "CommandFailedError",
    "ExecutionResult",
    "ProcessExecutionError",
    "ProcessFuture",
    "RunOptions",
    "get_config",
    "run_buffered",
    "run_forked",
    "run_streamed",
    "setup_logging",
]
