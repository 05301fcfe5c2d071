"""procfuture 异常类。"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .runtime.child_process import ChildProcess

__all__ = [
    "ProcessExecutionError",
    "CommandFailedError",
    "MAXBUFFER_CODE",
]

# 缓冲模式输出超限时的错误码
MAXBUFFER_CODE = "ERR_CHILD_PROCESS_STDIO_MAXBUFFER"


class ProcessExecutionError(Exception):
    """子进程执行失败。

    启动失败、退出码不在成功集合内、缓冲模式调用报错，三种来源统一为此异常。
    调用方只需通过 code / message 区分来源。

    Attributes:
        message: 错误消息
        code: 退出码（int）或启动失败的错误码（如 "ENOENT"）
        stdout: 捕获的 stdout（未捕获时为 None）
        stderr: 捕获的 stderr（未捕获时为 None）
        process: 关联的子进程句柄
    """

    def __init__(
        self,
        message: str,
        code: int | str | None,
        *,
        stdout: str | None = None,
        stderr: str | None = None,
        process: ChildProcess | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.stdout = stdout
        self.stderr = stderr
        self.process = process
        super().__init__(message)

    def __repr__(self) -> str:
        return f"ProcessExecutionError(code={self.code!r}, message={self.message!r})"


class CommandFailedError(Exception):
    """缓冲模式 (exec_command / exec_file) 下命令执行失败。

    Attributes:
        message: 错误消息（"Command failed: <cmd>" + stderr）
        code: 退出码，被信号终止时为 None，输出超限时为 MAXBUFFER_CODE
        signal: 终止信号名（如 "SIGTERM"）
        cmd: 命令字符串
    """

    def __init__(
        self,
        message: str,
        code: int | str | None,
        signal: str | None = None,
        cmd: str = "",
    ) -> None:
        self.message = message
        self.code = code
        self.signal = signal
        self.cmd = cmd
        super().__init__(message)
