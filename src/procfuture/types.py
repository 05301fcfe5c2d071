"""procfuture 类型定义。

定义运行选项、执行结果等公共类型。
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .runtime.child_process import ChildProcess

__all__ = [
    "STREAM_NAMES",
    "RunOptions",
    "ExecutionResult",
]

# 可捕获的输出流
STREAM_NAMES = ("stdout", "stderr")


@dataclass(frozen=True)
class RunOptions:
    """流式启动 (run_streamed / run_forked) 的选项。

    Attributes:
        successful_exit_codes: 视为成功的退出码集合（默认 {0}）
        capture: 需要捕获的输出流，stdout/stderr 的子集（默认不捕获）
        launch: 原样透传给 spawn()/fork() 的启动参数（cwd、env、silent 等）
    """

    successful_exit_codes: frozenset[int] = frozenset({0})
    capture: frozenset[str] = frozenset()
    launch: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        """校验并规范化字段（接受 list/tuple/set）。

        Raises:
            ValueError: 未知的输出流名称或空的成功退出码集合
            TypeError: 退出码不是 int，或 launch 不是 mapping
        """
        codes = self.successful_exit_codes
        if isinstance(codes, int):
            codes = (codes,)
        codes = frozenset(codes)
        for code in codes:
            if isinstance(code, bool) or not isinstance(code, int):
                raise TypeError(f"exit codes must be int, got {code!r}")
        if not codes:
            raise ValueError("successful_exit_codes must not be empty")

        capture = self.capture
        if isinstance(capture, str):
            capture = (capture,)
        capture = frozenset(_normalize_streams(capture))

        if not isinstance(self.launch, Mapping):
            raise TypeError(f"launch options must be a mapping, got {type(self.launch).__name__}")

        object.__setattr__(self, "successful_exit_codes", codes)
        object.__setattr__(self, "capture", capture)
        object.__setattr__(self, "launch", MappingProxyType(dict(self.launch)))

    def captures(self, stream: str) -> bool:
        return stream in self.capture


def _normalize_streams(streams: Iterable[str]) -> list[str]:
    names = []
    for name in streams:
        if name not in STREAM_NAMES:
            raise ValueError(f"unknown capture stream: {name!r} (expected stdout or stderr)")
        names.append(name)
    return names


@dataclass
class ExecutionResult:
    """执行结果。

    None 表示字段不存在（未捕获 / 不适用），与捕获到的空字符串不同。

    Attributes:
        process: 子进程句柄（与 future.process 为同一对象）
        stdout: 捕获的 stdout
        stderr: 捕获的 stderr
        exit_code: 退出码（仅 run_streamed / run_forked）
    """

    process: ChildProcess
    stdout: str | None = None
    stderr: str | None = None
    exit_code: int | None = None
