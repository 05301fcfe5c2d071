"""Launch adapters: wire a child process lifecycle into a ProcessFuture.

Two strategies:
- run_buffered: the collaborator buffers both streams and reports once
  through a completion callback
- run_streamed / run_forked: the collaborator returns a live handle; capture
  listeners, the error listener and both termination listeners ("exit" and
  "close") are attached immediately

In every case the handle is attached to the future before the adapter
returns, and the future settles exactly once. For the streamed adapters the
first termination signal decides the outcome; the second one is a no-op.
``exit`` can arrive before the pipes reach EOF, so when streams are captured
the decided outcome is delivered once those streams have ended. Without
capture the future settles on ``exit`` even if a backgrounded grandchild
still holds the pipes.

All adapters must be called with a running event loop.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from .runtime.capture import CapturePolicy
from .runtime.child_process import ChildProcess, exec_command, exec_file, fork, spawn
from .runtime.future import ProcessFuture
from .runtime.normalize import buffered_failure, command_string, exit_failure, launch_failure
from .types import STREAM_NAMES, ExecutionResult, RunOptions

__all__ = ["run_buffered", "run_streamed", "run_forked"]

logger = logging.getLogger(__name__)


def run_buffered(
    command: str,
    args: Sequence[str] | None = None,
    **launch: Any,
) -> ProcessFuture[ExecutionResult]:
    """Run a command and resolve with its fully buffered output.

    Without ``args`` the command is a shell command line; with ``args`` it is
    an executable run directly.

    Args:
        command: Shell command line, or executable path when args is given
        args: Arguments for the executable
        **launch: Passed through to exec_command/exec_file (cwd, env,
            max_buffer, ...)

    Returns:
        Future resolving with ExecutionResult(process, stdout, stderr);
        exit_code is not set. Rejects with ProcessExecutionError carrying
        both streams.
    """
    future: ProcessFuture[ExecutionResult] = ProcessFuture()
    arg_list = [str(arg) for arg in args] if args is not None else None

    def _on_complete(error: BaseException | None, stdout: str, stderr: str) -> None:
        if error is not None:
            future.reject(buffered_failure(error, command, arg_list, stdout, stderr, process))
        else:
            future.resolve(ExecutionResult(process, stdout=stdout, stderr=stderr))

    logger.debug(f"run_buffered: {command_string(command, arg_list)}")
    if arg_list is None:
        process = exec_command(command, _on_complete, **launch)
    else:
        process = exec_file(command, arg_list, _on_complete, **launch)

    future.attach(process)
    return future


def run_streamed(
    command: str,
    args: Sequence[str] = (),
    options: RunOptions | None = None,
) -> ProcessFuture[ExecutionResult]:
    """Spawn command and settle on its first termination signal.

    Args:
        command: Executable
        args: Arguments
        options: Exit-code policy, capture policy and launch pass-through

    Returns:
        Future resolving with ExecutionResult(process, stdout?, stderr?,
        exit_code) or rejecting with ProcessExecutionError

    Raises:
        ValueError: Capture requested for a stream that is not piped
    """
    options = options or RunOptions()
    default_stdio = options.launch.get("stdio", "pipe")
    return _run_with_events(spawn, command, args, options, default_stdio)


def run_forked(
    module_path: str | Path,
    args: Sequence[str] = (),
    options: RunOptions | None = None,
) -> ProcessFuture[ExecutionResult]:
    """Fork a Python script with a message channel; otherwise as run_streamed.

    Stdout/stderr are inherited unless ``launch={"silent": True}`` (or an
    explicit stdio) is given; capturing requires piped streams.

    Raises:
        ValueError: Capture requested for a stream that is not piped
    """
    options = options or RunOptions()
    silent = bool(options.launch.get("silent", False))
    default_stdio = options.launch.get("stdio", "pipe" if silent else "inherit")
    return _run_with_events(fork, str(module_path), args, options, default_stdio)


def _run_with_events(
    launcher: Callable[..., ChildProcess],
    command: str,
    args: Sequence[str],
    options: RunOptions,
    stdio: str,
) -> ProcessFuture[ExecutionResult]:
    arg_list = [str(arg) for arg in args]
    requested = [name for name in STREAM_NAMES if options.captures(name)]
    if requested and stdio != "pipe":
        raise ValueError(f"cannot capture {', '.join(requested)} with stdio={stdio!r}")
    policy = CapturePolicy(requested)

    future: ProcessFuture[ExecutionResult] = ProcessFuture()
    logger.debug(f"Launching: {command_string(command, arg_list)}")
    process = launcher(command, arg_list, **options.launch)
    future.attach(process)
    buffers = policy.attach(process)

    def _captured(name: str) -> str | None:
        buffer = buffers.get(name)
        return buffer.text if buffer is not None else None

    def _on_error(error: BaseException) -> None:
        if future.reject(launch_failure(error, process, buffers)):
            logger.debug(f"Launch failed: {command} ({error!r})")

    # (code, signal) of the first termination signal
    outcome: list[tuple[int | None, str | None]] = []

    def _on_termination(code: int | None, sig: str | None) -> None:
        if future.settled or outcome:
            return
        outcome.append((code, sig))
        _deliver()

    def _deliver() -> None:
        # exit may precede EOF; captured output is only complete once its stream ends
        if not outcome or future.settled:
            return
        if any(not buffer.finished for buffer in buffers.values()):
            return
        code, sig = outcome[0]
        if code in options.successful_exit_codes:
            future.resolve(ExecutionResult(
                process,
                stdout=_captured("stdout"),
                stderr=_captured("stderr"),
                exit_code=code,
            ))
        else:
            logger.debug(f"{command} terminated with code={code} signal={sig}")
            future.reject(exit_failure(command, arg_list, code, process, buffers))

    for name in buffers:
        getattr(process, name).on("end", _deliver)
    process.on("error", _on_error)
    process.on("exit", _on_termination)
    process.on("close", _on_termination)
    return future
