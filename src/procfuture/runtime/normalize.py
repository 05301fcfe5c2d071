"""Builds ProcessExecutionError from the three failure origins.

1. Launch failure: the process could not be created or faulted before any
   termination signal. Message and code come from the underlying exception.
2. Exit failure: the process terminated with a code outside the successful
   set. Message is the command string plus the exit code.
3. Buffered failure: the buffered collaborator reported an error. Message is
   the underlying message plus the command string and exit code; both
   streams are always attached.
"""

from __future__ import annotations

import errno
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

from ..errors import CommandFailedError, ProcessExecutionError

if TYPE_CHECKING:
    from .capture import CaptureBuffer
    from .child_process import ChildProcess

__all__ = [
    "command_string",
    "error_code",
    "launch_failure",
    "exit_failure",
    "buffered_failure",
]


def command_string(command: str, args: Sequence[str] | None = None) -> str:
    """Rebuild the command line as ``command arg1 arg2``."""
    if not args:
        return str(command)
    return f"{command} {' '.join(str(arg) for arg in args)}"


def error_code(error: BaseException) -> int | str | None:
    """Code of an underlying fault.

    OSErrors map to their symbolic errno name ("ENOENT"); other exceptions
    use their own ``code`` attribute if set, else the class name.
    CommandFailedError keeps its code as is (None after a signal death).
    """
    if isinstance(error, CommandFailedError):
        return error.code
    if isinstance(error, OSError) and error.errno is not None:
        return errno.errorcode.get(error.errno, error.errno)
    code = getattr(error, "code", None)
    if code is not None:
        return code
    return type(error).__name__


def _captured(buffers: Mapping[str, CaptureBuffer], name: str) -> str | None:
    buffer = buffers.get(name)
    return buffer.text if buffer is not None else None


def launch_failure(
    error: BaseException,
    process: ChildProcess | None,
    buffers: Mapping[str, CaptureBuffer],
) -> ProcessExecutionError:
    """Normalize a launch/runtime fault (no exit code)."""
    normalized = ProcessExecutionError(
        str(error) or type(error).__name__,
        error_code(error),
        stdout=_captured(buffers, "stdout"),
        stderr=_captured(buffers, "stderr"),
        process=process,
    )
    normalized.__cause__ = error
    return normalized


def exit_failure(
    command: str,
    args: Sequence[str],
    code: int | None,
    process: ChildProcess | None,
    buffers: Mapping[str, CaptureBuffer],
) -> ProcessExecutionError:
    """Normalize a termination with an unsuccessful exit code."""
    return ProcessExecutionError(
        f"`{command_string(command, args)}` failed with code {code}",
        code,
        stdout=_captured(buffers, "stdout"),
        stderr=_captured(buffers, "stderr"),
        process=process,
    )


def buffered_failure(
    error: BaseException,
    command: str,
    args: Sequence[str] | None,
    stdout: str,
    stderr: str,
    process: ChildProcess | None,
) -> ProcessExecutionError:
    """Normalize an error reported by the buffered completion callback."""
    code = error_code(error)
    message = getattr(error, "message", None) or str(error) or type(error).__name__
    normalized = ProcessExecutionError(
        f"{message} `{command_string(command, args)}` (exited with error code {code})",
        code,
        stdout=stdout,
        stderr=stderr,
        process=process,
    )
    normalized.__cause__ = error
    return normalized
