"""Event-emitting child process handle over asyncio subprocesses.

procfuture runtime module

This module provides:
- ChildProcess: a handle created synchronously, launching the subprocess on
  the running loop and reporting its lifecycle as events
- Stdout/stderr pumping into OutputStream endpoints (always drained, so a
  chatty child never deadlocks on a full pipe)
- A JSON-lines message channel for forked Python children
- Buffered helpers (exec_command/exec_file) with a single completion callback
- Signal delivery and graceful termination (SIGTERM -> timeout -> SIGKILL)

Event order for a launched process:
    spawn -> data* -> exit(code, signal) -> end -> disconnect -> close(code, signal)

``exit`` fires as soon as the process itself has exited, which can be before
its pipes reach EOF: a backgrounded grandchild may keep them open. ``close``
fires once the exit is recorded and every piped stream has ended.
``message`` events may arrive at any point before ``disconnect``.

A launch failure emits error(exc) followed by close(None, None). ``code`` is
None and ``signal`` holds the signal name when the process died from a signal.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import socket
import subprocess
import sys
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any, Literal

import anyio

from ..config import get_config
from ..errors import MAXBUFFER_CODE, CommandFailedError
from .emitter import EventEmitter

__all__ = [
    "ChildProcess",
    "OutputStream",
    "BufferedCallback",
    "CHANNEL_FD_ENV",
    "spawn",
    "fork",
    "exec_command",
    "exec_file",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Environment variable carrying the child's channel socket fd
CHANNEL_FD_ENV = "PROCFUTURE_CHANNEL_FD"

READ_CHUNK_SIZE = 64 * 1024
STREAM_LIMIT = 64 * 1024
CHANNEL_LINE_LIMIT = 16 * 1024 * 1024

StdioMode = Literal["pipe", "inherit", "ignore"]

# callback(error, stdout, stderr)
BufferedCallback = Callable[[BaseException | None, str, str], None]


def _signal_name(sig: int) -> str:
    try:
        return signal.Signals(sig).name
    except ValueError:
        return str(sig)


class OutputStream(EventEmitter):
    """Readable endpoint of a piped child stream.

    Emits ``data(bytes)`` for every chunk read and ``end()`` once the pipe
    is closed.
    """

    def __init__(self, name: str) -> None:
        super().__init__()
        self.name = name
        self.ended = False

    def _push(self, chunk: bytes) -> None:
        self.emit("data", chunk)

    def _end(self) -> None:
        if not self.ended:
            self.ended = True
            self.emit("end")

    def __repr__(self) -> str:
        return f"OutputStream(name={self.name}, ended={self.ended})"


class _ExitNotifyingProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Stream protocol that reports the process exit without waiting for EOF.

    asyncio's Process.wait() may only return after the pipes have closed;
    ``exited`` resolves with the raw return code as soon as the process is
    reaped.
    """

    def __init__(self, limit: int, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(limit=limit, loop=loop)
        self.exited: asyncio.Future[int] = loop.create_future()

    def process_exited(self) -> None:
        # the base class may drop its transport reference
        returncode = self._transport.get_returncode()
        super().process_exited()
        if not self.exited.done():
            self.exited.set_result(returncode)


class ChildProcess(EventEmitter):
    """Handle to an external process launched on the running event loop.

    The handle exists as soon as the constructor returns; ``pid`` is filled
    in when the ``spawn`` event fires.

    Example:
        child = ChildProcess(["ls", "-l"])
        child.stdout.on("data", lambda chunk: print(chunk.decode()))
        child.on("close", lambda code, sig: print("closed", code))
        await child.wait()

    Attributes:
        argv: Command line (a single command string when shell=True)
        pid: Process id (None until spawned)
        stdout: Stdout endpoint (None unless stdio="pipe")
        stderr: Stderr endpoint (None unless stdio="pipe")
        exit_code: Exit status (None while running or when killed by a signal)
        signal_code: Name of the terminating signal, if any
        killed: Whether kill() delivered a signal
        connected: Whether the message channel is open
    """

    def __init__(
        self,
        argv: Sequence[str],
        *,
        shell: bool = False,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        stdio: StdioMode = "pipe",
        stdin_bytes: bytes | None = None,
        channel: bool = False,
        start_new_session: bool = False,
        term_timeout: float | None = None,
        kill_timeout: float | None = None,
        **kwargs: Any,
    ) -> None:
        """Create the handle and schedule the launch.

        Args:
            argv: Command line arguments (first element is the executable)
            shell: Run argv[0] as a shell command line
            cwd: Working directory
            env: Environment variables (None = inherit parent)
            stdio: "pipe", "inherit" or "ignore" for stdout/stderr
            stdin_bytes: Optional bytes written to stdin (stdin is
                /dev/null otherwise)
            channel: Open a JSON message channel (fork)
            start_new_session: Run in a new session; kill() then signals
                the whole process group
            term_timeout: Seconds terminate() waits after SIGTERM
            kill_timeout: Seconds terminate() waits after SIGKILL
            **kwargs: Passed through to asyncio.create_subprocess_*

        Raises:
            ValueError: Empty argv or unknown stdio mode
            RuntimeError: No running event loop
        """
        super().__init__()
        if not argv:
            raise ValueError("argv must not be empty")
        if stdio not in ("pipe", "inherit", "ignore"):
            raise ValueError(f"unknown stdio mode: {stdio!r}")

        config = get_config()
        self._loop = asyncio.get_running_loop()

        self.argv = [str(arg) for arg in argv]
        self.shell = shell
        self.cwd = cwd
        self.env = env
        self.stdio = stdio
        self.start_new_session = start_new_session
        self.term_timeout = term_timeout if term_timeout is not None else config.term_timeout
        self.kill_timeout = kill_timeout if kill_timeout is not None else config.kill_timeout

        self.pid: int | None = None
        self.exit_code: int | None = None
        self.signal_code: str | None = None
        self.killed = False

        self.stdout = OutputStream("stdout") if stdio == "pipe" else None
        self.stderr = OutputStream("stderr") if stdio == "pipe" else None

        self._stdin_bytes = stdin_bytes
        self._extra_kwargs = kwargs
        self._process: asyncio.subprocess.Process | None = None
        self._exited: asyncio.Future[int] | None = None
        self._started = asyncio.Event()
        self._closed = asyncio.Event()

        # Message channel state
        self._channel_sock: socket.socket | None = None
        self._child_sock: socket.socket | None = None
        self._channel_reader: asyncio.StreamReader | None = None
        self._channel_writer: asyncio.StreamWriter | None = None
        self._pending_messages: list[bytes] = []
        self.connected = False
        if channel:
            self._channel_sock, self._child_sock = socket.socketpair()
            self.connected = True

        self._task = self._loop.create_task(self._run())

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def returncode(self) -> int | None:
        """Raw return code (negative signal number on POSIX)."""
        return self._process.returncode if self._process else None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def _run(self) -> None:
        try:
            process, exited = await self._spawn()
        except Exception as e:
            logger.debug(f"Failed to launch argv={self.argv[0]}: {e}")
            self._close_child_sock()
            self._close_channel()
            self._started.set()
            self.emit("error", e)
            self._end_streams()
            self._finish()
            return

        self._process = process
        self._exited = exited
        self.pid = process.pid
        self._close_child_sock()
        self._started.set()
        logger.debug(f"Started subprocess pid={self.pid} argv={self.argv[0]}")
        self.emit("spawn")

        try:
            pumps: list[asyncio.Task[None]] = []
            if self.stdout is not None and process.stdout is not None:
                pumps.append(asyncio.create_task(self._pump(process.stdout, self.stdout)))
            if self.stderr is not None and process.stderr is not None:
                pumps.append(asyncio.create_task(self._pump(process.stderr, self.stderr)))
            channel_task = None
            if self._channel_sock is not None:
                channel_task = asyncio.create_task(self._read_channel())

            if self._stdin_bytes is not None and process.stdin is not None:
                await self._write_stdin(process.stdin)

            # exit does not wait for EOF; close waits for both
            returncode = await asyncio.shield(exited)
            self._record_exit(returncode)
            logger.debug(
                f"Subprocess exited pid={self.pid} "
                f"code={self.exit_code} signal={self.signal_code}"
            )
            self.emit("exit", self.exit_code, self.signal_code)

            await asyncio.gather(*pumps)
            if channel_task is not None:
                await channel_task
        except Exception as e:
            logger.error(f"Lifecycle error for pid={self.pid}: {e!r}")
            self.emit("error", e)
            self._end_streams()
            self._close_channel()

        self._finish(self.exit_code, self.signal_code)

    async def _spawn(self) -> tuple[asyncio.subprocess.Process, asyncio.Future[int]]:
        """Launch the subprocess.

        Same as asyncio.create_subprocess_exec/shell, but with a protocol
        that also exposes the exit as a future.

        Returns:
            Tuple of (process, exited future)
        """
        loop = self._loop
        kwargs = self._build_subprocess_kwargs()

        def protocol_factory() -> _ExitNotifyingProtocol:
            return _ExitNotifyingProtocol(STREAM_LIMIT, loop)

        if self.shell:
            transport, protocol = await loop.subprocess_shell(
                protocol_factory, self.argv[0], **kwargs
            )
        else:
            transport, protocol = await loop.subprocess_exec(
                protocol_factory, *self.argv, **kwargs
            )
        process = asyncio.subprocess.Process(transport, protocol, loop)
        return process, protocol.exited

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build kwargs for asyncio.create_subprocess_*.

        Returns:
            Dict of kwargs
        """
        if self.stdio == "pipe":
            output = asyncio.subprocess.PIPE
        elif self.stdio == "ignore":
            output = asyncio.subprocess.DEVNULL
        else:
            output = None

        # DEVNULL rather than None: stdin=None would inherit the parent's stdin
        kwargs: dict[str, Any] = {
            "stdin": (
                asyncio.subprocess.PIPE
                if self._stdin_bytes is not None
                else asyncio.subprocess.DEVNULL
            ),
            "stdout": output,
            "stderr": output,
        }

        if self.cwd is not None:
            kwargs["cwd"] = self.cwd

        env = dict(self.env) if self.env is not None else None
        if self._child_sock is not None:
            env = env if env is not None else dict(os.environ)
            env[CHANNEL_FD_ENV] = str(self._child_sock.fileno())
            kwargs["pass_fds"] = (self._child_sock.fileno(),)
        if env is not None:
            kwargs["env"] = env

        if self.start_new_session:
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                kwargs["start_new_session"] = True

        kwargs.update(self._extra_kwargs)
        return kwargs

    async def _pump(self, reader: asyncio.StreamReader, stream: OutputStream) -> None:
        try:
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                stream._push(chunk)
        finally:
            stream._end()

    async def _write_stdin(self, writer: asyncio.StreamWriter) -> None:
        try:
            writer.write(self._stdin_bytes or b"")
            await writer.drain()
            writer.close()
            await writer.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            # Child exited without reading its input
            logger.debug(f"stdin closed early pid={self.pid}")

    def _record_exit(self, returncode: int) -> None:
        if returncode < 0:
            self.exit_code = None
            self.signal_code = _signal_name(-returncode)
        else:
            self.exit_code = returncode

    def _end_streams(self) -> None:
        for stream in (self.stdout, self.stderr):
            if stream is not None:
                stream._end()

    def _finish(self, code: int | None = None, sig: str | None = None) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self.emit("close", code, sig)

    async def wait(self) -> int | None:
        """Wait for the close event.

        Returns:
            The exit code (None on launch failure or signal death)
        """
        await self._closed.wait()
        return self.exit_code

    # =========================================================================
    # Signals
    # =========================================================================

    def kill(self, sig: int | str = signal.SIGTERM) -> bool:
        """Send a signal to the process (its process group with start_new_session).

        Args:
            sig: Signal number or name (e.g. "SIGKILL")

        Returns:
            True if the signal was delivered, False if the process is not
            running (not yet spawned, already exited, or failed to launch)
        """
        if isinstance(sig, str):
            sig = signal.Signals[sig]
        process = self._process
        if process is None or process.returncode is not None:
            return False

        try:
            if self.start_new_session and not IS_WINDOWS:
                os.killpg(os.getpgid(process.pid), sig)
                logger.debug(f"Sent {_signal_name(sig)} to process group of pid={process.pid}")
            else:
                process.send_signal(sig)
                logger.debug(f"Sent {_signal_name(sig)} to pid={process.pid}")
        except ProcessLookupError:
            return False

        self.killed = True
        return True

    async def terminate(self) -> int | None:
        """Terminate gracefully, then forcefully if needed.

        Termination strategy:
        1. Send SIGTERM
        2. Wait up to term_timeout for exit
        3. If still running, send SIGKILL
        4. Wait up to kill_timeout for forced exit

        Returns:
            The raw return code, or None if the process never started or
            survived SIGKILL
        """
        await self._started.wait()
        process = self._process
        if process is None:
            return None
        if process.returncode is not None:
            return process.returncode

        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")
        self.kill(signal.SIGTERM)

        with anyio.move_on_after(self.term_timeout):
            await asyncio.shield(self._exited)
        if process.returncode is not None:
            logger.debug(f"Subprocess terminated gracefully pid={pid} returncode={process.returncode}")
            return process.returncode

        logger.debug(f"Force killing subprocess pid={pid}")
        self.kill(getattr(signal, "SIGKILL", signal.SIGTERM))
        with anyio.move_on_after(self.kill_timeout):
            await asyncio.shield(self._exited)
        if process.returncode is None:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")
        return process.returncode

    # =========================================================================
    # Message channel
    # =========================================================================

    def send(self, message: Any) -> None:
        """Send a JSON-serialisable message to the child.

        Messages sent before the channel is open are queued.

        Raises:
            RuntimeError: The process has no open channel
        """
        if not self.connected:
            raise RuntimeError("channel is not connected")
        data = (json.dumps(message, ensure_ascii=False) + "\n").encode("utf-8")
        if self._channel_writer is None:
            self._pending_messages.append(data)
        else:
            self._channel_writer.write(data)

    def disconnect(self) -> None:
        """Close the message channel."""
        self._close_channel()

    async def _read_channel(self) -> None:
        sock = self._channel_sock
        if sock is None or not self.connected:
            return
        reader, writer = await asyncio.open_unix_connection(sock=sock, limit=CHANNEL_LINE_LIMIT)
        self._channel_reader, self._channel_writer = reader, writer
        for data in self._pending_messages:
            writer.write(data)
        self._pending_messages.clear()

        try:
            async for line in reader:
                line = line.strip()
                if not line:
                    continue
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring malformed channel message from pid={self.pid}")
                    continue
                self.emit("message", message)
        except (ConnectionResetError, asyncio.IncompleteReadError):
            pass
        finally:
            self._close_channel()

    def _close_child_sock(self) -> None:
        if self._child_sock is not None:
            self._child_sock.close()
            self._child_sock = None

    def _close_channel(self) -> None:
        if not self.connected:
            return
        self.connected = False
        self._pending_messages.clear()
        if self._channel_writer is not None:
            self._channel_writer.close()
        elif self._channel_sock is not None:
            self._channel_sock.close()
        self.emit("disconnect")

    def __repr__(self) -> str:
        return (
            f"ChildProcess(argv={self.argv!r}, pid={self.pid}, "
            f"exit_code={self.exit_code}, signal={self.signal_code})"
        )


# =============================================================================
# Launch helpers
# =============================================================================


def spawn(command: str, args: Sequence[str] = (), **options: Any) -> ChildProcess:
    """Launch command with args; stdout/stderr are piped by default."""
    return ChildProcess([command, *args], **options)


def fork(
    module_path: str | Path,
    args: Sequence[str] = (),
    *,
    exec_path: str | None = None,
    exec_argv: Sequence[str] = (),
    silent: bool = False,
    **options: Any,
) -> ChildProcess:
    """Run a Python script with a message channel.

    The child talks back with procfuture.channel.send(). Stdio is inherited
    unless silent=True (an explicit ``stdio`` option wins over silent).

    Args:
        module_path: Script to run
        args: Script arguments
        exec_path: Interpreter (defaults to sys.executable)
        exec_argv: Interpreter options placed before the script
        silent: Pipe stdout/stderr instead of inheriting them

    Raises:
        NotImplementedError: On Windows (fd passing is POSIX-only)
    """
    if IS_WINDOWS:
        raise NotImplementedError("fork() requires a POSIX platform")
    options.setdefault("stdio", "pipe" if silent else "inherit")
    argv = [exec_path or sys.executable, *exec_argv, str(module_path), *args]
    return ChildProcess(argv, channel=True, **options)


def exec_command(command_line: str, callback: BufferedCallback, **options: Any) -> ChildProcess:
    """Run command_line through the shell and buffer its output.

    callback(error, stdout, stderr) is called exactly once.
    """
    process = ChildProcess([command_line], shell=True, **_buffered_options(options))
    _collect_output(process, command_line, callback, options.get("max_buffer"))
    return process


def exec_file(
    file: str,
    args: Sequence[str],
    callback: BufferedCallback,
    **options: Any,
) -> ChildProcess:
    """Run file with args (no shell) and buffer its output.

    callback(error, stdout, stderr) is called exactly once.
    """
    process = ChildProcess([file, *args], **_buffered_options(options))
    cmd = " ".join([file, *args])
    _collect_output(process, cmd, callback, options.get("max_buffer"))
    return process


def _buffered_options(options: dict[str, Any]) -> dict[str, Any]:
    if options.get("stdio", "pipe") != "pipe":
        raise ValueError("buffered execution requires stdio='pipe'")
    return {k: v for k, v in options.items() if k != "max_buffer"}


def _collect_output(
    process: ChildProcess,
    cmd: str,
    callback: BufferedCallback,
    max_buffer: int | None,
) -> None:
    config = get_config()
    limit = max_buffer if max_buffer is not None else config.max_buffer
    buffers = {"stdout": bytearray(), "stderr": bytearray()}
    finished = False
    overflow: CommandFailedError | None = None

    def _text(name: str) -> str:
        return bytes(buffers[name]).decode(config.encoding, config.decode_errors)

    def _complete(error: BaseException | None) -> None:
        nonlocal finished
        if finished:
            return
        finished = True
        callback(error, _text("stdout"), _text("stderr"))

    def _appender(name: str) -> Callable[[bytes], None]:
        def _append(chunk: bytes) -> None:
            nonlocal overflow
            buffer = buffers[name]
            room = limit - len(buffer)
            if room > 0:
                buffer.extend(chunk[:room])
            if len(chunk) > room and overflow is None:
                overflow = CommandFailedError(
                    f"{name} maxBuffer length exceeded", MAXBUFFER_CODE, cmd=cmd
                )
                logger.debug(f"{name} exceeded max_buffer={limit}, killing pid={process.pid}")
                process.kill()

        return _append

    def _on_close(code: int | None, sig: str | None) -> None:
        if overflow is not None:
            _complete(overflow)
        elif code == 0:
            _complete(None)
        else:
            message = f"Command failed: {cmd}\n{_text('stderr')}"
            _complete(CommandFailedError(message, code, sig, cmd))

    if process.stdout is None or process.stderr is None:
        raise ValueError("buffered execution requires stdio='pipe'")
    process.stdout.on("data", _appender("stdout"))
    process.stderr.on("data", _appender("stderr"))
    process.on("error", _complete)
    process.on("close", _on_close)
