"""Child-side end of the fork message channel.

A script started with run_forked()/fork() finds its channel socket through
the PROCFUTURE_CHANNEL_FD environment variable. Messages are JSON values,
one per line.

Usage (inside the forked script):
    from procfuture import channel

    if channel.connected():
        channel.send({"type": "ready"})
        for message in channel.receive():
            ...
"""

from __future__ import annotations

import json
import os
import socket
from collections.abc import Iterator
from typing import Any

from .runtime.child_process import CHANNEL_FD_ENV

__all__ = ["connected", "send", "receive", "close"]

_sock: socket.socket | None = None
_reader: Any = None


def _channel() -> socket.socket:
    global _sock
    if _sock is None:
        fd = os.environ.get(CHANNEL_FD_ENV)
        if not fd:
            raise RuntimeError("no message channel (process was not forked)")
        _sock = socket.socket(fileno=int(fd))
    return _sock


def connected() -> bool:
    """Whether this process was started with a message channel."""
    return _sock is not None or bool(os.environ.get(CHANNEL_FD_ENV))


def send(message: Any) -> None:
    """Send a JSON-serialisable message to the parent."""
    data = (json.dumps(message, ensure_ascii=False) + "\n").encode("utf-8")
    _channel().sendall(data)


def receive() -> Iterator[Any]:
    """Yield messages from the parent until it disconnects."""
    global _reader
    if _reader is None:
        _reader = _channel().makefile("rb")
    for line in _reader:
        line = line.strip()
        if line:
            yield json.loads(line)


def close() -> None:
    """Close the channel; the parent sees a disconnect."""
    global _sock, _reader
    if _reader is not None:
        _reader.close()
        _reader = None
    if _sock is not None:
        _sock.close()
        _sock = None
    os.environ.pop(CHANNEL_FD_ENV, None)
