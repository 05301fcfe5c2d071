"""Output capture policy for streamed launches."""

from __future__ import annotations

import codecs
from collections.abc import Iterable
from typing import TYPE_CHECKING

from ..config import get_config
from ..types import STREAM_NAMES

if TYPE_CHECKING:
    from .child_process import ChildProcess

__all__ = ["CaptureBuffer", "CapturePolicy"]


class CaptureBuffer:
    """Append-only text accumulator for one output stream.

    Chunks go through an incremental decoder, so a multi-byte character
    split across two reads is decoded once both halves have arrived.
    """

    def __init__(self, name: str, encoding: str = "utf-8", errors: str = "replace") -> None:
        self.name = name
        self._decoder = codecs.getincrementaldecoder(encoding)(errors=errors)
        self._parts: list[str] = []
        self.finished = False

    def append(self, chunk: bytes) -> None:
        if self.finished:
            return
        text = self._decoder.decode(chunk)
        if text:
            self._parts.append(text)

    def finish(self) -> None:
        """Flush the decoder; the buffer is read-only afterwards."""
        if self.finished:
            return
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._parts.append(tail)
        self.finished = True

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def __repr__(self) -> str:
        return f"CaptureBuffer(name={self.name}, length={len(self.text)}, finished={self.finished})"


class CapturePolicy:
    """Which streams of a process are accumulated into the result/error.

    Stream names are validated by RunOptions.
    """

    def __init__(self, streams: Iterable[str] = ()) -> None:
        self.streams = frozenset(streams)

    def attach(self, process: ChildProcess) -> dict[str, CaptureBuffer]:
        """Attach a data listener per requested stream.

        Returns:
            One CaptureBuffer per requested stream name

        Raises:
            ValueError: A requested stream is not piped by the process
        """
        config = get_config()
        buffers: dict[str, CaptureBuffer] = {}
        for name in STREAM_NAMES:
            if name not in self.streams:
                continue
            stream = getattr(process, name)
            if stream is None:
                raise ValueError(
                    f"cannot capture {name}: the stream is not piped "
                    f"(use stdio='pipe' or silent=True)"
                )
            buffer = CaptureBuffer(name, config.encoding, config.decode_errors)
            stream.on("data", buffer.append)
            stream.on("end", buffer.finish)
            buffers[name] = buffer
        return buffers

    def __repr__(self) -> str:
        return f"CapturePolicy(streams={sorted(self.streams)})"
