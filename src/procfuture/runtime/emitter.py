"""Minimal synchronous event emitter for process lifecycle events."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

__all__ = ["EventEmitter", "Listener"]

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Registers listeners per event name and calls them in order.

    A listener that raises does not stop delivery to the remaining
    listeners; the exception goes to the running loop's exception handler
    (or the log when no loop is running).
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> EventEmitter:
        self._listeners.setdefault(event, []).append(listener)
        return self

    def once(self, event: str, listener: Listener) -> EventEmitter:
        def _wrapper(*args: Any) -> None:
            self.off(event, _wrapper)
            listener(*args)

        return self.on(event, _wrapper)

    def off(self, event: str, listener: Listener) -> EventEmitter:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of event with args.

        Returns:
            True if the event had listeners
        """
        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(*args)
            except Exception as e:
                self._report_listener_error(event, e)
        return bool(listeners)

    def _report_listener_error(self, event: str, error: Exception) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(f"Listener for '{event}' raised: {error!r}")
            return
        loop.call_exception_handler({
            "message": f"Exception in '{event}' listener",
            "exception": error,
        })
