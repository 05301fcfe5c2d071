"""Future value that carries the process handle it is waiting on.

ProcessFuture composes a plain asyncio future, a SettlementCell and a
``process`` slot instead of subclassing ``asyncio.Future``. Chaining
operations (then/catch/fail) build new ProcessFutures and copy the handle
forward, so every future derived from a launch exposes the same process.

Example:
    future = run_streamed("echo", ["hello"])
    print(future.process.argv)          # available immediately

    future.progress(lambda process: print("started", process.argv))
    result = await future.then(lambda r: r.exit_code)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Generator
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .settlement import SettlementCell, SettlementState

if TYPE_CHECKING:
    from .child_process import ChildProcess

__all__ = ["ProcessFuture", "Executor"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

# executor(resolve, reject)
Executor = Callable[[Callable[[Any], bool], Callable[[BaseException], bool]], None]


def _reraise(error: BaseException) -> None:
    raise error


class ProcessFuture(Generic[T]):
    """Awaitable single-settlement value with a process handle slot.

    Attributes:
        process: The attached ChildProcess (None until attach() is called)
    """

    def __init__(
        self,
        executor: Executor | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Create a pending future.

        Args:
            executor: Optional callable invoked immediately with the
                resolve/reject capabilities. If it raises, the future is
                rejected with that exception.
            loop: Event loop (defaults to the running loop)

        Raises:
            RuntimeError: No loop given and none is running
        """
        self._loop = loop if loop is not None else asyncio.get_running_loop()
        self._cell = SettlementCell(self._loop.create_future())
        self._process: ChildProcess | None = None
        self._attached = False

        if executor is not None:
            try:
                executor(self._cell.resolve, self._cell.reject)
            except Exception as e:
                self._cell.reject(e)

    # =========================================================================
    # Handle slot
    # =========================================================================

    @property
    def process(self) -> ChildProcess | None:
        return self._process

    def attach(self, process: ChildProcess) -> None:
        """Attach the process handle. Allowed exactly once.

        Raises:
            RuntimeError: A handle is already attached
        """
        if self._attached:
            raise RuntimeError("process handle is already attached")
        self._process = process
        self._attached = True

    def _inherit(self, source: ProcessFuture[Any]) -> None:
        if source._attached:
            self._process = source._process
            self._attached = True

    # =========================================================================
    # Settlement
    # =========================================================================

    def resolve(self, value: Any = None) -> bool:
        """Resolve the future. Returns False if it was already settled."""
        return self._cell.resolve(value)

    def reject(self, error: BaseException) -> bool:
        """Reject the future. Returns False if it was already settled."""
        return self._cell.reject(error)

    @property
    def state(self) -> SettlementState:
        return self._cell.state

    @property
    def settled(self) -> bool:
        return self._cell.settled

    def result(self) -> T:
        """Return the resolved value (asyncio.Future.result semantics)."""
        return self._cell.future.result()

    def exception(self) -> BaseException | None:
        """Return the rejection error (asyncio.Future.exception semantics)."""
        return self._cell.future.exception()

    def add_done_callback(self, fn: Callable[[ProcessFuture[T]], Any]) -> None:
        """Call fn(self) once the future settles."""
        self._cell.future.add_done_callback(lambda _: fn(self))

    def __await__(self) -> Generator[Any, None, T]:
        return self._cell.future.__await__()

    # =========================================================================
    # Composition
    # =========================================================================

    def progress(self, callback: Callable[[ChildProcess | None], Any]) -> ProcessFuture[T]:
        """Schedule callback(process) on the next loop iteration.

        The callback runs after the current synchronous code and before any
        I/O-driven settlement. Exceptions raised by it are reported through
        the loop's exception handler; they never reject this future.

        Returns:
            self, for chaining
        """
        self._loop.call_soon(self._notify_progress, callback)
        return self

    def _notify_progress(self, callback: Callable[[ChildProcess | None], Any]) -> None:
        callback(self._process)

    def then(
        self,
        on_fulfilled: Callable[[T], Any] | None = None,
        on_rejected: Callable[[BaseException], Any] | None = None,
    ) -> ProcessFuture[Any]:
        """Chain handlers; returns a new future carrying the same process.

        A handler's return value resolves the derived future. Awaitables
        (coroutines, asyncio futures, ProcessFutures) are adopted. A raising
        handler rejects it. Missing handlers pass the value/error through.
        """
        derived: ProcessFuture[Any] = ProcessFuture(loop=self._loop)
        derived._inherit(self)

        def _settle(source: asyncio.Future) -> None:
            if source.cancelled():
                derived._cell.future.cancel()
                return

            error = source.exception()
            if error is None:
                handler, argument = on_fulfilled, source.result()
            else:
                handler, argument = on_rejected, error

            if handler is None:
                if error is None:
                    derived._cell.resolve(argument)
                else:
                    derived._cell.reject(error)
                return

            try:
                outcome = handler(argument)
            except Exception as e:
                derived._cell.reject(e)
                return
            derived._adopt(outcome)

        self._cell.future.add_done_callback(_settle)
        return derived

    def catch(self, on_rejected: Callable[[BaseException], Any]) -> ProcessFuture[Any]:
        """Chain a rejection handler; returns a new future carrying the same process."""
        return self.then(None, on_rejected)

    fail = catch

    def done(self) -> None:
        """Terminal consumption.

        A rejection reaching this point is re-raised from a fresh loop
        callback, outside the future chain, so the loop's exception handler
        reports it instead of it being silently dropped.
        """

        def _raise_outside_chain(error: BaseException) -> None:
            self._loop.call_soon(_reraise, error)

        self.catch(_raise_outside_chain)

    def _adopt(self, outcome: Any) -> None:
        if outcome is self:
            self._cell.reject(TypeError("chaining cycle detected for ProcessFuture"))
            return
        if isinstance(outcome, ProcessFuture):
            outcome = outcome._cell.future
        if not inspect.isawaitable(outcome):
            self._cell.resolve(outcome)
            return

        inner = asyncio.ensure_future(outcome, loop=self._loop)

        def _transfer(source: asyncio.Future) -> None:
            if source.cancelled():
                self._cell.future.cancel()
            elif source.exception() is not None:
                self._cell.reject(source.exception())
            else:
                self._cell.resolve(source.result())

        inner.add_done_callback(_transfer)

    def __repr__(self) -> str:
        pid = getattr(self._process, "pid", None)
        return f"ProcessFuture(state={self._cell.state.value}, pid={pid})"
