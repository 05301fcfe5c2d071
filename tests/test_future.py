"""ProcessFuture unit tests.

Test coverage:
- Executor invocation and settlement
- Handle slot (attach once, propagation to derived futures)
- then/catch/fail composition
- progress scheduling
- done() surfacing unhandled rejections
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterator
from typing import Any

import pytest

from procfuture.runtime.future import ProcessFuture
from procfuture.runtime.settlement import SettlementState


class FakeHandle:
    """Stand-in for a ChildProcess."""

    pid = 4242


async def drain(turns: int = 5) -> None:
    """Let the loop run a few iterations."""
    for _ in range(turns):
        await asyncio.sleep(0)


@contextlib.contextmanager
def captured_loop_errors() -> Iterator[list[dict[str, Any]]]:
    """Route the running loop's exception handler calls into a list."""
    loop = asyncio.get_running_loop()
    errors: list[dict[str, Any]] = []
    previous = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: errors.append(context))
    try:
        yield errors
    finally:
        loop.set_exception_handler(previous)


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Executor and settlement."""

    @pytest.mark.asyncio
    async def test_executor_called_immediately(self):
        calls = []

        def executor(resolve, reject):
            calls.append("called")
            resolve(42)

        future = ProcessFuture(executor)

        assert calls == ["called"]
        assert await future == 42
        assert future.state is SettlementState.RESOLVED

    @pytest.mark.asyncio
    async def test_executor_exception_rejects(self):
        def executor(resolve, reject):
            raise ValueError("bad executor")

        future = ProcessFuture(executor)

        with pytest.raises(ValueError, match="bad executor"):
            await future

    @pytest.mark.asyncio
    async def test_without_executor_is_pending(self):
        future = ProcessFuture()

        assert future.process is None
        assert not future.settled

        future.resolve("later")
        assert await future == "later"

    @pytest.mark.asyncio
    async def test_settles_only_once(self):
        future = ProcessFuture()

        assert future.resolve(1) is True
        assert future.reject(RuntimeError("late")) is False
        assert future.resolve(2) is False
        assert await future == 1

    def test_requires_running_loop(self):
        with pytest.raises(RuntimeError):
            ProcessFuture()


# =============================================================================
# Handle slot
# =============================================================================


class TestHandle:
    """Process handle attachment and propagation."""

    @pytest.mark.asyncio
    async def test_attach_once(self):
        future = ProcessFuture()
        handle = FakeHandle()

        future.attach(handle)
        assert future.process is handle

        with pytest.raises(RuntimeError):
            future.attach(FakeHandle())
        assert future.process is handle

    @pytest.mark.asyncio
    async def test_derived_futures_share_handle(self):
        future = ProcessFuture()
        handle = FakeHandle()
        future.attach(handle)

        derived = [
            future.then(lambda value: value),
            future.catch(lambda error: None),
            future.fail(lambda error: None),
            future.then(lambda value: value).then(lambda value: value),
        ]

        for item in derived:
            assert item.process is handle

        future.resolve("ok")
        await drain()

    @pytest.mark.asyncio
    async def test_chaining_never_reruns_executor(self):
        runs = []

        def executor(resolve, reject):
            runs.append(1)
            resolve("value")

        future = ProcessFuture(executor)
        results = await asyncio.gather(
            future.then(lambda v: v + "-a"),
            future.then(lambda v: v + "-b"),
            future.catch(lambda e: "unused"),
        )

        assert results == ["value-a", "value-b", "value"]
        assert runs == [1]


# =============================================================================
# Composition
# =============================================================================


class TestComposition:
    """then/catch/fail semantics."""

    @pytest.mark.asyncio
    async def test_then_transforms_value(self):
        future = ProcessFuture(lambda resolve, reject: resolve(2))
        assert await future.then(lambda v: v * 10) == 20

    @pytest.mark.asyncio
    async def test_handlers_run_asynchronously(self):
        future = ProcessFuture(lambda resolve, reject: resolve(1))
        seen = []

        future.then(seen.append)

        assert seen == []
        await drain()
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_rejection_passes_through_then(self):
        future = ProcessFuture(lambda resolve, reject: reject(RuntimeError("boom")))

        with pytest.raises(RuntimeError, match="boom"):
            await future.then(lambda v: "not reached")

    @pytest.mark.asyncio
    async def test_catch_recovers(self):
        future = ProcessFuture(lambda resolve, reject: reject(RuntimeError("boom")))

        recovered = await future.catch(lambda e: f"recovered from {e}")
        assert recovered == "recovered from boom"

    @pytest.mark.asyncio
    async def test_fail_is_catch(self):
        assert ProcessFuture.fail is ProcessFuture.catch

        future = ProcessFuture(lambda resolve, reject: reject(KeyError("k")))
        assert await future.fail(lambda e: type(e).__name__) == "KeyError"

    @pytest.mark.asyncio
    async def test_raising_handler_rejects_derived(self):
        future = ProcessFuture(lambda resolve, reject: resolve(1))

        def handler(value):
            raise ValueError(f"handler saw {value}")

        with pytest.raises(ValueError, match="handler saw 1"):
            await future.then(handler)

    @pytest.mark.asyncio
    async def test_then_with_both_handlers(self):
        ok = ProcessFuture(lambda resolve, reject: resolve("v"))
        bad = ProcessFuture(lambda resolve, reject: reject(RuntimeError("e")))

        assert await ok.then(lambda v: "fulfilled", lambda e: "rejected") == "fulfilled"
        assert await bad.then(lambda v: "fulfilled", lambda e: "rejected") == "rejected"

    @pytest.mark.asyncio
    async def test_adopts_coroutine(self):
        async def later(value):
            await asyncio.sleep(0)
            return value + 1

        future = ProcessFuture(lambda resolve, reject: resolve(1))
        assert await future.then(later) == 2

    @pytest.mark.asyncio
    async def test_adopts_process_future(self):
        inner = ProcessFuture()
        outer = ProcessFuture(lambda resolve, reject: resolve("x"))

        chained = outer.then(lambda v: inner)
        await drain()
        assert not chained.settled

        inner.reject(RuntimeError("inner failed"))
        with pytest.raises(RuntimeError, match="inner failed"):
            await chained

    @pytest.mark.asyncio
    async def test_chaining_cycle_rejected(self):
        future = ProcessFuture(lambda resolve, reject: resolve(1))
        holder: dict[str, ProcessFuture] = {}

        holder["derived"] = future.then(lambda v: holder["derived"])

        with pytest.raises(TypeError, match="chaining cycle"):
            await holder["derived"]

    @pytest.mark.asyncio
    async def test_cancelled_source_cancels_derived(self):
        future = ProcessFuture()
        derived = future.then(lambda v: v)

        future._cell.future.cancel()

        with pytest.raises(asyncio.CancelledError):
            await derived

    @pytest.mark.asyncio
    async def test_add_done_callback_receives_future(self):
        future = ProcessFuture()
        seen = []
        future.add_done_callback(seen.append)

        future.resolve(None)
        await drain()

        assert seen == [future]
        assert future.result() is None
        assert future.exception() is None


# =============================================================================
# progress / done
# =============================================================================


class TestProgress:
    """progress() scheduling."""

    @pytest.mark.asyncio
    async def test_progress_is_deferred_and_called_once(self):
        future = ProcessFuture()
        handle = FakeHandle()
        future.attach(handle)
        seen = []

        returned = future.progress(seen.append)

        assert returned is future
        assert seen == []
        await drain()
        assert seen == [handle]

    @pytest.mark.asyncio
    async def test_progress_exception_goes_to_loop(self):
        future = ProcessFuture()
        future.attach(FakeHandle())

        def callback(process):
            raise RuntimeError("progress failed")

        with captured_loop_errors() as errors:
            future.progress(callback)
            await drain()

        assert any(isinstance(ctx.get("exception"), RuntimeError) for ctx in errors)
        assert not future.settled


class TestDone:
    """done() terminal consumption."""

    @pytest.mark.asyncio
    async def test_done_reraises_outside_chain(self):
        future = ProcessFuture()
        error = RuntimeError("nobody handled me")

        with captured_loop_errors() as errors:
            assert future.done() is None
            future.reject(error)
            await drain()

        assert [ctx.get("exception") for ctx in errors] == [error]

    @pytest.mark.asyncio
    async def test_done_silent_on_success(self):
        future = ProcessFuture()

        with captured_loop_errors() as errors:
            future.done()
            future.resolve("fine")
            await drain()

        assert errors == []
