"""Tests for crash_guard module."""

import asyncio
import logging
import sys
import threading
import time
from pathlib import Path

import pytest

# Add parent dir to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _capturing_logger(name):
    log = logging.getLogger(f"tests.crash_guard.{name}")
    log.handlers = []
    log.propagate = False
    log.setLevel(logging.DEBUG)
    handler = _ListHandler()
    log.addHandler(handler)
    return log, handler


def test_completed_worker_logs_nothing():
    """A normal return is COMPLETED with no crash line."""
    from crash_guard import OutcomeKind, invoke

    log, handler = _capturing_logger("completed")
    seen = []

    async def worker(stop_event):
        seen.append(stop_event)

    stop = asyncio.Event()
    outcome = asyncio.run(invoke(worker, stop, log))

    assert outcome.kind is OutcomeKind.COMPLETED
    assert not outcome.crashed
    assert outcome.error is None
    assert seen == [stop]
    assert handler.records == []


def test_crash_is_contained_and_logged():
    """An exception comes back as CRASHED carrying the payload."""
    from crash_guard import OutcomeKind, invoke

    log, handler = _capturing_logger("crashed")
    boom = RuntimeError("boom")

    async def worker(stop_event):
        raise boom

    outcome = asyncio.run(invoke(worker, asyncio.Event(), log, name="flaky"))

    assert outcome.kind is OutcomeKind.CRASHED
    assert outcome.crashed
    assert outcome.error is boom
    assert "RuntimeError: boom" in outcome.traceback

    assert len(handler.records) == 1
    record = handler.records[0]
    assert record.levelno == logging.ERROR
    assert record.getMessage() == "[supervisor] flaky crashed: RuntimeError('boom')"
    assert record.exc_info is not None


def test_sync_worker_runs_in_thread():
    """Plain callables run off the event loop thread."""
    from crash_guard import invoke

    log, _ = _capturing_logger("sync")
    threads = []

    def worker(stop_event):
        threads.append(threading.get_ident())

    outcome = asyncio.run(invoke(worker, asyncio.Event(), log))

    assert not outcome.crashed
    assert threads and threads[0] != threading.get_ident()


def test_sync_worker_crash_is_contained():
    from crash_guard import invoke

    log, handler = _capturing_logger("sync_crash")

    def worker(stop_event):
        raise ValueError("bad input")

    outcome = asyncio.run(invoke(worker, asyncio.Event(), log))

    assert outcome.crashed
    assert isinstance(outcome.error, ValueError)
    assert len(handler.records) == 1


def test_lambda_wrapping_coroutine_is_awaited():
    """A sync callable returning a coroutine still gets it run."""
    from crash_guard import invoke

    log, _ = _capturing_logger("lambda")
    ran = []

    async def real(stop_event):
        ran.append(True)

    outcome = asyncio.run(invoke(lambda ev: real(ev), asyncio.Event(), log))

    assert not outcome.crashed
    assert ran == [True]


def test_worker_cancellation_is_a_crash():
    """A CancelledError from inside the worker is contained like any crash."""
    from crash_guard import invoke

    log, handler = _capturing_logger("worker_cancelled")

    async def worker(stop_event):
        raise asyncio.CancelledError()

    outcome = asyncio.run(invoke(worker, asyncio.Event(), log, name="flaky"))

    assert outcome.crashed
    assert isinstance(outcome.error, asyncio.CancelledError)
    assert len(handler.records) == 1
    assert handler.records[0].getMessage().startswith("[supervisor] flaky crashed: CancelledError")


def test_cancelled_subtask_is_a_crash():
    """Awaiting a sub-task that something else cancels does not escape invoke."""
    from crash_guard import invoke

    log, _ = _capturing_logger("subtask")

    async def scenario():
        async def worker(stop_event):
            inner = asyncio.ensure_future(asyncio.sleep(10))
            asyncio.get_running_loop().call_later(0.01, inner.cancel)
            await inner

        return await asyncio.wait_for(invoke(worker, asyncio.Event(), log), timeout=1.0)

    outcome = asyncio.run(scenario())
    assert outcome.crashed
    assert isinstance(outcome.error, asyncio.CancelledError)


def test_cancelling_caller_propagates():
    """Cancelling the task awaiting invoke() cancels the worker too."""
    from crash_guard import invoke

    log, handler = _capturing_logger("outer_cancel")

    async def scenario():
        started = asyncio.Event()
        worker_cancelled = []

        async def worker(stop_event):
            started.set()
            try:
                await stop_event.wait()
            except asyncio.CancelledError:
                worker_cancelled.append(True)
                raise

        task = asyncio.create_task(invoke(worker, asyncio.Event(), log))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.01)
        return worker_cancelled

    assert asyncio.run(scenario()) == [True]
    assert handler.records == []


def test_sync_workers_get_their_own_threads():
    """More blocking sync workers than the default executor has threads all run."""
    from crash_guard import invoke

    log, _ = _capturing_logger("many_threads")
    count = 40

    async def scenario():
        stop = asyncio.Event()
        started = []

        def worker(stop_event):
            started.append(threading.get_ident())
            while not stop_event.is_set():
                time.sleep(0.005)

        calls = [asyncio.ensure_future(invoke(worker, stop, log)) for _ in range(count)]
        deadline = time.monotonic() + 2.0
        while len(started) < count and time.monotonic() < deadline:
            await asyncio.sleep(0.01)
        seen = len(started)
        stop.set()
        outcomes = await asyncio.wait_for(asyncio.gather(*calls), timeout=2.0)
        return seen, outcomes

    seen, outcomes = asyncio.run(scenario())
    assert seen == count
    assert not any(o.crashed for o in outcomes)


def test_async_callable_object_detected():
    from crash_guard import is_async_worker

    class Job:
        async def __call__(self, stop_event):
            return None

    def plain(stop_event):
        return None

    assert is_async_worker(Job())
    assert not is_async_worker(plain)
