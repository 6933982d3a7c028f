"""
Crash Guard - Run one worker invocation and trap its crash

A crash inside the worker never unwinds past invoke(); it comes back as
an Outcome the supervision loop can inspect.
"""
import asyncio
import inspect
import logging
import threading
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

# async def worker(stop_event) -> None, or a plain function run in a thread
Worker = Callable[[asyncio.Event], Union[Awaitable[None], None]]


class OutcomeKind(Enum):
    COMPLETED = "completed"
    CRASHED = "crashed"


@dataclass(frozen=True)
class Outcome:
    """Result of one worker invocation."""
    kind: OutcomeKind
    error: Optional[BaseException] = None
    traceback: str = ""

    @property
    def crashed(self) -> bool:
        return self.kind is OutcomeKind.CRASHED

    @classmethod
    def completed(cls) -> "Outcome":
        return cls(OutcomeKind.COMPLETED)

    @classmethod
    def from_crash(cls, error: BaseException) -> "Outcome":
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return cls(OutcomeKind.CRASHED, error=error, traceback=tb)


def is_async_worker(worker: Worker) -> bool:
    if inspect.iscoroutinefunction(worker):
        return True
    # callable objects with an async __call__
    return inspect.iscoroutinefunction(getattr(worker, "__call__", None))


def _settle(future: asyncio.Future, result: Any, error: Optional[BaseException]) -> None:
    if future.cancelled():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


def _run_in_thread(worker: Worker, stop_event: asyncio.Event, name: str) -> asyncio.Future:
    """
    Run a sync worker on a dedicated thread. Long-running workers would
    otherwise pin the loop's shared default executor.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def _target():
        try:
            result = worker(stop_event)
        except BaseException as e:
            loop.call_soon_threadsafe(_settle, future, None, e)
        else:
            loop.call_soon_threadsafe(_settle, future, result, None)

    threading.Thread(target=_target, name=f"supervisor:{name}", daemon=True).start()
    return future


async def _join(child: asyncio.Future) -> Tuple[Any, Optional[BaseException]]:
    """
    Wait for the child without letting its cancellation reach us. Only a
    cancellation of the calling task propagates.
    """
    try:
        await asyncio.wait({child})
    except asyncio.CancelledError:
        child.cancel()
        raise

    if child.cancelled():
        return None, asyncio.CancelledError()
    error = child.exception()
    if error is not None:
        return None, error
    return child.result(), None


async def invoke(
    worker: Worker,
    stop_event: asyncio.Event,
    logger: logging.Logger,
    name: str = "worker",
) -> Outcome:
    """
    Run the worker once and report how it ended.

    Coroutine workers run as a child task. Plain callables run on their own
    thread and should poll stop_event.is_set(). No time limit is imposed;
    the worker has to return on its own once the stop event fires.

    A CancelledError raised from inside the worker is a crash like any
    other. Cancelling the task that awaits invoke() cancels the worker and
    propagates.
    """
    if is_async_worker(worker):
        child = asyncio.ensure_future(worker(stop_event))
    else:
        child = _run_in_thread(worker, stop_event, name)

    result, error = await _join(child)
    # a lambda wrapping a coroutine function
    if error is None and inspect.isawaitable(result):
        result, error = await _join(asyncio.ensure_future(result))

    if error is None:
        return Outcome.completed()
    if not isinstance(error, (Exception, asyncio.CancelledError)):
        # KeyboardInterrupt / SystemExit
        raise error

    logger.error(f"[supervisor] {name} crashed: {error!r}", exc_info=error)
    return Outcome.from_crash(error)
