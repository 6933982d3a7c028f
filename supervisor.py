"""
Supervisor - Keep a worker running, restart it on crash with exponential backoff.

    stop = asyncio.Event()
    start(stop, SupervisorConfig(), worker)
    ...
    stop.set()   # the only way to stop supervision
"""
import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Set

import pytz

from backoff import format_duration, next_backoff
from config import TIMEZONE, SupervisorConfig, resolve_config
from crash_guard import Worker, invoke

logger = logging.getLogger(__name__)

# Fire-and-forget tasks are only weakly referenced by the event loop
_background_tasks: Set[asyncio.Task] = set()


class Phase(Enum):
    RUNNING = "running"
    WAITING = "waiting"
    STOPPED = "stopped"


class SupervisedWorker:
    """
    One supervision session: a worker, its stop event and the backoff state.
    All state is mutated only from the task running run().
    """

    def __init__(
        self,
        stop_event: asyncio.Event,
        config: Optional[SupervisorConfig],
        worker: Worker,
        name: str = "worker",
    ):
        self.name = name
        self._stop = stop_event
        self._config = resolve_config(config)
        self._worker = worker
        self._log = self._config.logger

        self.phase = Phase.RUNNING
        self.current_backoff: timedelta = self._config.min_backoff
        self._runs = 0
        self._crashes = 0
        self._last_crash: Optional[datetime] = None
        self._last_error = ''

    @property
    def config(self) -> SupervisorConfig:
        return self._config

    @property
    def status(self) -> dict:
        return {
            'name': self.name,
            'phase': self.phase.value,
            'runs': self._runs,
            'crashes': self._crashes,
            'current_backoff': format_duration(self.current_backoff),
            'last_crash': self._last_crash.isoformat() if self._last_crash else None,
            'last_error': self._last_error,
        }

    async def run(self) -> None:
        try:
            while True:
                if self._stop.is_set():
                    self._log.info(f'[supervisor] {self.name} stopped')
                    return

                self.phase = Phase.RUNNING
                self._runs += 1
                outcome = await invoke(self._worker, self._stop, self._log, self.name)
                if outcome.crashed:
                    self._crashes += 1
                    self._last_crash = datetime.now(pytz.timezone(TIMEZONE))
                    self._last_error = repr(outcome.error)[:200]

                self._log.info(
                    f'[supervisor] restarting {self.name} in {format_duration(self.current_backoff)}'
                )
                self.phase = Phase.WAITING
                await self._wait(self.current_backoff)
                self.current_backoff = next_backoff(self.current_backoff, self._config.max_backoff)
        finally:
            self.phase = Phase.STOPPED

    async def _wait(self, delay: timedelta) -> None:
        seconds = delay.total_seconds()
        if not self._config.interruptible_wait:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


def start(
    stop_event: asyncio.Event,
    config: Optional[SupervisorConfig],
    worker: Worker,
    *,
    name: str = 'worker',
) -> asyncio.Task:
    """
    Launch a supervised worker that auto-restarts on crash. Returns at once.

    Must be called from a running event loop. Supervision ends only when
    stop_event is set; the returned task can be awaited for a clean
    teardown but may just as well be ignored.
    """
    supervised = SupervisedWorker(stop_event, config, worker, name)
    task = asyncio.create_task(supervised.run(), name=f'supervisor:{name}')
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    logger.debug(f'[supervisor] Started: {name}')
    return task


async def supervise(
    stop_event: asyncio.Event,
    config: Optional[SupervisorConfig],
    worker: Worker,
    *,
    name: str = 'worker',
) -> None:
    """Run the supervision loop in the current task until stop_event is set."""
    await SupervisedWorker(stop_event, config, worker, name).run()
