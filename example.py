"""
Supervisor Demo - A flaky worker kept alive by the supervisor

Run with:  python example.py   (Ctrl+C to stop)
"""
import asyncio
import functools
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from config import LOG_LEVEL, LOGS_DIR, SupervisorConfig, config_from_env, resolve_config
from supervisor import start

logger = logging.getLogger("supervisor-demo")


def setup_logging(level: str = LOG_LEVEL, log_file: Optional[Path] = None) -> None:
    """Log to a file under LOGS_DIR and to the console."""
    if log_file is None:
        LOGS_DIR.mkdir(parents=True, exist_ok=True)
        log_file = LOGS_DIR / "demo.log"

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


async def demo_worker(stop_event: asyncio.Event, crash_every: int = 5, tick: float = 1.0) -> None:
    """Do 'work' once per tick and crash every crash_every ticks."""
    ticks = 0
    while not stop_event.is_set():
        logger.info("worker running...")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=tick)
        except asyncio.TimeoutError:
            pass
        else:
            break

        ticks += 1
        if crash_every and ticks % crash_every == 0:
            raise RuntimeError("simulated failure")

    logger.info("worker shutting down")


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> Dict[int, Any]:
    """Route SIGINT/SIGTERM to the stop event. Returns the handlers replaced."""
    def _handle_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping supervisor")
        loop.call_soon_threadsafe(stop.set)

    previous = {}
    for signum in (signal.SIGTERM, signal.SIGINT):
        previous[signum] = signal.getsignal(signum)
        signal.signal(signum, _handle_shutdown)
    return previous


def _restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


async def run_demo(
    run_for: Optional[float] = None,
    config: Optional[SupervisorConfig] = None,
    crash_every: int = 5,
    tick: float = 1.0,
) -> None:
    """
    Supervise demo_worker until run_for seconds pass, or until SIGINT/SIGTERM
    when run_for is None.
    """
    stop = asyncio.Event()
    cfg = resolve_config(config if config is not None else config_from_env())

    task = start(
        stop,
        cfg,
        functools.partial(demo_worker, crash_every=crash_every, tick=tick),
        name="demo-worker",
    )

    if run_for is not None:
        await asyncio.sleep(run_for)
        stop.set()
        await task
        return

    previous = _install_signal_handlers(asyncio.get_running_loop(), stop)
    try:
        await stop.wait()
        await task
    finally:
        _restore_signal_handlers(previous)


def main() -> int:
    setup_logging()
    asyncio.run(run_demo())
    return 0


if __name__ == "__main__":
    sys.exit(main())
