"""
Backoff - Exponential restart delay, doubling up to a ceiling
"""
from datetime import timedelta
from typing import Iterator


def next_backoff(current: timedelta, maximum: timedelta) -> timedelta:
    """Double the delay, clamped at maximum."""
    # current * 2 can overflow timedelta near its limit
    if current >= maximum - current:
        return maximum
    return current * 2


def backoff_schedule(minimum: timedelta, maximum: timedelta) -> Iterator[timedelta]:
    """Yield the delays seen across a run of consecutive crashes."""
    delay = minimum
    while True:
        yield delay
        delay = next_backoff(delay, maximum)


def _decimal(whole: int, frac: int, width: int) -> str:
    if not frac:
        return str(whole)
    return f"{whole}.{frac:0{width}d}".rstrip("0")


def format_duration(delay: timedelta) -> str:
    """Compact text for log lines: 10ms, 1.5s, 30s, 2m30s."""
    micros = delay // timedelta(microseconds=1)
    if micros < 1000:
        return f"{micros}us"
    if micros < 1_000_000:
        ms, us = divmod(micros, 1000)
        return f"{_decimal(ms, us, 3)}ms"

    total_seconds, us = divmod(micros, 1_000_000)
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    text = f"{hours}h" if hours else ""
    if minutes:
        text += f"{minutes}m"
    if seconds or us or not text:
        text += f"{_decimal(seconds, us, 6)}s"
    return text
