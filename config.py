"""
Supervisor Configuration - Backoff bounds, logging sink, env overrides
"""
import logging
import os
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

Duration = Union[timedelta, int, float]

# ============================================
# BACKOFF
# ============================================
DEFAULT_MIN_BACKOFF = timedelta(seconds=1)
DEFAULT_MAX_BACKOFF = timedelta(seconds=30)

# ============================================
# LOGGING
# ============================================
LOGGER_NAME = "supervisor"
LOG_LEVEL = os.getenv("SUPERVISOR_LOG_LEVEL", "INFO").strip().upper()

# ============================================
# PATHS / TIME
# ============================================
BASE_DIR = Path(__file__).parent
LOGS_DIR = Path(os.getenv("SUPERVISOR_LOGS_DIR", str(BASE_DIR / "logs")))
TIMEZONE = os.getenv("SUPERVISOR_TIMEZONE", "UTC")


@dataclass(frozen=True)
class SupervisorConfig:
    """
    Supervision settings. Every field is optional; resolve_config() fills
    in whatever is left unset.
    """
    min_backoff: Optional[Duration] = None
    max_backoff: Optional[Duration] = None
    logger: Optional[logging.Logger] = None
    interruptible_wait: bool = False


def default_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def default_config() -> SupervisorConfig:
    """Fully resolved defaults: 1s..30s backoff, the 'supervisor' logger."""
    return SupervisorConfig(
        min_backoff=DEFAULT_MIN_BACKOFF,
        max_backoff=DEFAULT_MAX_BACKOFF,
        logger=default_logger(),
    )


def _as_timedelta(value: Optional[Duration]) -> Optional[timedelta]:
    """Numbers are seconds. None, zero and negative values count as unset."""
    if value is None:
        return None
    if not isinstance(value, timedelta):
        value = timedelta(seconds=value)
    if value <= timedelta(0):
        return None
    return value


def resolve_config(cfg: Optional[SupervisorConfig] = None) -> SupervisorConfig:
    """
    Produce a fully resolved config from a partial one.

    Bounds are never rejected. A min_backoff above max_backoff is clamped
    down to max_backoff so the current delay always stays inside the bounds.
    """
    if cfg is None:
        cfg = SupervisorConfig()

    min_backoff = _as_timedelta(cfg.min_backoff) or DEFAULT_MIN_BACKOFF
    max_backoff = _as_timedelta(cfg.max_backoff) or DEFAULT_MAX_BACKOFF
    log = cfg.logger if cfg.logger is not None else default_logger()

    if min_backoff > max_backoff:
        log.warning(
            f"[supervisor] min_backoff {min_backoff} exceeds max_backoff {max_backoff}; "
            f"clamping to {max_backoff}"
        )
        min_backoff = max_backoff

    return replace(cfg, min_backoff=min_backoff, max_backoff=max_backoff, logger=log)


def _env_seconds(name: str) -> Optional[timedelta]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return timedelta(seconds=float(raw))
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def config_from_env() -> SupervisorConfig:
    """
    Build an (unresolved) config from SUPERVISOR_* environment variables.
    Missing variables stay unset so the defaults apply on resolve.
    """
    return SupervisorConfig(
        min_backoff=_env_seconds("SUPERVISOR_MIN_BACKOFF"),
        max_backoff=_env_seconds("SUPERVISOR_MAX_BACKOFF"),
        interruptible_wait=_env_bool("SUPERVISOR_INTERRUPTIBLE_WAIT", False),
    )
