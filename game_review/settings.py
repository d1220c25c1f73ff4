"""Configuration for game review.

Module constants are the defaults. AnalysisSettings.from_env() lets the
CLI and MCP server override them through CHESS_REVIEW_* environment
variables.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
ENGINE_SEARCH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
]

MATE_SCORE = 10000

DEFAULT_DEPTH = 18
MIN_DEPTH, MAX_DEPTH = 1, 30
DEFAULT_MULTIPV = 1
MIN_MULTIPV, MAX_MULTIPV = 1, 5
DEFAULT_THREADS = 2
MIN_THREADS, MAX_THREADS = 1, 8
DEFAULT_HASH_MB = 64
MIN_HASH_MB, MAX_HASH_MB = 8, 1024

# Scheduler timing (milliseconds)
POLL_INTERVAL_MS = 150
STALL_TIMEOUT_MS = 1800
USABLE_DEPTH = 12
POSITION_CEILING_MS = 10000
STOP_GRACE_MS = 150
INTER_POSITION_DELAY_MS = 100

# Single position analysis
QUICK_DEPTH = 15
QUICK_TIMEOUT_MS = 10000
QUICK_POLL_MS = 100

# Engine session (seconds)
INIT_TIMEOUT_S = 5.0
SETTLE_TIMEOUT_S = 2.0

DEFAULT_LOG_LEVEL = "WARNING"

_ENV_PREFIX = "CHESS_REVIEW_"


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def clamp_depth(depth: int) -> int:
    return _clamp(depth, MIN_DEPTH, MAX_DEPTH)


def clamp_multipv(multipv: int) -> int:
    return _clamp(multipv, MIN_MULTIPV, MAX_MULTIPV)


def clamp_threads(threads: int) -> int:
    return _clamp(threads, MIN_THREADS, MAX_THREADS)


def clamp_hash(hash_mb: int) -> int:
    return _clamp(hash_mb, MIN_HASH_MB, MAX_HASH_MB)


@dataclass(frozen=True)
class SchedulerTiming:
    """Per-position polling budget, all values in milliseconds."""

    poll_interval_ms: int = POLL_INTERVAL_MS
    stall_timeout_ms: int = STALL_TIMEOUT_MS
    usable_depth: int = USABLE_DEPTH
    ceiling_ms: int = POSITION_CEILING_MS
    stop_grace_ms: int = STOP_GRACE_MS
    inter_position_delay_ms: int = INTER_POSITION_DELAY_MS


@dataclass(frozen=True)
class AnalysisSettings:
    """Engine and analysis options for one review run."""

    engine_path: str | None = None
    depth: int = DEFAULT_DEPTH
    multipv: int = DEFAULT_MULTIPV
    threads: int = DEFAULT_THREADS
    hash_mb: int = DEFAULT_HASH_MB
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        # frozen dataclass: normalise via object.__setattr__
        object.__setattr__(self, "depth", clamp_depth(self.depth))
        object.__setattr__(self, "multipv", clamp_multipv(self.multipv))
        object.__setattr__(self, "threads", clamp_threads(self.threads))
        object.__setattr__(self, "hash_mb", clamp_hash(self.hash_mb))
        object.__setattr__(self, "log_level", self.log_level.upper())

    @classmethod
    def from_env(cls, **overrides) -> AnalysisSettings:
        """Build settings from CHESS_REVIEW_* variables.

        Keyword overrides that are not None win over the environment.

        Returns:
            A clamped AnalysisSettings instance.
        """
        values = {
            "engine_path": os.environ.get(_ENV_PREFIX + "ENGINE") or None,
            "depth": _env_int("DEPTH", DEFAULT_DEPTH),
            "multipv": _env_int("MULTIPV", DEFAULT_MULTIPV),
            "threads": _env_int("THREADS", DEFAULT_THREADS),
            "hash_mb": _env_int("HASH", DEFAULT_HASH_MB),
            "log_level": os.environ.get(_ENV_PREFIX + "LOG_LEVEL", DEFAULT_LOG_LEVEL),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def engine_options(self) -> dict[str, int]:
        """UCI options sent once after the handshake."""
        return {"Threads": self.threads, "Hash": self.hash_mb}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(_ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s%s=%r: not an integer", _ENV_PREFIX, name, raw)
        return default


def find_engine(explicit: str | None = None) -> str:
    """Locate a UCI engine binary.

    Checks the explicit path, CHESS_REVIEW_ENGINE, known install paths,
    then falls back to PATH lookup.

    Args:
        explicit: Path supplied by the caller, used as-is when given.

    Returns:
        Path to the engine binary.

    Raises:
        FileNotFoundError: If no engine is found anywhere.
    """
    if explicit:
        return explicit

    from_env = os.environ.get(_ENV_PREFIX + "ENGINE")
    if from_env:
        return from_env

    for path_str in ENGINE_SEARCH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise FileNotFoundError(
        "Stockfish not found. Install it or set CHESS_REVIEW_ENGINE."
    )
