"""Shared test fixtures with dual-mode support (scripted vs real Stockfish).

Usage:
    pytest tests/                  # Fast, scripted engine (no Stockfish)
    pytest tests/ --e2e            # Real Stockfish for integration tests

Fixtures:
    fake_engine        - Factory for FakeEngine, a scripted UCI engine that
                         plugs into EngineSession as its transport.
    manual_clock       - Deterministic clock/sleep pair for the scheduler.
    scripted_session   - Factory for ScriptedSession, a session stand-in
                         driven by the manual clock.
    fast_timing        - SchedulerTiming shrunk for real-clock tests.
    enable_validation  - Sets CHESS_REVIEW_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import os
import queue
import shutil
from collections.abc import Callable

import chess
import pytest

from game_review.engine import SessionSnapshot, SessionState
from game_review.models import Centipawns, EngineReport, Score
from game_review.settings import SchedulerTiming

_DEFAULT_BEST = "e2e4"


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no fakes).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e is given and Stockfish is installed."""
    if config.getoption("--e2e") and shutil.which("stockfish"):
        return
    skip = pytest.mark.skip(reason="needs --e2e and a stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip)


# ---------------------------------------------------------------------------
# Scripted UCI engine
# ---------------------------------------------------------------------------


class FakeEngine:
    """In-process UCI engine implementing the EngineTransport interface.

    Scores are per FEN and relative to the side to move, as a real engine
    reports them. With answer_go=False a search only ends on ``stop``;
    with answer_stop=False it only ends when the test calls finish().
    """

    def __init__(
        self,
        scores: dict[str, int] | None = None,
        best_moves: dict[str, str] | None = None,
        answer_go: bool = True,
        answer_uci: bool = True,
        answer_stop: bool = True,
        fail_start: bool = False,
    ) -> None:
        self.scores = scores or {}
        self.best_moves = best_moves or {}
        self.answer_go = answer_go
        self.answer_uci = answer_uci
        self.answer_stop = answer_stop
        self.fail_start = fail_start
        self.sent: list[str] = []
        self.closed = False
        self.searching = False
        self.fen = chess.STARTING_FEN
        self._out: queue.Queue = queue.Queue()

    # -- EngineTransport ----------------------------------------------------

    def start(self) -> None:
        if self.fail_start:
            raise OSError("No such file or directory: 'stockfish'")

    def send(self, line: str) -> None:
        if self.closed:
            raise OSError("Engine process is not running")
        self.sent.append(line)
        tokens = line.split()
        command = tokens[0] if tokens else ""
        if command == "uci" and self.answer_uci:
            self.emit("id name FakeFish")
            self.emit("uciok")
        elif command == "isready":
            self.emit("readyok")
        elif command == "position":
            self.fen = _fen_from_position(tokens)
        elif command == "go":
            self.searching = True
            if self.answer_go:
                depth = int(tokens[tokens.index("depth") + 1])
                for d in range(1, depth + 1):
                    self.emit(self.info_line(d))
                self.finish()
        elif command == "stop":
            if self.searching and self.answer_stop:
                self.finish()
        elif command == "quit":
            self.close()

    def read_line(self) -> str | None:
        return self._out.get()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._out.put(None)

    # -- scripting helpers --------------------------------------------------

    def emit(self, line: str) -> None:
        self._out.put(line)

    def info_line(self, depth: int) -> str:
        score = self.scores.get(self.fen, 0)
        best = self.best_moves.get(self.fen, _DEFAULT_BEST)
        return (
            f"info depth {depth} seldepth {depth + 2} score cp {score} "
            f"nodes {depth * 1000} nps 500000 time {depth * 2} pv {best}"
        )

    def finish(self) -> None:
        self.searching = False
        self.emit(f"bestmove {self.best_moves.get(self.fen, _DEFAULT_BEST)}")

    def crash(self) -> None:
        """Simulate the process dying."""
        self.close()

    def commands(self, prefix: str) -> list[str]:
        return [line for line in self.sent if line.startswith(prefix)]


def _fen_from_position(tokens: list[str]) -> str:
    if len(tokens) > 1 and tokens[1] == "fen":
        end = tokens.index("moves") if "moves" in tokens else len(tokens)
        return " ".join(tokens[2:end])
    return chess.STARTING_FEN


@pytest.fixture()
def fake_engine() -> Callable[..., FakeEngine]:
    """Factory: fake_engine(scores=..., answer_go=False, ...)."""
    return FakeEngine


# ---------------------------------------------------------------------------
# Deterministic scheduler doubles
# ---------------------------------------------------------------------------


class ManualClock:
    """Monotonic clock that only moves when sleep() is called."""

    def __init__(self) -> None:
        # whole microseconds keep millisecond arithmetic exact
        self._us = 0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self._us / 1_000_000

    @property
    def now(self) -> float:
        return self()

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._us += max(round(seconds * 1_000_000), 0)

    @property
    def elapsed_ms(self) -> float:
        return self._us / 1000


@pytest.fixture()
def manual_clock() -> ManualClock:
    return ManualClock()


Behaviour = Callable[[str, float], SessionSnapshot]


class ScriptedSession:
    """Session stand-in whose snapshot is a function of elapsed time.

    behaviour(fen, elapsed_ms) returns the snapshot for the current
    request; a stop() makes the next snapshot report the current report
    as finished (READY with best move) when finish_on_stop is True.
    """

    def __init__(
        self,
        clock: ManualClock,
        behaviour: Behaviour,
        finish_on_stop: bool = True,
    ) -> None:
        self.clock = clock
        self.behaviour = behaviour
        self.finish_on_stop = finish_on_stop
        self.requests: list[tuple[str | None, int, int]] = []
        self.stops = 0
        self._started_ms = 0.0
        self._stopped = False
        self._request_id = 0

    def analyze(self, fen: str | None, depth: int, multipv: int = 1) -> int:
        self.requests.append((fen, depth, multipv))
        self._started_ms = self.clock.elapsed_ms
        self._stopped = False
        self._request_id += 1
        return self._request_id

    def stop(self) -> None:
        self.stops += 1
        self._stopped = True

    def snapshot(self) -> SessionSnapshot:
        fen = self.requests[-1][0] if self.requests else None
        elapsed_ms = self.clock.elapsed_ms - self._started_ms
        snap = self.behaviour(fen, elapsed_ms)
        if self._stopped and self.finish_on_stop and snap.busy:
            best = snap.report.pv[0] if snap.report and snap.report.pv else _DEFAULT_BEST
            return SessionSnapshot(
                state=SessionState.READY,
                request_id=self._request_id,
                fen=fen,
                report=snap.report,
                best_move=best,
            )
        return snap


def busy(depth: int, score: Score | None = None, pv: tuple[str, ...] = (_DEFAULT_BEST,)):
    """Snapshot of a search in progress at *depth*."""
    report = EngineReport(depth=depth, score=score or Centipawns(0), pv=pv)
    return SessionSnapshot(state=SessionState.BUSY, report=report)


def finished(depth: int, score: Score | None = None, best: str = _DEFAULT_BEST):
    """Snapshot of a finished search."""
    report = EngineReport(depth=depth, score=score or Centipawns(0), pv=(best,))
    return SessionSnapshot(state=SessionState.READY, report=report, best_move=best)


@pytest.fixture()
def scripted_session(manual_clock) -> Callable[..., ScriptedSession]:
    """Factory: scripted_session(behaviour, finish_on_stop=True)."""

    def _make(behaviour: Behaviour, finish_on_stop: bool = True) -> ScriptedSession:
        return ScriptedSession(manual_clock, behaviour, finish_on_stop)

    return _make


@pytest.fixture()
def snapshots():
    """Builders for common snapshots: snapshots.busy(...), snapshots.finished(...)."""

    class _Builders:
        pass

    builders = _Builders()
    builders.busy = busy
    builders.finished = finished
    return builders


@pytest.fixture()
def fast_timing() -> SchedulerTiming:
    """Timing for real-clock tests against FakeEngine."""
    return SchedulerTiming(
        poll_interval_ms=5,
        stall_timeout_ms=200,
        usable_depth=12,
        ceiling_ms=2000,
        stop_grace_ms=5,
        inter_position_delay_ms=0,
    )


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set CHESS_REVIEW_VALIDATE=1 for the test session.

    Restores the original env var value after the test.
    """
    original = os.environ.get("CHESS_REVIEW_VALIDATE")
    os.environ["CHESS_REVIEW_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("CHESS_REVIEW_VALIDATE", None)
    else:
        os.environ["CHESS_REVIEW_VALIDATE"] = original
