"""Batch scheduler that walks a game position by position.

For every position the scheduler starts a depth-limited search and polls
the session on a fixed tick until the analysis has converged enough:

    a. engine finished and reported a best move      -> COMPLETED
    b. reported depth reached the target depth       -> TARGET_DEPTH
    c. usable depth, no new depth/score for a while  -> STALLED
    d. per-position ceiling exceeded                 -> TIMEOUT

Cancellation is checked first on every tick and wins over all of these.
The ceiling bounds the wait per position, so a run over N positions
terminates even if the engine never answers.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from game_review.engine import SessionSnapshot, SessionState
from game_review.errors import EngineTerminatedError
from game_review.models import EngineReport, Position
from game_review.settings import (
    QUICK_DEPTH,
    QUICK_POLL_MS,
    QUICK_TIMEOUT_MS,
    SchedulerTiming,
)
from game_review.uci import format_evaluation

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]
CancelCheck = Callable[[], bool]


class AnalysisSession(Protocol):
    """The part of EngineSession the scheduler relies on."""

    def analyze(self, fen: str | None, depth: int, multipv: int = 1) -> int: ...

    def stop(self) -> None: ...

    def snapshot(self) -> SessionSnapshot: ...


class Outcome(str, Enum):
    COMPLETED = "completed"
    TARGET_DEPTH = "target_depth"
    STALLED = "stalled"
    TIMEOUT = "timeout"
    ABORTED = "aborted"


@dataclass(frozen=True)
class PositionResult:
    report: EngineReport | None
    best_move: str | None
    outcome: Outcome


@dataclass(frozen=True)
class ScheduleResult:
    """Per-position output of a batch run, in position order."""

    evaluations: tuple[int, ...]
    best_moves: tuple[str, ...]
    reports: tuple[EngineReport | None, ...]
    outcomes: tuple[Outcome, ...]
    cancelled: bool = False


def white_evaluation(report: EngineReport | None, fen: str | None) -> int:
    """Convert an engine score to White-positive centipawns.

    UCI scores are relative to the side to move. A missing report or
    score counts as 0; mates saturate at the mate score.
    """
    if report is None or report.score is None:
        return 0
    cp = report.score.to_centipawns()
    fields = fen.split() if fen else []
    if len(fields) > 1 and fields[1] == "b":
        return -cp
    return cp


def _never() -> bool:
    return False


class AnalysisScheduler:
    """Drives one session through a list of positions."""

    def __init__(
        self,
        session: AnalysisSession,
        timing: SchedulerTiming | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session = session
        self.timing = timing or SchedulerTiming()
        self._clock = clock
        self._sleep = sleep

    def run(
        self,
        positions: Sequence[Position],
        target_depth: int,
        multipv: int = 1,
        is_cancelled: CancelCheck | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ScheduleResult:
        """Analyse every position in order, one request at a time.

        Args:
            positions: Positions to analyse, index 0 first.
            target_depth: Depth at which a position counts as done.
            multipv: Number of candidate lines requested per position.
            is_cancelled: Polled once per tick; True stops the run.
            on_progress: Called with (position index, total, status).

        Returns:
            ScheduleResult with one entry per analysed position. When
            cancelled, the position in flight has no entry.

        Raises:
            EngineTerminatedError: If the engine dies during the run.
        """
        cancelled = is_cancelled or _never
        total = len(positions)
        evaluations: list[int] = []
        best_moves: list[str] = []
        reports: list[EngineReport | None] = []
        outcomes: list[Outcome] = []

        for n, position in enumerate(positions):
            if cancelled():
                break
            if n > 0:
                self._sleep(self.timing.inter_position_delay_ms / 1000)
            self._notify(on_progress, position.index, total, "starting")
            self._session.analyze(position.fen, target_depth, multipv)

            result = self.wait_for_convergence(
                position.index, total, target_depth, cancelled, on_progress
            )
            if result.outcome is Outcome.ABORTED:
                logger.info("Analysis cancelled at position %d/%d", n + 1, total)
                break
            if result.outcome is Outcome.TIMEOUT:
                logger.warning(
                    "Position %d hit the %d ms ceiling at depth %d",
                    position.index,
                    self.timing.ceiling_ms,
                    result.report.depth if result.report else 0,
                )

            evaluations.append(white_evaluation(result.report, position.fen))
            best_moves.append(result.best_move or "")
            reports.append(result.report)
            outcomes.append(result.outcome)

        return ScheduleResult(
            evaluations=tuple(evaluations),
            best_moves=tuple(best_moves),
            reports=tuple(reports),
            outcomes=tuple(outcomes),
            cancelled=len(evaluations) < total,
        )

    def wait_for_convergence(
        self,
        index: int,
        total: int,
        target_depth: int,
        is_cancelled: CancelCheck | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> PositionResult:
        """Poll the session until the current request has converged.

        Returns:
            PositionResult; ABORTED carries no report and no best move.
        """
        timing = self.timing
        cancelled = is_cancelled or _never
        usable_depth = min(timing.usable_depth, target_depth)

        start = self._clock()
        highest_depth = 0
        last_signature = ""
        last_change = start

        while True:
            if cancelled():
                self._session.stop()
                return PositionResult(None, None, Outcome.ABORTED)

            snap = self._session.snapshot()
            if snap.state == SessionState.TERMINATED:
                raise EngineTerminatedError(
                    snap.error or "Engine terminated during analysis"
                )

            now = self._clock()
            report = snap.report
            depth = report.depth if report is not None else 0
            signature = ""
            if report is not None and report.score is not None:
                signature = report.score.signature()
            if report is not None and (
                depth > highest_depth or signature != last_signature
            ):
                highest_depth = max(highest_depth, depth)
                last_signature = signature
                last_change = now

            self._notify(on_progress, index, total, _status(report))

            if not snap.busy and snap.best_move:
                return PositionResult(report, snap.best_move, Outcome.COMPLETED)

            elapsed_ms = (now - start) * 1000
            stalled_ms = (now - last_change) * 1000
            if depth >= target_depth:
                return self._settle(Outcome.TARGET_DEPTH, cancelled)
            if depth >= usable_depth and stalled_ms >= timing.stall_timeout_ms:
                logger.debug("Position %d stalled at depth %d", index, depth)
                return self._settle(Outcome.STALLED, cancelled)
            if elapsed_ms >= timing.ceiling_ms:
                return self._settle(Outcome.TIMEOUT, cancelled)

            remaining_ms = timing.ceiling_ms - elapsed_ms
            self._sleep(min(timing.poll_interval_ms, remaining_ms) / 1000)

    def analyze_single(
        self,
        fen: str,
        depth: int,
        resolve_depth: int = QUICK_DEPTH,
        timeout_ms: int = QUICK_TIMEOUT_MS,
    ) -> PositionResult | None:
        """Analyse one position outside of a batch run.

        Resolves as soon as a best move is known or the reported depth
        reaches *resolve_depth*.

        Returns:
            PositionResult, or None if nothing usable arrived in time.
        """
        self._session.analyze(fen, depth)
        start = self._clock()
        while (self._clock() - start) * 1000 < timeout_ms:
            snap = self._session.snapshot()
            if snap.state == SessionState.TERMINATED:
                raise EngineTerminatedError(snap.error or "Engine terminated")
            if snap.best_move:
                return PositionResult(snap.report, snap.best_move, Outcome.COMPLETED)
            if snap.report is not None and snap.report.depth >= resolve_depth:
                self._session.stop()
                return PositionResult(snap.report, None, Outcome.TARGET_DEPTH)
            self._sleep(QUICK_POLL_MS / 1000)
        self._session.stop()
        return None

    def _settle(self, outcome: Outcome, cancelled: CancelCheck) -> PositionResult:
        # give the engine one grace tick to flush its final report
        self._session.stop()
        self._sleep(self.timing.stop_grace_ms / 1000)
        if cancelled():
            return PositionResult(None, None, Outcome.ABORTED)
        snap = self._session.snapshot()
        return PositionResult(snap.report, snap.best_move, outcome)

    @staticmethod
    def _notify(
        on_progress: ProgressCallback | None, index: int, total: int, status: str
    ) -> None:
        if on_progress is not None:
            on_progress(index, total, f"Move {index + 1}/{total} · {status}")


def _status(report: EngineReport | None) -> str:
    if report is None:
        return "waiting for engine"
    status = f"depth {report.depth}"
    if report.score is not None:
        status += f" · eval {format_evaluation(report.score)}"
    return status
