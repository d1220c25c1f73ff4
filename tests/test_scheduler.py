"""Tests for AnalysisScheduler convergence rules.

The scheduler runs against ScriptedSession and ManualClock (conftest.py),
so every timing assertion is exact and no test sleeps for real.
"""

from __future__ import annotations

import chess
import pytest

from game_review.engine import SessionSnapshot, SessionState
from game_review.errors import EngineTerminatedError
from game_review.models import Centipawns, EngineReport, Mate, Position
from game_review.scheduler import AnalysisScheduler, Outcome, white_evaluation
from game_review.settings import SchedulerTiming

_START = chess.STARTING_FEN
_BLACK_TO_MOVE = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_scheduler(manual_clock, scripted_session):
    def _make(behaviour, finish_on_stop=True, timing=None):
        session = scripted_session(behaviour, finish_on_stop=finish_on_stop)
        scheduler = AnalysisScheduler(
            session,
            timing=timing,
            clock=manual_clock,
            sleep=manual_clock.sleep,
        )
        return scheduler, session

    return _make


def _positions(*fens: str) -> list[Position]:
    return [Position(index=i, fen=fen) for i, fen in enumerate(fens)]


# ---------------------------------------------------------------------------
# Convergence rules
# ---------------------------------------------------------------------------


class TestConvergence:

    def test_completed_when_engine_finishes(self, make_scheduler, snapshots):
        scheduler, _ = make_scheduler(
            lambda fen, ms: snapshots.finished(16, Centipawns(30), best="g1f3")
        )
        result = scheduler.run(_positions(_START), target_depth=18)
        assert result.outcomes == (Outcome.COMPLETED,)
        assert result.evaluations == (30,)
        assert result.best_moves == ("g1f3",)
        assert not result.cancelled

    def test_target_depth_reached(self, make_scheduler, snapshots, manual_clock):
        # one new depth per tick
        scheduler, session = make_scheduler(
            lambda fen, ms: snapshots.busy(min(18, 1 + int(ms // 150)), Centipawns(20))
        )
        result = scheduler.run(_positions(_START), target_depth=18)
        assert result.outcomes == (Outcome.TARGET_DEPTH,)
        assert result.reports[0].depth == 18
        assert result.best_moves == ("e2e4",)
        assert session.stops == 1
        assert manual_clock.elapsed_ms == pytest.approx(17 * 150 + 150)

    def test_stalled_at_usable_depth(self, make_scheduler, snapshots, manual_clock):
        scheduler, _ = make_scheduler(lambda fen, ms: snapshots.busy(14, Centipawns(5)))
        result = scheduler.run(_positions(_START), target_depth=22)
        assert result.outcomes == (Outcome.STALLED,)
        assert result.evaluations == (5,)
        assert 1800 <= manual_clock.elapsed_ms <= 1800 + 150 + 150

    def test_no_stall_below_usable_depth(self, make_scheduler, snapshots, manual_clock):
        scheduler, _ = make_scheduler(lambda fen, ms: snapshots.busy(6, Centipawns(5)))
        result = scheduler.run(_positions(_START), target_depth=22)
        assert result.outcomes == (Outcome.TIMEOUT,)

    def test_custom_timing(self, make_scheduler, snapshots, manual_clock):
        timing = SchedulerTiming(usable_depth=4, stall_timeout_ms=300, stop_grace_ms=10)
        scheduler, _ = make_scheduler(
            lambda fen, ms: snapshots.busy(4, Centipawns(5)), timing=timing
        )
        result = scheduler.run(_positions(_START), target_depth=8)
        assert result.outcomes == (Outcome.STALLED,)
        assert manual_clock.elapsed_ms == pytest.approx(300 + 10)

    def test_score_change_resets_stall(self, make_scheduler, snapshots):
        def behaviour(fen, ms):
            return snapshots.busy(14, Centipawns(int(ms // 1000)))

        scheduler, _ = make_scheduler(behaviour)
        result = scheduler.run(_positions(_START), target_depth=22)
        assert result.outcomes == (Outcome.TIMEOUT,)

    def test_ceiling_bounds_wait(self, make_scheduler, manual_clock):
        # engine never reports anything
        scheduler, _ = make_scheduler(
            lambda fen, ms: SessionSnapshot(state=SessionState.BUSY),
            finish_on_stop=False,
        )
        result = scheduler.run(_positions(_START), target_depth=18)
        assert result.outcomes == (Outcome.TIMEOUT,)
        assert result.evaluations == (0,)
        assert result.best_moves == ("",)
        assert manual_clock.elapsed_ms <= 10_000 + 150

    def test_bestmove_without_info(self, make_scheduler):
        scheduler, _ = make_scheduler(
            lambda fen, ms: SessionSnapshot(state=SessionState.READY, best_move="e2e4")
        )
        result = scheduler.run(_positions(_START), target_depth=18)
        assert result.outcomes == (Outcome.COMPLETED,)
        assert result.evaluations == (0,)

    def test_engine_termination_raises(self, make_scheduler):
        scheduler, _ = make_scheduler(
            lambda fen, ms: SessionSnapshot(
                state=SessionState.TERMINATED, error="Engine process exited unexpectedly"
            )
        )
        with pytest.raises(EngineTerminatedError, match="exited unexpectedly"):
            scheduler.run(_positions(_START), target_depth=18)


# ---------------------------------------------------------------------------
# Batch runs
# ---------------------------------------------------------------------------


class TestRun:

    def test_one_result_per_position(self, make_scheduler, snapshots):
        fens = [_START, _BLACK_TO_MOVE, _START, _BLACK_TO_MOVE]
        scheduler, session = make_scheduler(lambda fen, ms: snapshots.finished(18))
        result = scheduler.run(_positions(*fens), target_depth=18)
        assert len(result.evaluations) == len(fens)
        assert len(result.best_moves) == len(fens)
        assert [fen for fen, _, _ in session.requests] == fens

    def test_requests_carry_depth_and_multipv(self, make_scheduler, snapshots):
        scheduler, session = make_scheduler(lambda fen, ms: snapshots.finished(10))
        scheduler.run(_positions(_START), target_depth=10, multipv=3)
        assert session.requests == [(_START, 10, 3)]

    def test_scores_become_white_positive(self, make_scheduler, snapshots):
        scheduler, _ = make_scheduler(lambda fen, ms: snapshots.finished(18, Centipawns(50)))
        result = scheduler.run(_positions(_START, _BLACK_TO_MOVE), target_depth=18)
        assert result.evaluations == (50, -50)

    def test_inter_position_delay(self, make_scheduler, snapshots, manual_clock):
        scheduler, _ = make_scheduler(lambda fen, ms: snapshots.finished(18))
        scheduler.run(_positions(_START, _BLACK_TO_MOVE, _START), target_depth=18)
        assert manual_clock.sleeps == [0.1, 0.1]

    def test_progress_reports(self, make_scheduler, snapshots):
        seen = []
        scheduler, _ = make_scheduler(lambda fen, ms: snapshots.finished(18, Centipawns(35)))
        scheduler.run(
            _positions(_START, _BLACK_TO_MOVE),
            target_depth=18,
            on_progress=lambda i, total, status: seen.append((i, total, status)),
        )
        assert [i for i, _, _ in seen] == [0, 0, 1, 1]
        assert all(total == 2 for _, total, _ in seen)
        assert seen[1][2] == "Move 1/2 · depth 18 · eval +0.35"

    def test_empty_run(self, make_scheduler, snapshots):
        scheduler, session = make_scheduler(lambda fen, ms: snapshots.finished(18))
        result = scheduler.run([], target_depth=18)
        assert result.evaluations == ()
        assert not result.cancelled
        assert session.requests == []


class TestCancellation:

    def test_cancel_mid_position(self, make_scheduler, snapshots, manual_clock):
        scheduler, session = make_scheduler(lambda fen, ms: snapshots.busy(5))
        result = scheduler.run(
            _positions(_START, _BLACK_TO_MOVE, _START),
            target_depth=18,
            is_cancelled=lambda: manual_clock.elapsed_ms >= 600,
        )
        assert result.cancelled
        assert result.evaluations == ()
        assert session.stops == 1
        assert len(session.requests) == 1

    def test_cancel_between_positions(self, make_scheduler, snapshots):
        scheduler, session = make_scheduler(lambda fen, ms: snapshots.finished(18))
        result = scheduler.run(
            _positions(_START, _BLACK_TO_MOVE, _START),
            target_depth=18,
            is_cancelled=lambda: len(session.requests) >= 2,
        )
        assert result.cancelled
        assert len(result.evaluations) == 1
        assert len(session.requests) == 2

    def test_cancel_during_grace(self, make_scheduler, snapshots):
        scheduler, session = make_scheduler(lambda fen, ms: snapshots.busy(18))
        # run start, first tick, then the check after the grace sleep
        ticks = iter([False, False, True])
        result = scheduler.run(
            _positions(_START),
            target_depth=18,
            is_cancelled=lambda: next(ticks, True),
        )
        assert result.cancelled
        assert result.outcomes == ()


# ---------------------------------------------------------------------------
# Quick analysis
# ---------------------------------------------------------------------------


class TestAnalyzeSingle:

    def test_resolves_on_best_move(self, make_scheduler, snapshots):
        scheduler, _ = make_scheduler(lambda fen, ms: snapshots.finished(20, best="d2d4"))
        result = scheduler.analyze_single(_START, 20)
        assert result.outcome is Outcome.COMPLETED
        assert result.best_move == "d2d4"

    def test_resolves_on_depth(self, make_scheduler, snapshots):
        scheduler, session = make_scheduler(
            lambda fen, ms: snapshots.busy(min(20, 1 + int(ms // 100)))
        )
        result = scheduler.analyze_single(_START, 20)
        assert result.outcome is Outcome.TARGET_DEPTH
        assert result.report.depth == 15
        assert session.stops == 1

    def test_times_out(self, make_scheduler, snapshots, manual_clock):
        scheduler, session = make_scheduler(lambda fen, ms: snapshots.busy(3))
        assert scheduler.analyze_single(_START, 20) is None
        assert session.stops == 1
        assert manual_clock.elapsed_ms == pytest.approx(10_000)


# ---------------------------------------------------------------------------
# Score normalisation
# ---------------------------------------------------------------------------


class TestWhiteEvaluation:

    def test_white_to_move(self):
        assert white_evaluation(EngineReport(score=Centipawns(40)), _START) == 40

    def test_black_to_move(self):
        assert white_evaluation(EngineReport(score=Centipawns(40)), _BLACK_TO_MOVE) == -40

    def test_mate_saturates(self):
        assert white_evaluation(EngineReport(score=Mate(2)), _START) == 10_000
        assert white_evaluation(EngineReport(score=Mate(-1)), _BLACK_TO_MOVE) == 10_000

    def test_missing_score(self):
        assert white_evaluation(None, _START) == 0
        assert white_evaluation(EngineReport(depth=4), _START) == 0
