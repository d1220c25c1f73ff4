"""Full-game review: engine walk, move classification, accuracy, opening.

GameAnalyzer is the single entry point the CLI and the MCP server use.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass

from game_review import game
from game_review.accuracy import game_accuracy
from game_review.annotations import annotate_game
from game_review.engine import EngineSession, SessionState
from game_review.errors import (
    AnalysisError,
    EngineTerminatedError,
    SessionBusyError,
    SessionInitError,
)
from game_review.models import GameAnalysis, Mate, MoveInput
from game_review.openings import OpeningBook
from game_review.scheduler import (
    AnalysisScheduler,
    PositionResult,
    ProgressCallback,
    white_evaluation,
)
from game_review.settings import AnalysisSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionEvaluation:
    """Quick-analysis result; evaluation is White-positive centipawns."""

    fen: str
    evaluation: int
    best_move: str
    depth: int
    pv: tuple[str, ...] = ()
    mate_in: int | None = None
    nps: int | None = None
    time_ms: int | None = None


class CancellationToken:
    """Cooperative cancellation flag shared with a running analysis."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __call__(self) -> bool:
        return self._event.is_set()


class GameAnalyzer:
    """Reviews whole games with one engine session."""

    def __init__(
        self,
        session: EngineSession,
        settings: AnalysisSettings | None = None,
        scheduler: AnalysisScheduler | None = None,
        book: OpeningBook | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or AnalysisSettings()
        self.scheduler = scheduler or AnalysisScheduler(session)
        self.book = book or OpeningBook()
        self.last_analysis: GameAnalysis | None = None

    def analyze(
        self,
        moves: Sequence[MoveInput],
        fens: Sequence[str],
        on_progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> GameAnalysis:
        """Review a game.

        Args:
            moves: Played moves in order.
            fens: Position before the first move, then after each move.
            on_progress: Called with (position index, total, status).
            token: Cancels the run cooperatively when triggered.

        Returns:
            GameAnalysis. When cancelled, ``complete`` is False and only
            the evaluations collected so far are included.

        Raises:
            InvalidInput: If the moves or FENs are malformed; nothing runs.
            AnalysisError: If the engine fails to start or dies mid-run;
                last_analysis is left untouched.
        """
        game.validate_game(moves, fens)
        san = game.san_moves(moves, fens[0])
        positions = game.positions(fens)
        token = token or CancellationToken()

        logger.info("Reviewing %d moves at depth %d", len(moves), self.settings.depth)
        try:
            with self.session.batch():
                if self.session.state == SessionState.UNINITIALIZED:
                    self.session.initialize()
                schedule = self.scheduler.run(
                    positions,
                    self.settings.depth,
                    self.settings.multipv,
                    is_cancelled=token,
                    on_progress=on_progress,
                )
        except SessionBusyError as exc:
            raise AnalysisError(f"Engine is busy: {exc}") from exc
        except SessionInitError as exc:
            logger.error("Engine failed to start: %s", exc)
            raise AnalysisError(f"Engine failed to start: {exc}") from exc
        except EngineTerminatedError as exc:
            logger.error("Engine stopped during analysis: %s", exc)
            raise AnalysisError(f"Engine stopped during analysis: {exc}") from exc

        opening = self.book.identify(san)
        if schedule.cancelled:
            logger.info(
                "Review cancelled after %d of %d positions",
                len(schedule.evaluations),
                len(positions),
            )
            return GameAnalysis(
                evaluations=schedule.evaluations,
                best_moves=schedule.best_moves,
                opening=opening,
                complete=False,
            )

        evaluations = list(schedule.evaluations)
        # the engine's score already assumes best play from each position
        best_evaluations = evaluations
        analysis = GameAnalysis(
            evaluations=schedule.evaluations,
            best_moves=schedule.best_moves,
            annotations=tuple(annotate_game(moves, evaluations, schedule.best_moves)),
            accuracy=game_accuracy(moves, evaluations, best_evaluations),
            opening=opening,
        )
        self.last_analysis = analysis
        logger.info("Review finished: %d annotations", len(analysis.annotations))
        return analysis

    def analyze_pgn(
        self,
        text: str,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> GameAnalysis:
        """Review the mainline of a PGN game."""
        moves, fens, _headers = game.load_pgn(text)
        return self.analyze(moves, fens, on_progress=on_progress, token=token)

    def analyze_position(self, fen: str) -> PositionEvaluation | None:
        """Quick evaluation of one position.

        Returns:
            PositionEvaluation, or None if the engine gave nothing in time.

        Raises:
            InvalidInput: If the FEN is invalid.
            AnalysisError: If the engine fails, or is reserved for a
                running game review.
        """
        board = game.validate_fen(fen)
        if self.session.batch_mode:
            raise AnalysisError("Engine is busy with a game review")
        try:
            if self.session.state == SessionState.UNINITIALIZED:
                self.session.initialize()
            result: PositionResult | None = self.scheduler.analyze_single(
                fen, self.settings.depth
            )
        except (SessionInitError, EngineTerminatedError, SessionBusyError) as exc:
            raise AnalysisError(str(exc)) from exc
        if result is None:
            return None

        report = result.report
        mate_in = None
        if report is not None and isinstance(report.score, Mate):
            # White-positive like the evaluation
            mate_in = report.score.moves if board.turn else -report.score.moves
        return PositionEvaluation(
            fen=fen,
            evaluation=white_evaluation(report, fen),
            best_move=result.best_move or (report.pv[0] if report and report.pv else ""),
            depth=report.depth if report else 0,
            pv=report.pv if report else (),
            mate_in=mate_in,
            nps=report.nps if report else None,
            time_ms=report.time_ms if report else None,
        )

    def clear(self) -> None:
        """Discard the last review, e.g. when a new game is loaded."""
        self.last_analysis = None
