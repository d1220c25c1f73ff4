"""Shared data models for game review.

Engine reports come out of the UCI codec; MoveAnnotation, AccuracyMetrics,
OpeningMatch and GameAnalysis are the contract between the analyzer and
its callers (CLI, MCP server).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from game_review.settings import MATE_SCORE


# ---------------------------------------------------------------------------
# Engine protocol values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Centipawns:
    """Score in hundredths of a pawn, relative to the side to move."""

    value: int

    def to_centipawns(self, mate_score: int = MATE_SCORE) -> int:
        return self.value

    def signature(self) -> str:
        return f"cp {self.value}"


@dataclass(frozen=True)
class Mate:
    """Forced mate in N moves; negative when the side to move gets mated."""

    moves: int

    def to_centipawns(self, mate_score: int = MATE_SCORE) -> int:
        # "mate 0" means the side to move is already mated
        return mate_score if self.moves > 0 else -mate_score

    def signature(self) -> str:
        return f"mate {self.moves}"


Score = Centipawns | Mate


@dataclass(frozen=True)
class EngineReport:
    """One parsed ``info`` line."""

    depth: int = 0
    seldepth: int | None = None
    score: Score | None = None
    nodes: int | None = None
    nps: int | None = None
    time_ms: int | None = None
    pv: tuple[str, ...] = ()
    multipv: int | None = None
    currmove: str | None = None
    currmovenumber: int | None = None


@dataclass(frozen=True)
class BestMoveResult:
    """One parsed ``bestmove`` line."""

    move: str
    ponder: str | None = None


@dataclass(frozen=True)
class ReadySignal:
    """Handshake acknowledgement (``uciok`` or ``readyok``)."""

    keyword: str


# ---------------------------------------------------------------------------
# Game input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    """A board state and its 0-based index in the game."""

    index: int
    fen: str


@dataclass(frozen=True)
class MoveInput:
    """A played move as squares, colour inferred from its index."""

    from_square: str
    to_square: str
    promotion: str | None = None

    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"

    @staticmethod
    def is_white(index: int) -> bool:
        return index % 2 == 0


# ---------------------------------------------------------------------------
# Analysis results
# ---------------------------------------------------------------------------


class Annotation(str, Enum):
    """Move quality tags, best to worst, plus opening theory."""

    BRILLIANT = "brilliant"
    CRITICAL = "critical"
    BEST = "best"
    EXCELLENT = "excellent"
    OKAY = "okay"
    INACCURACY = "inaccuracy"
    MISTAKE = "mistake"
    BLUNDER = "blunder"
    THEORY = "theory"


@dataclass(frozen=True)
class MoveAnnotation:
    """Classification of a single half-move."""

    move_index: int
    annotation: Annotation
    eval_before: int
    eval_after: int
    eval_change: int
    actual_move: str
    is_white: bool
    best_move: str | None = None


@dataclass(frozen=True)
class AccuracyMetrics:
    """Accuracy percentages and move-quality counts for one player."""

    overall: float = 0.0
    opening: float = 0.0
    middlegame: float = 0.0
    endgame: float = 0.0
    best_moves: int = 0
    good_moves: int = 0
    inaccuracies: int = 0
    mistakes: int = 0
    blunders: int = 0


@dataclass(frozen=True)
class PlayerAccuracy:
    white: AccuracyMetrics = field(default_factory=AccuracyMetrics)
    black: AccuracyMetrics = field(default_factory=AccuracyMetrics)


@dataclass(frozen=True)
class OpeningMatch:
    """A named opening keyed by its canonical move prefix."""

    eco: str
    name: str
    moves: str
    variation: str | None = None

    @property
    def display_name(self) -> str:
        if self.variation:
            return f"{self.name}: {self.variation}"
        return self.name

    @property
    def description(self) -> str:
        return f"{self.eco} - {self.display_name}"


@dataclass(frozen=True)
class GameAnalysis:
    """Finished (or cancelled) review of one game.

    ``complete`` is False when the run was cancelled; evaluations then
    hold only the positions analysed before cancellation and no
    annotations or accuracy are derived.
    """

    evaluations: tuple[int, ...]
    best_moves: tuple[str, ...]
    annotations: tuple[MoveAnnotation, ...] = ()
    accuracy: PlayerAccuracy | None = None
    opening: OpeningMatch | None = None
    complete: bool = True
