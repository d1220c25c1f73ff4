"""Move classification from engine evaluations.

All evaluations are White-positive centipawns. The cascade in
classify_move is ordered; the first matching rule wins.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from game_review.models import Annotation, MoveAnnotation, MoveInput

# Opening theory window, in full moves
_THEORY_FULL_MOVES = 10
_THEORY_MAX_CHANGE = 50

_BRILLIANT_MIN_GAIN = 80
_BRILLIANT_MIN_AFTER = 100

_CRITICAL_MAX_BEFORE = -100
_CRITICAL_MIN_GAIN = 150
_CRITICAL_MAX_ABS_AFTER = 100

_EXCELLENT_MAX_CHANGE = 20
_OKAY_MAX_CHANGE = 50
_INACCURACY_MIN_LOSS = 50
_MISTAKE_MIN_LOSS = 100
_BLUNDER_MIN_LOSS = 200

# Holding a lost position is not penalised as hard
_LOST_BEFORE = -300
_LOST_MISTAKE_FLOOR = -500
_LOST_BLUNDER_FLOOR = -600
_STILL_WINNING_AFTER = 200


def mover_change(eval_before: int, eval_after: int, is_white: bool) -> int:
    """Evaluation change seen from the side that moved."""
    return eval_after - eval_before if is_white else eval_before - eval_after


def classify_move(
    eval_before: int,
    eval_after: int,
    is_white: bool,
    full_move_number: int = 0,
    is_best: bool = False,
) -> Annotation | None:
    """Classify one move.

    Args:
        eval_before: Evaluation before the move, White-positive.
        eval_after: Evaluation after the move, White-positive.
        is_white: True when White made the move.
        full_move_number: 0-based full move number (ply // 2).
        is_best: True when the move matches the engine's top choice.

    Returns:
        The annotation, or None for a neutral move.
    """
    change = mover_change(eval_before, eval_after, is_white)
    before = eval_before if is_white else -eval_before
    after = eval_after if is_white else -eval_after

    if full_move_number < _THEORY_FULL_MOVES and abs(change) <= _THEORY_MAX_CHANGE:
        return Annotation.THEORY
    if is_best:
        return Annotation.BEST
    if change > _BRILLIANT_MIN_GAIN and after > _BRILLIANT_MIN_AFTER:
        return Annotation.BRILLIANT
    if (
        before < _CRITICAL_MAX_BEFORE
        and change > _CRITICAL_MIN_GAIN
        and abs(after) < _CRITICAL_MAX_ABS_AFTER
    ):
        return Annotation.CRITICAL
    if abs(change) <= _EXCELLENT_MAX_CHANGE:
        return Annotation.EXCELLENT
    if abs(change) <= _OKAY_MAX_CHANGE:
        return Annotation.OKAY

    already_lost = before < _LOST_BEFORE

    if -_MISTAKE_MIN_LOSS <= change < -_INACCURACY_MIN_LOSS:
        return Annotation.INACCURACY
    if -_BLUNDER_MIN_LOSS <= change < -_MISTAKE_MIN_LOSS:
        if already_lost and after > _LOST_MISTAKE_FLOOR:
            return None
        return Annotation.MISTAKE
    if change < -_BLUNDER_MIN_LOSS:
        if already_lost and after > _LOST_BLUNDER_FLOOR:
            return Annotation.MISTAKE
        if after > _STILL_WINNING_AFTER:
            return Annotation.MISTAKE
        return Annotation.BLUNDER
    return None


def annotate_game(
    moves: Sequence[MoveInput],
    evaluations: Sequence[int],
    best_moves: Sequence[str] | None = None,
) -> list[MoveAnnotation]:
    """Annotate every move that warrants a tag.

    Args:
        moves: Played moves in order.
        evaluations: One evaluation per position (len(moves) + 1).
        best_moves: Engine best move (UCI) per position, if known.

    Returns:
        Annotations for non-neutral moves, in move order.
    """
    annotations: list[MoveAnnotation] = []
    if len(evaluations) < 2 or not moves:
        return annotations

    count = min(len(moves), len(evaluations) - 1)
    for i in range(count):
        eval_before = evaluations[i]
        eval_after = evaluations[i + 1]
        is_white = MoveInput.is_white(i)
        actual = moves[i].uci()
        best = best_moves[i] if best_moves and i < len(best_moves) else None

        annotation = classify_move(
            eval_before,
            eval_after,
            is_white,
            full_move_number=i // 2,
            is_best=bool(best) and actual == best,
        )
        if annotation is None:
            continue
        annotations.append(
            MoveAnnotation(
                move_index=i,
                annotation=annotation,
                eval_before=eval_before,
                eval_after=eval_after,
                eval_change=mover_change(eval_before, eval_after, is_white),
                actual_move=actual,
                is_white=is_white,
                best_move=best or None,
            )
        )
    return annotations


def count_annotations(annotations: Sequence[MoveAnnotation]) -> dict[Annotation, int]:
    """Number of moves per tag, zero for tags that never occur."""
    counts = Counter(a.annotation for a in annotations)
    return {tag: counts.get(tag, 0) for tag in Annotation}


_DESCRIPTIONS = {
    Annotation.BRILLIANT: "Brilliant move! Improved position by {cp}",
    Annotation.CRITICAL: "Critical move. Saved position by {cp}",
    Annotation.BEST: "Best move according to engine",
    Annotation.EXCELLENT: "Excellent move. Within {cp} of best",
    Annotation.OKAY: "Good move. Within {cp} of best",
    Annotation.THEORY: "Opening theory move",
    Annotation.INACCURACY: "Inaccuracy. Lost {cp}",
    Annotation.MISTAKE: "Mistake. Lost {cp}",
    Annotation.BLUNDER: "Blunder! Lost {cp}",
}


def describe_annotation(annotation: Annotation, eval_change: int) -> str:
    """Human-readable sentence for an annotated move."""
    return _DESCRIPTIONS[annotation].format(cp=f"{abs(eval_change)}cp")
