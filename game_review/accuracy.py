"""Accuracy scoring.

Evaluations are converted to expected points with a logistic curve; the
expected points a move gives away relative to the best available move
are mapped to a 0-100 accuracy:

    P(e)     = 1 / (1 + exp(-0.0035 * e))
    loss     = max(0, P(best) - P(after))      (mover's point of view)
    accuracy = 103.16 * exp(-4 * loss) - 3.17  (clamped to [0, 100])
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from game_review.models import AccuracyMetrics, MoveInput, PlayerAccuracy

_CENTIPAWN_GRADIENT = 0.0035
_ACCURACY_SCALE = 103.16
_ACCURACY_DECAY = -4.0
_ACCURACY_OFFSET = -3.17

# eval loss (cp) -> category, best to worst
_CATEGORY_THRESHOLDS = [
    (10, "best"),
    (25, "good"),
    (100, "inaccuracy"),
    (200, "mistake"),
]

# full move number (0-based) boundaries
_OPENING_END = 10
_MIDDLEGAME_END = 30


def expected_points(evaluation: float) -> float:
    """Expected score (0-1) for the side the evaluation favours."""
    return 1 / (1 + math.exp(-_CENTIPAWN_GRADIENT * evaluation))


def point_loss(
    eval_before: float, eval_after: float, best_eval: float, is_white: bool
) -> float:
    """Expected points given away by the move, never negative.

    eval_before is accepted for symmetry with the classifier; the loss
    only compares the best reachable evaluation with the actual one.
    """
    sign = 1 if is_white else -1
    return max(
        0.0, expected_points(best_eval * sign) - expected_points(eval_after * sign)
    )


def move_accuracy(
    eval_before: float, eval_after: float, best_eval: float, is_white: bool
) -> float:
    """Accuracy percentage (0-100) of a single move."""
    loss = point_loss(eval_before, eval_after, best_eval, is_white)
    if loss == 0:
        return 100.0
    accuracy = _ACCURACY_SCALE * math.exp(_ACCURACY_DECAY * loss) + _ACCURACY_OFFSET
    return max(0.0, min(100.0, accuracy))


def eval_loss(
    eval_before: float, eval_after: float, best_eval: float, is_white: bool
) -> float:
    """Centipawns lost versus the best move, from the mover's side."""
    if is_white:
        actual_change = eval_after - eval_before
        best_change = best_eval - eval_before
    else:
        actual_change = eval_before - eval_after
        best_change = eval_before - best_eval
    return max(0.0, best_change - actual_change)


def categorize_loss(loss: float) -> str:
    """Bucket a centipawn loss into best/good/inaccuracy/mistake/blunder."""
    for threshold, label in _CATEGORY_THRESHOLDS:
        if loss <= threshold:
            return label
    return "blunder"


def game_phase(full_move_number: int) -> str:
    if full_move_number < _OPENING_END:
        return "opening"
    if full_move_number < _MIDDLEGAME_END:
        return "middlegame"
    return "endgame"


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def player_accuracy(
    moves: Sequence[MoveInput],
    evaluations: Sequence[int],
    best_evaluations: Sequence[int],
    is_white: bool,
) -> AccuracyMetrics:
    """Accuracy metrics for one side.

    Args:
        moves: All moves of the game; White plays the even indices.
        evaluations: One evaluation per position (len(moves) + 1).
        best_evaluations: Best reachable evaluation per position.
        is_white: Which side to score.

    Returns:
        AccuracyMetrics; all zeros when the side made no move.
    """
    count = min(len(moves), len(evaluations) - 1, len(best_evaluations))
    indices = [i for i in range(count) if MoveInput.is_white(i) == is_white]
    if not indices:
        return AccuracyMetrics()

    phases: dict[str, list[float]] = {"opening": [], "middlegame": [], "endgame": []}
    categories = {"best": 0, "good": 0, "inaccuracy": 0, "mistake": 0, "blunder": 0}
    accuracies: list[float] = []

    for i in indices:
        before, after, best = evaluations[i], evaluations[i + 1], best_evaluations[i]
        accuracy = move_accuracy(before, after, best, is_white)
        accuracies.append(accuracy)
        phases[game_phase(i // 2)].append(accuracy)

        category = categorize_loss(eval_loss(before, after, best, is_white))
        categories[category] += 1
        if category == "best":
            # best moves count as good too
            categories["good"] += 1

    return AccuracyMetrics(
        overall=_mean(accuracies),
        opening=_mean(phases["opening"]),
        middlegame=_mean(phases["middlegame"]),
        endgame=_mean(phases["endgame"]),
        best_moves=categories["best"],
        good_moves=categories["good"],
        inaccuracies=categories["inaccuracy"],
        mistakes=categories["mistake"],
        blunders=categories["blunder"],
    )


def game_accuracy(
    moves: Sequence[MoveInput],
    evaluations: Sequence[int],
    best_evaluations: Sequence[int],
) -> PlayerAccuracy:
    return PlayerAccuracy(
        white=player_accuracy(moves, evaluations, best_evaluations, True),
        black=player_accuracy(moves, evaluations, best_evaluations, False),
    )


_DESCRIPTIONS = [
    (95, "Brilliant"),
    (90, "Excellent"),
    (80, "Very Good"),
    (70, "Good"),
    (60, "Decent"),
    (50, "Fair"),
]


def describe_accuracy(accuracy: float) -> str:
    for threshold, label in _DESCRIPTIONS:
        if accuracy >= threshold:
            return label
    return "Poor"
