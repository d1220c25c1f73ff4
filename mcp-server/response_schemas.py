"""Response schemas and minification for MCP tool responses.

Minifies MCP tool return values to reduce LLM context token waste: a
full game review carries one evaluation and one best move per position,
most of which the agent never needs.

Move sequences use standard chess notation (1.e4 e5 2.Nf3 ...), which
is natural for the LLM agent to read.
"""

from __future__ import annotations

import os

# Tags reported move by move; the rest only appear in tag_counts
_KEY_MOMENT_TAGS = {"brilliant", "critical", "inaccuracy", "mistake", "blunder"}


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def _tag(value) -> str:
    return getattr(value, "value", value)


def minify_game_analysis(analysis: dict, san_moves: list[str]) -> dict:
    """Minify a GameAnalysis dict for MCP response.

    Keeps per-side accuracy and tag counts, reports only key moments
    move by move, and compacts the opening to name and ECO.

    Args:
        analysis: Full GameAnalysis dict (from dataclasses.asdict).
        san_moves: SAN of every played move, for labelling key moments.

    Returns:
        Minified dict.
    """
    result = {
        "complete": analysis.get("complete", True),
        "positions_analyzed": len(analysis.get("evaluations", ())),
    }

    opening = analysis.get("opening")
    if isinstance(opening, dict):
        result["opening"] = {
            "eco": opening.get("eco"),
            "name": opening.get("name"),
        }
        if opening.get("variation"):
            result["opening"]["variation"] = opening["variation"]
    else:
        result["opening"] = None

    accuracy = analysis.get("accuracy")
    if isinstance(accuracy, dict):
        result["accuracy"] = {
            side: _minify_metrics(accuracy.get(side) or {})
            for side in ("white", "black")
        }
    else:
        result["accuracy"] = None

    tag_counts: dict[str, int] = {}
    key_moments = []
    for note in analysis.get("annotations", ()):
        tag = _tag(note.get("annotation"))
        tag_counts[tag] = tag_counts.get(tag, 0) + 1
        if tag not in _KEY_MOMENT_TAGS:
            continue
        index = note.get("move_index", 0)
        number = index // 2 + 1
        prefix = f"{number}." if note.get("is_white") else f"{number}..."
        san = san_moves[index] if index < len(san_moves) else note.get("actual_move")
        moment = {
            "move": f"{prefix}{san}",
            "tag": tag,
            "eval_before": note.get("eval_before"),
            "eval_after": note.get("eval_after"),
        }
        # Only include best_move when known
        if note.get("best_move"):
            moment["best_move"] = note["best_move"]
        key_moments.append(moment)

    result["tag_counts"] = tag_counts
    result["key_moments"] = key_moments

    # Removed fields: evaluations, best_moves, neutral annotations
    return result


def _minify_metrics(metrics: dict) -> dict:
    return {
        "overall": round(float(metrics.get("overall", 0.0)), 1),
        "opening": round(float(metrics.get("opening", 0.0)), 1),
        "middlegame": round(float(metrics.get("middlegame", 0.0)), 1),
        "endgame": round(float(metrics.get("endgame", 0.0)), 1),
        "blunders": metrics.get("blunders", 0),
        "mistakes": metrics.get("mistakes", 0),
        "inaccuracies": metrics.get("inaccuracies", 0),
    }


def minify_position_analysis(analysis: dict) -> dict:
    """Minify a quick position analysis for MCP response.

    Truncates the PV to 5 moves and drops null mate_in.

    Args:
        analysis: Dict with fen, depth, eval_cp, mate_in, best_move, pv.

    Returns:
        Minified dict.
    """
    result = {
        "fen": analysis.get("fen"),
        "depth": analysis.get("depth"),
        "eval_cp": analysis.get("eval_cp"),
        "best_move": analysis.get("best_move"),
    }

    pv = analysis.get("pv", [])
    result["pv"] = pv[:5] if isinstance(pv, list) else pv

    mate_in = analysis.get("mate_in")
    if mate_in is not None:
        result["mate_in"] = mate_in

    return result


def minify_opening(match: dict | None, continuations: list[dict]) -> dict:
    """Minify an opening lookup for MCP response.

    Args:
        match: OpeningMatch dict, or None when nothing matched.
        continuations: Named openings extending the moves.

    Returns:
        Dict with the match (or None) and up to 5 continuation names.
    """
    result: dict = {"opening": None}
    if match is not None:
        result["opening"] = {
            "eco": match.get("eco"),
            "name": match.get("name"),
            "moves": match.get("moves"),
        }
        if match.get("variation"):
            result["opening"]["variation"] = match["variation"]

    result["continuations"] = [
        f"{c.get('eco')} {c.get('name')}" + (f": {c['variation']}" if c.get("variation") else "")
        for c in continuations[:5]
    ]
    return result


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

GAME_ANALYSIS_SCHEMA = {
    "complete": bool,
    "positions_analyzed": int,
    "opening": (dict, type(None)),
    "accuracy": (dict, type(None)),
    "tag_counts": dict,
    "key_moments": list,
}

POSITION_ANALYSIS_SCHEMA = {
    "fen": str,
    "depth": int,
    "eval_cp": int,
    "best_move": str,
    "pv": list,
}

OPENING_SCHEMA = {
    "opening": (dict, type(None)),
    "continuations": list,
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when CHESS_REVIEW_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("CHESS_REVIEW_VALIDATE") != "1":
        return []

    errors = []

    if not isinstance(response, dict):
        errors.append(f"Response is not a dict: {type(response).__name__}")
        return errors

    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if isinstance(expected_types, tuple):
            if not isinstance(value, expected_types):
                type_names = ", ".join(t.__name__ for t in expected_types)
                errors.append(
                    f"Key '{key}': expected ({type_names}), "
                    f"got {type(value).__name__}"
                )
        else:
            if not isinstance(value, expected_types):
                errors.append(
                    f"Key '{key}': expected {expected_types.__name__}, "
                    f"got {type(value).__name__}"
                )

    return errors
