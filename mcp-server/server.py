"""MCP server for chess game review.

Exposes engine-backed game review to an LLM agent via FastMCP. One
engine session is started lazily and shared by all tools; requests are
serialised because a session analyses one position at a time.
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import asdict
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP  # noqa: E402

from game_review import game  # noqa: E402
from game_review.analyzer import GameAnalyzer  # noqa: E402
from game_review.engine import EngineSession, SessionState  # noqa: E402
from game_review.errors import AnalysisError, InvalidInput, SessionInitError  # noqa: E402
from game_review.openings import OpeningBook  # noqa: E402
from game_review.scheduler import AnalysisScheduler  # noqa: E402
from game_review.settings import AnalysisSettings, SchedulerTiming  # noqa: E402

from response_schemas import (  # noqa: E402
    GAME_ANALYSIS_SCHEMA,
    OPENING_SCHEMA,
    POSITION_ANALYSIS_SCHEMA,
    minify_game_analysis,
    minify_opening,
    minify_position_analysis,
    validate_response,
)

logger = logging.getLogger(__name__)

mcp = FastMCP("chess-game-review")

_session: EngineSession | None = None
_session_lock = threading.Lock()

_book = OpeningBook()
_timing = SchedulerTiming()


def _make_session(settings: AnalysisSettings) -> EngineSession:
    """Create the engine session. Replaced in tests."""
    return EngineSession.from_settings(settings)


def _get_session(settings: AnalysisSettings) -> EngineSession:
    """Return the shared session, replacing it if the engine died.

    Must be called with _session_lock held.
    """
    global _session
    if _session is None or _session.state == SessionState.TERMINATED:
        _session = _make_session(settings)
    return _session


def _make_analyzer(settings: AnalysisSettings) -> GameAnalyzer:
    """Analyzer over the shared session. Must be called with _session_lock held."""
    session = _get_session(settings)
    scheduler = AnalysisScheduler(session, timing=_timing)
    return GameAnalyzer(session, settings, scheduler=scheduler, book=_book)


def shutdown() -> None:
    """Quit the shared engine, if one was started."""
    global _session
    with _session_lock:
        if _session is not None:
            _session.close()
            _session = None


def _checked(response: dict, schema: dict) -> dict:
    for problem in validate_response(response, schema):
        logger.warning("Response schema violation: %s", problem)
    return response


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def analyze_game(pgn: str, depth: int | None = None) -> dict:
    """Review a complete game with the engine.

    Every position is analysed, each move is tagged (brilliant, best,
    inaccuracy, mistake, blunder, ...) and both players get an accuracy
    score, overall and per game phase.

    Args:
        pgn: PGN text of a single game.
        depth: Search depth per position (1-30). Default from settings.

    Returns:
        Dict with opening, accuracy per side, tag_counts and key_moments.
    """
    settings = AnalysisSettings.from_env(depth=depth)
    try:
        moves, fens, _headers = game.load_pgn(pgn)
    except InvalidInput as exc:
        return {"error": str(exc)}

    with _session_lock:
        try:
            analyzer = _make_analyzer(settings)
            analysis = analyzer.analyze(moves, fens)
        except (SessionInitError, AnalysisError, InvalidInput) as exc:
            logger.error("analyze_game failed: %s", exc)
            return {"error": str(exc)}

    san = game.san_moves(moves, fens[0])
    return _checked(minify_game_analysis(asdict(analysis), san), GAME_ANALYSIS_SCHEMA)


@mcp.tool()
def identify_opening(moves: list[str]) -> dict:
    """Name the opening for a sequence of SAN moves.

    Args:
        moves: Moves in SAN from the initial position, e.g. ["e4", "c5"].

    Returns:
        Dict with the most specific named opening (or None) and a few
        named continuations.
    """
    match = _book.identify(moves)
    continuations = _book.continuations(moves, limit=5)
    return _checked(
        minify_opening(
            asdict(match) if match is not None else None,
            [asdict(c) for c in continuations],
        ),
        OPENING_SCHEMA,
    )


@mcp.tool()
def analyze_position(fen: str) -> dict:
    """Quick engine evaluation of a single position.

    Args:
        fen: FEN string of the position.

    Returns:
        Dict with eval_cp (White-positive), best_move (SAN), depth and pv.
    """
    settings = AnalysisSettings.from_env()
    with _session_lock:
        try:
            analyzer = _make_analyzer(settings)
            result = analyzer.analyze_position(fen)
        except (SessionInitError, AnalysisError, InvalidInput) as exc:
            return {"error": str(exc)}

    if result is None:
        return {"error": "Engine gave no result in time"}

    response = minify_position_analysis({
        "fen": result.fen,
        "depth": result.depth,
        "eval_cp": result.evaluation,
        "mate_in": result.mate_in,
        "best_move": game.uci_to_san(fen, result.best_move) if result.best_move else "",
        "pv": game.pv_to_san(fen, result.pv),
    })
    return _checked(response, POSITION_ANALYSIS_SCHEMA)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(level=AnalysisSettings.from_env().log_level)
    try:
        mcp.run()
    finally:
        shutdown()
