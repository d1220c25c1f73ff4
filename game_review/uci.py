"""UCI protocol codec.

Parses engine output lines into EngineReport / BestMoveResult /
ReadySignal values and formats outbound commands. Parsing is tolerant:
a token that fails to convert is dropped, the rest of the line is kept.
"""

from __future__ import annotations

import logging

from game_review.errors import ProtocolParseError
from game_review.models import (
    BestMoveResult,
    Centipawns,
    EngineReport,
    Mate,
    ReadySignal,
    Score,
)

logger = logging.getLogger(__name__)

_READY_KEYWORDS = {"uciok", "readyok"}

# info fields carrying a single integer value -> EngineReport attribute
_INT_FIELDS = {
    "depth": "depth",
    "seldepth": "seldepth",
    "nodes": "nodes",
    "nps": "nps",
    "time": "time_ms",
    "multipv": "multipv",
    "currmovenumber": "currmovenumber",
}

ParsedLine = EngineReport | BestMoveResult | ReadySignal | None


def _to_int(token: str | None, field_name: str) -> int:
    if token is None:
        raise ProtocolParseError(f"{field_name}: missing value")
    try:
        return int(token)
    except ValueError:
        raise ProtocolParseError(f"{field_name}: bad value {token!r}") from None


def parse_line(line: str) -> ParsedLine:
    """Parse one line of engine output.

    Args:
        line: Raw engine output, trailing newline allowed.

    Returns:
        EngineReport for ``info``, BestMoveResult for ``bestmove``,
        ReadySignal for ``uciok``/``readyok``, None for anything else.
    """
    tokens = line.split()
    if not tokens:
        return None

    keyword = tokens[0]
    if keyword == "info":
        return parse_info(tokens)
    if keyword == "bestmove":
        return parse_bestmove(tokens)
    if keyword in _READY_KEYWORDS:
        return ReadySignal(keyword)
    return None


def parse_info(tokens: list[str]) -> EngineReport:
    """Build an EngineReport from the tokens of an ``info`` line."""
    fields: dict[str, object] = {}
    score: Score | None = None
    i = 1
    while i < len(tokens):
        token = tokens[i]
        try:
            if token in _INT_FIELDS:
                i += 1
                fields[_INT_FIELDS[token]] = _to_int(_token_at(tokens, i), token)
            elif token == "score":
                i += 1
                kind = _token_at(tokens, i)
                i += 1
                if kind == "cp":
                    score = Centipawns(_to_int(_token_at(tokens, i), "score cp"))
                elif kind == "mate":
                    score = Mate(_to_int(_token_at(tokens, i), "score mate"))
                else:
                    raise ProtocolParseError(f"score: unknown kind {kind!r}")
            elif token == "currmove":
                i += 1
                move = _token_at(tokens, i)
                if move is not None:
                    fields["currmove"] = move
            elif token == "pv":
                fields["pv"] = tuple(tokens[i + 1:])
                break
            elif token == "string":
                # free text to end of line
                break
        except ProtocolParseError as exc:
            logger.debug("Dropping info field: %s", exc)
        i += 1

    if score is not None:
        fields["score"] = score
    return EngineReport(**fields)


def parse_bestmove(tokens: list[str]) -> BestMoveResult | None:
    """Build a BestMoveResult from the tokens of a ``bestmove`` line."""
    if len(tokens) < 2:
        logger.debug("Dropping bestmove line without a move")
        return None
    ponder = None
    if "ponder" in tokens:
        ponder = _token_at(tokens, tokens.index("ponder") + 1)
    return BestMoveResult(move=tokens[1], ponder=ponder)


def _token_at(tokens: list[str], index: int) -> str | None:
    return tokens[index] if index < len(tokens) else None


# ---------------------------------------------------------------------------
# Outbound commands
# ---------------------------------------------------------------------------


def format_uci() -> str:
    return "uci"


def format_isready() -> str:
    return "isready"


def format_setoption(name: str, value: object) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"setoption name {name} value {value}"


def format_position(fen: str | None = None, moves: list[str] | None = None) -> str:
    """Format a ``position`` command.

    Args:
        fen: Position to set up; ``startpos`` when None.
        moves: Optional UCI moves played from that position.

    Returns:
        The command string.
    """
    command = f"position fen {fen}" if fen else "position startpos"
    if moves:
        command += " moves " + " ".join(moves)
    return command


def format_go(depth: int, multipv: int = 1, engine_multipv: int = 1) -> list[str]:
    """Format the commands that start a depth-limited search.

    A MultiPV option command precedes ``go`` whenever the requested line
    count differs from the engine's current setting (1 after startup).
    """
    commands = []
    if multipv != engine_multipv:
        commands.append(format_setoption("MultiPV", multipv))
    commands.append(f"go depth {depth}")
    return commands


def format_stop() -> str:
    return "stop"


def format_quit() -> str:
    return "quit"


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def format_evaluation(score: Score | None) -> str:
    """Render a score for humans: ``+0.35``, ``-M3`` or ``0.00``."""
    if isinstance(score, Mate):
        sign = "+" if score.moves > 0 else "-"
        return f"{sign}M{abs(score.moves)}"
    if isinstance(score, Centipawns):
        return f"{score.value / 100:+.2f}" if score.value else "0.00"
    return "0.00"


def format_nps(nps: int) -> str:
    if nps >= 1_000_000:
        return f"{nps / 1_000_000:.1f}M"
    if nps >= 1_000:
        return f"{nps / 1_000:.0f}k"
    return str(nps)


def format_time(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    seconds = ms // 1000
    if seconds < 60:
        return f"{seconds}s"
    minutes, remaining = divmod(seconds, 60)
    return f"{minutes}m {remaining}s"
