"""Game input validation and notation helpers built on python-chess.

python-chess plays the rules collaborator: it validates FENs and moves,
replays PGN games and converts engine UCI moves to SAN for display.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Sequence

import chess
import chess.pgn

from game_review.errors import InvalidInput
from game_review.models import MoveInput, Position

logger = logging.getLogger(__name__)

_PGN_MIN_CHARS = 10
_PGN_MAX_CHARS = 100_000


def validate_fen(fen: str) -> chess.Board:
    """Parse and sanity-check a FEN.

    Returns:
        The board for the FEN.

    Raises:
        InvalidInput: If the FEN is malformed or the position impossible.
    """
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        raise InvalidInput(f"Invalid FEN {fen!r}: {exc}") from None
    if not board.is_valid():
        raise InvalidInput(f"Invalid FEN position: {fen}")
    return board


def _to_chess_move(move: MoveInput) -> chess.Move:
    try:
        return chess.Move.from_uci(move.uci())
    except (ValueError, chess.InvalidMoveError):
        raise InvalidInput(f"Malformed move: {move.uci()!r}") from None


def validate_game(moves: Sequence[MoveInput], fens: Sequence[str]) -> None:
    """Check that *fens* is the position sequence produced by *moves*.

    Raises:
        InvalidInput: On a count mismatch, a bad FEN, an illegal move or
            a FEN that does not follow from the previous move.
    """
    if len(fens) != len(moves) + 1:
        raise InvalidInput(
            f"Expected {len(moves) + 1} positions for {len(moves)} moves, "
            f"got {len(fens)}"
        )

    board = validate_fen(fens[0])
    for i, move in enumerate(moves):
        chess_move = _to_chess_move(move)
        if chess_move not in board.legal_moves:
            raise InvalidInput(f"Illegal move {move.uci()} at ply {i}")
        board.push(chess_move)
        expected = validate_fen(fens[i + 1])
        if board.board_fen() != expected.board_fen() or board.turn != expected.turn:
            raise InvalidInput(f"Position {i + 1} does not follow from move {move.uci()}")


def positions(fens: Sequence[str]) -> list[Position]:
    return [Position(index=i, fen=fen) for i, fen in enumerate(fens)]


def san_moves(moves: Sequence[MoveInput], start_fen: str = chess.STARTING_FEN) -> list[str]:
    """SAN for each move, replayed from *start_fen*."""
    board = chess.Board(start_fen)
    result = []
    for move in moves:
        chess_move = _to_chess_move(move)
        result.append(board.san(chess_move))
        board.push(chess_move)
    return result


def load_pgn(text: str) -> tuple[list[MoveInput], list[str], dict[str, str]]:
    """Replay the mainline of a PGN game.

    Args:
        text: PGN text of a single game.

    Returns:
        Tuple of (moves, fens, headers); fens has one more entry than
        moves, starting with the initial position.

    Raises:
        InvalidInput: If the text is not a readable PGN game.
    """
    if not _PGN_MIN_CHARS <= len(text) <= _PGN_MAX_CHARS:
        raise InvalidInput(
            f"PGN must be between {_PGN_MIN_CHARS} and {_PGN_MAX_CHARS} characters"
        )

    game = chess.pgn.read_game(io.StringIO(text))
    if game is None:
        raise InvalidInput("No game found in PGN")
    if game.errors:
        raise InvalidInput(f"Invalid PGN: {game.errors[0]}")

    board = game.board()
    fens = [board.fen()]
    moves = []
    for chess_move in game.mainline_moves():
        moves.append(
            MoveInput(
                from_square=chess.square_name(chess_move.from_square),
                to_square=chess.square_name(chess_move.to_square),
                promotion=(
                    chess.piece_symbol(chess_move.promotion)
                    if chess_move.promotion
                    else None
                ),
            )
        )
        board.push(chess_move)
        fens.append(board.fen())

    if not moves:
        raise InvalidInput("PGN contains no moves")
    return moves, fens, dict(game.headers)


def uci_to_san(fen: str, uci_move: str) -> str:
    """Convert an engine move to SAN for *fen*.

    Falls back to the upper-cased UCI string when the move cannot be
    played in that position.
    """
    if not uci_move or len(uci_move) < 4:
        return uci_move
    try:
        board = chess.Board(fen)
        move = chess.Move.from_uci(uci_move)
        if move not in board.legal_moves:
            return uci_move.upper()
        return board.san(move)
    except (ValueError, chess.InvalidMoveError):
        logger.debug("Cannot convert %r to SAN in %s", uci_move, fen)
        return uci_move.upper()


def pv_to_san(fen: str, pv: Sequence[str], limit: int | None = None) -> list[str]:
    """Convert a principal variation to SAN, stopping at the first bad move."""
    board = chess.Board(fen)
    result = []
    for uci_move in pv[:limit]:
        try:
            move = chess.Move.from_uci(uci_move)
        except (ValueError, chess.InvalidMoveError):
            break
        if move not in board.legal_moves:
            break
        result.append(board.san(move))
        board.push(move)
    return result
