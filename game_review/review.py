"""Command-line game review.

Usage:
    python -m game_review.review analyze game.pgn --depth 16
    python -m game_review.review opening e4 e5 Nf3 Nc6 Bb5
    python -m game_review.review opening --search sicilian
    python -m game_review.review position "<FEN>"

Ctrl-C during ``analyze`` cancels the run after the current tick and
prints whatever was collected.
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from game_review import game
from game_review.accuracy import describe_accuracy
from game_review.analyzer import CancellationToken, GameAnalyzer
from game_review.annotations import count_annotations, describe_annotation
from game_review.engine import EngineSession
from game_review.errors import AnalysisError, GameReviewError
from game_review.models import (
    AccuracyMetrics,
    Annotation,
    GameAnalysis,
    MoveInput,
    OpeningMatch,
)
from game_review.openings import OpeningBook
from game_review.settings import AnalysisSettings
from game_review.uci import format_nps, format_time

logger = logging.getLogger(__name__)

_ANNOTATION_STYLES = {
    Annotation.BRILLIANT: "bold cyan",
    Annotation.CRITICAL: "bold magenta",
    Annotation.BEST: "green",
    Annotation.EXCELLENT: "green",
    Annotation.OKAY: "white",
    Annotation.THEORY: "dim",
    Annotation.INACCURACY: "yellow",
    Annotation.MISTAKE: "dark_orange",
    Annotation.BLUNDER: "bold red",
}

# Tags worth listing move by move
_NOTABLE = {
    Annotation.BRILLIANT,
    Annotation.CRITICAL,
    Annotation.INACCURACY,
    Annotation.MISTAKE,
    Annotation.BLUNDER,
}


def configure_logging(level: str) -> None:
    """Route all log records through rich at *level*."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _format_eval(cp: int) -> str:
    return f"{cp / 100:+.2f}"


def render_accuracy(analysis: GameAnalysis) -> Table:
    """Accuracy table with one column per side."""
    table = Table(title="Accuracy")
    table.add_column("", style="bold")
    table.add_column("White", justify="right")
    table.add_column("Black", justify="right")

    white = analysis.accuracy.white if analysis.accuracy else AccuracyMetrics()
    black = analysis.accuracy.black if analysis.accuracy else AccuracyMetrics()
    table.add_row(
        "Overall",
        f"{white.overall:.1f}% ({describe_accuracy(white.overall)})",
        f"{black.overall:.1f}% ({describe_accuracy(black.overall)})",
    )
    for label, attr in (
        ("Opening", "opening"),
        ("Middlegame", "middlegame"),
        ("Endgame", "endgame"),
    ):
        table.add_row(label, f"{getattr(white, attr):.1f}%", f"{getattr(black, attr):.1f}%")
    for label, attr in (
        ("Best moves", "best_moves"),
        ("Good moves", "good_moves"),
        ("Inaccuracies", "inaccuracies"),
        ("Mistakes", "mistakes"),
        ("Blunders", "blunders"),
    ):
        table.add_row(label, str(getattr(white, attr)), str(getattr(black, attr)))
    return table


def render_annotations(
    analysis: GameAnalysis, moves: list[MoveInput], fens: list[str]
) -> Table:
    """Notable moves with the engine's preferred alternative."""
    san = game.san_moves(moves, fens[0])
    table = Table(title="Key moments")
    table.add_column("Move", justify="right")
    table.add_column("Played")
    table.add_column("Tag")
    table.add_column("Eval", justify="right")
    table.add_column("Best")
    table.add_column("Comment")

    for note in analysis.annotations:
        if note.annotation not in _NOTABLE:
            continue
        i = note.move_index
        number = f"{i // 2 + 1}." if note.is_white else f"{i // 2 + 1}..."
        best = game.uci_to_san(fens[i], note.best_move) if note.best_move else ""
        style = _ANNOTATION_STYLES[note.annotation]
        table.add_row(
            number,
            san[i],
            f"[{style}]{note.annotation.value}[/{style}]",
            f"{_format_eval(note.eval_before)} -> {_format_eval(note.eval_after)}",
            best,
            describe_annotation(note.annotation, note.eval_change),
        )
    return table


def render_summary(analysis: GameAnalysis) -> Table:
    counts = count_annotations(analysis.annotations)
    table = Table(title="Move tags")
    table.add_column("Tag")
    table.add_column("Count", justify="right")
    for tag, count in counts.items():
        if count:
            style = _ANNOTATION_STYLES[tag]
            table.add_row(f"[{style}]{tag.value}[/{style}]", str(count))
    return table


def _run_with_progress(
    console: Console,
    analyzer: GameAnalyzer,
    moves: list[MoveInput],
    fens: list[str],
) -> GameAnalysis:
    """Run the review on a worker thread so Ctrl-C can cancel it."""
    token = CancellationToken()
    outcome: dict[str, object] = {}

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Starting engine", total=len(fens))

        def on_progress(index: int, total: int, status: str) -> None:
            progress.update(task, completed=index, total=total, description=status)

        def worker() -> None:
            try:
                outcome["result"] = analyzer.analyze(
                    moves, fens, on_progress=on_progress, token=token
                )
            except GameReviewError as exc:
                outcome["error"] = exc

        thread = threading.Thread(target=worker, name="game-review", daemon=True)
        thread.start()
        try:
            while thread.is_alive():
                thread.join(0.2)
        except KeyboardInterrupt:
            console.print("[yellow]Cancelling...[/yellow]")
            token.cancel()
            thread.join()
        progress.update(task, completed=len(fens))

    if "error" in outcome:
        raise outcome["error"]
    if "result" not in outcome:
        raise AnalysisError("Review worker exited without a result")
    return outcome["result"]


def _cmd_analyze(args: argparse.Namespace, console: Console) -> int:
    try:
        text = Path(args.pgn).read_text(encoding="utf-8")
    except OSError as exc:
        console.print(f"[red]Cannot read {args.pgn}: {exc}[/red]")
        return 1

    settings = AnalysisSettings.from_env(
        engine_path=args.engine,
        depth=args.depth,
        multipv=args.multipv,
        log_level=args.log_level,
    )
    try:
        moves, fens, headers = game.load_pgn(text)
        session = EngineSession.from_settings(settings)
    except GameReviewError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    white = headers.get("White", "White")
    black = headers.get("Black", "Black")
    console.print(f"[bold]{white}[/bold] vs [bold]{black}[/bold] ({len(moves)} plies)")

    analyzer = GameAnalyzer(session, settings)
    try:
        analysis = _run_with_progress(console, analyzer, moves, fens)
    except GameReviewError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    finally:
        session.close()

    if analysis.opening is not None:
        console.print(f"Opening: [bold]{analysis.opening.description}[/bold]")
    if not analysis.complete:
        console.print(
            f"[yellow]Cancelled after {len(analysis.evaluations)} of "
            f"{len(fens)} positions[/yellow]"
        )
        return 130

    console.print(render_accuracy(analysis))
    console.print(render_summary(analysis))
    console.print(render_annotations(analysis, moves, fens))
    return 0


def _opening_table(title: str, matches: list[OpeningMatch]) -> Table:
    table = Table(title=title)
    table.add_column("ECO")
    table.add_column("Name")
    table.add_column("Moves")
    for match in matches:
        table.add_row(match.eco, match.display_name, match.moves)
    return table


def _cmd_opening(args: argparse.Namespace, console: Console) -> int:
    book = OpeningBook(path=args.book)
    if args.search:
        found = book.search(args.search)
        if not found:
            console.print(f"No opening matches {args.search!r}")
            return 1
        console.print(_opening_table(f"Openings matching {args.search!r}", found))
        return 0
    if not args.moves:
        console.print("[red]Give moves in SAN or --search QUERY[/red]")
        return 2

    match = book.identify(args.moves)
    if match is None:
        console.print("No named opening found")
        return 1
    console.print(f"[bold]{match.description}[/bold]  ({match.moves})")
    continuations = book.continuations(args.moves, limit=5)
    if continuations:
        console.print(_opening_table("Continuations", continuations))
    return 0


def _cmd_position(args: argparse.Namespace, console: Console) -> int:
    settings = AnalysisSettings.from_env(
        engine_path=args.engine, depth=args.depth, log_level=args.log_level
    )
    try:
        session = EngineSession.from_settings(settings)
        analyzer = GameAnalyzer(session, settings)
        try:
            result = analyzer.analyze_position(args.fen)
        finally:
            session.close()
    except GameReviewError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    if result is None:
        console.print("[yellow]Engine gave no result in time[/yellow]")
        return 1
    best = game.uci_to_san(args.fen, result.best_move) if result.best_move else "-"
    evaluation = (
        f"#{result.mate_in}" if result.mate_in is not None
        else _format_eval(result.evaluation)
    )
    stats = [f"depth {result.depth}"]
    if result.nps is not None:
        stats.append(f"{format_nps(result.nps)} nps")
    if result.time_ms is not None:
        stats.append(format_time(result.time_ms))
    console.print(
        f"Eval: [bold]{evaluation}[/bold]  Best: [bold]{best}[/bold]  "
        f"({', '.join(stats)})"
    )
    line = game.pv_to_san(args.fen, result.pv, limit=8)
    if line:
        console.print("Line: " + " ".join(line))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Engine-assisted chess game review")
    parser.add_argument(
        "--log-level", default=None,
        help="Logging level (default: CHESS_REVIEW_LOG_LEVEL or WARNING)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze_parser = subparsers.add_parser("analyze", help="Review a PGN game")
    analyze_parser.add_argument("pgn", type=str, help="Path to a PGN file")
    analyze_parser.add_argument("--engine", type=str, default=None, help="Engine binary")
    analyze_parser.add_argument("--depth", type=int, default=None, help="Search depth")
    analyze_parser.add_argument(
        "--multipv", type=int, default=None, help="Candidate lines per position"
    )

    opening_parser = subparsers.add_parser("opening", help="Name an opening from SAN moves")
    opening_parser.add_argument("moves", nargs="*", help="Moves in SAN, e.g. e4 e5 Nf3")
    opening_parser.add_argument(
        "--search", type=str, default=None, help="Search openings by ECO code or name"
    )
    opening_parser.add_argument(
        "--book", type=str, default=None, help="Extra openings JSON file"
    )

    position_parser = subparsers.add_parser("position", help="Quick-analyse a FEN")
    position_parser.add_argument("fen", type=str, help="FEN string to analyse")
    position_parser.add_argument("--engine", type=str, default=None, help="Engine binary")
    position_parser.add_argument("--depth", type=int, default=None, help="Search depth")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = AnalysisSettings.from_env(log_level=args.log_level)
    configure_logging(settings.log_level)
    console = Console()

    if args.command == "analyze":
        return _cmd_analyze(args, console)
    if args.command == "opening":
        return _cmd_opening(args, console)
    if args.command == "position":
        return _cmd_position(args, console)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
