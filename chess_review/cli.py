"""Command-line front end for chess-review.

Drives the engine exactly the way an interactive front end would: start
background work through ReviewService, then poll until the result shows up.

    chess-review bestmove "<FEN>" [--depth N]
    chess-review review game.pgn [--depth N]
    chess-review review --moves "e2-e4 e7-e5 g1-f3"
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import chess
import chess.pgn
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from chess_review.analyzer import format_move
from chess_review.config import Config
from chess_review.errors import EngineError
from chess_review.handle import ConcurrentEngineHandle, PendingResult
from chess_review.models import GameAnalysis
from chess_review.service import ReviewService, describe_position

_log = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05

_CLASSIFICATION_STYLES = {
    "blunder": "bold red",
    "mistake": "red",
    "inaccuracy": "yellow",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _open_engine(config: Config) -> ConcurrentEngineHandle:
    return ConcurrentEngineHandle.start(
        config.engine_candidates,
        handshake_timeout=config.handshake_timeout,
        shutdown_timeout=config.shutdown_timeout,
        lock_timeout=config.lock_timeout,
    )


def _positive_int(text: str) -> int:
    """argparse type for search depths."""
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid depth: {text!r}") from None
    if value < 1:
        raise argparse.ArgumentTypeError(f"depth must be at least 1, got {value}")
    return value


def _abandoned(pending: PendingResult, value) -> bool:
    """True if a query ended without ever delivering a value."""
    return value is None and pending.finished and not pending.done


def load_pgn_moves(pgn_path: Path) -> tuple[chess.Board, list[str]]:
    """Read the first game of a PGN file as from-to move records.

    Args:
        pgn_path: Path to the PGN file.

    Returns:
        Tuple of (starting board, moves in from-to notation).

    Raises:
        ValueError: If the file contains no game.
    """
    with open(pgn_path, encoding="utf-8") as f:
        game = chess.pgn.read_game(f)
    if game is None:
        raise ValueError(f"No game found in {pgn_path}")
    return game.board(), [format_move(m) for m in game.mainline_moves()]


def render_analysis(analysis: GameAnalysis) -> Table:
    """Render a GameAnalysis as a Rich table, one row per move."""
    table = Table(title="Game review", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Move")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Loss", justify="right")
    table.add_column("Verdict")
    table.add_column("Best")

    for m in analysis.moves:
        move_number = f"{m.ply // 2 + 1}{'.' if m.is_white else '...'}"
        verdict = m.classification or ""
        table.add_row(
            move_number,
            m.notation,
            f"{m.evaluation_before:+.2f}",
            f"{m.evaluation_after:+.2f}",
            str(m.centipawn_loss),
            f"[{_CLASSIFICATION_STYLES[verdict]}]{verdict}[/]" if verdict else "",
            m.best_move_notation or "-",
        )
    return table


def _cli_bestmove(config: Config, fen: str, depth: int | None) -> int:
    try:
        board = chess.Board(fen)
    except ValueError as exc:
        _log.error("Invalid FEN: %s", exc)
        return 2

    console = Console()
    with _open_engine(config) as engine:
        service = ReviewService(engine, play_depth=config.play_depth)
        if depth is None:
            depth = config.play_depth
        pending_move = service.start_single_position_analysis(board, depth)
        pending_eval = engine.query_evaluation_async(board, depth)

        best_move = None
        evaluation = None
        with console.status("Analysing position..."):
            while best_move is None or evaluation is None:
                if best_move is None:
                    best_move = pending_move.poll()
                if evaluation is None:
                    evaluation = pending_eval.poll()
                if _abandoned(pending_move, best_move) or _abandoned(pending_eval, evaluation):
                    _log.error("Engine query failed, see log for details")
                    return 1
                time.sleep(_POLL_INTERVAL)

    summary = describe_position(board, best_move)
    console.print(f"Position: {board.fen()}")
    console.print(f"Best move: [bold]{summary.best_move}[/] ({board.san(best_move)})")
    console.print(f"Evaluation: {evaluation:+.2f}")
    console.print(f"Material: {summary.material}  {summary.recommendation}")
    return 0


def _cli_review(
    config: Config,
    pgn_path: Path | None,
    moves_text: str | None,
    depth: int | None,
) -> int:
    if pgn_path is not None:
        board, moves = load_pgn_moves(pgn_path)
    else:
        board, moves = chess.Board(), (moves_text or "").split()

    if not moves:
        _log.error("No moves to review")
        return 2

    console = Console()
    with _open_engine(config) as engine:
        if depth is None:
            depth = config.analysis_depth
        service = ReviewService(engine, analysis_depth=depth)

        with console.status("Reviewing game...") as status:
            def on_progress(done: int, total: int) -> None:
                status.update(f"Reviewing game... {done}/{total}")

            service.start_full_game_analysis(moves, board, progress_callback=on_progress)
            analysis = None
            while analysis is None and service.analysis_in_progress:
                analysis = service.poll_game_analysis()
                time.sleep(_POLL_INTERVAL)

    if analysis is None:
        _log.error("Review finished without a result")
        return 1

    console.print(render_analysis(analysis))
    if len(analysis.moves) < len(moves):
        console.print(
            f"[yellow]Stopped after {len(analysis.moves)} of {len(moves)} moves: "
            f"{moves[len(analysis.moves)]!r} is not legal there.[/]"
        )
    console.print(
        f"White accuracy: {analysis.white_accuracy:.1f}%   "
        f"Black accuracy: {analysis.black_accuracy:.1f}%"
    )
    console.print(
        f"Blunders: {analysis.total_blunders}   "
        f"Mistakes: {analysis.total_mistakes}   "
        f"Inaccuracies: {analysis.total_inaccuracies}"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for chess-review."""
    parser = argparse.ArgumentParser(
        description="Engine-backed chess position analysis and game review"
    )
    parser.add_argument("--config", type=Path, help="Path to a chess-review.yaml file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    bestmove_parser = subparsers.add_parser("bestmove", help="Best move for a FEN position")
    bestmove_parser.add_argument("fen", type=str, help="FEN string to analyse")
    bestmove_parser.add_argument("--depth", type=_positive_int, help="Search depth")

    review_parser = subparsers.add_parser("review", help="Review a finished game")
    review_parser.add_argument("pgn", type=Path, nargs="?", help="PGN file to review")
    review_parser.add_argument("--moves", type=str, help='Moves like "e2-e4 e7-e5"')
    review_parser.add_argument("--depth", type=_positive_int, help="Analysis depth")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        return 1

    try:
        config = Config(args.config)
        if args.command == "bestmove":
            return _cli_bestmove(config, args.fen, args.depth)
        return _cli_review(config, args.pgn, args.moves, args.depth)
    except EngineError as exc:
        _log.error("Engine unavailable: %s", exc)
        return 1
    except (OSError, ValueError) as exc:
        _log.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
