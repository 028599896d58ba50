"""Retrospective game analysis for chess-review.

Replays a finished game's move list against the engine and produces a
GameAnalysis: evaluation before/after every move, centipawn loss, a
blunder/mistake/inaccuracy verdict and per-side accuracy.

Engine failures never stall a replay: evaluations fall back to a plain
material count and best-move suggestions are simply left out.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

import chess

from chess_review.errors import EngineError
from chess_review.handle import ConcurrentEngineHandle
from chess_review.models import GameAnalysis, MoveAnalysis, MoveRecord

_log = logging.getLogger(__name__)

ANALYSIS_DEPTH = 15

# Severity thresholds in centipawns, checked in descending order
BLUNDER_THRESHOLD = 300
MISTAKE_THRESHOLD = 100
INACCURACY_THRESHOLD = 50

_PIECE_VALUES = {
    chess.PAWN: 1.0,
    chess.KNIGHT: 3.0,
    chess.BISHOP: 3.0,
    chess.ROOK: 5.0,
    chess.QUEEN: 9.0,
    chess.KING: 0.0,
}


def material_balance(board: chess.Board) -> float:
    """Sum piece values, White minus Black.

    Args:
        board: Position to count.

    Returns:
        Material balance in pawns (positive = White ahead).
    """
    balance = 0.0
    for piece in board.piece_map().values():
        value = _PIECE_VALUES[piece.piece_type]
        balance += value if piece.color == chess.WHITE else -value
    return balance


def format_move(move: chess.Move) -> str:
    """Render a move in from-to notation, e.g. "e2-e4" or "e7-e8q"."""
    text = f"{chess.square_name(move.from_square)}-{chess.square_name(move.to_square)}"
    if move.promotion is not None:
        text += chess.piece_symbol(move.promotion)
    return text


def resolve_move(board: chess.Board, notation: str) -> chess.Move | None:
    """Match a from-to move record against the legal moves of a position.

    Args:
        board: Position the move was played in.
        notation: Move text such as "g1-f3" or "b7-b8q".

    Returns:
        The legal move, or None if the text is malformed or no legal
        move matches.
    """
    from_text, sep, to_text = notation.strip().partition("-")
    if not sep:
        return None

    promotion = None
    if len(to_text) == 3:
        try:
            promotion = chess.Piece.from_symbol(to_text[2].lower()).piece_type
        except ValueError:
            return None
        to_text = to_text[:2]

    try:
        move = chess.Move(
            chess.parse_square(from_text),
            chess.parse_square(to_text),
            promotion=promotion,
        )
    except ValueError:
        return None

    return move if move in board.legal_moves else None


def position_after(
    move_history: Sequence[str],
    move_index: int,
    initial_board: chess.Board | None = None,
) -> chess.Board:
    """Rebuild the position after the move at ``move_index`` was played.

    Replay stops early at the first record that does not resolve.

    Raises:
        IndexError: If ``move_index`` is outside the history.
    """
    if not 0 <= move_index < len(move_history):
        raise IndexError(f"Move index {move_index} out of range")

    board = initial_board.copy() if initial_board is not None else chess.Board()
    for notation in move_history[: move_index + 1]:
        move = resolve_move(board, notation)
        if move is None:
            _log.warning("Could not replay %r, stopping at %s", notation, board.fen())
            break
        board.push(move)
    return board


def calculate_centipawn_loss(
    evaluation_before: float,
    evaluation_after: float,
    side_that_moved: chess.Color,
) -> int:
    """Centipawn loss of a move from the mover's point of view.

    Evaluations are in pawns relative to White. The result is never negative;
    an improving move counts as zero loss.
    """
    if side_that_moved == chess.WHITE:
        loss = evaluation_before - evaluation_after
    else:
        loss = evaluation_after - evaluation_before
    # Scores are whole centipawns; rounding strips float error before truncation
    return int(round(max(0.0, loss) * 100, 6))


def classify_move(centipawn_loss: int) -> tuple[bool, bool, bool]:
    """Classify a move by centipawn loss.

    Returns:
        Tuple of (is_blunder, is_mistake, is_inaccuracy); at most one is True.
    """
    is_blunder = centipawn_loss >= BLUNDER_THRESHOLD
    is_mistake = not is_blunder and centipawn_loss >= MISTAKE_THRESHOLD
    is_inaccuracy = (
        not is_blunder and not is_mistake and centipawn_loss >= INACCURACY_THRESHOLD
    )
    return is_blunder, is_mistake, is_inaccuracy


def calculate_player_accuracy(moves: Sequence[MoveAnalysis]) -> float:
    """Accuracy percentage for one side: 100 - average loss / 10, clamped.

    A side with no moves has 100.0 accuracy.
    """
    if not moves:
        return 100.0
    average_loss = sum(max(0, m.centipawn_loss) for m in moves) / len(moves)
    return max(0.0, min(100.0, 100.0 - average_loss / 10.0))


def summarize(moves: Sequence[MoveAnalysis]) -> GameAnalysis:
    """Build the GameAnalysis aggregates for a list of analysed moves."""
    white_moves = [m for m in moves if m.is_white]
    black_moves = [m for m in moves if not m.is_white]
    return GameAnalysis(
        moves=tuple(moves),
        white_accuracy=calculate_player_accuracy(white_moves),
        black_accuracy=calculate_player_accuracy(black_moves),
        total_blunders=sum(1 for m in moves if m.is_blunder),
        total_mistakes=sum(1 for m in moves if m.is_mistake),
        total_inaccuracies=sum(1 for m in moves if m.is_inaccuracy),
    )


class GameAnalyzer:
    """Replays a move list against a shared engine handle."""

    def __init__(
        self,
        engine: ConcurrentEngineHandle,
        depth: int = ANALYSIS_DEPTH,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> None:
        """Initialize the analyzer.

        Args:
            engine: Shared engine handle to query.
            depth: Search depth for every evaluation and best-move query.
            progress_callback: Optional callback(moves_done, total_moves).
        """
        self._engine = engine
        self._depth = depth
        self._progress_callback = progress_callback

    def _evaluate(self, board: chess.Board) -> float:
        try:
            return self._engine.evaluation(board, self._depth)
        except EngineError as exc:
            _log.warning("Engine evaluation failed, using material count: %s", exc)
            return material_balance(board)

    def _best_move(self, board: chess.Board) -> chess.Move | None:
        try:
            return self._engine.best_move(board, self._depth)
        except EngineError as exc:
            _log.warning("Engine best move unavailable: %s", exc)
            return None

    def _analyze_move(self, board: chess.Board, record: MoveRecord) -> MoveAnalysis | None:
        """Analyse one move and advance ``board`` past it.

        Returns None, leaving the board untouched, if the record does not
        resolve to a legal move.
        """
        evaluation_before = self._evaluate(board)

        played = resolve_move(board, record.notation)
        if played is None:
            return None

        best_move = self._best_move(board)
        side_that_moved = board.turn
        board.push(played)
        evaluation_after = self._evaluate(board)

        centipawn_loss = calculate_centipawn_loss(
            evaluation_before, evaluation_after, side_that_moved
        )
        is_blunder, is_mistake, is_inaccuracy = classify_move(centipawn_loss)

        return MoveAnalysis(
            ply=record.ply,
            move=played,
            notation=record.notation,
            evaluation_before=evaluation_before,
            evaluation_after=evaluation_after,
            centipawn_loss=centipawn_loss,
            is_blunder=is_blunder,
            is_mistake=is_mistake,
            is_inaccuracy=is_inaccuracy,
            best_move=best_move,
            best_move_notation=format_move(best_move) if best_move else None,
        )

    def analyze(
        self,
        move_history: Sequence[str],
        initial_board: chess.Board | None = None,
    ) -> GameAnalysis:
        """Analyse a whole game.

        Args:
            move_history: Played moves in from-to notation.
            initial_board: Starting position (default: standard start).

        Returns:
            GameAnalysis for every move up to the first one that could
            not be replayed.
        """
        board = initial_board.copy() if initial_board is not None else chess.Board()
        first_ply = 0 if board.turn == chess.WHITE else 1
        total = len(move_history)
        _log.info("Analysing %d moves at depth %d", total, self._depth)

        analysed: list[MoveAnalysis] = []
        for index, notation in enumerate(move_history):
            record = MoveRecord(notation=notation, ply=first_ply + index)
            analysis = self._analyze_move(board, record)
            if analysis is None:
                _log.warning(
                    "Move %d (%r) is not legal here, ignoring the rest of the game",
                    index + 1,
                    notation,
                )
                break

            _log.debug(
                "Move %d %s: %+.2f -> %+.2f, loss %d",
                index + 1,
                notation,
                analysis.evaluation_before,
                analysis.evaluation_after,
                analysis.centipawn_loss,
            )
            analysed.append(analysis)
            if self._progress_callback:
                self._progress_callback(index + 1, total)

        result = summarize(analysed)
        _log.info("Analysis finished: %s", result.summary())
        return result
