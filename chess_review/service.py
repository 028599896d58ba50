"""Polling interface between a game front end and the engine.

A front end (update loop, CLI) talks to the engine only through
ReviewService: every method either starts background work or polls for a
finished result, and none of them block.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import chess

from chess_review.analyzer import ANALYSIS_DEPTH, format_move, material_balance
from chess_review.handle import ConcurrentEngineHandle, PendingResult
from chess_review.models import GameAnalysis
from chess_review.session import AnalysisSession

_log = logging.getLogger(__name__)

PLAY_DEPTH = 10


@dataclass(frozen=True)
class PositionSummary:
    """Human-readable verdict on a single position."""

    best_move: str
    material: str
    recommendation: str


def describe_position(board: chess.Board, best_move: chess.Move) -> PositionSummary:
    """Summarize a position from the engine's best move and the material count.

    Args:
        board: The analysed position.
        best_move: Engine's best move in that position.

    Returns:
        PositionSummary with from-to best move, signed material and advice.
    """
    balance = int(material_balance(board))
    if balance > 0:
        material, recommendation = f"+{balance}", "White is better"
    elif balance < 0:
        material, recommendation = str(balance), "Black is better"
    else:
        material, recommendation = "0", "Equal position"
    return PositionSummary(
        best_move=format_move(best_move),
        material=material,
        recommendation=recommendation,
    )


class ReviewService:
    """Non-blocking entry points for play, position analysis and game review."""

    def __init__(
        self,
        engine: ConcurrentEngineHandle,
        play_depth: int = PLAY_DEPTH,
        analysis_depth: int = ANALYSIS_DEPTH,
    ) -> None:
        self._engine = engine
        self._play_depth = play_depth
        self._analysis_depth = analysis_depth
        self._session = AnalysisSession()
        self._engine_move: PendingResult[chess.Move] | None = None

    @property
    def engine(self) -> ConcurrentEngineHandle:
        return self._engine

    @property
    def analysis_in_progress(self) -> bool:
        return self._session.is_running

    @property
    def engine_thinking(self) -> bool:
        return self._engine_move is not None

    def _resolve_play_depth(self, depth: int | None) -> int:
        if depth is None:
            return self._play_depth
        if depth < 1:
            raise ValueError(f"Search depth must be positive, got {depth}")
        return depth

    # ------------------------------------------------------------------
    # Single positions
    # ------------------------------------------------------------------

    def start_single_position_analysis(
        self, board: chess.Board, depth: int | None = None
    ) -> PendingResult[chess.Move]:
        """Ask for the best move in a position; poll the returned result."""
        depth = self._resolve_play_depth(depth)
        _log.info("Starting position analysis at depth %d", depth)
        return self._engine.query_best_move_async(board, depth)

    def start_engine_move(self, board: chess.Board, depth: int | None = None) -> bool:
        """Let the engine pick a move for the side to move.

        Returns:
            False if a move is already being computed or the game is over.
        """
        if self._engine_move is not None or board.is_game_over():
            return False
        depth = self._resolve_play_depth(depth)
        _log.info("Engine thinking at depth %d", depth)
        self._engine_move = self._engine.query_best_move_async(board, depth)
        return True

    def poll_engine_move(self) -> chess.Move | None:
        """Return the engine's move once it is ready.

        A query that failed is dropped so that a new one can be started.
        """
        pending = self._engine_move
        if pending is None:
            return None
        move = pending.poll()
        if move is None and pending.finished:
            move = pending.poll()
            if move is None:
                _log.warning("Engine move query ended without a move")
                self._engine_move = None
                return None
        if move is not None:
            self._engine_move = None
            _log.info("Engine plays %s", move.uci())
        return move

    # ------------------------------------------------------------------
    # Full games
    # ------------------------------------------------------------------

    def start_full_game_analysis(
        self,
        move_history: Sequence[str],
        initial_board: chess.Board | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> bool:
        """Start reviewing a finished game; see AnalysisSession.start.

        Returns False while the engine is still thinking about a move.
        """
        if self._engine_move is not None:
            _log.debug("Engine move pending, not starting game analysis")
            return False
        return self._session.start(
            move_history,
            self._engine,
            initial_board=initial_board,
            depth=self._analysis_depth,
            progress_callback=progress_callback,
        )

    def poll_game_analysis(self) -> GameAnalysis | None:
        return self._session.poll()
