"""Background full-game analysis with a pollable one-shot result."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence

import chess

from chess_review.analyzer import ANALYSIS_DEPTH, GameAnalyzer
from chess_review.handle import ConcurrentEngineHandle, PendingResult
from chess_review.models import GameAnalysis

_log = logging.getLogger(__name__)


class AnalysisSession:
    """Runs at most one GameAnalyzer at a time on a background thread.

    The caller starts a run, then calls poll() once per frame. The finished
    GameAnalysis is returned exactly once, after which the session is idle
    and can be started again. Runs cannot be cancelled.
    """

    def __init__(self) -> None:
        self._pending: PendingResult[GameAnalysis] | None = None

    @property
    def is_running(self) -> bool:
        return self._pending is not None

    def start(
        self,
        move_history: Sequence[str],
        engine: ConcurrentEngineHandle,
        initial_board: chess.Board | None = None,
        depth: int = ANALYSIS_DEPTH,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> bool:
        """Start analysing a game in the background.

        Args:
            move_history: Played moves in from-to notation.
            engine: Shared engine handle.
            initial_board: Starting position (default: standard start).
            depth: Analysis depth.
            progress_callback: Optional callback(moves_done, total_moves),
                invoked on the worker thread.

        Returns:
            True if a run was started; False if one is already in progress
            or there is nothing to analyse.
        """
        if self.is_running:
            _log.debug("Analysis already running, ignoring start request")
            return False
        if not move_history:
            _log.debug("Empty move history, nothing to analyse")
            return False

        history = list(move_history)
        board = initial_board.copy() if initial_board is not None else None
        analyzer = GameAnalyzer(engine, depth=depth, progress_callback=progress_callback)
        pending: PendingResult[GameAnalysis] = PendingResult()

        def worker() -> None:
            try:
                analysis = analyzer.analyze(history, board)
            except Exception:
                _log.exception("Game analysis crashed")
            else:
                pending._deliver(analysis)
            finally:
                pending._finish()

        self._pending = pending
        threading.Thread(target=worker, daemon=True, name="game-analysis").start()
        _log.info("Started analysis of %d moves", len(history))
        return True

    def poll(self) -> GameAnalysis | None:
        """Return the finished analysis once, or None while still working."""
        pending = self._pending
        if pending is None:
            return None

        analysis = pending.poll()
        if analysis is None and pending.finished:
            # Delivery happens before finish, so a second poll is conclusive
            analysis = pending.poll()
            if analysis is None:
                _log.warning("Analysis ended without a result, session re-armed")
                self._pending = None
                return None

        if analysis is not None:
            self._pending = None
        return analysis
