"""Shared test fixtures.

Fixtures:
    fake_engine_cmd  - Builds the argv for the scripted UCI engine in
                       tests/fake_engine.py, with optional behaviour flags.
    controller       - A started EngineController on the fake engine.
    handle           - A ConcurrentEngineHandle on the fake engine.
    make_mock_handle - Builds a MagicMock handle with scripted evaluations,
                       for analyzer/session tests that need no process.
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock

import chess
import pytest

from chess_review.handle import ConcurrentEngineHandle
from chess_review.uci import EngineController

_FAKE_ENGINE = Path(__file__).resolve().parent / "fake_engine.py"


def fake_engine_argv(*flags: str) -> list[str]:
    """Return the command line for the fake engine with the given flags."""
    return [sys.executable, str(_FAKE_ENGINE), *flags]


@pytest.fixture()
def fake_engine_cmd():
    return fake_engine_argv


@pytest.fixture()
def controller():
    """Started controller on a well-behaved fake engine."""
    ctrl = EngineController([fake_engine_argv()], handshake_timeout=10.0)
    yield ctrl
    ctrl.close()


@pytest.fixture()
def handle():
    """Shared handle on a well-behaved fake engine."""
    h = ConcurrentEngineHandle.start([fake_engine_argv()], handshake_timeout=10.0)
    yield h
    h.close()


# ---------------------------------------------------------------------------
# Mock handle
# ---------------------------------------------------------------------------


def _make_mock_handle(evaluations=None, best_move=None, eval_error=None, move_error=None):
    """Create a mock ConcurrentEngineHandle.

    Args:
        evaluations: Dict mapping FEN to evaluation in pawns (missing
            positions evaluate to 0.0), or a callable(board) -> float.
        best_move: UCI string returned for every best-move query. If None,
            the first legal move in UCI order is returned.
        eval_error: Exception raised by every evaluation query.
        move_error: Exception raised by every best-move query.
    """
    mock = MagicMock(spec=ConcurrentEngineHandle)

    def _evaluation(board: chess.Board, depth: int) -> float:
        if eval_error is not None:
            raise eval_error
        if callable(evaluations):
            return evaluations(board)
        return (evaluations or {}).get(board.fen(), 0.0)

    def _best_move(board: chess.Board, depth: int) -> chess.Move:
        if move_error is not None:
            raise move_error
        if best_move is not None:
            return chess.Move.from_uci(best_move)
        return min(board.legal_moves, key=lambda m: m.uci())

    mock.evaluation.side_effect = _evaluation
    mock.best_move.side_effect = _best_move
    return mock


@pytest.fixture()
def make_mock_handle():
    return _make_mock_handle
