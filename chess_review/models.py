"""Shared data models for chess-review.

PositionQuery, MoveRecord, MoveAnalysis and GameAnalysis are the contract
between the engine layer, the analyzer and whatever polls for results.
"""

from __future__ import annotations

from dataclasses import dataclass

import chess


@dataclass(frozen=True)
class PositionQuery:
    """Snapshot of a position plus the depth to search it at."""

    fen: str
    depth: int

    def __post_init__(self) -> None:
        if self.depth < 1:
            raise ValueError(f"Search depth must be positive, got {self.depth}")

    @classmethod
    def from_board(cls, board: chess.Board, depth: int) -> PositionQuery:
        return cls(fen=board.fen(), depth=depth)

    def board(self) -> chess.Board:
        """Build a fresh board for this position."""
        return chess.Board(self.fen)


@dataclass(frozen=True)
class MoveRecord:
    """One played move in from-to notation ("e2-e4") and its ply index."""

    notation: str
    ply: int

    @property
    def is_white(self) -> bool:
        return self.ply % 2 == 0


@dataclass(frozen=True)
class MoveAnalysis:
    """Engine verdict on a single played move.

    Evaluations are in pawn units from White's point of view. At most one
    of the severity flags is set.
    """

    ply: int
    move: chess.Move
    notation: str
    evaluation_before: float
    evaluation_after: float
    centipawn_loss: int
    is_blunder: bool
    is_mistake: bool
    is_inaccuracy: bool
    best_move: chess.Move | None = None
    best_move_notation: str | None = None

    @property
    def is_white(self) -> bool:
        return self.ply % 2 == 0

    @property
    def classification(self) -> str | None:
        if self.is_blunder:
            return "blunder"
        if self.is_mistake:
            return "mistake"
        if self.is_inaccuracy:
            return "inaccuracy"
        return None


@dataclass(frozen=True)
class GameAnalysis:
    """Per-move analysis of a whole game plus per-side aggregates."""

    moves: tuple[MoveAnalysis, ...]
    white_accuracy: float
    black_accuracy: float
    total_blunders: int
    total_mistakes: int
    total_inaccuracies: int

    def moves_for(self, color: chess.Color) -> list[MoveAnalysis]:
        """Return the analysed moves played by one side."""
        return [m for m in self.moves if m.is_white == (color == chess.WHITE)]

    def summary(self) -> dict:
        """Plain-dict view of the aggregates, for logging and display."""
        return {
            "moves": len(self.moves),
            "white_accuracy": round(self.white_accuracy, 1),
            "black_accuracy": round(self.black_accuracy, 1),
            "blunders": self.total_blunders,
            "mistakes": self.total_mistakes,
            "inaccuracies": self.total_inaccuracies,
        }
