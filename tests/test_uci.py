"""Pytest tests for EngineController.

Protocol tests run against tests/fake_engine.py so they don't require a
real engine binary. Covers: candidate discovery, line parsing, startup and
handshake failures, best-move and evaluation queries, and shutdown.
"""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import chess
import pytest

from chess_review.errors import HandshakeTimeout, ProtocolError, SpawnError, StreamClosed
from chess_review.uci import (
    EngineController,
    _parse_bestmove,
    _parse_centipawns,
    default_candidates,
)

_MISSING_BINARY = "/nonexistent/path/to/stockfish"


# ---------------------------------------------------------------------------
# Candidate discovery
# ---------------------------------------------------------------------------


class TestCandidates:

    def test_defaults_in_priority_order(self):
        with patch("chess_review.uci.shutil.which", return_value=None):
            candidates = default_candidates()
        assert candidates[0] == "stockfish"
        assert "C:\\stockfish\\stockfish.exe" in candidates
        assert "/usr/bin/stockfish" in candidates

    def test_which_result_appended(self):
        with patch("chess_review.uci.shutil.which", return_value="/snap/bin/stockfish"):
            candidates = default_candidates()
        assert candidates[-1] == "/snap/bin/stockfish"

    def test_which_result_not_duplicated(self):
        with patch("chess_review.uci.shutil.which", return_value="/usr/bin/stockfish"):
            candidates = default_candidates()
        assert candidates.count("/usr/bin/stockfish") == 1


# ---------------------------------------------------------------------------
# Line parsing
# ---------------------------------------------------------------------------


class TestBestmoveParsing:

    def test_plain_move(self):
        move = _parse_bestmove("bestmove e2e4", chess.Board())
        assert move == chess.Move.from_uci("e2e4")

    def test_ponder_ignored(self):
        move = _parse_bestmove("bestmove g1f3 ponder d7d5", chess.Board())
        assert move == chess.Move.from_uci("g1f3")

    def test_promotion(self):
        board = chess.Board("8/P7/8/8/8/8/8/k6K w - - 0 1")
        move = _parse_bestmove("bestmove a7a8q", board)
        assert move.promotion == chess.QUEEN

    def test_missing_move(self):
        with pytest.raises(ProtocolError, match="Incomplete"):
            _parse_bestmove("bestmove", chess.Board())

    def test_malformed_move(self):
        with pytest.raises(ProtocolError, match="Invalid move"):
            _parse_bestmove("bestmove zz99", chess.Board())

    def test_none_move(self):
        with pytest.raises(ProtocolError):
            _parse_bestmove("bestmove (none)", chess.Board())

    def test_illegal_move(self):
        with pytest.raises(ProtocolError, match="illegal"):
            _parse_bestmove("bestmove a1a8", chess.Board())


class TestScoreParsing:

    def test_positive_score(self):
        line = "info depth 12 seldepth 18 multipv 1 score cp 34 nodes 1000 pv e2e4"
        assert _parse_centipawns(line) == 34

    def test_negative_score(self):
        assert _parse_centipawns("info depth 3 score cp -215 nodes 10") == -215

    def test_bound_suffix(self):
        assert _parse_centipawns("info depth 9 score cp 41 upperbound nodes 5") == 41

    def test_mate_score_ignored(self):
        assert _parse_centipawns("info depth 20 score mate 3 pv h5f7") is None

    def test_no_score(self):
        assert _parse_centipawns("info string NNUE evaluation enabled") is None

    def test_unparsable_value(self):
        assert _parse_centipawns("info score cp abc") is None

    def test_score_at_end_of_line(self):
        assert _parse_centipawns("info depth 1 score cp 7") == 7


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class TestStartup:

    def test_handshake_succeeds(self, controller):
        assert controller.is_alive()
        assert controller.name == "FakeFish 1.0"
        assert controller.pid is not None

    def test_falls_through_to_next_candidate(self, fake_engine_cmd):
        good = fake_engine_cmd()
        ctrl = EngineController([_MISSING_BINARY, good], handshake_timeout=10.0)
        try:
            assert ctrl.command == good
            assert ctrl.is_alive()
        finally:
            ctrl.close()

    def test_all_candidates_fail_to_spawn(self):
        with pytest.raises(SpawnError, match="Could not start"):
            EngineController([_MISSING_BINARY, _MISSING_BINARY + ".exe"])

    def test_no_candidates(self):
        with pytest.raises(SpawnError, match="No engine candidates"):
            EngineController([])

    def test_uciok_timeout(self, fake_engine_cmd):
        with pytest.raises(HandshakeTimeout, match="uciok"):
            EngineController([fake_engine_cmd("--no-uciok")], handshake_timeout=0.5)

    def test_readyok_timeout(self, fake_engine_cmd):
        with pytest.raises(HandshakeTimeout, match="readyok"):
            EngineController([fake_engine_cmd("--no-readyok")], handshake_timeout=0.5)

    def test_timeout_then_good_candidate(self, fake_engine_cmd):
        ctrl = EngineController(
            [fake_engine_cmd("--no-uciok"), fake_engine_cmd()],
            handshake_timeout=3.0,
        )
        try:
            assert ctrl.command == fake_engine_cmd()
        finally:
            ctrl.close()

    def test_engine_exits_during_handshake(self, fake_engine_cmd):
        with pytest.raises(StreamClosed):
            EngineController([fake_engine_cmd("--exit-on-start")], handshake_timeout=5.0)

    def test_last_error_is_raised(self, fake_engine_cmd):
        with pytest.raises(HandshakeTimeout):
            EngineController(
                [_MISSING_BINARY, fake_engine_cmd("--no-uciok")],
                handshake_timeout=0.5,
            )

    def test_windows_hides_console(self):
        with patch("chess_review.uci.sys.platform", "win32"), \
             patch("chess_review.uci.subprocess.CREATE_NO_WINDOW", 0x08000000, create=True), \
             patch("chess_review.uci.subprocess.Popen", side_effect=OSError("denied")) as popen:
            with pytest.raises(SpawnError):
                EngineController(["stockfish.exe"])
        assert popen.call_args.kwargs["creationflags"] == 0x08000000

    def test_pipes_requested(self):
        with patch("chess_review.uci.subprocess.Popen", side_effect=OSError("denied")) as popen:
            with pytest.raises(SpawnError):
                EngineController(["stockfish"])
        kwargs = popen.call_args.kwargs
        assert kwargs["stdin"] == subprocess.PIPE
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["stderr"] == subprocess.PIPE


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestBestMove:

    def test_returns_legal_move(self, controller):
        board = chess.Board()
        move = controller.get_best_move(board, 5)
        assert move in board.legal_moves
        assert move == min(board.legal_moves, key=lambda m: m.uci())

    def test_after_some_moves(self, controller):
        board = chess.Board()
        for uci in ("e2e4", "e7e5", "g1f3"):
            board.push_uci(uci)
        move = controller.get_best_move(board, 5)
        assert move in board.legal_moves

    def test_repeated_queries(self, controller):
        board = chess.Board()
        first = controller.get_best_move(board, 3)
        second = controller.get_best_move(board, 3)
        assert first == second

    def test_invalid_depth(self, controller):
        with pytest.raises(ValueError):
            controller.get_best_move(chess.Board(), 0)

    def test_malformed_answer(self, fake_engine_cmd):
        with EngineController([fake_engine_cmd("--bad-move")], handshake_timeout=10.0) as ctrl:
            with pytest.raises(ProtocolError):
                ctrl.get_best_move(chess.Board(), 5)

    def test_illegal_answer(self, fake_engine_cmd):
        with EngineController([fake_engine_cmd("--illegal-move")], handshake_timeout=10.0) as ctrl:
            with pytest.raises(ProtocolError):
                ctrl.get_best_move(chess.Board(), 5)

    def test_engine_dies(self, fake_engine_cmd):
        with EngineController([fake_engine_cmd("--die-on-go")], handshake_timeout=10.0) as ctrl:
            with pytest.raises(StreamClosed):
                ctrl.get_best_move(chess.Board(), 5)
            with pytest.raises(StreamClosed):
                ctrl.get_best_move(chess.Board(), 5)


class TestEvaluation:

    def test_balanced_position(self, controller):
        assert controller.get_evaluation(chess.Board(), 5) == 0.0

    def test_last_score_wins(self, fake_engine_cmd):
        with EngineController([fake_engine_cmd("--score", "150")], handshake_timeout=10.0) as ctrl:
            assert ctrl.get_evaluation(chess.Board(), 5) == pytest.approx(1.5)

    def test_reported_from_white_side(self, fake_engine_cmd):
        board = chess.Board()
        board.push_uci("e2e4")
        with EngineController([fake_engine_cmd("--score", "150")], handshake_timeout=10.0) as ctrl:
            assert ctrl.get_evaluation(board, 5) == pytest.approx(-1.5)

    def test_material_score_black_to_move(self, controller):
        # White is a queen up; the fake engine scores from Black's side
        board = chess.Board("rnb1kbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR b KQkq - 0 1")
        assert controller.get_evaluation(board, 5) == pytest.approx(9.0)

    def test_no_score_is_neutral(self, fake_engine_cmd):
        with EngineController([fake_engine_cmd("--no-score")], handshake_timeout=10.0) as ctrl:
            assert ctrl.get_evaluation(chess.Board(), 5) == 0.0

    def test_engine_dies(self, fake_engine_cmd):
        with EngineController([fake_engine_cmd("--die-on-go")], handshake_timeout=10.0) as ctrl:
            with pytest.raises(StreamClosed):
                ctrl.get_evaluation(chess.Board(), 5)


class TestNewGame:

    def test_new_game_handshake(self, controller):
        controller.new_game()
        assert controller.get_best_move(chess.Board(), 2) in chess.Board().legal_moves


# ---------------------------------------------------------------------------
# Shutdown
# ---------------------------------------------------------------------------


class TestShutdown:

    def test_close_stops_process(self, fake_engine_cmd):
        ctrl = EngineController([fake_engine_cmd()], handshake_timeout=10.0)
        ctrl.close()
        assert not ctrl.is_alive()
        assert ctrl.pid is None

    def test_close_twice(self, fake_engine_cmd):
        ctrl = EngineController([fake_engine_cmd()], handshake_timeout=10.0)
        ctrl.close()
        ctrl.close()

    def test_kills_engine_that_ignores_quit(self, fake_engine_cmd):
        ctrl = EngineController(
            [fake_engine_cmd("--ignore-quit")],
            handshake_timeout=10.0,
            shutdown_timeout=0.3,
        )
        ctrl.close()
        assert not ctrl.is_alive()

    def test_close_after_engine_died(self, fake_engine_cmd):
        ctrl = EngineController([fake_engine_cmd("--die-on-go")], handshake_timeout=10.0)
        with pytest.raises(StreamClosed):
            ctrl.get_best_move(chess.Board(), 1)
        ctrl.close()
        assert not ctrl.is_alive()

    def test_query_after_close(self, fake_engine_cmd):
        ctrl = EngineController([fake_engine_cmd()], handshake_timeout=10.0)
        ctrl.close()
        with pytest.raises(StreamClosed):
            ctrl.get_best_move(chess.Board(), 1)

    def test_context_manager(self, fake_engine_cmd):
        with EngineController([fake_engine_cmd()], handshake_timeout=10.0) as ctrl:
            assert ctrl.is_alive()
        assert not ctrl.is_alive()
