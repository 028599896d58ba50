"""UCI engine controller for chess-review.

Owns one external engine process and speaks the UCI request/response
sub-protocol with it:
- Startup over an ordered list of candidate binaries with a bounded handshake
- Best-move queries ("go depth N" -> "bestmove ...")
- Evaluation queries (last "score cp" seen before "bestmove")
- Shutdown that never raises

stdout is pumped by a daemon reader thread into a queue so handshake reads
can time out while search reads block until the engine answers.
"""

from __future__ import annotations

import logging
import queue
import shutil
import subprocess
import sys
import threading
import time
from collections.abc import Iterable, Sequence

import chess

from chess_review.errors import (
    EngineError,
    HandshakeTimeout,
    ProtocolError,
    SpawnError,
    StreamClosed,
)
from chess_review.models import PositionQuery

_log = logging.getLogger(__name__)

# Engine launch candidates in priority order
_ENGINE_CANDIDATES = [
    "stockfish",
    "stockfish.exe",
    "./stockfish.exe",
    "C:\\stockfish\\stockfish.exe",
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
]

HANDSHAKE_TIMEOUT = 5.0
SHUTDOWN_TIMEOUT = 2.0


def default_candidates() -> list[str]:
    """Return the built-in engine candidates plus a PATH lookup.

    Returns:
        Candidate commands in the order they should be tried.
    """
    candidates = list(_ENGINE_CANDIDATES)
    which_result = shutil.which("stockfish")
    if which_result is not None and which_result not in candidates:
        candidates.append(which_result)
    return candidates


def _as_argv(candidate: str | Sequence[str]) -> list[str]:
    if isinstance(candidate, str):
        return [candidate]
    return [str(part) for part in candidate]


def _parse_bestmove(line: str, board: chess.Board) -> chess.Move:
    """Parse a "bestmove <move> [ponder <move>]" line.

    Args:
        line: The raw bestmove line.
        board: Position the search was run on.

    Returns:
        The engine's move, guaranteed legal in ``board``.

    Raises:
        ProtocolError: If the move text is missing, malformed or illegal.
    """
    tokens = line.split()
    if len(tokens) < 2:
        raise ProtocolError(f"Incomplete bestmove response: {line!r}")

    move_text = tokens[1]
    try:
        move = chess.Move.from_uci(move_text)
    except ValueError as exc:
        raise ProtocolError(f"Invalid move from engine: {move_text!r}") from exc

    if move not in board.legal_moves:
        raise ProtocolError(
            f"Engine returned illegal move {move_text!r} for {board.fen()}"
        )
    return move


def _parse_centipawns(line: str) -> int | None:
    """Extract the value of a "score cp <int>" field from an info line."""
    tokens = line.split()
    for i in range(len(tokens) - 2):
        if tokens[i] == "score" and tokens[i + 1] == "cp":
            try:
                return int(tokens[i + 2])
            except ValueError:
                return None
    return None


def _pump_lines(pipe, sink: queue.Queue) -> None:
    """Copy lines from a pipe into a queue, then post a None sentinel."""
    try:
        for line in pipe:
            sink.put(line.rstrip("\r\n"))
    except (OSError, ValueError):
        # Pipe closed underneath us during teardown
        pass
    finally:
        sink.put(None)


def _drain_stderr(pipe, label: str) -> None:
    try:
        for line in pipe:
            _log.debug("[%s stderr] %s", label, line.rstrip())
    except (OSError, ValueError):
        pass


class EngineController:
    """Controller for a single UCI engine process.

    At most one query is in flight at any time; callers sharing a controller
    between threads must go through ConcurrentEngineHandle.
    """

    def __init__(
        self,
        candidates: Iterable[str | Sequence[str]] | None = None,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT,
    ) -> None:
        """Launch the first candidate engine that completes the handshake.

        Args:
            candidates: Commands to try, each a path or an argv sequence.
                If None, uses default_candidates().
            handshake_timeout: Seconds to wait for "uciok" and "readyok".
            shutdown_timeout: Seconds to wait for the process to exit on close.

        Raises:
            SpawnError: If no candidate could be launched.
            HandshakeTimeout: If the last candidate never acknowledged.
            StreamClosed: If the last candidate exited during the handshake.
        """
        self._handshake_timeout = handshake_timeout
        self._shutdown_timeout = shutdown_timeout
        self._process: subprocess.Popen | None = None
        self._lines: queue.Queue = queue.Queue()
        self.name: str = ""
        self.command: list[str] = []

        if candidates is None:
            candidates = default_candidates()

        last_error: EngineError | None = None
        for candidate in candidates:
            argv = _as_argv(candidate)
            _log.info("Trying engine candidate: %s", " ".join(argv))
            try:
                self._spawn(argv)
                self._handshake()
            except EngineError as exc:
                _log.warning("Engine candidate %s failed: %s", argv[0], exc)
                last_error = exc
                self._discard()
                continue

            self.command = argv
            _log.info("Engine ready: %s (PID %s)", self.name or argv[0], self.pid)
            return

        if last_error is None:
            raise SpawnError("No engine candidates configured")
        raise last_error

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    def _spawn(self, argv: list[str]) -> None:
        popen_kwargs = {
            "stdin": subprocess.PIPE,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "text": True,
            "encoding": "utf-8",
            "errors": "replace",
            "bufsize": 1,
        }
        if sys.platform == "win32":
            popen_kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW

        try:
            self._process = subprocess.Popen(argv, **popen_kwargs)
        except OSError as exc:
            raise SpawnError(f"Could not start {argv[0]!r}: {exc}") from exc

        _log.debug("Engine process spawned: %s, PID=%s", argv[0], self._process.pid)

        self._lines = queue.Queue()
        threading.Thread(
            target=_pump_lines,
            args=(self._process.stdout, self._lines),
            daemon=True,
            name="uci-stdout-reader",
        ).start()
        threading.Thread(
            target=_drain_stderr,
            args=(self._process.stderr, argv[0]),
            daemon=True,
            name="uci-stderr-reader",
        ).start()

    def _handshake(self) -> None:
        self._send("uci")
        self._wait_for("uciok")
        self._send("isready")
        self._wait_for("readyok")

    def _discard(self) -> None:
        """Kill a candidate that failed to start. Never raises."""
        process = self._process
        self._process = None
        if process is None:
            return
        try:
            if process.poll() is None:
                process.kill()
            process.wait(timeout=self._shutdown_timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            _log.warning("Could not reap failed engine candidate: %s", exc)
        self._close_stdin(process)

    @staticmethod
    def _close_stdin(process: subprocess.Popen) -> None:
        try:
            if process.stdin:
                process.stdin.close()
        except OSError as exc:
            _log.debug("Error closing engine stdin: %s", exc)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    def is_alive(self) -> bool:
        """Check whether the engine process is still running."""
        return self._process is not None and self._process.poll() is None

    def close(self) -> None:
        """Send quit and wait for the engine to exit.

        Safe to call more than once. Failures are logged, never raised.
        """
        process = self._process
        if process is None:
            return

        try:
            self._send("quit")
        except StreamClosed as exc:
            _log.warning("Could not send quit to engine: %s", exc)

        try:
            process.wait(timeout=self._shutdown_timeout)
        except subprocess.TimeoutExpired:
            _log.warning(
                "Engine did not exit within %.1fs, killing PID %s",
                self._shutdown_timeout,
                process.pid,
            )
            try:
                process.kill()
                process.wait()
            except OSError as exc:
                _log.error("Could not kill engine process %s: %s", process.pid, exc)

        self._close_stdin(process)
        self._process = None
        _log.info("Engine closed (exit code %s)", process.returncode)

    def __enter__(self) -> EngineController:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    # ------------------------------------------------------------------
    # Line I/O
    # ------------------------------------------------------------------

    def _send(self, command: str) -> None:
        if self._process is None or self._process.stdin is None:
            raise StreamClosed("Engine process is not running")
        _log.debug(">> %s", command)
        try:
            self._process.stdin.write(command + "\n")
            self._process.stdin.flush()
        except (OSError, ValueError) as exc:
            raise StreamClosed(f"Could not send {command!r}: {exc}") from exc

    def _next_line(self, timeout: float | None = None) -> str | None:
        """Read the next output line.

        Args:
            timeout: Seconds to wait, or None to block until a line arrives.

        Returns:
            The line without its newline, or None if the timeout expired.

        Raises:
            StreamClosed: If the engine closed its output.
        """
        try:
            line = self._lines.get(timeout=timeout)
        except queue.Empty:
            return None

        if line is None:
            # Keep the sentinel so every later read also sees EOF
            self._lines.put(None)
            raise StreamClosed("Engine closed its output stream")

        _log.debug("<< %s", line)
        return line

    def _wait_for(self, expected: str) -> None:
        deadline = time.monotonic() + self._handshake_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise HandshakeTimeout(
                    f"Timed out after {self._handshake_timeout}s waiting for {expected!r}"
                )
            line = self._next_line(timeout=remaining)
            if line is None:
                continue
            if line.startswith("id name "):
                self.name = line[len("id name "):].strip()
            if line.strip() == expected:
                return

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def new_game(self) -> None:
        """Tell the engine a new game starts and wait until it is ready."""
        self._send("ucinewgame")
        self._send("isready")
        self._wait_for("readyok")

    def _start_search(self, board: chess.Board, depth: int) -> None:
        query = PositionQuery.from_board(board, depth)
        self._send(f"position fen {query.fen}")
        self._send(f"go depth {query.depth}")

    def get_best_move(self, board: chess.Board, depth: int) -> chess.Move:
        """Ask the engine for its best move.

        Blocks until the engine answers; there is no timeout.

        Args:
            board: Position to search.
            depth: Search depth in plies.

        Returns:
            A move that is legal in ``board``.

        Raises:
            ProtocolError: If the bestmove line is malformed or illegal.
            StreamClosed: If the engine stops responding.
        """
        self._start_search(board, depth)
        while True:
            line = self._next_line()
            if line.startswith("bestmove"):
                return _parse_bestmove(line, board)

    def get_evaluation(self, board: chess.Board, depth: int) -> float:
        """Ask the engine to evaluate a position.

        Args:
            board: Position to search.
            depth: Search depth in plies.

        Returns:
            Evaluation in pawns from White's point of view. 0.0 when the
            engine reported no centipawn score.

        Raises:
            StreamClosed: If the engine stops responding.
        """
        self._start_search(board, depth)
        centipawns: int | None = None
        while True:
            line = self._next_line()
            if line.startswith("info"):
                score = _parse_centipawns(line)
                if score is not None:
                    centipawns = score
            elif line.startswith("bestmove"):
                break

        if centipawns is None:
            return 0.0
        # UCI scores are relative to the side to move
        pawns = centipawns / 100.0
        return pawns if board.turn == chess.WHITE else -pawns
