"""Thread-safe, shareable access to a single engine controller.

Every query against the engine goes through one lock, so concurrent
callers are served strictly one at a time. The async variants run the
query on a daemon thread and hand the answer back through a single-slot
PendingResult that the caller polls without blocking.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Generic, TypeVar

import chess

from chess_review.errors import EngineError, LockUnavailable
from chess_review.uci import HANDSHAKE_TIMEOUT, SHUTDOWN_TIMEOUT, EngineController

_log = logging.getLogger(__name__)

T = TypeVar("T")


class PendingResult(Generic[T]):
    """One-shot result slot with a single producer and a single consumer."""

    def __init__(self) -> None:
        self._slot: queue.Queue = queue.Queue(maxsize=1)
        self._finished = threading.Event()

    def _deliver(self, value: T) -> None:
        self._slot.put_nowait(value)

    def _finish(self) -> None:
        self._finished.set()

    @property
    def done(self) -> bool:
        """True while a delivered value is waiting to be polled."""
        return not self._slot.empty()

    @property
    def finished(self) -> bool:
        """True once the producer has stopped, with or without a value."""
        return self._finished.is_set()

    def poll(self) -> T | None:
        """Return the result if it has arrived, without blocking.

        The value is handed out exactly once; later polls return None.
        """
        try:
            return self._slot.get_nowait()
        except queue.Empty:
            return None

    def wait(self, timeout: float | None = None) -> T | None:
        """Block until the result arrives or the timeout expires.

        Meant for scripts and tests; an update loop should use poll().
        """
        try:
            return self._slot.get(timeout=timeout)
        except queue.Empty:
            return None


class ConcurrentEngineHandle:
    """Lock-guarded wrapper that lets many threads share one engine."""

    def __init__(
        self,
        controller: EngineController,
        lock_timeout: float | None = None,
    ) -> None:
        """Wrap an already started controller.

        Args:
            controller: The engine controller to guard.
            lock_timeout: Seconds to wait for the engine lock, or None to
                wait indefinitely.
        """
        self._controller = controller
        self._lock = threading.Lock()
        self._lock_timeout = lock_timeout
        self._closed = False

    @classmethod
    def start(
        cls,
        candidates: Iterable[str | Sequence[str]] | None = None,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT,
        lock_timeout: float | None = None,
    ) -> ConcurrentEngineHandle:
        """Launch an engine and wrap it in a handle.

        Raises:
            SpawnError: If no candidate could be launched.
            HandshakeTimeout: If the engine never acknowledged the handshake.
        """
        controller = EngineController(
            candidates,
            handshake_timeout=handshake_timeout,
            shutdown_timeout=shutdown_timeout,
        )
        return cls(controller, lock_timeout=lock_timeout)

    @property
    def engine_name(self) -> str:
        return self._controller.name

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def _exclusive(self) -> Iterator[EngineController]:
        timeout = -1 if self._lock_timeout is None else self._lock_timeout
        if not self._lock.acquire(timeout=timeout):
            raise LockUnavailable(
                f"Engine lock not acquired within {self._lock_timeout}s"
            )
        try:
            if self._closed:
                raise LockUnavailable("Engine handle is closed")
            yield self._controller
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Synchronous queries
    # ------------------------------------------------------------------

    def best_move(self, board: chess.Board, depth: int) -> chess.Move:
        """Run a best-move query while holding the engine lock.

        Raises:
            LockUnavailable: If the handle is closed or the lock timed out.
            ProtocolError: If the engine answer could not be parsed.
            StreamClosed: If the engine stopped responding.
        """
        with self._exclusive() as engine:
            return engine.get_best_move(board, depth)

    def evaluation(self, board: chess.Board, depth: int) -> float:
        """Run an evaluation query while holding the engine lock.

        Raises:
            LockUnavailable: If the handle is closed or the lock timed out.
            StreamClosed: If the engine stopped responding.
        """
        with self._exclusive() as engine:
            return engine.get_evaluation(board, depth)

    # ------------------------------------------------------------------
    # Asynchronous queries
    # ------------------------------------------------------------------

    def _run_async(
        self,
        label: str,
        query: Callable[[chess.Board, int], T],
        board: chess.Board,
        depth: int,
    ) -> PendingResult[T]:
        pending: PendingResult[T] = PendingResult()
        snapshot = board.copy(stack=False)

        def worker() -> None:
            try:
                value = query(snapshot, depth)
            except LockUnavailable as exc:
                _log.error("Dropping %s query: %s", label, exc)
                return
            except EngineError as exc:
                _log.error("%s query failed: %s", label.capitalize(), exc)
                return
            except Exception:
                _log.exception("Unexpected error in %s query", label)
                return
            else:
                _log.debug("%s query finished: %s", label.capitalize(), value)
                pending._deliver(value)
            finally:
                pending._finish()

        threading.Thread(target=worker, daemon=True, name=f"engine-{label}").start()
        return pending

    def query_best_move_async(
        self, board: chess.Board, depth: int
    ) -> PendingResult[chess.Move]:
        """Start a best-move query in the background.

        Failures are logged and the returned result never resolves.
        """
        return self._run_async("best-move", self.best_move, board, depth)

    def query_evaluation_async(
        self, board: chess.Board, depth: int
    ) -> PendingResult[float]:
        """Start an evaluation query in the background.

        Failures are logged and the returned result never resolves.
        """
        return self._run_async("evaluation", self.evaluation, board, depth)

    def close(self) -> None:
        """Shut the engine down once in-flight queries have finished."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._controller.close()

    def __enter__(self) -> ConcurrentEngineHandle:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
