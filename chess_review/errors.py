"""Error taxonomy for engine control and game review.

Every failure raised by this package derives from EngineError so callers
can decide in one place whether to run without engine support.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine-related failures."""


class SpawnError(EngineError):
    """No candidate engine binary could be launched."""


class HandshakeTimeout(EngineError):
    """The engine did not acknowledge a handshake command in time."""


class ProtocolError(EngineError):
    """An engine response line could not be parsed into the expected structure."""


class StreamClosed(EngineError):
    """The engine process closed its output or exited unexpectedly."""


class LockUnavailable(EngineError):
    """Exclusive access to a shared engine handle could not be obtained."""
