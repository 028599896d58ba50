"""Configuration for chess-review.

Loads settings from chess-review.yaml and provides typed access with defaults.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from chess_review.analyzer import ANALYSIS_DEPTH
from chess_review.service import PLAY_DEPTH
from chess_review.uci import HANDSHAKE_TIMEOUT, SHUTDOWN_TIMEOUT, default_candidates

CONFIG_FILENAME = "chess-review.yaml"
ENGINE_ENV_VAR = "CHESS_REVIEW_ENGINE"


class Config:
    """Project configuration loaded from a YAML file.

    Example file:

        engine:
          candidates: [stockfish, /usr/games/stockfish]
          handshake_timeout: 5
          lock_timeout: null
        analysis:
          play_depth: 10
          depth: 15
    """

    def __init__(self, config_path: Path | None = None):
        """Load configuration.

        Args:
            config_path: Path to the YAML file. If None, looks for
                chess-review.yaml in the working directory. A missing
                default file means all defaults.

        Raises:
            FileNotFoundError: If an explicit config_path does not exist.
            ValueError: If the file is not valid YAML or not a mapping.
        """
        explicit = config_path is not None
        self.path = Path(config_path) if explicit else Path.cwd() / CONFIG_FILENAME
        self._config: dict = {}

        if self.path.exists() or explicit:
            with open(self.path, "r", encoding="utf-8") as f:
                try:
                    data = yaml.safe_load(f)
                except yaml.YAMLError as exc:
                    raise ValueError(f"Could not parse {self.path}: {exc}") from exc
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValueError(f"{self.path} must contain a mapping")
            self._config = data

    def get(self, *keys: str, default=None) -> Any:
        """Get a config value by walking nested keys.

        Example:
            config.get("engine", "handshake_timeout", default=5.0)
        """
        value = self._config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    # Engine settings
    @property
    def engine_candidates(self) -> list[str | list[str]]:
        """Engine commands to try, the environment override first."""
        candidates = self.get("engine", "candidates")
        if candidates is None:
            candidates = default_candidates()
        elif isinstance(candidates, str):
            candidates = [candidates]
        else:
            candidates = list(candidates)

        override = os.environ.get(ENGINE_ENV_VAR)
        if override:
            candidates.insert(0, override)
        return candidates

    @property
    def handshake_timeout(self) -> float:
        """Seconds to wait for uciok/readyok."""
        return float(self.get("engine", "handshake_timeout", default=HANDSHAKE_TIMEOUT))

    @property
    def shutdown_timeout(self) -> float:
        """Seconds to wait for the engine to exit after quit."""
        return float(self.get("engine", "shutdown_timeout", default=SHUTDOWN_TIMEOUT))

    @property
    def lock_timeout(self) -> float | None:
        """Seconds to wait for the shared engine lock; None blocks."""
        value = self.get("engine", "lock_timeout")
        return None if value is None else float(value)

    # Analysis settings
    @property
    def play_depth(self) -> int:
        """Depth for engine moves and single-position analysis."""
        return int(self.get("analysis", "play_depth", default=PLAY_DEPTH))

    @property
    def analysis_depth(self) -> int:
        """Depth for full-game review."""
        return int(self.get("analysis", "depth", default=ANALYSIS_DEPTH))

    def __repr__(self) -> str:
        return f"Config(path='{self.path}', analysis_depth={self.analysis_depth})"
