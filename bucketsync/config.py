"""Configuration management for bucketsync.

Values are resolved from environment variables first and then from the
config file at ``~/.config/bucketsync/config`` (simple ``KEY=VALUE`` lines).
CLI flags override both.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .exceptions import SyncConfigError
from .utils import DEFAULT_MIN_TIME_DELTA, DEFAULT_SYNC_INTERVAL

logger = logging.getLogger(__name__)

ENV_LOCAL = "BUCKETSYNC_LOCAL"
ENV_REMOTE = "BUCKETSYNC_REMOTE"
ENV_INTERVAL = "BUCKETSYNC_INTERVAL"
ENV_MIN_TIME_DELTA = "BUCKETSYNC_MIN_TIME_DELTA"

_KNOWN_KEYS = (ENV_LOCAL, ENV_REMOTE, ENV_INTERVAL, ENV_MIN_TIME_DELTA)


class Config:
    """Configuration manager for bucketsync."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding the config file. Defaults to
                ~/.config/bucketsync/
        """
        if config_dir is None:
            config_dir = Path.home() / ".config" / "bucketsync"
        self.config_dir = config_dir
        self.config_file = config_dir / "config"
        self._file_values: dict[str, str] = self._load_config_file()

    def _load_config_file(self) -> dict[str, str]:
        """Load KEY=VALUE pairs from the config file if it exists."""
        values: dict[str, str] = {}
        if not self.config_file.exists():
            return values

        try:
            with open(self.config_file, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, value = line.split("=", 1)
                    values[key.strip()] = value.strip().strip("\"'")
        except OSError as e:
            logger.warning(f"Failed to read config file {self.config_file}: {e}")
        return values

    def _get(self, key: str) -> Optional[str]:
        return os.environ.get(key) or self._file_values.get(key)

    def _get_float(self, key: str, default: float) -> float:
        raw = self._get(key)
        if raw is None:
            return default
        try:
            value = float(raw)
        except ValueError as e:
            raise SyncConfigError(f"{key} must be a number, got {raw!r}") from e
        if value < 0:
            raise SyncConfigError(f"{key} must not be negative, got {value}")
        return value

    @property
    def local_dir(self) -> Optional[str]:
        """Local directory to sync."""
        return self._get(ENV_LOCAL)

    @property
    def remote_url(self) -> Optional[str]:
        """Remote replica URI (e.g. s3://bucket/prefix)."""
        return self._get(ENV_REMOTE)

    @property
    def interval(self) -> float:
        """Seconds between sync cycles."""
        return self._get_float(ENV_INTERVAL, DEFAULT_SYNC_INTERVAL)

    @property
    def min_time_delta(self) -> float:
        """Minimum mtime difference (seconds) considered significant."""
        return self._get_float(ENV_MIN_TIME_DELTA, DEFAULT_MIN_TIME_DELTA)

    def is_configured(self) -> bool:
        """Check whether both replicas are configured."""
        return bool(self.local_dir and self.remote_url)

    def save(self, **values: str) -> None:
        """Persist configuration values to the config file.

        Args:
            **values: Values keyed by environment variable name
                (e.g. BUCKETSYNC_REMOTE="s3://bucket")
        """
        unknown = set(values) - set(_KNOWN_KEYS)
        if unknown:
            raise SyncConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        self._file_values.update({k: v for k, v in values.items() if v is not None})
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            f.write("# bucketsync configuration\n")
            for key in _KNOWN_KEYS:
                if key in self._file_values:
                    f.write(f"{key}={self._file_values[key]}\n")
        logger.debug(f"Saved configuration to {self.config_file}")

    def get_config_path(self) -> Path:
        """Return the config file path."""
        return self.config_file


config = Config()
