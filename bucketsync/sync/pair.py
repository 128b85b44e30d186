"""Sync pair definition: one local directory bound to one remote replica."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..exceptions import SyncConfigError
from ..utils import DEFAULT_MIN_TIME_DELTA, DEFAULT_SYNC_INTERVAL
from .replica import ReplicaSide


@dataclass
class SyncPair:
    """Configuration of a local directory kept in sync with a remote URI."""

    local: Path
    """Local directory path"""

    remote: str
    """Remote replica URI (e.g. "s3://bucket/prefix")"""

    interval: float = DEFAULT_SYNC_INTERVAL
    """Seconds between two sync cycles"""

    min_time_delta: float = DEFAULT_MIN_TIME_DELTA
    """Modification times closer than this (seconds) are treated as equal"""

    tie_winner: ReplicaSide = ReplicaSide.LOCAL
    """Side that wins a conflict when both modification times are equal"""

    ignore: list[str] = field(default_factory=list)
    """Glob patterns of keys that are never synced"""

    max_workers: int = 1
    """Number of parallel transfers per cycle"""

    alias: Optional[str] = None
    """Optional display name"""

    def __post_init__(self) -> None:
        if isinstance(self.local, str):
            self.local = Path(self.local)
        self.local = self.local.expanduser()

        self.remote = self.remote.strip()
        if not self.remote:
            raise SyncConfigError("Remote location must not be empty")

        if isinstance(self.tie_winner, str):
            try:
                self.tie_winner = ReplicaSide(self.tie_winner.lower())
            except ValueError as e:
                raise SyncConfigError(
                    f"Invalid tie winner {self.tie_winner!r}, expected 'local' or 'remote'"
                ) from e

        if self.interval <= 0:
            raise SyncConfigError(f"Interval must be positive, got {self.interval}")
        if self.min_time_delta < 0:
            raise SyncConfigError(
                f"Minimum time delta must not be negative, got {self.min_time_delta}"
            )
        if self.max_workers < 1:
            raise SyncConfigError(
                f"Number of workers must be at least 1, got {self.max_workers}"
            )

    @property
    def name(self) -> str:
        """Display name of the pair."""
        return self.alias or f"{self.local} <-> {self.remote}"

    def validate_local(self) -> None:
        """Check that the local directory exists.

        Raises:
            SyncConfigError: If the local path is missing or not a directory
        """
        if not self.local.exists():
            raise SyncConfigError(f"Local directory does not exist: {self.local}")
        if not self.local.is_dir():
            raise SyncConfigError(f"Local path is not a directory: {self.local}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncPair":
        """Create a sync pair from a dictionary with camelCase keys.

        Args:
            data: Dictionary such as {"local": "...", "remote": "...",
                "minTimeDelta": 2, "tieWinner": "remote"}

        Returns:
            SyncPair instance
        """
        for required in ("local", "remote"):
            if not data.get(required):
                raise SyncConfigError(f"Sync pair is missing '{required}'")

        return cls(
            local=Path(data["local"]),
            remote=data["remote"],
            interval=float(data.get("interval", DEFAULT_SYNC_INTERVAL)),
            min_time_delta=float(data.get("minTimeDelta", DEFAULT_MIN_TIME_DELTA)),
            tie_winner=data.get("tieWinner", ReplicaSide.LOCAL),
            ignore=list(data.get("ignore", [])),
            max_workers=int(data.get("maxWorkers", 1)),
            alias=data.get("alias"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "local": str(self.local),
            "remote": self.remote,
            "interval": self.interval,
            "minTimeDelta": self.min_time_delta,
            "tieWinner": self.tie_winner.value,
            "ignore": list(self.ignore),
            "maxWorkers": self.max_workers,
            "alias": self.alias,
        }

