"""Sync registry: the persisted record of last reconciled state.

The registry remembers, for every tracked key, what each replica looked
like after the last successful reconciliation. It is what lets the engine
tell a file deleted on one side apart from a file newly created on the
other, and it is stored inside the remote replica under a reserved key.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from ..exceptions import RegistryCorruptError, ReplicaNotFoundError
from .replica import Replica, ReplicaEntry, ReplicaSide

logger = logging.getLogger(__name__)

# Reserved key of the persisted registry, excluded from every listing
REGISTRY_KEY = ".bucketsync_registry.json"

REGISTRY_VERSION = 1


@dataclass(frozen=True)
class ReplicaFileState:
    """Last known state of one file on one replica."""

    content_hash: str = ""
    """Hex digest of the content at last observation (empty if unknown)"""

    mod_time: float = 0.0
    """Last observed modification time (Unix timestamp)"""

    size: int = 0
    """Last observed size in bytes"""

    deleted: bool = False
    """True if the file was observed absent after previously existing"""

    deleted_at: float = 0.0
    """When the deletion was observed (Unix timestamp), if deleted"""

    @property
    def is_live(self) -> bool:
        """Whether the file was known to exist on this side."""
        return not self.deleted and bool(self.content_hash)

    @property
    def is_known(self) -> bool:
        """Whether this side ever held the file (live or tombstoned)."""
        return self.deleted or bool(self.content_hash)

    def matches(self, entry: ReplicaEntry) -> bool:
        """Check if a fresh listing entry is unchanged from this state."""
        return self.is_live and self.mod_time == entry.mtime and self.size == entry.size

    def mark_deleted(self, when: float) -> "ReplicaFileState":
        return replace(self, deleted=True, deleted_at=when)

    @classmethod
    def observed(cls, entry: ReplicaEntry, content_hash: str) -> "ReplicaFileState":
        """Create a live state from a listing entry and its hash."""
        return cls(content_hash=content_hash, mod_time=entry.mtime, size=entry.size)

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        return {
            "hash": self.content_hash,
            "mod_time_unix": self.mod_time,
            "size": self.size,
            "deleted": self.deleted,
            "deleted_at_unix": self.deleted_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReplicaFileState":
        """Create ReplicaFileState from dictionary."""
        if not isinstance(data, dict):
            raise RegistryCorruptError(f"Expected object, got {type(data).__name__}")
        try:
            return cls(
                content_hash=str(data.get("hash", "")),
                mod_time=float(data.get("mod_time_unix", 0.0)),
                size=int(data.get("size", 0)),
                deleted=bool(data.get("deleted", False)),
                deleted_at=float(data.get("deleted_at_unix", 0.0)),
            )
        except (TypeError, ValueError) as e:
            raise RegistryCorruptError(f"Invalid file state: {e}") from e


@dataclass(frozen=True)
class SyncRecord:
    """The engine's belief about one logical file across both replicas."""

    local: ReplicaFileState = field(default_factory=ReplicaFileState)
    remote: ReplicaFileState = field(default_factory=ReplicaFileState)

    def side(self, side: ReplicaSide) -> ReplicaFileState:
        return self.local if side is ReplicaSide.LOCAL else self.remote

    def with_side(self, side: ReplicaSide, state: ReplicaFileState) -> "SyncRecord":
        if side is ReplicaSide.LOCAL:
            return replace(self, local=state)
        return replace(self, remote=state)

    @property
    def fully_deleted(self) -> bool:
        """Both sides agree the file no longer exists."""
        return self.local.deleted and self.remote.deleted

    def to_dict(self) -> dict:
        return {"local": self.local.to_dict(), "remote": self.remote.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "SyncRecord":
        if not isinstance(data, dict):
            raise RegistryCorruptError(f"Expected object, got {type(data).__name__}")
        return cls(
            local=ReplicaFileState.from_dict(data.get("local", {})),
            remote=ReplicaFileState.from_dict(data.get("remote", {})),
        )


class Registry:
    """Mapping of key to SyncRecord, passed explicitly through each cycle."""

    def __init__(
        self,
        records: Optional[dict[str, SyncRecord]] = None,
        last_sync: Optional[str] = None,
    ):
        self.records: dict[str, SyncRecord] = dict(records or {})
        self.last_sync = last_sync

    def __contains__(self, key: object) -> bool:
        return key in self.records

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    def get(self, key: str) -> Optional[SyncRecord]:
        return self.records.get(key)

    def set(self, key: str, record: SyncRecord) -> None:
        self.records[key] = record

    def remove(self, key: str) -> None:
        self.records.pop(key, None)

    def keys(self) -> set[str]:
        return set(self.records)

    def collect_garbage(self, before: float) -> list[str]:
        """Drop fully deleted records whose deletion completed before a time.

        Tombstones completed during the current cycle (deleted at or after
        ``before``) are kept so the next cycle reports them as pruned.

        Args:
            before: Cycle start time (Unix timestamp)

        Returns:
            Keys that were removed
        """
        removed = [
            key
            for key, record in self.records.items()
            if record.fully_deleted
            and max(record.local.deleted_at, record.remote.deleted_at) < before
        ]
        for key in removed:
            del self.records[key]
        if removed:
            logger.debug(f"Garbage collected {len(removed)} fully deleted record(s)")
        return removed

    def to_dict(self) -> dict:
        """Convert registry to dictionary for JSON serialization."""
        return {
            "version": REGISTRY_VERSION,
            "last_sync": self.last_sync,
            "files": {key: self.records[key].to_dict() for key in sorted(self.records)},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Registry":
        """Create Registry from dictionary.

        Raises:
            RegistryCorruptError: If the data does not follow the schema
        """
        if not isinstance(data, dict) or not isinstance(data.get("files", {}), dict):
            raise RegistryCorruptError("Registry must be an object with a 'files' map")
        version = data.get("version", REGISTRY_VERSION)
        if version != REGISTRY_VERSION:
            raise RegistryCorruptError(f"Unsupported registry version: {version!r}")
        records = {
            str(key): SyncRecord.from_dict(value)
            for key, value in data.get("files", {}).items()
        }
        return cls(records=records, last_sync=data.get("last_sync"))


class RegistryStore:
    """Loads and saves the registry under the reserved key of a replica."""

    def __init__(self, replica: Replica, key: str = REGISTRY_KEY):
        """Initialize registry store.

        Args:
            replica: Replica that holds the registry (the remote side)
            key: Reserved key of the registry object
        """
        self.replica = replica
        self.key = key

    def load(self) -> Registry:
        """Load the registry.

        A missing registry is the bootstrap case and yields an empty one.
        A corrupt registry is logged and also yields an empty one: every
        decision is still gated by comparing fresh content hashes, so the
        worst case is redundant transfers. Other I/O errors propagate.

        Returns:
            The loaded Registry
        """
        try:
            raw = self.replica.read_bytes(self.key)
        except ReplicaNotFoundError:
            logger.debug(f"No sync registry found in {self.replica.describe()}")
            return Registry()

        try:
            registry = Registry.from_dict(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, RegistryCorruptError) as e:
            logger.warning(
                f"Sync registry in {self.replica.describe()} is corrupt, "
                f"starting from an empty registry: {e}"
            )
            return Registry()

        logger.debug(
            f"Loaded sync registry with {len(registry)} record(s) "
            f"from {registry.last_sync}"
        )
        return registry

    def save(self, registry: Registry) -> None:
        """Persist the registry, replacing the previous one atomically."""
        registry.last_sync = datetime.now().isoformat()
        data = json.dumps(registry.to_dict(), indent=2, sort_keys=True)
        self.replica.write_bytes(self.key, data.encode("utf-8"))
        logger.debug(
            f"Saved sync registry with {len(registry)} record(s) "
            f"to {self.replica.describe()}"
        )

    def clear(self) -> bool:
        """Delete the persisted registry.

        Returns:
            True if a registry was deleted, False if none existed
        """
        if not self.replica.exists(self.key):
            return False
        self.replica.delete(self.key)
        logger.debug(f"Cleared sync registry in {self.replica.describe()}")
        return True
