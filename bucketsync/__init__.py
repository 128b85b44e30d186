"""bucketsync - keep a local directory and a remote bucket in two-way sync."""

from .exceptions import (
    BucketSyncError,
    RegistryCorruptError,
    RegistryError,
    ReplicaError,
    ReplicaNotFoundError,
    SyncConfigError,
    SyncCycleError,
)
from .sync import SyncEngine, SyncLoop, SyncPair, open_replica
from .utils import calculate_content_hash

__all__ = [
    "BucketSyncError",
    "RegistryCorruptError",
    "RegistryError",
    "ReplicaError",
    "ReplicaNotFoundError",
    "SyncConfigError",
    "SyncCycleError",
    "SyncEngine",
    "SyncLoop",
    "SyncPair",
    "open_replica",
    "calculate_content_hash",
]
