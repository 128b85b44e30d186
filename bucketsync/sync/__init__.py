"""Sync engine for bucketsync - two-way local/remote reconciliation."""

from .comparator import PlannedAction, Reconciler, SyncAction
from .engine import SyncEngine
from .hasher import ContentHasher
from .loop import SyncLoop
from .operations import ActionResult, SyncOperations
from .pair import SyncPair
from .replica import (
    FsspecReplica,
    LocalReplica,
    Replica,
    ReplicaEntry,
    ReplicaSide,
    open_replica,
)
from .scanner import ReplicaScanner
from .state import (
    REGISTRY_KEY,
    Registry,
    RegistryStore,
    ReplicaFileState,
    SyncRecord,
)

__all__ = [
    "SyncEngine",
    "SyncLoop",
    "SyncPair",
    "SyncOperations",
    "ActionResult",
    "Reconciler",
    "PlannedAction",
    "SyncAction",
    "ContentHasher",
    "ReplicaScanner",
    "Replica",
    "LocalReplica",
    "FsspecReplica",
    "ReplicaEntry",
    "ReplicaSide",
    "open_replica",
    "REGISTRY_KEY",
    "Registry",
    "RegistryStore",
    "ReplicaFileState",
    "SyncRecord",
]
