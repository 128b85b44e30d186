"""Replica scanning utilities for sync operations."""

import fnmatch
import logging
from collections.abc import Iterator
from typing import Optional

from .replica import Replica, ReplicaEntry
from .state import REGISTRY_KEY

logger = logging.getLogger(__name__)

# Keys with a path segment starting with this prefix are never synced
HIDDEN_PREFIX = "."


class ReplicaScanner:
    """Lists replicas and filters out keys that must never be synced.

    Hidden keys (any path segment starting with "."), the registry key and
    keys matching the ignore patterns are dropped at this boundary, so the
    reconciliation engine never sees them as candidates.

    Examples:
        >>> scanner = ReplicaScanner(ignore_patterns=["*.tmp", "cache/*"])
        >>> files = scanner.scan(open_replica("/sync/folder"))
        >>> # files maps key -> ReplicaEntry
    """

    def __init__(self, ignore_patterns: Optional[list[str]] = None):
        """Initialize replica scanner.

        Args:
            ignore_patterns: List of glob patterns to ignore (e.g., ["*.log", "temp/*"])
        """
        self.ignore_patterns = ignore_patterns or []

    def should_ignore(self, key: str) -> bool:
        """Check if a key should be excluded from syncing.

        Args:
            key: Relative key to check

        Returns:
            True if the key is hidden, reserved or ignored by pattern
        """
        if key == REGISTRY_KEY:
            return True

        if any(part.startswith(HIDDEN_PREFIX) for part in key.split("/")):
            return True

        for pattern in self.ignore_patterns:
            name = key.rsplit("/", 1)[-1]
            if fnmatch.fnmatchcase(key, pattern) or fnmatch.fnmatchcase(
                name, pattern
            ):
                logger.debug(f"Ignoring (pattern {pattern!r}): {key}")
                return True

        return False

    def iter_entries(self, replica: Replica, prefix: str = "") -> Iterator[ReplicaEntry]:
        """Lazily yield the syncable entries of a replica.

        Each call enumerates the replica again. Errors from the replica
        propagate to the caller.
        """
        for entry in replica.list(prefix):
            if not self.should_ignore(entry.key):
                yield entry

    def scan(self, replica: Replica, prefix: str = "") -> dict[str, ReplicaEntry]:
        """Scan a replica into a mapping of key to entry.

        Args:
            replica: Replica to scan
            prefix: Only include keys starting with this prefix

        Returns:
            Dictionary mapping key to ReplicaEntry
        """
        entries = {entry.key: entry for entry in self.iter_entries(replica, prefix)}
        logger.debug(f"Found {len(entries)} file(s) in {replica.describe()}")
        return entries
