"""Custom exceptions for bucketsync."""

from typing import Optional


class BucketSyncError(Exception):
    """Base exception for all bucketsync errors."""


class ReplicaError(BucketSyncError):
    """Raised when a replica operation (list, read, write, delete) fails."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class ReplicaNotFoundError(ReplicaError):
    """Raised when a key does not exist in a replica."""


class RegistryError(BucketSyncError):
    """Raised for sync registry problems."""


class RegistryCorruptError(RegistryError):
    """Raised when the persisted registry cannot be parsed."""


class SyncConfigError(BucketSyncError):
    """Raised for invalid sync configuration."""


class SyncCycleError(BucketSyncError):
    """Raised when a reconciliation cycle has to be abandoned.

    This happens when listing either replica or loading the registry fails.
    The registry is left untouched and the next cycle retries.
    """
