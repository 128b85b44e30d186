"""Sync operations: apply planned actions to the replicas."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..exceptions import ReplicaError
from .comparator import PlannedAction, SyncAction
from .replica import Replica, ReplicaEntry, ReplicaSide

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Outcome of executing one planned action."""

    action: PlannedAction
    success: bool
    error: Optional[BaseException] = None
    entry: Optional[ReplicaEntry] = None
    """Destination entry after a successful transfer"""

    elapsed: float = 0.0


class SyncOperations:
    """Unified transfer/delete operations across both replicas.

    Operations never retry: a failed action leaves the registry untouched,
    so the next cycle plans the same action again.
    """

    def __init__(self, local: Replica, remote: Replica):
        """Initialize sync operations.

        Args:
            local: Local replica
            remote: Remote replica
        """
        self.local = local
        self.remote = remote

    def replica(self, side: ReplicaSide) -> Replica:
        return self.local if side is ReplicaSide.LOCAL else self.remote

    def transfer(self, key: str, source: ReplicaSide) -> Optional[ReplicaEntry]:
        """Copy a file from one replica over the other.

        The content is streamed from source to destination; the destination
        write is atomic.

        Args:
            key: Key of the file
            source: Side holding the winning version

        Returns:
            The destination entry after the write, if it could be read back
        """
        src = self.replica(source)
        dst = self.replica(source.other)
        with src.open_read(key) as stream:
            dst.write(key, stream)
        return dst.stat(key)

    def delete(
        self,
        key: str,
        side: ReplicaSide,
        expected: Optional[ReplicaEntry] = None,
    ) -> None:
        """Delete a file on one side.

        Args:
            key: Key of the file
            side: Side to delete from
            expected: If given, the delete is refused when the file no longer
                matches this entry (it was modified after being listed)

        Raises:
            ReplicaError: If the file changed since it was listed
        """
        replica = self.replica(side)
        if expected is not None:
            current = replica.stat(key)
            if current is not None and (
                current.mtime != expected.mtime or current.size != expected.size
            ):
                raise ReplicaError(
                    f"{key} changed on {side.value} side since it was listed", key=key
                )
        replica.delete(key)

    def execute(self, action: PlannedAction) -> ActionResult:
        """Execute a single planned action.

        Failures are caught and reported in the result, so one failing key
        never stops the others.

        Args:
            action: Planned action to execute

        Returns:
            ActionResult describing the outcome
        """
        start = time.time()
        entry: Optional[ReplicaEntry] = None

        try:
            if action.action is SyncAction.TRANSFER:
                assert action.source is not None
                logger.debug(f"Transferring {action.key} ({action.direction})...")
                entry = self.transfer(action.key, action.source)

            elif action.action is SyncAction.DELETE_LOCAL:
                logger.debug(f"Deleting local {action.key}...")
                self.delete(action.key, ReplicaSide.LOCAL, action.expected)

            elif action.action is SyncAction.DELETE_REMOTE:
                logger.debug(f"Deleting remote {action.key}...")
                self.delete(action.key, ReplicaSide.REMOTE, action.expected)

        except Exception as e:
            elapsed = time.time() - start
            logger.error(
                f"Failed to {action.action.value} {action.key} "
                f"({action.direction}): {e}"
            )
            return ActionResult(action=action, success=False, error=e, elapsed=elapsed)

        elapsed = time.time() - start
        if action.requires_io:
            logger.debug(f"{action.describe()} took {elapsed:.2f}s")
        return ActionResult(action=action, success=True, entry=entry, elapsed=elapsed)
