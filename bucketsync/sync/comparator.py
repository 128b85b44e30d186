"""Reconciliation logic: decide what to do with every tracked file."""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..utils import DEFAULT_MIN_TIME_DELTA
from .hasher import ContentHasher
from .replica import ReplicaEntry, ReplicaSide
from .state import REGISTRY_KEY, Registry, ReplicaFileState, SyncRecord

logger = logging.getLogger(__name__)


class SyncAction(str, Enum):
    """Actions that can be taken during sync."""

    TRANSFER = "transfer"
    """Copy the file from the source side over the other side"""

    DELETE_LOCAL = "delete_local"
    """Delete local file"""

    DELETE_REMOTE = "delete_remote"
    """Delete remote file"""

    NOOP = "noop"
    """Both sides already hold the same content"""

    PRUNE = "prune"
    """Drop a record whose file is gone from both sides"""


@dataclass
class PlannedAction:
    """Represents a decision about how to sync a file."""

    key: str
    """Relative key of the file"""

    action: SyncAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    source: Optional[ReplicaSide] = None
    """Side the content is copied from (TRANSFER only)"""

    record: Optional[SyncRecord] = None
    """Registry record to commit once the action succeeded (None for PRUNE)"""

    expected: Optional[ReplicaEntry] = None
    """Listing entry of the file a delete removes; the delete is refused
    if the file changed since it was listed"""

    @property
    def destination(self) -> Optional[ReplicaSide]:
        return self.source.other if self.source else None

    @property
    def direction(self) -> str:
        if self.action is SyncAction.TRANSFER and self.source:
            return f"{self.source.value}->{self.source.other.value}"
        if self.action is SyncAction.DELETE_LOCAL:
            return "local"
        if self.action is SyncAction.DELETE_REMOTE:
            return "remote"
        return "-"

    @property
    def requires_io(self) -> bool:
        """Whether executing the action touches a replica."""
        return self.action in (
            SyncAction.TRANSFER,
            SyncAction.DELETE_LOCAL,
            SyncAction.DELETE_REMOTE,
        )

    def describe(self) -> str:
        return f"{self.action.value} {self.key} ({self.direction})"


def _delete_action_for(side: ReplicaSide) -> SyncAction:
    if side is ReplicaSide.LOCAL:
        return SyncAction.DELETE_LOCAL
    return SyncAction.DELETE_REMOTE


class Reconciler:
    """Compares fresh listings with the registry to plan sync actions.

    For every key in the union of both listings and the registry, exactly
    one PlannedAction is produced (keys whose hashing fails are skipped for
    the cycle). The registry itself is not modified here; each action
    carries the record to commit once it has been applied.
    """

    def __init__(
        self,
        hasher: ContentHasher,
        min_time_delta: float = DEFAULT_MIN_TIME_DELTA,
        tie_winner: ReplicaSide = ReplicaSide.LOCAL,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize reconciler.

        Args:
            hasher: Hasher used for lazily hashing changed files
            min_time_delta: Modification times closer than this (seconds)
                are considered equal
            tie_winner: Side that wins a conflict with equal modification times
            clock: Time source for deletion timestamps
        """
        self.hasher = hasher
        self.min_time_delta = min_time_delta
        self.tie_winner = tie_winner
        self.clock = clock

    def plan(
        self,
        local_files: dict[str, ReplicaEntry],
        remote_files: dict[str, ReplicaEntry],
        registry: Registry,
    ) -> list[PlannedAction]:
        """Plan the actions of one reconciliation cycle.

        Args:
            local_files: Dictionary mapping key to local ReplicaEntry
            remote_files: Dictionary mapping key to remote ReplicaEntry
            registry: Registry as persisted after the previous cycle

        Returns:
            List of PlannedAction objects, ordered by key
        """
        now = self.clock()
        actions: list[PlannedAction] = []

        all_keys = set(local_files) | set(remote_files) | registry.keys()
        all_keys.discard(REGISTRY_KEY)

        for key in sorted(all_keys):
            try:
                action = self._plan_single_file(
                    key,
                    local_files.get(key),
                    remote_files.get(key),
                    registry.get(key),
                    now,
                )
            except Exception as e:
                # Typically the file vanished between listing and hashing
                logger.warning(f"Skipping {key} this cycle: {e}")
                continue
            actions.append(action)

        return actions

    def _plan_single_file(
        self,
        key: str,
        local_entry: Optional[ReplicaEntry],
        remote_entry: Optional[ReplicaEntry],
        record: Optional[SyncRecord],
        now: float,
    ) -> PlannedAction:
        # Case 1: File exists in both locations
        if local_entry and remote_entry:
            return self._plan_both_present(key, local_entry, remote_entry, record)

        # Case 2: File exists on one side only
        if local_entry:
            return self._plan_one_side(key, ReplicaSide.LOCAL, local_entry, record, now)
        if remote_entry:
            return self._plan_one_side(
                key, ReplicaSide.REMOTE, remote_entry, record, now
            )

        # Case 3: File is gone from both sides but still tracked
        assert record is not None
        return self._plan_both_absent(key, record)

    def _current_hash(
        self,
        side: ReplicaSide,
        key: str,
        entry: ReplicaEntry,
        record: Optional[SyncRecord],
    ) -> str:
        """Hash a file only if it changed since the registry last saw it."""
        if record is not None:
            prior = record.side(side)
            if prior.matches(entry):
                return prior.content_hash
        return self.hasher.hash(side, key)

    def _plan_both_present(
        self,
        key: str,
        local_entry: ReplicaEntry,
        remote_entry: ReplicaEntry,
        record: Optional[SyncRecord],
    ) -> PlannedAction:
        local_hash = self._current_hash(ReplicaSide.LOCAL, key, local_entry, record)
        remote_hash = self._current_hash(ReplicaSide.REMOTE, key, remote_entry, record)

        if local_hash == remote_hash:
            return PlannedAction(
                key=key,
                action=SyncAction.NOOP,
                reason="Files are identical (same hash)",
                record=SyncRecord(
                    local=ReplicaFileState.observed(local_entry, local_hash),
                    remote=ReplicaFileState.observed(remote_entry, remote_hash),
                ),
            )

        winner, reason = self._pick_winner(
            key, local_entry, remote_entry, local_hash, remote_hash, record
        )
        if winner is ReplicaSide.LOCAL:
            return self._transfer(key, winner, local_entry, local_hash, reason)
        return self._transfer(key, winner, remote_entry, remote_hash, reason)

    def _pick_winner(
        self,
        key: str,
        local_entry: ReplicaEntry,
        remote_entry: ReplicaEntry,
        local_hash: str,
        remote_hash: str,
        record: Optional[SyncRecord],
    ) -> tuple[ReplicaSide, str]:
        """Decide which version of a file that differs between sides wins."""

        def changed(side: ReplicaSide, current_hash: str) -> bool:
            if record is None:
                return True
            prior = record.side(side)
            return not prior.is_live or prior.content_hash != current_hash

        local_changed = changed(ReplicaSide.LOCAL, local_hash)
        remote_changed = changed(ReplicaSide.REMOTE, remote_hash)

        if local_changed and not remote_changed:
            return ReplicaSide.LOCAL, "Local file changed since last sync"
        if remote_changed and not local_changed:
            return ReplicaSide.REMOTE, "Remote file changed since last sync"

        # Both changed (or no history): newest modification wins
        time_diff = local_entry.mtime - remote_entry.mtime
        if abs(time_diff) >= self.min_time_delta:
            winner = ReplicaSide.LOCAL if time_diff > 0 else ReplicaSide.REMOTE
            reason = f"{winner.value.capitalize()} file is newer"
        else:
            winner = self.tie_winner
            reason = f"Same modification time, {winner.value} wins tie-break"

        logger.info(
            f"Conflict on {key}: both sides differ, keeping {winner.value} "
            f"version ({reason.lower()})"
        )
        return winner, reason

    def _transfer(
        self,
        key: str,
        source: ReplicaSide,
        entry: ReplicaEntry,
        content_hash: str,
        reason: str,
    ) -> PlannedAction:
        state = ReplicaFileState.observed(entry, content_hash)
        return PlannedAction(
            key=key,
            action=SyncAction.TRANSFER,
            reason=reason,
            source=source,
            record=SyncRecord(local=state, remote=state),
        )

    def _plan_one_side(
        self,
        key: str,
        present: ReplicaSide,
        entry: ReplicaEntry,
        record: Optional[SyncRecord],
        now: float,
    ) -> PlannedAction:
        """Handle a file that exists on one side only."""
        absent = present.other
        current_hash = self._current_hash(present, key, entry, record)

        if record is not None:
            prior_present = record.side(present)
            prior_absent = record.side(absent)

            # The file existed on the absent side: it was deleted there
            if prior_absent.is_known and prior_present.is_live:
                if current_hash == prior_present.content_hash:
                    if not prior_absent.deleted:
                        prior_absent = prior_absent.mark_deleted(now)
                    tombstone = SyncRecord().with_side(absent, prior_absent)
                    tombstone = tombstone.with_side(
                        present, prior_present.mark_deleted(now)
                    )
                    return PlannedAction(
                        key=key,
                        action=_delete_action_for(present),
                        reason=f"File deleted on {absent.value} side",
                        record=tombstone,
                        expected=entry,
                    )

                logger.info(
                    f"{key} was deleted on {absent.value} side but modified on "
                    f"{present.value} side, keeping the modified version"
                )
                return self._transfer(
                    key,
                    present,
                    entry,
                    current_hash,
                    f"Modified on {present.value} side after deletion",
                )

        return self._transfer(
            key, present, entry, current_hash, f"New {present.value} file"
        )

    def _plan_both_absent(self, key: str, record: SyncRecord) -> PlannedAction:
        """Handle a tracked file that is gone from both sides."""
        if record.fully_deleted:
            reason = "Deletion propagated to both sides"
        else:
            reason = "File deleted on both sides"
        return PlannedAction(key=key, action=SyncAction.PRUNE, reason=reason)
