"""Tests for reconciliation planning."""

from unittest.mock import Mock

import pytest

from bucketsync.exceptions import ReplicaNotFoundError
from bucketsync.sync.comparator import PlannedAction, Reconciler, SyncAction
from bucketsync.sync.hasher import ContentHasher
from bucketsync.sync.replica import ReplicaEntry, ReplicaSide
from bucketsync.sync.state import REGISTRY_KEY, Registry, ReplicaFileState, SyncRecord


def entry(key, mtime=100.0, size=2):
    return ReplicaEntry(key=key, mtime=mtime, size=size)


def state(content_hash, mtime=100.0, size=2):
    return ReplicaFileState(content_hash=content_hash, mod_time=mtime, size=size)


class TestReconciler:
    """Tests for Reconciler.plan."""

    @pytest.fixture
    def hasher(self):
        """Hasher returning 'hash-<key>' unless overridden."""
        hasher = Mock(spec=ContentHasher)
        hasher.hash.side_effect = lambda side, key: f"hash-{key}"
        return hasher

    @pytest.fixture
    def reconciler(self, hasher, clock):
        return Reconciler(hasher, min_time_delta=1.0, clock=clock)

    def plan_one(self, reconciler, local=None, remote=None, record=None):
        registry = Registry()
        key = (local or remote).key if (local or remote) else "a.txt"
        if record is not None:
            registry.set(key, record)
        actions = reconciler.plan(
            {key: local} if local else {},
            {key: remote} if remote else {},
            registry,
        )
        assert len(actions) == 1
        return actions[0]

    def test_new_local_file_is_uploaded(self, reconciler):
        action = self.plan_one(reconciler, local=entry("a.txt"))

        assert action.action == SyncAction.TRANSFER
        assert action.source == ReplicaSide.LOCAL
        assert action.direction == "local->remote"
        assert action.record.local.content_hash == "hash-a.txt"
        assert action.record.remote.content_hash == "hash-a.txt"

    def test_new_remote_file_is_downloaded(self, reconciler):
        action = self.plan_one(reconciler, remote=entry("a.txt"))

        assert action.action == SyncAction.TRANSFER
        assert action.source == ReplicaSide.REMOTE
        assert action.destination == ReplicaSide.LOCAL

    def test_identical_files_are_noop(self, reconciler):
        action = self.plan_one(
            reconciler, local=entry("a.txt", 100.0), remote=entry("a.txt", 500.0)
        )

        assert action.action == SyncAction.NOOP
        assert action.record.local.mod_time == 100.0
        assert action.record.remote.mod_time == 500.0

    def test_unchanged_files_are_not_hashed(self, reconciler, hasher):
        """Test stored hashes are reused when mtime and size match."""
        record = SyncRecord(local=state("h"), remote=state("h", mtime=200.0))

        action = self.plan_one(
            reconciler,
            local=entry("a.txt", 100.0),
            remote=entry("a.txt", 200.0),
            record=record,
        )

        assert action.action == SyncAction.NOOP
        hasher.hash.assert_not_called()

    def test_touch_without_content_change_is_noop(self, reconciler, hasher):
        """Test a new mtime with the same content triggers a hash but no transfer."""
        hasher.hash.side_effect = lambda side, key: "h"
        record = SyncRecord(local=state("h"), remote=state("h"))

        action = self.plan_one(
            reconciler,
            local=entry("a.txt", 900.0),
            remote=entry("a.txt", 100.0),
            record=record,
        )

        assert action.action == SyncAction.NOOP
        assert action.record.local.mod_time == 900.0
        hasher.hash.assert_called_once_with(ReplicaSide.LOCAL, "a.txt")

    def test_changed_side_wins_even_if_older(self, reconciler, hasher):
        """Test only the side that changed since last sync is propagated."""
        hasher.hash.side_effect = lambda side, key: "new"
        record = SyncRecord(local=state("old"), remote=state("old", mtime=500.0))

        action = self.plan_one(
            reconciler,
            local=entry("a.txt", 300.0),
            remote=entry("a.txt", 500.0),
            record=record,
        )

        assert action.action == SyncAction.TRANSFER
        assert action.source == ReplicaSide.LOCAL

    def test_both_changed_newer_wins(self, reconciler, hasher):
        hasher.hash.side_effect = lambda side, key: f"{side.value}-content"
        record = SyncRecord(local=state("old"), remote=state("old"))

        action = self.plan_one(
            reconciler,
            local=entry("a.txt", 300.0),
            remote=entry("a.txt", 400.0),
            record=record,
        )

        assert action.source == ReplicaSide.REMOTE
        assert "newer" in action.reason

    def test_equal_mtimes_local_wins_tie(self, reconciler, hasher):
        hasher.hash.side_effect = lambda side, key: f"{side.value}-content"

        action = self.plan_one(
            reconciler, local=entry("a.txt", 300.0), remote=entry("a.txt", 300.5)
        )

        assert action.action == SyncAction.TRANSFER
        assert action.source == ReplicaSide.LOCAL
        assert "tie-break" in action.reason

    def test_tie_winner_is_configurable(self, hasher, clock):
        hasher.hash.side_effect = lambda side, key: f"{side.value}-content"
        reconciler = Reconciler(hasher, tie_winner=ReplicaSide.REMOTE, clock=clock)

        action = self.plan_one(
            reconciler, local=entry("a.txt", 300.0), remote=entry("a.txt", 300.0)
        )

        assert action.source == ReplicaSide.REMOTE

    def test_local_deletion_propagates(self, reconciler, hasher, clock):
        record = SyncRecord(local=state("h"), remote=state("h"))
        remote_entry = entry("a.txt")

        action = self.plan_one(reconciler, remote=remote_entry, record=record)

        assert action.action == SyncAction.DELETE_REMOTE
        assert action.expected == remote_entry
        assert action.record.local.deleted
        assert action.record.remote.deleted
        assert action.record.local.deleted_at == clock()
        hasher.hash.assert_not_called()

    def test_remote_deletion_propagates(self, reconciler):
        record = SyncRecord(local=state("h"), remote=state("h"))

        action = self.plan_one(reconciler, local=entry("a.txt"), record=record)

        assert action.action == SyncAction.DELETE_LOCAL
        assert action.direction == "local"

    def test_existing_tombstone_keeps_deletion_time(self, reconciler):
        record = SyncRecord(
            local=state("h").mark_deleted(50.0),
            remote=state("h"),
        )

        action = self.plan_one(reconciler, remote=entry("a.txt"), record=record)

        assert action.action == SyncAction.DELETE_REMOTE
        assert action.record.local.deleted_at == 50.0

    def test_modified_after_deletion_is_restored(self, reconciler, hasher):
        """Test an edit on one side wins over a deletion on the other."""
        hasher.hash.side_effect = lambda side, key: "edited"
        record = SyncRecord(local=state("h"), remote=state("h"))

        action = self.plan_one(
            reconciler, remote=entry("a.txt", 900.0, 6), record=record
        )

        assert action.action == SyncAction.TRANSFER
        assert action.source == ReplicaSide.REMOTE
        assert action.record.local.content_hash == "edited"
        assert not action.record.local.deleted

    def test_both_absent_is_pruned(self, reconciler):
        record = SyncRecord(
            local=state("h").mark_deleted(1.0), remote=state("h").mark_deleted(1.0)
        )

        action = self.plan_one(reconciler, record=record)

        assert action.action == SyncAction.PRUNE
        assert not action.requires_io

    def test_hash_failure_skips_key(self, reconciler, hasher):
        """Test a file vanishing before hashing only skips that key."""

        def hash_file(side, key):
            if key == "gone.txt":
                raise ReplicaNotFoundError("gone", key=key)
            return f"hash-{key}"

        hasher.hash.side_effect = hash_file
        actions = reconciler.plan(
            {"gone.txt": entry("gone.txt"), "ok.txt": entry("ok.txt")},
            {},
            Registry(),
        )

        assert [a.key for a in actions] == ["ok.txt"]

    def test_registry_key_is_never_planned(self, reconciler):
        actions = reconciler.plan({}, {REGISTRY_KEY: entry(REGISTRY_KEY)}, Registry())
        assert actions == []

    def test_one_action_per_key_in_order(self, reconciler):
        registry = Registry()
        registry.set(
            "c.txt",
            SyncRecord(
                local=state("h").mark_deleted(1.0),
                remote=state("h").mark_deleted(1.0),
            ),
        )

        actions = reconciler.plan(
            {"b.txt": entry("b.txt"), "a.txt": entry("a.txt")},
            {"a.txt": entry("a.txt")},
            registry,
        )

        assert [a.key for a in actions] == ["a.txt", "b.txt", "c.txt"]
        assert all(isinstance(a, PlannedAction) for a in actions)
