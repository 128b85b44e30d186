"""Core sync engine for executing reconciliation cycles."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from rich.progress import Progress, SpinnerColumn, TextColumn

from ..exceptions import SyncCycleError
from ..output import OutputFormatter
from ..utils import DEFAULT_MIN_TIME_DELTA
from .comparator import PlannedAction, Reconciler, SyncAction
from .hasher import ContentHasher
from .operations import ActionResult, SyncOperations
from .pair import SyncPair
from .replica import Replica, ReplicaSide, open_replica
from .scanner import ReplicaScanner
from .state import Registry, RegistryStore, ReplicaFileState

logger = logging.getLogger(__name__)


class SyncEngine:
    """Core sync engine that runs one reconciliation cycle at a time.

    A cycle lists both replicas, loads the registry, plans one action per
    key, applies the actions and persists the registry. Cycles are
    serialized: a second call to ``run_cycle`` blocks until the first one
    has saved (or failed to save) its registry.
    """

    def __init__(
        self,
        local: Replica,
        remote: Replica,
        output: Optional[OutputFormatter] = None,
        ignore_patterns: Optional[list[str]] = None,
        min_time_delta: float = DEFAULT_MIN_TIME_DELTA,
        tie_winner: ReplicaSide = ReplicaSide.LOCAL,
        max_workers: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize sync engine.

        Args:
            local: Local replica
            remote: Remote replica (also stores the registry)
            output: Output formatter for displaying progress/status
            ignore_patterns: Glob patterns of keys that are never synced
            min_time_delta: Modification times closer than this are equal
            tie_winner: Side that wins conflicts with equal modification times
            max_workers: Number of parallel workers for actions (default: 1)
            clock: Time source
        """
        self.local = local
        self.remote = remote
        self.output = output or OutputFormatter(quiet=True)
        self.scanner = ReplicaScanner(ignore_patterns=ignore_patterns)
        self.hasher = ContentHasher(local, remote)
        self.reconciler = Reconciler(
            self.hasher,
            min_time_delta=min_time_delta,
            tie_winner=tie_winner,
            clock=clock,
        )
        self.operations = SyncOperations(local, remote)
        self.store = RegistryStore(remote)
        self.max_workers = max_workers
        self.clock = clock
        self.last_plan: list[PlannedAction] = []
        self._cycle_lock = threading.Lock()

    @classmethod
    def from_pair(
        cls, pair: SyncPair, output: Optional[OutputFormatter] = None
    ) -> "SyncEngine":
        """Create an engine for a sync pair.

        Examples:
            >>> pair = SyncPair(Path("/local"), "s3://bucket/docs")
            >>> engine = SyncEngine.from_pair(pair)
            >>> stats = engine.run_cycle(dry_run=True)
        """
        return cls(
            local=open_replica(pair.local),
            remote=open_replica(pair.remote),
            output=output,
            ignore_patterns=pair.ignore,
            min_time_delta=pair.min_time_delta,
            tie_winner=pair.tie_winner,
            max_workers=pair.max_workers,
        )

    @property
    def _progress_disabled(self) -> bool:
        # Progress bars would corrupt machine-readable output
        return self.output.quiet or self.output.json_output

    def run_cycle(self, dry_run: bool = False) -> dict:
        """Run one reconciliation cycle.

        Args:
            dry_run: If True, only plan and display the actions

        Returns:
            Dictionary with sync statistics

        Raises:
            SyncCycleError: If listing a replica or loading/saving the
                registry failed; the cycle is abandoned
        """
        with self._cycle_lock:
            cycle_start = self.clock()
            registry, local_files, remote_files = self._observe()

            plan = self.reconciler.plan(local_files, remote_files, registry)
            self.last_plan = plan
            planned = self._categorize_actions(plan)
            self._display_sync_plan(planned, plan, dry_run)

            if dry_run:
                return planned

            stats = self._execute_actions(plan, registry)
            registry.collect_garbage(before=cycle_start)

            try:
                self.store.save(registry)
            except Exception as e:
                raise SyncCycleError(f"Failed to save sync registry: {e}") from e

            if not self.output.quiet:
                self._display_summary(stats)
            return stats

    def _observe(self) -> tuple[Registry, dict, dict]:
        """Load the registry and list both replicas."""
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=self._progress_disabled,
        ) as progress:
            try:
                task = progress.add_task("Loading sync registry...", total=None)
                registry = self.store.load()

                progress.update(task, description="Scanning local replica...")
                local_files = self.scanner.scan(self.local)

                progress.update(task, description="Scanning remote replica...")
                remote_files = self.scanner.scan(self.remote)
            except Exception as e:
                raise SyncCycleError(f"Cycle aborted: {e}") from e

        logger.debug(
            f"Observed {len(local_files)} local file(s), "
            f"{len(remote_files)} remote file(s), {len(registry)} record(s)"
        )
        return registry, local_files, remote_files

    def _create_empty_stats(self) -> dict:
        """Create an empty statistics dictionary.

        Returns:
            Dictionary with zero counts for all stat categories
        """
        return {
            "uploads": 0,
            "downloads": 0,
            "deletes_local": 0,
            "deletes_remote": 0,
            "noops": 0,
            "prunes": 0,
            "failed": 0,
        }

    def _count(self, stats: dict, action: PlannedAction) -> None:
        if action.action is SyncAction.TRANSFER:
            if action.source is ReplicaSide.LOCAL:
                stats["uploads"] += 1
            else:
                stats["downloads"] += 1
        elif action.action is SyncAction.DELETE_LOCAL:
            stats["deletes_local"] += 1
        elif action.action is SyncAction.DELETE_REMOTE:
            stats["deletes_remote"] += 1
        elif action.action is SyncAction.NOOP:
            stats["noops"] += 1
        elif action.action is SyncAction.PRUNE:
            stats["prunes"] += 1

    def _categorize_actions(self, actions: list[PlannedAction]) -> dict:
        stats = self._create_empty_stats()
        for action in actions:
            self._count(stats, action)
        return stats

    def _execute_actions(self, plan: list[PlannedAction], registry: Registry) -> dict:
        """Execute planned actions and commit successful ones to the registry.

        Actions touch disjoint keys, so they may run in parallel. Registry
        commits always happen on the calling thread, after the action for
        that key has completed.
        """
        stats = self._create_empty_stats()
        io_actions = [a for a in plan if a.requires_io]

        for action in plan:
            if not action.requires_io:
                self._commit(registry, ActionResult(action=action, success=True))
                self._count(stats, action)

        if not io_actions:
            return stats

        with Progress(disable=self._progress_disabled) as progress:
            task = progress.add_task("Syncing files...", total=len(io_actions))

            if self.max_workers > 1 and len(io_actions) > 1:
                logger.debug(
                    f"Executing {len(io_actions)} actions "
                    f"with {self.max_workers} workers"
                )
                with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                    futures = [
                        executor.submit(self.operations.execute, action)
                        for action in io_actions
                    ]
                    for future in as_completed(futures):
                        self._record_result(registry, stats, future.result())
                        progress.update(task, advance=1)
            else:
                for action in io_actions:
                    self._record_result(
                        registry, stats, self.operations.execute(action)
                    )
                    progress.update(task, advance=1)

        return stats

    def _record_result(
        self, registry: Registry, stats: dict, result: ActionResult
    ) -> None:
        if result.success:
            self._commit(registry, result)
            self._count(stats, result.action)
        else:
            stats["failed"] += 1
            if not self.output.quiet:
                self.output.error(
                    f"Failed to sync {result.action.key} "
                    f"({result.action.direction}): {result.error}"
                )

    def _commit(self, registry: Registry, result: ActionResult) -> None:
        """Advance the registry for a successfully applied action."""
        action = result.action
        if action.action is SyncAction.PRUNE:
            registry.remove(action.key)
            return

        assert action.record is not None
        record = action.record
        if action.action is SyncAction.TRANSFER and result.entry is not None:
            # Remember the destination as it was actually written
            assert action.source is not None
            winner = record.side(action.source)
            record = record.with_side(
                action.source.other,
                ReplicaFileState.observed(result.entry, winner.content_hash),
            )
        registry.set(action.key, record)

    def _display_sync_plan(
        self,
        stats: dict,
        actions: list[PlannedAction],
        dry_run: bool,
    ) -> None:
        """Display sync plan to user.

        Args:
            stats: Statistics dictionary
            actions: List of planned actions
            dry_run: Whether this is a dry run
        """
        if self.output.quiet:
            return

        self.output.info("Sync plan (dry run):" if dry_run else "Sync plan:")
        if stats["uploads"] > 0:
            self.output.info(f"  ↑ Upload: {stats['uploads']} file(s)")
        if stats["downloads"] > 0:
            self.output.info(f"  ↓ Download: {stats['downloads']} file(s)")
        if stats["deletes_local"] > 0:
            self.output.info(f"  ✗ Delete local: {stats['deletes_local']} file(s)")
        if stats["deletes_remote"] > 0:
            self.output.info(f"  ✗ Delete remote: {stats['deletes_remote']} file(s)")
        if stats["noops"] > 0:
            self.output.info(f"  = Unchanged: {stats['noops']} file(s)")
        if stats["prunes"] > 0:
            self.output.info(f"  - Pruned records: {stats['prunes']}")

        if dry_run:
            for action in actions:
                if action.requires_io:
                    self.output.info(f"    {action.describe()}: {action.reason}")

        self.output.print("")

    def _display_summary(self, stats: dict) -> None:
        """Display sync summary.

        Args:
            stats: Statistics dictionary
        """
        total_actions = (
            stats["uploads"]
            + stats["downloads"]
            + stats["deletes_local"]
            + stats["deletes_remote"]
        )

        if total_actions > 0:
            self.output.success(f"Sync cycle complete: {total_actions} action(s)")
            if stats["uploads"] > 0:
                self.output.info(f"  Uploaded: {stats['uploads']}")
            if stats["downloads"] > 0:
                self.output.info(f"  Downloaded: {stats['downloads']}")
            if stats["deletes_local"] > 0:
                self.output.info(f"  Deleted locally: {stats['deletes_local']}")
            if stats["deletes_remote"] > 0:
                self.output.info(f"  Deleted remotely: {stats['deletes_remote']}")
        else:
            self.output.info("No changes needed - everything is in sync!")

        if stats["failed"] > 0:
            self.output.warning(
                f"{stats['failed']} action(s) failed and will be retried next cycle"
            )
