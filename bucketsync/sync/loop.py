"""Periodic driver that keeps a sync pair convergent."""

import logging
import threading
from typing import Optional

from ..exceptions import SyncCycleError
from ..utils import DEFAULT_MAX_BACKOFF, DEFAULT_SYNC_INTERVAL
from .engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncLoop:
    """Runs reconciliation cycles at a fixed interval until stopped.

    Only one cycle runs at a time. Cancellation is checked between cycles,
    never in the middle of one, so an action is never left half-applied
    without its registry update. After a failed cycle the wait grows
    exponentially up to ``max_backoff`` and is reset by the next success.

    Examples:
        >>> loop = SyncLoop(engine, interval=10)
        >>> signal.signal(signal.SIGTERM, lambda *_: loop.stop())
        >>> loop.run()
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval: float = DEFAULT_SYNC_INTERVAL,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
    ):
        """Initialize sync loop.

        Args:
            engine: Engine running the cycles
            interval: Seconds to wait between two cycles
            max_backoff: Maximum wait after consecutive failed cycles
        """
        self.engine = engine
        self.interval = interval
        self.max_backoff = max(max_backoff, interval)
        self.cycles_run = 0
        self.consecutive_failures = 0
        self.last_stats: Optional[dict] = None
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request the loop to stop after the current cycle."""
        if not self._stop_event.is_set():
            logger.info("Stop requested, finishing current cycle")
        self._stop_event.set()

    def next_delay(self) -> float:
        """Seconds to wait before the next cycle."""
        if self.consecutive_failures == 0:
            return self.interval
        return min(self.interval * 2**self.consecutive_failures, self.max_backoff)

    def run_once(self) -> Optional[dict]:
        """Run a single cycle, absorbing any failure.

        Returns:
            Cycle statistics, or None if the cycle failed
        """
        self.cycles_run += 1
        try:
            stats = self.engine.run_cycle()
        except SyncCycleError as e:
            self.consecutive_failures += 1
            logger.error(f"Sync cycle {self.cycles_run} failed: {e}")
            return None
        except Exception:
            # Nothing is fatal to the loop; retry next cycle
            self.consecutive_failures += 1
            logger.exception(f"Unexpected error in sync cycle {self.cycles_run}")
            return None

        self.consecutive_failures = 0
        self.last_stats = stats
        logger.debug(f"Sync cycle {self.cycles_run} finished: {stats}")
        return stats

    def run(self, max_cycles: Optional[int] = None) -> int:
        """Run cycles until stopped (or until max_cycles have run).

        Args:
            max_cycles: Optional limit on the number of cycles

        Returns:
            Number of cycles run
        """
        started = self.cycles_run
        logger.info(f"Starting sync loop (interval {self.interval:.1f}s)")

        while not self.stopped:
            self.run_once()
            if max_cycles is not None and self.cycles_run - started >= max_cycles:
                break
            delay = self.next_delay()
            if self.consecutive_failures:
                logger.info(f"Retrying in {delay:.1f}s")
            if self._stop_event.wait(delay):
                break

        logger.info(f"Sync loop stopped after {self.cycles_run - started} cycle(s)")
        return self.cycles_run - started
