"""Tests for the periodic sync loop."""

import threading
from unittest.mock import Mock

import pytest

from bucketsync.exceptions import SyncCycleError
from bucketsync.sync import SyncEngine, SyncLoop


@pytest.fixture
def mock_engine():
    engine = Mock(spec=SyncEngine)
    engine.run_cycle.return_value = {"uploads": 0}
    return engine


class TestSyncLoop:
    """Tests for SyncLoop."""

    def test_run_max_cycles(self, mock_engine):
        loop = SyncLoop(mock_engine, interval=0.01)

        cycles = loop.run(max_cycles=3)

        assert cycles == 3
        assert mock_engine.run_cycle.call_count == 3
        assert loop.last_stats == {"uploads": 0}

    def test_stop_before_run(self, mock_engine):
        loop = SyncLoop(mock_engine, interval=0.01)
        loop.stop()

        assert loop.run() == 0
        mock_engine.run_cycle.assert_not_called()

    def test_stop_lets_current_cycle_finish(self, mock_engine):
        """Test a stop requested during a cycle ends the loop after it."""
        loop = SyncLoop(mock_engine, interval=60)

        def cycle():
            loop.stop()
            return {"uploads": 1}

        mock_engine.run_cycle.side_effect = cycle

        assert loop.run() == 1
        assert loop.stopped
        assert loop.last_stats == {"uploads": 1}

    def test_stop_interrupts_wait(self, mock_engine):
        loop = SyncLoop(mock_engine, interval=60)
        thread = threading.Thread(target=loop.run)
        thread.start()

        loop.stop()
        thread.join(timeout=5)

        assert not thread.is_alive()

    def test_failed_cycle_does_not_stop_loop(self, mock_engine):
        mock_engine.run_cycle.side_effect = [
            SyncCycleError("bucket unreachable"),
            RuntimeError("unexpected"),
            {"uploads": 2},
        ]
        loop = SyncLoop(mock_engine, interval=0.001, max_backoff=0.01)

        assert loop.run(max_cycles=3) == 3
        assert loop.consecutive_failures == 0
        assert loop.last_stats == {"uploads": 2}

    def test_run_once_counts_failures(self, mock_engine):
        mock_engine.run_cycle.side_effect = SyncCycleError("down")
        loop = SyncLoop(mock_engine, interval=1)

        assert loop.run_once() is None
        assert loop.run_once() is None
        assert loop.consecutive_failures == 2

    def test_backoff_grows_and_is_capped(self, mock_engine):
        loop = SyncLoop(mock_engine, interval=2, max_backoff=10)

        assert loop.next_delay() == 2
        loop.consecutive_failures = 1
        assert loop.next_delay() == 4
        loop.consecutive_failures = 2
        assert loop.next_delay() == 8
        loop.consecutive_failures = 5
        assert loop.next_delay() == 10

    def test_backoff_resets_on_success(self, mock_engine):
        mock_engine.run_cycle.side_effect = [SyncCycleError("down"), {"uploads": 0}]
        loop = SyncLoop(mock_engine, interval=2)

        loop.run_once()
        assert loop.next_delay() == 4
        loop.run_once()
        assert loop.next_delay() == 2

    def test_max_backoff_never_below_interval(self, mock_engine):
        loop = SyncLoop(mock_engine, interval=30, max_backoff=5)
        loop.consecutive_failures = 3
        assert loop.next_delay() == 30
