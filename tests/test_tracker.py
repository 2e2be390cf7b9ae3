"""
Vote tracker and cleanup scheduler tests
"""

import asyncio

import pytest

from votifier.storage import MS_PER_HOUR, InMemoryVoteStorage
from votifier.tracker import CleanupScheduler, VoteTracker
from votifier.vote import now_ms


class TestVoteTracker:
    """Facade passes through to the backend."""

    def test_passthrough(self, tracker):
        tracker.record_vote("Steve", now_ms())
        assert tracker.has_voted_recently("steve", 24)
        assert tracker.storage_type == "memory"
        tracker.close()
        assert tracker.get_last_vote_timestamp("steve") is None


class TestCleanupScheduler:
    """Background expiry sweep."""

    @pytest.mark.asyncio
    async def test_sweeps_immediately_on_start(self):
        tracker = VoteTracker(InMemoryVoteStorage())
        tracker.record_vote("stale", now_ms() - 48 * MS_PER_HOUR)
        tracker.record_vote("fresh", now_ms())

        scheduler = CleanupScheduler(tracker, ttl_hours=24, interval_hours=6)
        scheduler.start()
        try:
            for _ in range(100):
                if tracker.get_last_vote_timestamp("stale") is None:
                    break
                await asyncio.sleep(0.01)
        finally:
            await scheduler.stop()

        assert tracker.get_last_vote_timestamp("stale") is None
        assert tracker.get_last_vote_timestamp("fresh") is not None
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_run_once_counts(self):
        tracker = VoteTracker(InMemoryVoteStorage())
        tracker.record_vote("a", now_ms() - 30 * MS_PER_HOUR)
        tracker.record_vote("b", now_ms() - 30 * MS_PER_HOUR)
        scheduler = CleanupScheduler(tracker, ttl_hours=24)

        assert await scheduler.run_once() == 2
        assert await scheduler.run_once() == 0

    @pytest.mark.asyncio
    async def test_failed_sweep_is_not_fatal(self):
        class BrokenTracker:
            calls = 0

            def cleanup_expired_votes(self, ttl_hours):
                BrokenTracker.calls += 1
                raise RuntimeError("database is locked")

        scheduler = CleanupScheduler(BrokenTracker(), ttl_hours=24, interval_hours=0.00001)
        scheduler.start()
        try:
            for _ in range(100):
                if BrokenTracker.calls >= 2:
                    break
                await asyncio.sleep(0.01)
            assert scheduler.running
        finally:
            await scheduler.stop()

        assert BrokenTracker.calls >= 2

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        scheduler = CleanupScheduler(VoteTracker(InMemoryVoteStorage()))
        await scheduler.stop()
        assert not scheduler.running
