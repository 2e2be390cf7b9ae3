"""
tracker.py — vote tracking facade plus the background expiry sweep.
"""

import asyncio
import logging
from typing import Optional

from .storage import VoteStorage

log = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_HOURS = 6
DEFAULT_VOTE_EXPIRY_HOURS = 24


class VoteTracker:
    """Thin wrapper so callers depend on one object, not a backend."""

    def __init__(self, storage: VoteStorage) -> None:
        self.storage = storage

    def record_vote(self, username: str, timestamp: Optional[int] = None) -> None:
        self.storage.record_vote(username, timestamp)

    def has_voted_recently(self, username: str, ttl_hours: int) -> bool:
        return self.storage.has_voted_recently(username, ttl_hours)

    def get_last_vote_timestamp(self, username: str) -> Optional[int]:
        return self.storage.get_last_vote_timestamp(username)

    def cleanup_expired_votes(self, ttl_hours: int) -> int:
        return self.storage.cleanup_expired_votes(ttl_hours)

    @property
    def storage_type(self) -> str:
        return self.storage.storage_type

    def close(self) -> None:
        self.storage.shutdown()


class CleanupScheduler:
    """
    Runs the expiry sweep once right away (servers that restart often would
    otherwise never reach the first tick), then every interval.

    Each sweep runs in a worker thread so a slow DELETE never stalls vote
    ingestion on the event loop. A failed sweep is logged and the next tick
    simply tries again.
    """

    def __init__(
        self,
        tracker: VoteTracker,
        ttl_hours: int = DEFAULT_VOTE_EXPIRY_HOURS,
        interval_hours: float = DEFAULT_CLEANUP_INTERVAL_HOURS,
    ) -> None:
        self.tracker = tracker
        self.ttl_hours = ttl_hours
        self.interval_seconds = float(interval_hours) * 3600.0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="vote-cleanup")
        log.info(
            "Scheduled vote storage cleanup every %g hours (also running on startup)",
            self.interval_seconds / 3600.0,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self) -> int:
        """One sweep. Returns the number removed, 0 if the sweep failed."""
        try:
            removed = await asyncio.to_thread(self.tracker.cleanup_expired_votes, self.ttl_hours)
        except Exception as exc:
            log.warning("Error during vote storage cleanup: %s", exc)
            return 0
        if removed > 0:
            log.info(
                "Vote storage cleanup: removed %d expired record(s) older than %d hours",
                removed, self.ttl_hours,
            )
        return removed

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
