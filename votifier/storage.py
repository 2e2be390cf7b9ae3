"""
storage.py — where "when did this player last vote?" lives.

Two interchangeable backends behind `VoteStorage`:
- InMemoryVoteStorage: a dict behind a lock. Gone on restart.
- SQLiteVoteStorage: one table, username primary key, upsert on conflict,
  index on the timestamp so the expiry sweep doesn't scan everything.

Usernames are lowercased on the way in; one row per player, last write
wins. Both backends lock internally, so callers never have to.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from .errors import StorageError
from .vote import now_ms

log = logging.getLogger(__name__)

MS_PER_HOUR = 60 * 60 * 1000


def hours_to_ms(hours: int) -> int:
    return int(hours) * MS_PER_HOUR


class VoteStorage(ABC):
    """Per-username last-vote timestamps (epoch ms)."""

    storage_type = "abstract"

    def record_vote(self, username: str, timestamp: Optional[int] = None) -> None:
        """Upsert the user's last vote; timestamp defaults to now."""
        self._record(username.lower(), now_ms() if timestamp is None else int(timestamp))

    def get_last_vote_timestamp(self, username: str) -> Optional[int]:
        return self._lookup(username.lower())

    def has_voted_recently(self, username: str, ttl_hours: int) -> bool:
        """True iff a vote exists and is younger than ttl_hours."""
        last = self.get_last_vote_timestamp(username)
        if last is None:
            return False
        return (now_ms() - last) < hours_to_ms(ttl_hours)

    def cleanup_expired_votes(self, ttl_hours: int) -> int:
        """
        Drop entries strictly older than ttl_hours (now - ts > ttl).
        Returns how many were removed.
        """
        return self._delete_older_than(now_ms() - hours_to_ms(ttl_hours))

    def initialize(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    @abstractmethod
    def _record(self, key: str, timestamp: int) -> None: ...

    @abstractmethod
    def _lookup(self, key: str) -> Optional[int]: ...

    @abstractmethod
    def _delete_older_than(self, cutoff: int) -> int:
        """Remove entries with timestamp < cutoff."""


class InMemoryVoteStorage(VoteStorage):
    storage_type = "memory"

    def __init__(self) -> None:
        self._votes: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _record(self, key: str, timestamp: int) -> None:
        with self._lock:
            self._votes[key] = timestamp

    def _lookup(self, key: str) -> Optional[int]:
        with self._lock:
            return self._votes.get(key)

    def _delete_older_than(self, cutoff: int) -> int:
        with self._lock:
            expired = [k for k, ts in self._votes.items() if ts < cutoff]
            for k in expired:
                del self._votes[k]
        return len(expired)

    def shutdown(self) -> None:
        with self._lock:
            self._votes.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._votes)


class SQLiteVoteStorage(VoteStorage):
    """
    SQLite-backed storage. One connection for the process lifetime, opened
    in initialize() and closed in shutdown(). Runtime query failures are
    logged and degrade to "no record" rather than failing a vote.
    """

    storage_type = "sqlite"

    TABLE_NAME = "player_votes"
    CREATE_TABLE_SQL = f"""
        CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
            username TEXT PRIMARY KEY NOT NULL,
            last_vote_timestamp INTEGER NOT NULL
        )
    """
    CREATE_INDEX_SQL = f"CREATE INDEX IF NOT EXISTS idx_last_vote ON {TABLE_NAME} (last_vote_timestamp)"
    UPSERT_SQL = f"""
        INSERT INTO {TABLE_NAME} (username, last_vote_timestamp) VALUES (?, ?)
        ON CONFLICT(username) DO UPDATE SET last_vote_timestamp = excluded.last_vote_timestamp
    """
    SELECT_SQL = f"SELECT last_vote_timestamp FROM {TABLE_NAME} WHERE username = ?"
    DELETE_EXPIRED_SQL = f"DELETE FROM {TABLE_NAME} WHERE last_vote_timestamp < ?"

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """
        Open the database (creating file and parent dir as needed).

        Raises:
            StorageError: directory or database could not be created/opened.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to create database directory: {exc}") from exc

        try:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(self.CREATE_TABLE_SQL)
            conn.execute(self.CREATE_INDEX_SQL)
            conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to initialize SQLite database: {exc}") from exc

        with self._lock:
            self._conn = conn
        log.info("SQLite vote storage initialized at %s", self.db_path)

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def _record(self, key: str, timestamp: int) -> None:
        with self._lock:
            if self._conn is None:
                log.warning("Cannot record vote: SQLite storage not initialized")
                return
            try:
                with self._conn:
                    self._conn.execute(self.UPSERT_SQL, (key, timestamp))
            except sqlite3.Error as exc:
                log.warning("Failed to record vote for %s: %s", key, exc)

    def _lookup(self, key: str) -> Optional[int]:
        with self._lock:
            if self._conn is None:
                return None
            try:
                row = self._conn.execute(self.SELECT_SQL, (key,)).fetchone()
            except sqlite3.Error as exc:
                log.warning("Failed to get last vote for %s: %s", key, exc)
                return None
        return int(row[0]) if row else None

    def _delete_older_than(self, cutoff: int) -> int:
        with self._lock:
            if self._conn is None:
                return 0
            try:
                with self._conn:
                    cur = self._conn.execute(self.DELETE_EXPIRED_SQL, (cutoff,))
                return cur.rowcount
            except sqlite3.Error as exc:
                log.warning("Failed to cleanup expired votes: %s", exc)
                return 0

    def shutdown(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
                log.info("SQLite vote storage closed")
            except sqlite3.Error as exc:
                log.warning("Failed to close SQLite connection: %s", exc)
            self._conn = None


def create_storage(config, data_dir: Union[str, Path]) -> VoteStorage:
    """
    Build and initialise the backend named by a VoteStorageConfig.

    Raises:
        StorageError: unknown type, or the backend failed to initialise.
    """
    storage_type = (config.type or "sqlite").lower()

    if storage_type == "memory":
        storage: VoteStorage = InMemoryVoteStorage()
    elif storage_type == "sqlite":
        storage = SQLiteVoteStorage(Path(data_dir) / (config.file_path or "votes.db"))
    else:
        raise StorageError(f"Unknown storage type: {storage_type}. Supported types: memory, sqlite")

    storage.initialize()
    return storage
