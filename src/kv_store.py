"""
Shared expiring key/value stores used by the cross-process semaphore.

Expiry is applied by the store itself: readers never see an expired key.
"""

import os
import sqlite3
import threading
import time
from contextlib import closing
from typing import Dict, Optional, Protocol, Tuple


class KeyValueStore(Protocol):
    """Minimal contract the semaphore needs. No compare-and-set assumed."""

    def exists(self, key: str) -> bool: ...

    def set_with_expiry(self, key: str, value: str, ttl_seconds: float) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """
    Process-local store for threads sharing one interpreter.

    Deadlines use the monotonic clock so wall-clock jumps do not
    resurrect or kill entries.
    """

    def __init__(self):
        self._data: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if time.monotonic() >= deadline:
            self._data.pop(key, None)
            return None
        return value

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    def set_with_expiry(self, key: str, value: str, ttl_seconds: float) -> None:
        with self._lock:
            self._data[key] = (value, time.monotonic() + ttl_seconds)

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, time.monotonic() + ttl_seconds)
            return True

    def delete_if_equals(self, key: str, value: str) -> bool:
        with self._lock:
            if self._live(key) != value:
                return False
            del self._data[key]
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SQLiteKeyValueStore:
    """
    Host-wide store backed by a SQLite file.

    Any process that opens the same path shares the keys. Rows carry an
    absolute UNIX expiry; reads filter expired rows, writes purge them.
    """

    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        parent = os.path.dirname(self.db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _init_db(self) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL NOT NULL
                )
                """
            )

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[str]:
        with closing(self._connect()) as conn, conn:
            cur = conn.execute(
                "SELECT value FROM kv WHERE key = ? AND expires_at > ?",
                (key, time.time()),
            )
            row = cur.fetchone()
            return None if row is None else row[0]

    def set_with_expiry(self, key: str, value: str, ttl_seconds: float) -> None:
        now = time.time()
        with closing(self._connect()) as conn, conn:
            conn.execute("DELETE FROM kv WHERE expires_at <= ?", (now,))
            conn.execute(
                "INSERT OR REPLACE INTO kv(key, value, expires_at) VALUES(?, ?, ?)",
                (key, value, now + ttl_seconds),
            )

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        """Atomically claim ``key``. Returns False if a live value exists."""
        now = time.time()
        with closing(self._connect()) as conn, conn:
            # the DELETE opens the write transaction, so both statements
            # run under one reserved lock
            conn.execute("DELETE FROM kv WHERE expires_at <= ?", (now,))
            cur = conn.execute(
                "INSERT OR IGNORE INTO kv(key, value, expires_at) VALUES(?, ?, ?)",
                (key, value, now + ttl_seconds),
            )
            return cur.rowcount == 1

    def delete_if_equals(self, key: str, value: str) -> bool:
        """Atomically drop ``key`` only while it still holds ``value``."""
        with closing(self._connect()) as conn, conn:
            cur = conn.execute(
                "DELETE FROM kv WHERE key = ? AND value = ? AND expires_at > ?",
                (key, value, time.time()),
            )
            return cur.rowcount == 1

    def delete(self, key: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
