'''
Key-value store with per-key TTL.

Token cache, rate-limit counters and selection records all live here.
SQLiteStore is the default so several worker processes share state;
MemoryStore is for single-process runs and tests.
'''

import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

Clock = Callable[[], float]


class KeyValueStore(Protocol):
    '''Anything with string keys, JSON values and a TTL per entry.'''

    clock: Clock

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl: float) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class SQLiteStore:
    '''Disk-based TTL store using SQLite.'''

    def __init__(self, db_path: str = "travel_cache.db", clock: Clock = time.time):
        '''
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            clock: Returns the current time as epoch seconds
        '''
        self.db_path = Path(db_path)
        self.clock = clock
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        '''Initialize the database schema.'''
        with sqlite3.connect(self.db_path) as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL NOT NULL,
                    created_at REAL NOT NULL
                )
            ''')
            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_kv_expires_at
                ON kv_store(expires_at)
            ''')
            conn.commit()

    def get(self, key: str) -> Optional[Any]:
        '''
        Get a value if it exists and is not expired.

        Returns:
            Stored data or None if not found/expired
        '''
        with self._lock, sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                'SELECT value, expires_at FROM kv_store WHERE key = ?',
                (key,)
            ).fetchone()

            if row is None:
                return None

            value_json, expires_at = row
            if self.clock() >= expires_at:
                conn.execute('DELETE FROM kv_store WHERE key = ?', (key,))
                conn.commit()
                return None

            return json.loads(value_json)

    def set(self, key: str, value: Any, ttl: float):
        '''
        Store a value, replacing any previous entry under the same key.

        Args:
            key: Entry key
            value: JSON-serializable data
            ttl: Seconds until the entry expires
        '''
        value_json = json.dumps(value)
        created_at = self.clock()
        expires_at = created_at + ttl

        with self._lock, sqlite3.connect(self.db_path) as conn:
            conn.execute('''
                INSERT OR REPLACE INTO kv_store (key, value, expires_at, created_at)
                VALUES (?, ?, ?, ?)
            ''', (key, value_json, expires_at, created_at))
            conn.commit()

    def delete(self, key: str):
        with self._lock, sqlite3.connect(self.db_path) as conn:
            conn.execute('DELETE FROM kv_store WHERE key = ?', (key,))
            conn.commit()

    def clear_expired(self) -> int:
        '''Remove all expired entries. Returns the number removed.'''
        with self._lock, sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                'DELETE FROM kv_store WHERE expires_at <= ?',
                (self.clock(),)
            )
            deleted = cursor.rowcount
            conn.commit()

        return deleted

    def get_stats(self) -> dict:
        '''Get store statistics.'''
        with self._lock, sqlite3.connect(self.db_path) as conn:
            total = conn.execute('SELECT COUNT(*) FROM kv_store').fetchone()[0]
            expired = conn.execute(
                'SELECT COUNT(*) FROM kv_store WHERE expires_at <= ?',
                (self.clock(),)
            ).fetchone()[0]

            return {
                'total_entries': total,
                'expired_entries': expired,
                'valid_entries': total - expired
            }


class MemoryStore:
    '''In-process TTL store. Expired entries are swept on write.'''

    def __init__(self, clock: Clock = time.time):
        self.clock = clock
        self._data: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self.clock() >= expires_at:
                del self._data[key]
                return None
            # Callers get a copy, same as a round trip through SQLite.
            return json.loads(json.dumps(value))

    def set(self, key: str, value: Any, ttl: float):
        with self._lock:
            self._sweep_locked()
            self._data[key] = (json.loads(json.dumps(value)), self.clock() + ttl)

    def delete(self, key: str):
        with self._lock:
            self._data.pop(key, None)

    def sweep(self) -> int:
        '''Drop expired entries. Returns the number removed.'''
        with self._lock:
            return self._sweep_locked()

    def _sweep_locked(self) -> int:
        now = self.clock()
        expired = [k for k, (_, exp) in self._data.items() if now >= exp]
        for k in expired:
            del self._data[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._data)
