from __future__ import annotations

import json
import sqlite3
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Protocol

from quell.clock import Clock, SystemClock
from quell.models import OccurrenceStats


class ExpiringStore(Protocol):
    """Key-value store whose entries vanish once their TTL has elapsed."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any, ttl: timedelta) -> None: ...

    def has(self, key: str) -> bool: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local expiring store."""

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or SystemClock()
        self._data: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def _now(self) -> float:
        return self.clock.now().timestamp()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return default
            value, expires_at = entry
            if self._now() >= expires_at:
                del self._data[key]
                return default
            return value

    def set(self, key: str, value: Any, ttl: timedelta) -> None:
        with self._lock:
            self._data[key] = (value, self._now() + ttl.total_seconds())

    def has(self, key: str) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def flush(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        now = self._now()
        with self._lock:
            return sum(1 for _, expires_at in self._data.values() if expires_at > now)


class SQLiteStore:
    """Expiring store persisted in SQLite, shared by processes on one host."""

    def __init__(self, db_path: str = "quell.db", clock: Clock | None = None):
        self.db_path = db_path
        self.clock = clock or SystemClock()
        self._ensure_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_db(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS quell_cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_quell_cache_expires ON quell_cache(expires_at)"
            )

    def _now(self) -> float:
        return self.clock.now().timestamp()

    def get(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM quell_cache WHERE key = ? AND expires_at > ?",
                (key, self._now()),
            ).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def set(self, key: str, value: Any, ttl: timedelta) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO quell_cache (key, value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at
                """,
                (key, json.dumps(value), self._now() + ttl.total_seconds()),
            )

    def has(self, key: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM quell_cache WHERE key = ? AND expires_at > ?",
                (key, self._now()),
            ).fetchone()
        return row is not None

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM quell_cache WHERE key = ?", (key,))

    def keys(self, prefix: str = "") -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM quell_cache WHERE key LIKE ? ESCAPE '\\' AND expires_at > ? ORDER BY key",
                (_like_prefix(prefix), self._now()),
            ).fetchall()
        return [row["key"] for row in rows]

    def purge_expired(self) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM quell_cache WHERE expires_at <= ?", (self._now(),))
            return int(cur.rowcount)

    def flush(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM quell_cache")


def _like_prefix(prefix: str) -> str:
    escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped + "%"


class StateStore:
    """Typed access to the per-identity and global records."""

    def __init__(self, store: ExpiringStore, namespace: str = "quell"):
        self.store = store
        self.namespace = namespace

    def throttle_key(self, identity: str) -> str:
        return f"{self.namespace}:throttle:{identity}"

    def users_key(self, identity: str) -> str:
        return f"{self.namespace}:users:{identity}"

    def stats_key(self, identity: str) -> str:
        return f"{self.namespace}:stats:{identity}"

    @property
    def global_key(self) -> str:
        return f"{self.namespace}:global:tracked_errors"

    def has_marker(self, identity: str) -> bool:
        return self.store.has(self.throttle_key(identity))

    def set_marker(self, identity: str, ttl: timedelta) -> None:
        self.store.set(self.throttle_key(identity), True, ttl)

    def get_users(self, identity: str) -> list:
        return list(self.store.get(self.users_key(identity)) or [])

    def put_users(self, identity: str, users: list, ttl: timedelta) -> None:
        self.store.set(self.users_key(identity), list(users), ttl)

    def get_stats(self, identity: str) -> OccurrenceStats:
        raw = self.store.get(self.stats_key(identity))
        if not raw:
            return OccurrenceStats()
        return OccurrenceStats.model_validate(raw)

    def put_stats(self, identity: str, stats: OccurrenceStats, ttl: timedelta) -> None:
        self.store.set(self.stats_key(identity), stats.model_dump(), ttl)

    def get_tracked(self) -> dict[str, float]:
        return dict(self.store.get(self.global_key) or {})

    def put_tracked(self, tracked: dict[str, float], ttl: timedelta) -> None:
        self.store.set(self.global_key, dict(tracked), ttl)

    def clear(self, identity: str) -> None:
        self.store.delete(self.users_key(identity))
        self.store.delete(self.stats_key(identity))
