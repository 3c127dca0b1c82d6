"""History storage: hour-bucketed time series on top of a key-value store.

Layout, two keys per endpoint:
  history:{id}  JSON array of entries, ascending by timestamp, one per UTC hour
  latest:{id}   JSON object, the most recent probe (overwritten every cycle)

The KV collaborator only has to offer atomic get/put per key. Writes to one
endpoint's history are serialized in-process by a per-endpoint lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .engine import HistoryEntry

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_RETENTION_MS = 30 * DAY_MS


class StorageUnavailable(Exception):
    """Raised when the backing key-value store cannot be read or written."""


class CorruptRecord(StorageUnavailable):
    """Raised when a stored value cannot be decoded."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(f"Corrupt value at {key}: {reason}")


def history_key(endpoint_id: str) -> str:
    return f"history:{endpoint_id}"


def latest_key(endpoint_id: str) -> str:
    return f"latest:{endpoint_id}"


# ── KV collaborators ─────────────────────────────────────────────────────────


class KVStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str) -> None: ...

    def close(self) -> None: ...


class MemoryKVStore:
    """In-process dict store. Values are replaced wholesale, so puts are atomic."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(data or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def put(self, key: str, value: str) -> None:
        self.data[key] = value

    def close(self) -> None:
        pass


class SQLiteKVStore:
    """SQLite-backed KV table. Blocking calls run in a worker thread."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def _init_db(self) -> None:
        try:
            with self._lock:
                conn = self._get_conn()
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS kv (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open {self._db_path}: {e}") from e

    def _get_sync(self, key: str) -> str | None:
        with self._lock:
            row = self._get_conn().execute(
                "SELECT value FROM kv WHERE key = ?", (key,),
            ).fetchone()
        return row[0] if row else None

    def _put_sync(self, key: str, value: str) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(
                "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            conn.commit()

    async def get(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"get {key}: {e}") from e

    async def put(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._put_sync, key, value)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"put {key}: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


# ── History store ────────────────────────────────────────────────────────────


class HistoryStore:
    """Owns the per-endpoint history sequence and latest snapshot."""

    def __init__(self, kv: KVStore, endpoint_ids: Iterable[str]) -> None:
        self.kv = kv
        self.endpoint_ids = tuple(endpoint_ids)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, endpoint_id: str) -> asyncio.Lock:
        lock = self._locks.get(endpoint_id)
        if lock is None:
            lock = self._locks[endpoint_id] = asyncio.Lock()
        return lock

    async def _read_entry(self, key: str) -> HistoryEntry | None:
        raw = await self.kv.get(key)
        if raw is None:
            return None
        try:
            return HistoryEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise CorruptRecord(key, str(e)) from e

    async def _read_history(self, endpoint_id: str) -> list[HistoryEntry]:
        key = history_key(endpoint_id)
        raw = await self.kv.get(key)
        if raw is None:
            return []
        try:
            items = json.loads(raw)
            entries = [HistoryEntry.from_dict(item) for item in items]
        except (ValueError, KeyError, TypeError) as e:
            raise CorruptRecord(key, str(e)) from e
        entries.sort(key=lambda e: e.timestamp_ms)
        return entries

    async def _write_history(self, endpoint_id: str, entries: list[HistoryEntry]) -> None:
        ordered = sorted(entries, key=lambda e: e.timestamp_ms)
        await self.kv.put(history_key(endpoint_id), json.dumps([e.to_dict() for e in ordered]))

    # Writes

    async def append_if_absent(self, endpoint_id: str, entry: HistoryEntry) -> bool:
        """Append ``entry`` unless its hour bucket is already taken. Returns True if written."""
        async with self._lock_for(endpoint_id):
            history = await self._read_history(endpoint_id)
            bucket = entry.hour_bucket
            if any(h.hour_bucket == bucket for h in history):
                return False
            history.append(entry)
            await self._write_history(endpoint_id, history)
            return True

    async def set_latest(self, endpoint_id: str, entry: HistoryEntry) -> None:
        await self.kv.put(latest_key(endpoint_id), json.dumps(entry.to_dict()))

    async def purge(
        self, endpoint_id: str, retention_window_ms: int, now_ms: int,
    ) -> int:
        """Drop entries older than the retention window. Returns the number removed."""
        cutoff = now_ms - retention_window_ms
        async with self._lock_for(endpoint_id):
            history = await self._read_history(endpoint_id)
            kept = [e for e in history if e.timestamp_ms >= cutoff]
            removed = len(history) - len(kept)
            if removed:
                await self._write_history(endpoint_id, kept)
        return removed

    async def reset_day(self, endpoint_id: str, now_ms: int) -> int:
        """Drop every entry that falls on the UTC calendar day of ``now_ms``."""
        day_start = now_ms - now_ms % DAY_MS
        day_end = day_start + DAY_MS
        async with self._lock_for(endpoint_id):
            history = await self._read_history(endpoint_id)
            kept = [e for e in history if not day_start <= e.timestamp_ms < day_end]
            removed = len(history) - len(kept)
            if removed:
                await self._write_history(endpoint_id, kept)
        return removed

    # Reads

    async def get_latest(self, endpoint_id: str) -> HistoryEntry | None:
        return await self._read_entry(latest_key(endpoint_id))

    async def get_latest_all(self) -> dict[str, HistoryEntry | None]:
        """Latest snapshot for every registered endpoint; never-probed ones map to None."""
        entries = await asyncio.gather(*(self.get_latest(i) for i in self.endpoint_ids))
        return dict(zip(self.endpoint_ids, entries))

    async def get_history(self, endpoint_id: str, since_ms: int = 0) -> list[HistoryEntry]:
        history = await self._read_history(endpoint_id)
        return [e for e in history if e.timestamp_ms >= since_ms]
