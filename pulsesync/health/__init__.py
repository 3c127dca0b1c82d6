"""Health subsystem: probe engine, history store, scheduler, queries."""

from .engine import (
    SLOW_THRESHOLD_MS,
    HealthState,
    HistoryEntry,
    Prober,
    ProbeResult,
    classify,
    floor_to_hour,
    normalize_status,
    parse_probe_body,
)
from .query import InvalidQuery, StatusQuery
from .scheduler import CycleReport, HealthScheduler, run_cycle
from .store import HistoryStore, MemoryKVStore, SQLiteKVStore, StorageUnavailable
