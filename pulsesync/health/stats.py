"""Read-side summaries over an endpoint's retained history."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .engine import HealthState, HistoryEntry, latency_state

_SEVERITY = {HealthState.OPERATIONAL: 0, HealthState.SLOW: 1, HealthState.DOWN: 2}


def utc_date(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def worst_state(states: list[HealthState]) -> HealthState:
    """DOWN beats SLOW beats OPERATIONAL; an empty list is UNKNOWN."""
    if not states:
        return HealthState.UNKNOWN
    return max(states, key=lambda s: _SEVERITY.get(s, -1))


def daily_rollup(entries: list[HistoryEntry]) -> list[dict[str, Any]]:
    """Group entries by UTC date, oldest day first. Days without entries are omitted."""
    days: dict[str, list[HistoryEntry]] = {}
    for e in entries:
        days.setdefault(utc_date(e.timestamp_ms), []).append(e)

    rollup = []
    for date in sorted(days):
        day = days[date]
        rollup.append({
            "date": date,
            "status": worst_state([e.status for e in day]).value,
            "avgResponseTime": round(sum(e.response_time_ms for e in day) / len(day)),
            "samples": len(day),
        })
    return rollup


def summarize(entries: list[HistoryEntry]) -> dict[str, Any]:
    """Uptime, latency and state distribution for a history window.

    Uptime counts SLOW as up; an empty window reports 100% uptime and 0% for
    every state.
    """
    total = len(entries)
    if total == 0:
        return {
            "samples": 0,
            "avgResponseTime": 0,
            "uptime": 100.0,
            "distribution": {s.value: 0.0 for s in _SEVERITY},
            "latencyState": HealthState.UNKNOWN.value,
            "days": [],
        }

    counts = {s: 0 for s in _SEVERITY}
    for e in entries:
        counts[e.status] = counts.get(e.status, 0) + 1

    up = total - counts[HealthState.DOWN]
    avg = sum(e.response_time_ms for e in entries) / total
    return {
        "samples": total,
        "avgResponseTime": round(avg),
        "uptime": round(up / total * 100, 1),
        "distribution": {s.value: round(n / total * 100, 1) for s, n in counts.items()},
        "latencyState": latency_state(avg).value,
        "days": daily_rollup(entries),
    }
