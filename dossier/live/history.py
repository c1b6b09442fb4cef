"""
Bounded per-field observation history.

A HistorySet maps field key -> tuple of Observations ordered by timestamp.
Histories are immutable values: every update returns a new HistorySet and
never mutates the one it was given, so a published snapshot can be read
while the next one is being built.

Invariants after every append:
- length <= max_points (oldest dropped first)
- every point has timestamp >= now - max_age at the time of the update
Duplicate timestamps are allowed.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

MAX_POINTS = 400
MAX_AGE_DAYS = 30
DAY_MS = 24 * 60 * 60 * 1000
MAX_AGE_MS = MAX_AGE_DAYS * DAY_MS


@dataclass(frozen=True)
class Observation:
    timestamp: int  # ms since epoch
    value: float


FieldHistory = Tuple[Observation, ...]
HistorySet = Dict[str, FieldHistory]


def prune(points: Iterable[Observation], now_ts: int, max_age_ms: int = MAX_AGE_MS) -> FieldHistory:
    """Drop every point older than ``now_ts - max_age_ms``."""
    cutoff = now_ts - max_age_ms
    return tuple(p for p in points if p.timestamp >= cutoff)


def append_point(
    points: Iterable[Observation],
    value: Optional[float],
    now_ts: int,
    max_points: int = MAX_POINTS,
    max_age_ms: int = MAX_AGE_MS,
) -> FieldHistory:
    """Prune, append ``value`` at ``now_ts`` (when present), then cap."""
    kept = prune(points, now_ts, max_age_ms)
    if value is None:
        return kept
    kept = kept + (Observation(timestamp=now_ts, value=float(value)),)
    return kept[-max_points:]


def append(
    history: Mapping[str, FieldHistory],
    field_key: str,
    value: Optional[float],
    now_ts: int,
    max_points: int = MAX_POINTS,
    max_age_ms: int = MAX_AGE_MS,
) -> HistorySet:
    """Append one observation to one field and return the new HistorySet."""
    updated = dict(history)
    existing = history.get(field_key)
    if existing is None and value is None:
        return updated
    updated[field_key] = append_point(existing or (), value, now_ts, max_points, max_age_ms)
    return updated


def append_batch(
    history: Mapping[str, FieldHistory],
    values: Mapping[str, Optional[float]],
    now_ts: int,
    max_points: int = MAX_POINTS,
    max_age_ms: int = MAX_AGE_MS,
) -> HistorySet:
    """Apply one refresh cycle's observations to every field at once.

    Every existing field is pruned against ``now_ts`` even when it has no
    new value this cycle. Fields seen for the first time are created only
    when they carry a value.
    """
    updated: HistorySet = {}
    for key in set(history) | set(values):
        value = values.get(key)
        existing = history.get(key)
        if existing is None and value is None:
            continue
        updated[key] = append_point(existing or (), value, now_ts, max_points, max_age_ms)
    return updated


def last_point(points: FieldHistory) -> Optional[Observation]:
    return points[-1] if points else None


def last_value(points: FieldHistory) -> Optional[float]:
    """Value of the most recent point, or None if empty."""
    point = last_point(points)
    return point.value if point is not None else None


def values_of(points: FieldHistory) -> List[float]:
    return [p.value for p in points]
