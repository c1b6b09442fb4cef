"""Series compaction and series-based percentage change."""

from typing import Any, Iterable, List, Optional

from .coercion import coerce

DISPLAY_POINTS = 48
INTERNAL_POINTS = 500


def compact(raw_series: Optional[Iterable[Any]], max_len: int = DISPLAY_POINTS) -> List[float]:
    """Coerce every element, drop absents, keep the most recent ``max_len``.

    Idempotent: compact(compact(s, n), n) == compact(s, n).
    """
    if raw_series is None or max_len <= 0:
        return []
    values = [v for v in (coerce(x) for x in raw_series) if v is not None]
    return values[-max_len:]


def change_from_series(series: Optional[Iterable[Any]], steps_back: int) -> Optional[float]:
    """Percentage change between the last point and the one ``steps_back`` earlier.

    The base index is clamped to the first point when the series is shorter
    than ``steps_back``. None when fewer than 2 points or the base is zero.
    """
    values = compact(series, max_len=INTERNAL_POINTS)
    if len(values) < 2:
        return None
    base_index = max(0, len(values) - 1 - max(steps_back, 1))
    base = values[base_index]
    if base == 0:
        return None
    return (values[-1] - base) / base * 100


def mean(values: Iterable[float]) -> Optional[float]:
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)
