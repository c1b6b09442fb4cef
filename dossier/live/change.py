"""Windowed percentage change over a field's timestamped history."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .history import FieldHistory

HOUR_MS = 60 * 60 * 1000
DEFAULT_LOOKBACK_MS = 24 * HOUR_MS


class ChangeMode(str, Enum):
    WINDOW = "WINDOW"            # base is the newest point at or before last - lookback
    SINCE_START = "SINCE_START"  # history does not span the lookback yet; base is the earliest point
    UNAVAILABLE = "UNAVAILABLE"


@dataclass(frozen=True)
class WindowedChange:
    pct: Optional[float]
    mode: ChangeMode


UNAVAILABLE = WindowedChange(pct=None, mode=ChangeMode.UNAVAILABLE)


def windowed_change(points: FieldHistory, lookback_ms: int = DEFAULT_LOOKBACK_MS) -> WindowedChange:
    """
    Percentage change between the latest point and the point closest to,
    but not after, ``latest.timestamp - lookback_ms``.

    When no point is old enough the earliest point is used instead and the
    result is tagged SINCE_START; callers must surface the mode so a
    since-tracking-began figure is not read as a full-window one.

    Args:
        points: History ordered ascending by timestamp
        lookback_ms: Window length in milliseconds

    Returns:
        WindowedChange (pct None with UNAVAILABLE for < 2 points or a zero base)
    """
    if len(points) < 2:
        return UNAVAILABLE

    last = points[-1]
    target = last.timestamp - lookback_ms

    base = None
    for point in reversed(points):
        if point.timestamp <= target:
            base = point
            break

    mode = ChangeMode.WINDOW
    if base is None:
        base = points[0]
        mode = ChangeMode.SINCE_START

    if base.value == 0:
        return UNAVAILABLE

    return WindowedChange(pct=(last.value - base.value) / base.value * 100, mode=mode)
