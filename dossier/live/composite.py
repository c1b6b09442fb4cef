"""
Composite indexes built from several variable-length sub-series.

Two numbers are computed independently and are allowed to differ:
- ``series``: pointwise mean across sub-series by position (shorter series
  stop contributing), compacted to the display bound.
- ``score``: unweighted mean of each contributing entity's latest value.
The series' last point is a positional average while the score is a
latest-per-entity average; sub-series of different lengths are not
time-aligned, so the two frames are kept separate.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from .change import ChangeMode, windowed_change
from .history import FieldHistory, values_of
from .series import DISPLAY_POINTS, INTERNAL_POINTS, change_from_series, compact, mean

SPIKE_RATIO = 1.5


@dataclass(frozen=True)
class CompositeIndex:
    key: str
    score: Optional[float]
    series: Tuple[float, ...]
    change_pct: Optional[float]
    change_mode: ChangeMode
    spike_count: int
    baseline: Optional[float]
    contributors: int = 0
    last_observed_at: Optional[int] = None


def combine_series(sub_series: Iterable[Sequence[float]], max_len: int = DISPLAY_POINTS) -> List[float]:
    """Pointwise mean by index position across sub-series, then compacted."""
    subs = [list(s) for s in sub_series]
    longest = max((len(s) for s in subs), default=0)
    combined = []
    for i in range(longest):
        present = [s[i] for s in subs if i < len(s)]
        if present:
            combined.append(sum(present) / len(present))
    return compact(combined, max_len)


def latest_score(sub_series: Iterable[Sequence[float]]) -> Optional[float]:
    """Mean of each non-empty sub-series' most recent value."""
    return mean(s[-1] for s in sub_series if len(s) > 0)


def count_spikes(series: Sequence[float], baseline: Optional[float], ratio: float = SPIKE_RATIO) -> int:
    """Points at or above ``ratio`` times the baseline."""
    if baseline is None or baseline <= 0:
        return 0
    threshold = baseline * ratio
    return sum(1 for v in series if v >= threshold)


def build_composite_index(
    key: str,
    raw_sub_series: Mapping[str, Any],
    index_history: FieldHistory = (),
    lookback_ms: int = 24 * 60 * 60 * 1000,
    steps_back: int = 24,
    max_len: int = DISPLAY_POINTS,
    now_ts: Optional[int] = None,
) -> CompositeIndex:
    """
    Build the composite index for one refresh cycle.

    Args:
        key: Index key (its history lives under the same key)
        raw_sub_series: entity -> raw series (None for an unavailable entity)
        index_history: Score history for this index, including this cycle's score
        lookback_ms: Window for the history-based change
        steps_back: Series positions for the fallback change
        max_len: Display bound for the combined series
        now_ts: Cycle time recorded as last_observed_at when any entity reported

    Returns:
        CompositeIndex. ``score`` is None when no entity reported.
    """
    subs = sub_series_of(raw_sub_series)

    series = combine_series(subs, max_len)
    score = latest_score(subs)

    baseline = mean(values_of(index_history)) if index_history else None
    if baseline is None:
        baseline = mean(series)

    change = windowed_change(index_history, lookback_ms)
    change_pct, change_mode = change.pct, change.mode
    if change_mode == ChangeMode.UNAVAILABLE and len(index_history) < 2:
        change_pct = change_from_series(series, steps_back)
        change_mode = series_change_mode(series, steps_back, change_pct)

    return CompositeIndex(
        key=key,
        score=score,
        series=tuple(series),
        change_pct=change_pct,
        change_mode=change_mode,
        spike_count=count_spikes(series, baseline),
        baseline=baseline,
        contributors=len(subs),
        last_observed_at=now_ts if subs else None,
    )


def sub_series_of(raw_sub_series: Mapping[str, Any]) -> List[List[float]]:
    """Coerce each entity's raw series, dropping entities with no data."""
    subs = [compact(raw, INTERNAL_POINTS) for raw in raw_sub_series.values()]
    return [s for s in subs if s]


def index_score(raw_sub_series: Mapping[str, Any]) -> Optional[float]:
    """The index's current score, computed before its history is updated."""
    return latest_score(sub_series_of(raw_sub_series))


def series_change_mode(series: Sequence[float], steps_back: int, pct: Optional[float]) -> ChangeMode:
    """Mode label for a change computed from a plain series.

    WINDOW when the series reaches ``steps_back`` positions, SINCE_START when
    the base index had to be clamped to the first point.
    """
    if pct is None:
        return ChangeMode.UNAVAILABLE
    return ChangeMode.WINDOW if len(series) > steps_back else ChangeMode.SINCE_START
