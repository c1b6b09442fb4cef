"""Per-field staleness ("market closed") classification.

Thresholds follow each market's normal update cadence rather than one
universal constant.
"""

from typing import Mapping, Optional

MINUTE_MS = 60 * 1000

CRYPTO_STALE_MINUTES = 90
MARKET_STALE_MINUTES = 240      # commodities and equities
OFFICIAL_RATE_STALE_MINUTES = 720
P2P_RATE_STALE_MINUTES = 180


def is_stale(last_observed_at: Optional[int], max_age_minutes: float, now: int) -> bool:
    """True when the last observation is older than ``max_age_minutes``.

    An unknown observation time is never stale: the field is not yet
    established, which is different from closed.
    """
    if last_observed_at is None:
        return False
    return now - last_observed_at > max_age_minutes * MINUTE_MS


def threshold_for(key: str, default_minutes: float, overrides: Optional[Mapping[str, float]] = None) -> float:
    """Configured override for ``key`` or the field's built-in threshold."""
    if overrides and key in overrides:
        return float(overrides[key])
    return default_minutes
