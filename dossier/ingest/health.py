"""
Upstream health tracking for ingestion reliability monitoring.

Tracks per-upstream success/failure history across refresh cycles and
computes a health status. Health never affects value resolution; it only
feeds logs and the /health style summaries.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# Health status thresholds
CONSECUTIVE_FAILURES_DEGRADED = 3
CONSECUTIVE_FAILURES_DOWN = 7

# Rolling success window
ROLLING_WINDOW_RUNS = 10


@dataclass
class UpstreamHealth:
    """Health status for a single upstream."""
    source_id: str
    last_success_at: Optional[str] = None
    last_failure_at: Optional[str] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    rate_limited: bool = False
    outcomes: List[int] = field(default_factory=list)  # 1 = ok, 0 = failed
    success_rate: float = 1.0
    status: str = "OK"  # OK, DEGRADED, DOWN

    def update_status(self) -> None:
        """Update status based on consecutive failures."""
        if self.consecutive_failures >= CONSECUTIVE_FAILURES_DOWN:
            self.status = "DOWN"
        elif self.consecutive_failures >= CONSECUTIVE_FAILURES_DEGRADED:
            self.status = "DEGRADED"
        else:
            self.status = "OK"

    def _push(self, outcome: int) -> None:
        self.outcomes.append(outcome)
        if len(self.outcomes) > ROLLING_WINDOW_RUNS:
            self.outcomes = self.outcomes[-ROLLING_WINDOW_RUNS:]
        self.success_rate = sum(self.outcomes) / len(self.outcomes)

    def record_success(self, timestamp: Optional[datetime] = None) -> None:
        """Record a successful fetch."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        self.last_success_at = timestamp.isoformat()
        self.consecutive_failures = 0
        self.last_error = None
        self.rate_limited = False
        self._push(1)
        self.update_status()

    def record_failure(self, error: str, timestamp: Optional[datetime] = None, rate_limited: bool = False) -> None:
        """Record a failed fetch."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        self.last_failure_at = timestamp.isoformat()
        self.consecutive_failures += 1
        self.last_error = error
        self.rate_limited = rate_limited
        self._push(0)
        self.update_status()


@dataclass
class HealthTracker:
    """Tracks health for all upstreams across cycles."""
    sources: Dict[str, UpstreamHealth] = field(default_factory=dict)

    def get_or_create(self, source_id: str) -> UpstreamHealth:
        """Get existing upstream health or create new one."""
        if source_id not in self.sources:
            self.sources[source_id] = UpstreamHealth(source_id=source_id)
        return self.sources[source_id]

    def record(self, source_id: str, error: Optional[str], timestamp: Optional[datetime] = None,
               rate_limited: bool = False) -> str:
        """Record one fetch outcome and return the previous status."""
        health = self.get_or_create(source_id)
        previous = health.status
        if error is None:
            health.record_success(timestamp)
        else:
            health.record_failure(error, timestamp, rate_limited=rate_limited)
        return previous

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of health across all upstreams."""
        statuses = {"OK": 0, "DEGRADED": 0, "DOWN": 0}
        for source in self.sources.values():
            statuses[source.status] = statuses.get(source.status, 0) + 1

        degraded = [s.source_id for s in self.sources.values() if s.status == "DEGRADED"]
        down = [s.source_id for s in self.sources.values() if s.status == "DOWN"]

        return {
            "total_sources": len(self.sources),
            "status_counts": statuses,
            "degraded_sources": degraded,
            "down_sources": down,
            "overall_status": "DOWN" if down else ("DEGRADED" if degraded else "OK"),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dict."""
        return {
            "sources": {k: asdict(v) for k, v in self.sources.items()},
            "summary": self.get_summary(),
        }
