"""
Concurrent upstream fetching for one refresh cycle.

All upstreams are submitted at once (fan-out) and collected behind a single
join barrier (fan-in). Each upstream is bounded by its own request timeout;
the barrier adds a small grace period on top. An upstream that fails or
misses the barrier contributes no payload, and never cancels its siblings.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from .base_fetcher import DEFAULT_TIMEOUT_SECONDS, FetchError, UpstreamRateLimited, UpstreamRequest, fetch_json
from .health import HealthTracker

logger = logging.getLogger(__name__)

BARRIER_GRACE_SECONDS = 2.0


@dataclass
class FetchBatch:
    """Results of one fan-out: payload per upstream (None when unavailable)."""
    fetched_at: datetime
    payloads: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    rate_limited: Dict[str, str] = field(default_factory=dict)

    def get(self, source_id: str) -> Any:
        return self.payloads.get(source_id)

    @property
    def ok_count(self) -> int:
        return sum(1 for v in self.payloads.values() if v is not None)


def fetch_batch(
    upstreams: Iterable[UpstreamRequest],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    fetcher: Callable[..., Any] = fetch_json,
    health: Optional[HealthTracker] = None,
) -> FetchBatch:
    """
    Fetch every upstream concurrently and wait for all of them as one batch.

    Args:
        upstreams: Upstream definitions (source_id must be unique)
        timeout: Per-upstream timeout in seconds
        fetcher: Callable(request, timeout=...) returning a payload or raising
        health: Optional tracker updated with each outcome

    Returns:
        FetchBatch with a payload (or None) for every upstream
    """
    upstreams = list(upstreams)
    batch = FetchBatch(fetched_at=datetime.now(timezone.utc))
    if not upstreams:
        return batch

    # One thread per upstream so a slow upstream never queues a faster one
    executor = ThreadPoolExecutor(max_workers=len(upstreams))
    try:
        future_to_source = {
            executor.submit(fetcher, req, timeout=timeout): req.source_id
            for req in upstreams
        }
        done, not_done = wait(future_to_source, timeout=timeout + BARRIER_GRACE_SECONDS)

        for future in done:
            source_id = future_to_source[future]
            try:
                batch.payloads[source_id] = future.result()
            except UpstreamRateLimited as e:
                batch.payloads[source_id] = None
                batch.errors[source_id] = e.message
                batch.rate_limited[source_id] = e.message
            except FetchError as e:
                batch.payloads[source_id] = None
                batch.errors[source_id] = e.message
            except Exception as e:
                batch.payloads[source_id] = None
                batch.errors[source_id] = f"unexpected error: {e}"

        for future in not_done:
            source_id = future_to_source[future]
            batch.payloads[source_id] = None
            batch.errors[source_id] = "missed fetch barrier"
    finally:
        # Stragglers finish in the background; their results are discarded
        executor.shutdown(wait=False)

    for source_id, error in sorted(batch.errors.items()):
        logger.warning(f"Upstream {source_id} unavailable: {error}")

    if health is not None:
        _record_health(batch, health)

    logger.info(f"Fetched {batch.ok_count}/{len(upstreams)} upstreams")
    return batch


def _record_health(batch: FetchBatch, health: HealthTracker) -> None:
    for source_id in sorted(batch.payloads):
        error = batch.errors.get(source_id)
        previous = health.record(
            source_id,
            error,
            timestamp=batch.fetched_at,
            rate_limited=source_id in batch.rate_limited,
        )
        current = health.get_or_create(source_id).status
        if current != previous and current != "OK":
            logger.warning(f"Upstream {source_id} is now {current} "
                           f"({health.sources[source_id].consecutive_failures} consecutive failures)")
        elif current != previous:
            logger.info(f"Upstream {source_id} recovered")
