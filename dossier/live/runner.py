"""
Refresh cycle orchestrator.

Flow of one cycle:
1. Build the upstream list and fetch every upstream concurrently (one batch)
2. Resolve each field through its candidate chain (previous value as last resort)
3. Score composite indexes
4. Append this cycle's live values to the bounded history (one batch update)
5. Derive series, windowed change and staleness per field; build indexes
6. Publish the new Snapshot by swapping one reference
7. Persist the snapshot (failures are logged, never fatal)
8. Refresh the digest when due; failures keep the previous digest

Cycles never overlap. RefreshScheduler suppresses periodic ticks while a
cycle is in flight and coalesces manual triggers into one follow-up cycle.
"""

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..config.secrets import ALPHA_VANTAGE_KEY_NAME, optional_key
from ..config.settings import DEFAULT_SETTINGS
from ..digest.client import DigestClient, DigestRateLimited, DigestUnavailable
from ..ingest.base_fetcher import UpstreamRequest
from ..ingest.coordinator import FetchBatch, fetch_batch
from ..ingest.health import HealthTracker
from ..ingest.sources import build_upstreams
from .change import ChangeMode, windowed_change
from .composite import build_composite_index, index_score, series_change_mode
from .fields import FieldSpec, IndexSpec, build_fields, build_indexes
from .history import DAY_MS, append_batch, values_of
from .series import change_from_series, compact
from .snapshot import EMPTY_SNAPSHOT, ResolvedField, Snapshot, SnapshotCache, SnapshotWriteError
from .staleness import is_stale, threshold_for

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
MINUTE_MS = 60 * 1000

TOTAL_FAILURE_MESSAGE = "Could not load data from any source. Showing last known values."
DIGEST_RATE_LIMIT_MESSAGE = "The news brief generator is rate-limited. Showing a headline summary; try again later."


def now_ms() -> int:
    return int(time.time() * 1000)


def build_snapshot(
    previous: Snapshot,
    payloads: Mapping[str, Any],
    now: int,
    fields: List[FieldSpec],
    indexes: List[IndexSpec],
    settings: Optional[Dict[str, Any]] = None,
) -> Snapshot:
    """
    Compute the next Snapshot from the previous one and a fetch batch.

    Pure: neither ``previous`` nor ``payloads`` is mutated.

    Args:
        previous: Last published snapshot (EMPTY_SNAPSHOT on first run)
        payloads: source_id -> decoded payload (None/missing when unavailable)
        now: Cycle time in ms since epoch
        fields: Field catalog
        indexes: Composite index catalog
        settings: Runtime settings (defaults when None)

    Returns:
        The next Snapshot
    """
    settings = settings or DEFAULT_SETTINGS
    display_points = settings["display_points"]
    lookback_ms = int(settings["change_lookback_hours"] * HOUR_MS)
    max_points = settings["history"]["max_points"]
    max_age_ms = int(settings["history"]["max_age_days"] * DAY_MS)
    stale_overrides = settings.get("stale_after_minutes") or {}

    # Resolve values
    resolutions = {}
    live_values: Dict[str, Optional[float]] = {}
    for spec in fields:
        prev_field = previous.fields.get(spec.key)
        resolution = spec.value_chain.resolve(payloads, prev_field.value if prev_field else None)
        resolutions[spec.key] = resolution
        live_values[spec.key] = resolution.value if resolution.live else None

    raw_members = {}
    for ix in indexes:
        raw_members[ix.key] = {member.name: member.raw(payloads) for member in ix.members}
        live_values[ix.history_key] = index_score(raw_members[ix.key])

    history = append_batch(previous.history, live_values, now, max_points=max_points, max_age_ms=max_age_ms)

    # Derive display records
    resolved: Dict[str, ResolvedField] = {}
    for spec in fields:
        resolution = resolutions[spec.key]
        prev_field = previous.fields.get(spec.key)
        points = history.get(spec.key, ())

        if resolution.live:
            last_observed_at = resolution.observed_at or now
        else:
            last_observed_at = prev_field.last_observed_at if prev_field else None

        series: List[float] = []
        if len(spec.series_chain):
            series, _ = spec.series_chain.resolve_series(payloads, display_points)
            if not series and prev_field is not None:
                series = list(prev_field.series)
        if not series:
            series = compact(values_of(points), display_points)

        change = windowed_change(points, lookback_ms)
        change_pct, change_mode = change.pct, change.mode
        if change_mode == ChangeMode.UNAVAILABLE and len(points) < 2 and len(spec.series_chain):
            change_pct = change_from_series(series, spec.steps_per_lookback)
            change_mode = series_change_mode(series, spec.steps_per_lookback, change_pct)

        max_age = threshold_for(spec.key, spec.stale_after_minutes, stale_overrides)
        resolved[spec.key] = ResolvedField(
            key=spec.key,
            value=resolution.value,
            last_observed_at=last_observed_at,
            series=tuple(series),
            change_pct=change_pct,
            change_mode=change_mode,
            source=resolution.source,
            stale=is_stale(last_observed_at, max_age, now),
        )

    built_indexes = dict(previous.indexes)
    for ix in indexes:
        if live_values[ix.history_key] is None:
            # No entity reported; keep the last index as-is
            continue
        built_indexes[ix.key] = build_composite_index(
            ix.key,
            raw_members[ix.key],
            index_history=history.get(ix.history_key, ()),
            lookback_ms=lookback_ms,
            steps_back=ix.steps_per_lookback,
            max_len=display_points,
            now_ts=now,
        )

    any_live = any(v is not None for v in live_values.values())
    return Snapshot(
        generated_at=now,
        cycle=previous.cycle + 1,
        fields=resolved,
        history=history,
        indexes=built_indexes,
        digest=previous.digest,
        digest_fetched_at=previous.digest_fetched_at,
        error=None if any_live else TOTAL_FAILURE_MESSAGE,
    )


class DossierEngine:
    """Owns the published snapshot; the only writer of history and cache."""

    def __init__(
        self,
        settings: Optional[Dict[str, Any]] = None,
        cache: Optional[SnapshotCache] = None,
        digest_client: Optional[DigestClient] = None,
        batch_fetcher: Optional[Callable[[List[UpstreamRequest]], FetchBatch]] = None,
        upstream_builder: Optional[Callable[[], List[UpstreamRequest]]] = None,
        fields: Optional[List[FieldSpec]] = None,
        indexes: Optional[List[IndexSpec]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings or DEFAULT_SETTINGS
        self.cache = cache
        self.digest_client = digest_client
        self.health = HealthTracker()
        self.fields = fields if fields is not None else build_fields()
        self.indexes = indexes if indexes is not None else build_indexes()
        self.clock = clock
        self._batch_fetcher = batch_fetcher or self._default_fetch
        self._upstream_builder = upstream_builder or (
            lambda: build_upstreams(optional_key(ALPHA_VANTAGE_KEY_NAME))
        )
        self._snapshot = EMPTY_SNAPSHOT
        self._cycle_lock = threading.Lock()

    @property
    def snapshot(self) -> Snapshot:
        """The last complete snapshot. Safe to read from any thread."""
        return self._snapshot

    def _publish(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot

    def _default_fetch(self, upstreams: List[UpstreamRequest]) -> FetchBatch:
        return fetch_batch(
            upstreams,
            timeout=self.settings["fetch_timeout_seconds"],
            health=self.health,
        )

    def warm_start(self) -> Snapshot:
        """Seed the published snapshot from the persistent cache, if any."""
        if self.cache is None:
            return self._snapshot
        cached = self.cache.load()
        if cached is None:
            logger.info("No cached snapshot, cold start")
            return self._snapshot
        logger.info(f"Restored cached snapshot from cycle {cached.cycle}")
        self._publish(cached)
        return cached

    def refresh(self, now: Optional[int] = None, force_digest: bool = False) -> Snapshot:
        """Run one complete refresh cycle and return the published snapshot."""
        with self._cycle_lock:
            now = now if now is not None else self.clock()
            previous = self._snapshot

            batch = self._batch_fetcher(self._upstream_builder())
            snapshot = build_snapshot(previous, batch.payloads, now, self.fields, self.indexes, self.settings)
            self._publish(snapshot)
            self._persist(snapshot)

            if snapshot.error:
                logger.warning(snapshot.error)

            with_digest = self._refresh_digest(snapshot, now, force_digest)
            if with_digest is not snapshot:
                snapshot = with_digest
                self._publish(snapshot)
                self._persist(snapshot)

            live = sum(1 for f in snapshot.fields.values() if f.source not in (None, "previous"))
            logger.info(f"Refresh cycle {snapshot.cycle} complete: {live}/{len(snapshot.fields)} fields live")
            return snapshot

    def _persist(self, snapshot: Snapshot) -> None:
        if self.cache is None:
            return
        try:
            self.cache.save(snapshot)
        except SnapshotWriteError as e:
            logger.warning(f"Snapshot not persisted: {e}")

    def _digest_due(self, snapshot: Snapshot, now: int, force: bool) -> bool:
        if self.digest_client is None:
            return False
        if force or snapshot.digest_fetched_at is None:
            return True
        refresh_ms = self.settings["digest"]["refresh_minutes"] * MINUTE_MS
        return now - snapshot.digest_fetched_at >= refresh_ms

    def _refresh_digest(self, snapshot: Snapshot, now: int, force: bool) -> Snapshot:
        if not self._digest_due(snapshot, now, force):
            return snapshot

        try:
            digest = self.digest_client.get_digest(force=force)
        except DigestRateLimited as e:
            logger.warning(f"Digest service rate-limited: {e}")
            return replace(
                snapshot,
                digest_fetched_at=now,
                error=snapshot.error or DIGEST_RATE_LIMIT_MESSAGE,
            )
        except DigestUnavailable as e:
            logger.warning(f"Digest unavailable, keeping previous brief: {e}")
            return snapshot

        error = snapshot.error
        if digest.rate_limited and error is None:
            error = DIGEST_RATE_LIMIT_MESSAGE
        return replace(snapshot, digest=digest, digest_fetched_at=now, error=error)


class RefreshScheduler:
    """
    Serializes refresh cycles.

    - tick(): periodic; ignored while a cycle is in flight
    - trigger(): manual; while a cycle is in flight it is coalesced into
      exactly one follow-up cycle, however many times it is called
    - start()/stop(): background thread ticking every ``interval_seconds``
    """

    def __init__(self, engine: DossierEngine, interval_seconds: float = 60):
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._lock = threading.Lock()
        self._running = False
        self._pending = False
        self._pending_force_digest = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.completed_cycles = 0

    @property
    def in_flight(self) -> bool:
        return self._running

    def tick(self) -> bool:
        """Periodic entry point. Returns False when suppressed."""
        with self._lock:
            if self._running:
                logger.debug("Tick suppressed: refresh cycle in flight")
                return False
            self._running = True
        self._drain(force_digest=False)
        return True

    def trigger(self, force_digest: bool = False) -> bool:
        """Manual entry point. Returns False when coalesced into the in-flight cycle's follow-up."""
        with self._lock:
            if self._running:
                self._pending = True
                self._pending_force_digest = self._pending_force_digest or force_digest
                logger.debug("Manual refresh coalesced")
                return False
            self._running = True
        self._drain(force_digest=force_digest)
        return True

    def trigger_async(self, force_digest: bool = False) -> threading.Thread:
        thread = threading.Thread(target=self.trigger, kwargs={"force_digest": force_digest}, daemon=True)
        thread.start()
        return thread

    def _drain(self, force_digest: bool) -> None:
        while True:
            try:
                self.engine.refresh(force_digest=force_digest)
            except Exception:
                logger.exception("Refresh cycle failed")
            with self._lock:
                self.completed_cycles += 1
                if not self._pending:
                    self._running = False
                    return
                self._pending = False
                force_digest = self._pending_force_digest
                self._pending_force_digest = False

    def _loop(self) -> None:
        self.tick()
        while not self._stop.wait(self.interval_seconds):
            self.tick()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="dossier-refresh", daemon=True)
        self._thread.start()
        logger.info(f"Refresh scheduler started (every {self.interval_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
