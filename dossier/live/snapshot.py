"""
Immutable resolved state and its persistent cache.

A Snapshot is produced once per refresh cycle and published by swapping a
single reference, so readers always see a complete cycle. The SnapshotCache
persists the whole snapshot as one blob under one key so the last good
state survives a restart and can seed the display before the first live
cycle completes.

Blob layout:
    {"schema_version": N, "saved_at": <ms>, "state": {...}}

Upgrade/discard policy: a blob whose schema_version differs from
SCHEMA_VERSION is discarded (cold start). Unreadable or corrupt blobs are
treated the same way; load never raises.
"""

import json
import logging
import os
import re
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..digest.models import Brief, Digest
from .change import ChangeMode
from .composite import CompositeIndex
from .history import HistorySet, Observation

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
DEFAULT_KEY = "dossier.snapshot"


@dataclass(frozen=True)
class ResolvedField:
    key: str
    value: Optional[float] = None
    last_observed_at: Optional[int] = None
    series: Tuple[float, ...] = ()
    change_pct: Optional[float] = None
    change_mode: ChangeMode = ChangeMode.UNAVAILABLE
    source: Optional[str] = None
    stale: bool = False


@dataclass(frozen=True)
class Snapshot:
    generated_at: Optional[int] = None
    cycle: int = 0
    fields: Dict[str, ResolvedField] = field(default_factory=dict)
    history: HistorySet = field(default_factory=dict)
    indexes: Dict[str, CompositeIndex] = field(default_factory=dict)
    digest: Optional[Digest] = None
    digest_fetched_at: Optional[int] = None
    error: Optional[str] = None


EMPTY_SNAPSHOT = Snapshot()


class SnapshotWriteError(Exception):
    """Raised when the snapshot blob cannot be persisted."""
    pass


# ---- serialization ----

def _field_to_dict(f: ResolvedField) -> Dict[str, Any]:
    return {
        "key": f.key,
        "value": f.value,
        "last_observed_at": f.last_observed_at,
        "series": list(f.series),
        "change_pct": f.change_pct,
        "change_mode": f.change_mode.value,
        "source": f.source,
        "stale": f.stale,
    }


def _field_from_dict(data: Dict[str, Any]) -> ResolvedField:
    return ResolvedField(
        key=data["key"],
        value=data.get("value"),
        last_observed_at=data.get("last_observed_at"),
        series=tuple(data.get("series") or ()),
        change_pct=data.get("change_pct"),
        change_mode=ChangeMode(data.get("change_mode", ChangeMode.UNAVAILABLE.value)),
        source=data.get("source"),
        stale=bool(data.get("stale", False)),
    )


def _index_to_dict(ix: CompositeIndex) -> Dict[str, Any]:
    return {
        "key": ix.key,
        "score": ix.score,
        "series": list(ix.series),
        "change_pct": ix.change_pct,
        "change_mode": ix.change_mode.value,
        "spike_count": ix.spike_count,
        "baseline": ix.baseline,
        "contributors": ix.contributors,
        "last_observed_at": ix.last_observed_at,
    }


def _index_from_dict(data: Dict[str, Any]) -> CompositeIndex:
    return CompositeIndex(
        key=data["key"],
        score=data.get("score"),
        series=tuple(data.get("series") or ()),
        change_pct=data.get("change_pct"),
        change_mode=ChangeMode(data.get("change_mode", ChangeMode.UNAVAILABLE.value)),
        spike_count=int(data.get("spike_count", 0)),
        baseline=data.get("baseline"),
        contributors=int(data.get("contributors", 0)),
        last_observed_at=data.get("last_observed_at"),
    )


def _digest_to_dict(digest: Optional[Digest]) -> Optional[Dict[str, Any]]:
    if digest is None:
        return None
    return {
        "brief": digest.brief.to_dict(),
        "generated_at": digest.generated_at,
        "valid_until": digest.valid_until,
        "article_count": digest.article_count,
        "cache_hit": digest.cache_hit,
        "top_headlines": list(digest.top_headlines),
    }


def _digest_from_dict(data: Optional[Dict[str, Any]]) -> Optional[Digest]:
    if not data:
        return None
    return Digest(
        brief=Brief.from_dict(data.get("brief") or {}),
        generated_at=data.get("generated_at"),
        valid_until=data.get("valid_until"),
        article_count=int(data.get("article_count", 0)),
        cache_hit=bool(data.get("cache_hit", False)),
        top_headlines=tuple(data.get("top_headlines") or ()),
    )


def snapshot_to_dict(snapshot: Snapshot) -> Dict[str, Any]:
    """Serialize a Snapshot to a JSON-safe dict."""
    return {
        "generated_at": snapshot.generated_at,
        "cycle": snapshot.cycle,
        "fields": {k: _field_to_dict(v) for k, v in snapshot.fields.items()},
        "history": {
            k: [[p.timestamp, p.value] for p in points]
            for k, points in snapshot.history.items()
        },
        "indexes": {k: _index_to_dict(v) for k, v in snapshot.indexes.items()},
        "digest": _digest_to_dict(snapshot.digest),
        "digest_fetched_at": snapshot.digest_fetched_at,
        "error": snapshot.error,
    }


def snapshot_from_dict(data: Dict[str, Any]) -> Snapshot:
    """Deserialize from dict."""
    return Snapshot(
        generated_at=data.get("generated_at"),
        cycle=int(data.get("cycle", 0)),
        fields={k: _field_from_dict(v) for k, v in (data.get("fields") or {}).items()},
        history={
            k: tuple(Observation(timestamp=int(ts), value=float(value)) for ts, value in points)
            for k, points in (data.get("history") or {}).items()
        },
        indexes={k: _index_from_dict(v) for k, v in (data.get("indexes") or {}).items()},
        digest=_digest_from_dict(data.get("digest")),
        digest_fetched_at=data.get("digest_fetched_at"),
        error=data.get("error"),
    )


# ---- storage ----

class BlobStore(ABC):
    """Opaque persistent key -> bytes storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None if absent."""
        pass

    @abstractmethod
    def set(self, key: str, blob: bytes) -> None:
        """Store bytes under key. Raises OSError on failure."""
        pass


class MemoryBlobStore(BlobStore):
    """In-process store, used for tests and ephemeral runs."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._blobs.get(key)

    def set(self, key: str, blob: bytes) -> None:
        self._blobs[key] = bytes(blob)


class FileBlobStore(BlobStore):
    """One file per key under a directory; writes are atomic (temp file + rename)."""

    def __init__(self, directory: str = "data/cache"):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", key)
        return self.directory / f"{safe}.json"

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def set(self, key: str, blob: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.directory), prefix=".snapshot-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(blob)
            os.replace(tmp_path, self._path(key))
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class SnapshotCache:
    """Versioned whole-state persistence over a BlobStore."""

    def __init__(self, store: BlobStore, key: str = DEFAULT_KEY):
        self.store = store
        self.key = key

    def save(self, snapshot: Snapshot) -> None:
        """
        Persist the snapshot as one blob.

        Raises:
            SnapshotWriteError: If serialization or the store write fails
        """
        envelope = {
            "schema_version": SCHEMA_VERSION,
            "saved_at": int(time.time() * 1000),
            "state": snapshot_to_dict(snapshot),
        }
        try:
            blob = json.dumps(envelope, allow_nan=False).encode("utf-8")
            self.store.set(self.key, blob)
        except (OSError, TypeError, ValueError) as e:
            raise SnapshotWriteError(f"Could not persist snapshot under {self.key}: {e}") from e

    def load(self) -> Optional[Snapshot]:
        """Restore the last saved snapshot, or None for a cold start."""
        try:
            blob = self.store.get(self.key)
        except OSError as e:
            logger.warning(f"Snapshot read failed, starting cold: {e}")
            return None
        if blob is None:
            return None

        try:
            envelope = json.loads(blob.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Snapshot blob is corrupt, starting cold: {e}")
            return None

        if not isinstance(envelope, dict):
            logger.warning("Snapshot blob has no envelope, starting cold")
            return None

        version = envelope.get("schema_version")
        if version != SCHEMA_VERSION:
            logger.info(f"Discarding snapshot with schema_version={version} (expected {SCHEMA_VERSION})")
            return None

        try:
            return snapshot_from_dict(envelope.get("state") or {})
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Snapshot state is malformed, starting cold: {e}")
            return None
