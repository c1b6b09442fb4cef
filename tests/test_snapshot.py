"""Tests for snapshot serialization and the persistent snapshot cache."""

import json

import pytest

from dossier.digest.models import Brief, Digest
from dossier.live.change import ChangeMode
from dossier.live.composite import CompositeIndex
from dossier.live.history import Observation
from dossier.live.snapshot import (
    EMPTY_SNAPSHOT,
    SCHEMA_VERSION,
    BlobStore,
    FileBlobStore,
    MemoryBlobStore,
    ResolvedField,
    Snapshot,
    SnapshotCache,
    SnapshotWriteError,
    snapshot_from_dict,
    snapshot_to_dict,
)

T0 = 1_700_000_000_000


@pytest.fixture
def sample_snapshot():
    return Snapshot(
        generated_at=T0,
        cycle=7,
        fields={
            "btc": ResolvedField(
                key="btc",
                value=65000.5,
                last_observed_at=T0 - 1000,
                series=(64000.0, 64500.25, 65000.5),
                change_pct=1.5625,
                change_mode=ChangeMode.WINDOW,
                source="CoinGecko spot",
                stale=False,
            ),
            "usd_official": ResolvedField(key="usd_official"),
        },
        history={
            "btc": (Observation(T0 - 3600000, 64000.0), Observation(T0, 65000.5)),
            "index:attention": (Observation(T0, 4.0),),
        },
        indexes={
            "attention": CompositeIndex(
                key="attention",
                score=4.0,
                series=(2.5, 3.5, 3.0),
                change_pct=20.0,
                change_mode=ChangeMode.SINCE_START,
                spike_count=0,
                baseline=4.0,
                contributors=2,
                last_observed_at=T0,
            ),
        },
        digest=Digest(
            brief=Brief(
                summary="Markets steady.",
                macro=("WSJ Markets: Stocks edge higher",),
                geo=("BBC World: Talks resume",),
                risks=("Oil supply",),
                watchlist=("WSJ Markets: Stocks edge higher",),
                confidence="medium",
            ),
            generated_at="2024-01-01T00:00:00+00:00",
            valid_until="2024-01-02T00:00:00+00:00",
            article_count=42,
            cache_hit=True,
            top_headlines=("WSJ Markets: Stocks edge higher",),
        ),
        digest_fetched_at=T0,
        error=None,
    )


class TestSerialization:
    def test_dict_roundtrip(self, sample_snapshot):
        assert snapshot_from_dict(snapshot_to_dict(sample_snapshot)) == sample_snapshot

    def test_history_is_stored_as_pairs(self, sample_snapshot):
        data = snapshot_to_dict(sample_snapshot)
        assert data["history"]["btc"] == [[T0 - 3600000, 64000.0], [T0, 65000.5]]
        assert data["fields"]["btc"]["change_mode"] == "WINDOW"

    def test_empty_snapshot_roundtrip(self):
        assert snapshot_from_dict(snapshot_to_dict(EMPTY_SNAPSHOT)) == EMPTY_SNAPSHOT


class TestSnapshotCache:
    def test_save_then_load_is_identity(self, sample_snapshot):
        cache = SnapshotCache(MemoryBlobStore())
        cache.save(sample_snapshot)
        assert cache.load() == sample_snapshot

    def test_missing_blob_is_cold_start(self):
        assert SnapshotCache(MemoryBlobStore()).load() is None

    def test_schema_version_mismatch_is_discarded(self, sample_snapshot):
        store = MemoryBlobStore()
        envelope = {"schema_version": SCHEMA_VERSION - 1, "state": snapshot_to_dict(sample_snapshot)}
        store.set("dossier.snapshot", json.dumps(envelope).encode("utf-8"))
        assert SnapshotCache(store).load() is None

    def test_corrupt_blob_is_cold_start(self):
        store = MemoryBlobStore()
        store.set("dossier.snapshot", b"{not json")
        assert SnapshotCache(store).load() is None

    def test_malformed_state_is_cold_start(self):
        store = MemoryBlobStore()
        envelope = {"schema_version": SCHEMA_VERSION, "state": {"fields": {"btc": {"value": 1}}}}
        store.set("dossier.snapshot", json.dumps(envelope).encode("utf-8"))
        assert SnapshotCache(store).load() is None

    def test_store_failure_raises_write_error(self, sample_snapshot):
        class BrokenStore(BlobStore):
            def get(self, key):
                return None

            def set(self, key, blob):
                raise OSError("disk full")

        with pytest.raises(SnapshotWriteError):
            SnapshotCache(BrokenStore()).save(sample_snapshot)

    def test_non_finite_value_raises_write_error(self):
        snapshot = Snapshot(fields={"btc": ResolvedField(key="btc", change_pct=float("nan"))})
        with pytest.raises(SnapshotWriteError):
            SnapshotCache(MemoryBlobStore()).save(snapshot)


class TestFileBlobStore:
    def test_roundtrip_on_disk(self, tmp_path, sample_snapshot):
        store = FileBlobStore(str(tmp_path / "cache"))
        cache = SnapshotCache(store, key="dossier.snapshot")
        cache.save(sample_snapshot)

        assert (tmp_path / "cache" / "dossier.snapshot.json").exists()
        assert SnapshotCache(FileBlobStore(str(tmp_path / "cache"))).load() == sample_snapshot

    def test_no_temp_files_left_behind(self, tmp_path):
        store = FileBlobStore(str(tmp_path))
        store.set("a/b key", b"{}")
        assert [p.name for p in tmp_path.iterdir()] == ["a_b_key.json"]

    def test_missing_key(self, tmp_path):
        assert FileBlobStore(str(tmp_path)).get("nothing") is None
