from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import NOW, TODAY
from pulsesync.core.errors import StorageError, ValidationError
from pulsesync.models.record_models import CollectionType, make_record
from pulsesync.models.sync_models import ConflictRecord, SyncOutcome, SyncStatus
from pulsesync.store.local_store import LocalStore

OTHER_DAY = "2025-05-31"


def _rec(record_id, video_id, day=TODAY, views=0):
    return make_record(
        record_id, video_id, day, view_count=views,
        collection_type=CollectionType.AUTO, collection_timestamp=NOW,
    )


def test_put_and_read_back_by_day(store):
    store.put([_rec("a", "v2"), _rec("b", "v1"), _rec("c", "v1", day=OTHER_DAY)])

    assert [r.id for r in store.get_by_day(TODAY)] == ["b", "a"]
    assert store.list_day_keys() == [OTHER_DAY, TODAY]
    assert store.count_in_days([TODAY, OTHER_DAY]) == 3


def test_read_back_preserves_timestamp_timezone(store):
    store.put([_rec("a", "v1")])

    assert store.get_by_day(TODAY)[0].collection_timestamp == NOW


def test_put_drops_invalid_day_key(store):
    stored = store.put(
        [
            _rec("a", "v1"),
            _rec("bad", "v2", day="2025-13-45"),
            _rec("unpadded", "v3", day="2025-6-1"),
        ]
    )

    assert stored == 1
    assert store.list_day_keys() == [TODAY]


def test_put_upserts_by_id(store):
    store.put([_rec("a", "v1", views=1)])
    store.put([_rec("a", "v1", views=5)])

    records = store.get_by_day(TODAY)
    assert len(records) == 1
    assert records[0].view_count == 5


def test_get_range_includes_empty_days(store):
    store.put([_rec("a", "v1")])

    result = store.get_range([OTHER_DAY, TODAY])

    assert result[OTHER_DAY] == []
    assert [r.id for r in result[TODAY]] == ["a"]


def test_replace_by_day_swaps_only_that_partition(store):
    store.put([_rec("a", "v1"), _rec("b", "v2"), _rec("c", "v1", day=OTHER_DAY)])

    store.replace_by_day(TODAY, [_rec("z", "v9")])

    assert [r.id for r in store.get_by_day(TODAY)] == ["z"]
    assert [r.id for r in store.get_by_day(OTHER_DAY)] == ["c"]


def test_replace_by_day_rejects_foreign_records(store):
    store.put([_rec("a", "v1")])

    with pytest.raises(ValidationError):
        store.replace_by_day(TODAY, [_rec("x", "v1", day=OTHER_DAY)])

    assert [r.id for r in store.get_by_day(TODAY)] == ["a"]


def test_replace_by_day_rolls_back_on_failure(store):
    store.put([_rec("a", "v1")])

    # Duplicate primary keys fail on flush, after the delete was issued
    with pytest.raises(StorageError):
        store.replace_by_day(TODAY, [_rec("dup", "v1"), _rec("dup", "v2")])

    assert [r.id for r in store.get_by_day(TODAY)] == ["a"]


def test_delete_by_day(store):
    store.put([_rec("a", "v1"), _rec("b", "v2"), _rec("c", "v1", day=OTHER_DAY)])

    assert store.delete_by_day(TODAY) == 2
    assert store.list_day_keys() == [OTHER_DAY]


def test_storage_failure_surfaces_as_storage_error(engine, monkeypatch):
    store = LocalStore(engine)

    def _boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr("pulsesync.store.local_store.Session.exec", _boom)

    with pytest.raises(StorageError) as exc:
        store.list_day_keys()

    assert exc.value.operation == "list_day_keys"


def test_sync_status_round_trip(store):
    assert store.load_sync_status().last_sync_outcome == SyncOutcome.NEVER

    store.save_sync_status(
        SyncStatus(
            last_sync_timestamp=NOW,
            last_sync_outcome=SyncOutcome.COMPLETED,
            last_remote_count=4,
            last_local_count=4,
        )
    )

    status = store.load_sync_status()
    assert status.last_sync_timestamp == NOW
    assert status.last_sync_outcome == SyncOutcome.COMPLETED
    assert status.last_remote_count == 4


def test_append_conflicts_skips_known_fingerprints(store):
    conflict = ConflictRecord(
        day_key=TODAY, external_video_id="v1", resolution="remote",
        reason="view_count 1 vs 2", fingerprint="abc",
    )

    assert store.append_conflicts([conflict]) == 1
    assert store.append_conflicts([conflict, conflict]) == 0
    assert len(store.list_conflicts(TODAY)) == 1
    assert store.list_conflicts(OTHER_DAY) == []


def test_count_conflicts_per_day(store):
    store.append_conflicts(
        [
            ConflictRecord(day_key=TODAY, external_video_id=f"v{i}", resolution="local",
                           reason="diverged", fingerprint=f"fp{i}")
            for i in range(2)
        ]
    )

    assert store.count_conflicts([OTHER_DAY, TODAY]) == {OTHER_DAY: 0, TODAY: 2}
    assert store.count_conflicts([]) == {}


def test_failed_uploads_lifecycle(store):
    store.record_failed_uploads([_rec("a", "v1"), _rec("b", "v2")], "HTTP 503", 3)

    assert sorted(store.failed_upload_ids()) == ["a", "b"]
    assert store.load_sync_status().pending_failures == 2

    store.clear_failed_uploads(["a"])

    assert store.failed_upload_ids() == ["b"]


def test_purge_all_clears_records_and_bookkeeping(store):
    store.put([_rec("a", "v1"), _rec("b", "v2", day=OTHER_DAY)])
    store.record_failed_uploads([_rec("a", "v1")], "boom", 1)
    store.save_sync_status(
        SyncStatus(last_sync_timestamp=NOW - timedelta(minutes=1),
                   last_sync_outcome=SyncOutcome.COMPLETED)
    )

    assert store.purge_all() == 2
    assert store.list_day_keys() == []
    assert store.load_sync_status() == SyncStatus()
