import itertools

from pulsesync.models.record_models import ClassificationStatus, make_record
from pulsesync.reconcile.dedupe import dedupe_by_date, dedupe_by_video_day

DAY = "2025-06-01"


def test_collapses_to_highest_view_count():
    records = [
        make_record("a", "v1", DAY, view_count=1000),
        make_record("b", "v1", DAY, view_count=1200),
    ]

    result = dedupe_by_video_day(records)

    assert len(result) == 1
    assert result[0].view_count == 1200


def test_equal_views_prefers_classified():
    unclassified = make_record("a", "v1", DAY, view_count=50)
    classified = make_record(
        "b", "v1", DAY, view_count=50, status=ClassificationStatus.CLASSIFIED
    )

    assert dedupe_by_video_day([unclassified, classified])[0].id == "b"
    assert dedupe_by_video_day([classified, unclassified])[0].id == "b"


def test_pending_does_not_count_as_classified():
    first = make_record("a", "v1", DAY, view_count=50)
    pending = make_record(
        "b", "v1", DAY, view_count=50, status=ClassificationStatus.PENDING
    )

    assert dedupe_by_video_day([first, pending])[0].id == "a"


def test_full_tie_keeps_first_seen():
    a = make_record("a", "v1", DAY, view_count=10)
    b = make_record("b", "v1", DAY, view_count=10)

    assert dedupe_by_video_day([a, b])[0].id == "a"
    assert dedupe_by_video_day([b, a])[0].id == "b"


def test_one_record_per_key_and_at_least_max_views():
    records = [
        make_record("a", "v1", DAY, view_count=5),
        make_record("b", "v2", DAY, view_count=7),
        make_record("c", "v1", DAY, view_count=9),
        make_record("d", "v1", "2025-06-02", view_count=1),
        make_record("e", "v2", DAY, view_count=3),
    ]

    result = dedupe_by_video_day(records)

    keys = [r.dedup_key for r in result]
    assert len(keys) == len(set(keys)) == 3
    for record in result:
        group = [r for r in records if r.dedup_key == record.dedup_key]
        assert record.view_count == max(r.view_count for r in group)


def test_output_independent_of_input_order():
    records = [
        make_record("a", "v1", DAY, view_count=5),
        make_record("b", "v2", DAY, view_count=7),
        make_record("c", "v1", DAY, view_count=9),
        make_record("d", "v3", "2025-05-31", view_count=2),
    ]
    expected = [r.id for r in dedupe_by_video_day(records)]

    for permutation in itertools.permutations(records):
        assert [r.id for r in dedupe_by_video_day(permutation)] == expected


def test_empty_input():
    assert dedupe_by_video_day([]) == []
    assert dedupe_by_date([]) == {}


def test_dedupe_by_date_groups_sorted_by_day():
    records = [
        make_record("a", "v1", "2025-06-02"),
        make_record("b", "v1", "2025-05-30"),
        make_record("c", "v2", "2025-06-02"),
    ]

    groups = dedupe_by_date(records)

    assert list(groups) == ["2025-05-30", "2025-06-02"]
    assert [r.id for r in groups["2025-06-02"]] == ["a", "c"]
