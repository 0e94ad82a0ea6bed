from datetime import timedelta

from conftest import NOW, TODAY
from pulsesync.core.days import shift_day_key
from pulsesync.models.record_models import make_record
from pulsesync.scheduler.rollover import RolloverScheduler
from pulsesync.sync.coordinator import SyncCoordinator

TOMORROW = shift_day_key(TODAY, 1)


def test_first_observation_is_baseline(store, clock):
    rollover = RolloverScheduler(store, clock=clock)
    fired = []
    rollover.on_rollover(fired.append)

    assert rollover.check() is None
    assert rollover.current_day == TODAY
    assert fired == []


def test_fires_once_across_midnight_in_seoul(store, clock):
    rollover = RolloverScheduler(store, clock=clock, tz_name="Asia/Seoul")
    fired = []
    rollover.on_rollover(fired.append)

    # NOW is 12:00 KST; 14:59 UTC is 23:59 KST on the same day
    clock.advance(hours=11, minutes=59)
    assert rollover.check() is None

    clock.advance(minutes=2)
    assert rollover.check() == TOMORROW
    assert rollover.check() is None
    assert rollover.resume() is None

    assert fired == [TOMORROW]


def test_midnight_follows_configured_timezone_not_utc(store, clock):
    rollover = RolloverScheduler(store, clock=clock, tz_name="Asia/Seoul")

    # 00:00 UTC is already 09:00 KST, no change of day in Seoul
    clock.now = NOW.replace(hour=23, minute=30) - timedelta(days=1)
    clock.advance(minutes=60)

    assert rollover.check() is None


def test_skipped_days_fire_once_with_latest_key(store, clock):
    rollover = RolloverScheduler(store, clock=clock)
    fired = []
    rollover.on_rollover(fired.append)

    clock.advance(days=3)

    assert rollover.resume() == shift_day_key(TODAY, 3)
    assert fired == [shift_day_key(TODAY, 3)]


def test_backwards_clock_rebases_without_firing(store, clock):
    rollover = RolloverScheduler(store, clock=clock)
    fired = []
    rollover.on_rollover(fired.append)

    clock.advance(days=-1)

    assert rollover.check() is None
    assert rollover.current_day == shift_day_key(TODAY, -1)
    assert fired == []


def test_window_is_n_consecutive_days_ending_today(store, clock):
    rollover = RolloverScheduler(store, clock=clock, retention_days=14)

    clock.advance(days=1)
    rollover.check()

    window = rollover.window
    assert len(window) == 14
    assert window[-1] == TOMORROW
    assert window[0] == shift_day_key(TOMORROW, -13)
    assert all(
        shift_day_key(a, 1) == b for a, b in zip(window, window[1:])
    )


def test_rollover_marks_old_partitions_but_does_not_delete(store, clock):
    oldest_kept = shift_day_key(TOMORROW, -2)
    expired = shift_day_key(TODAY, -2)
    store.put(
        [
            make_record("old", "v1", expired, collection_timestamp=NOW),
            make_record("kept", "v1", oldest_kept, collection_timestamp=NOW),
        ]
    )
    rollover = RolloverScheduler(store, clock=clock, retention_days=3)

    clock.advance(days=1)
    rollover.check()

    assert rollover.eligible_for_eviction == [expired]
    assert store.list_day_keys() == [expired, oldest_kept]

    assert rollover.evict_expired() == {expired: 1}
    assert store.list_day_keys() == [oldest_kept]
    assert rollover.eligible_for_eviction == []


def test_unregister_and_listener_isolation(store, clock):
    rollover = RolloverScheduler(store, clock=clock)
    fired = []

    def broken(day_key):
        raise RuntimeError("listener bug")

    rollover.on_rollover(broken)
    unregister = rollover.on_rollover(fired.append)

    clock.advance(days=1)
    rollover.check()
    unregister()
    clock.advance(days=1)
    rollover.check()

    assert fired == [TOMORROW]


def test_rollover_is_published(store, clock):
    coordinator = SyncCoordinator()
    events = []
    coordinator.subscribe("day.rollover", events.append)
    rollover = RolloverScheduler(store, coordinator, retention_days=2, clock=clock)

    clock.advance(days=1)
    rollover.check()

    assert events[0]["day_key"] == TOMORROW
    assert events[0]["previous"] == TODAY
    assert events[0]["window"] == [TODAY, TOMORROW]
