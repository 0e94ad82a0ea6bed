"""PulseSync — Retention Rollover Scheduler.

Watches "today" in the fixed timezone. Each forward date change fires the
registered listeners exactly once with the new day_key, recomputes the
retention window and marks older partitions eligible for eviction.
Deleting them is a separate, explicit call.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from pulsesync.config import settings
from pulsesync.core.days import today_key, window_day_keys
from pulsesync.core.errors import StorageError
from pulsesync.core.logging import get_logger
from pulsesync.store.local_store import LocalStore
from pulsesync.sync.coordinator import SyncCoordinator

logger = get_logger("scheduler.rollover")

EVENT_ROLLOVER = "day.rollover"
EVENT_EVICTED = "retention.evicted"

RolloverListener = Callable[[str], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RolloverScheduler:
    def __init__(
        self,
        store: LocalStore,
        coordinator: Optional[SyncCoordinator] = None,
        retention_days: Optional[int] = None,
        tz_name: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.coordinator = coordinator
        self.retention_days = retention_days or settings.retention_days
        self.tz_name = tz_name or settings.timezone
        self.clock = clock
        self._lock = threading.Lock()
        self._listeners: List[RolloverListener] = []
        # First observation is the baseline, not a transition
        self._current = today_key(clock(), self.tz_name)
        self._window = window_day_keys(self._current, self.retention_days)
        self._eligible: List[str] = []

    @property
    def current_day(self) -> str:
        return self._current

    @property
    def window(self) -> List[str]:
        return list(self._window)

    @property
    def eligible_for_eviction(self) -> List[str]:
        return list(self._eligible)

    def on_rollover(self, callback: RolloverListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(callback)

        def _unregister() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return _unregister

    def check(self) -> Optional[str]:
        """Recompute today. Returns the new day_key if a rollover happened."""
        today = today_key(self.clock(), self.tz_name)
        with self._lock:
            if today == self._current:
                return None
            previous = self._current
            self._current = today
            self._window = window_day_keys(today, self.retention_days)
            listeners = list(self._listeners)

        if today < previous:
            logger.warning(f"Clock moved backwards ({previous} → {today}); rebased window")
            return None

        logger.info(f"Day rollover {previous} → {today}", extra={"day_key": today})
        try:
            self.eviction_candidates()
        except StorageError as e:
            logger.error(f"Could not scan partitions for eviction: {e}")

        for listener in listeners:
            try:
                listener(today)
            except Exception as e:
                logger.error(f"Rollover listener failed: {e}", extra={"day_key": today})

        if self.coordinator is not None:
            self.coordinator.emit(
                EVENT_ROLLOVER,
                {
                    "day_key": today,
                    "previous": previous,
                    "window": self.window,
                    "eligible_for_eviction": self.eligible_for_eviction,
                },
            )
        return today

    def resume(self) -> Optional[str]:
        """Call after the process was suspended; never trusts the cached day."""
        logger.info("Resumed, re-checking calendar day")
        return self.check()

    def eviction_candidates(self) -> List[str]:
        """Stored partitions older than the window. Also refreshes the eligible list."""
        oldest = self._window[0] if self._window else self._current
        candidates = [d for d in self.store.list_day_keys() if d < oldest]
        with self._lock:
            self._eligible = candidates
        if candidates:
            logger.info(f"{len(candidates)} partitions eligible for eviction (before {oldest})")
        return candidates

    def evict_expired(self) -> Dict[str, int]:
        """Delete every partition older than the window. Explicit only."""
        self.check()
        evicted: Dict[str, int] = {}
        for day in self.eviction_candidates():
            evicted[day] = self.store.delete_by_day(day)
        with self._lock:
            self._eligible = []
        if evicted:
            logger.warning(
                f"Evicted {len(evicted)} partitions, {sum(evicted.values())} records"
            )
            if self.coordinator is not None:
                self.coordinator.emit(EVENT_EVICTED, {"days": evicted})
        return evicted
