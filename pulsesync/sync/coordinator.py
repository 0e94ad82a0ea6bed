"""PulseSync — Sync Coordinator.

Holds the single-flight state for full syncs and the in-process
publish/subscribe channel. Injected into every component that needs either.
"""

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TypeVar

from pulsesync.core.errors import SyncInProgressError
from pulsesync.core.logging import get_logger

logger = get_logger("sync.coordinator")

T = TypeVar("T")
Handler = Callable[[Dict[str, Any]], Any]

POLICY_JOIN = "join"
POLICY_REJECT = "reject"


class SyncCoordinator:
    """Single-flight runner plus topic-based event bus."""

    def __init__(self, policy: str = POLICY_JOIN):
        if policy not in (POLICY_JOIN, POLICY_REJECT):
            raise ValueError(f"Unknown reentry policy: {policy}")
        self.policy = policy
        self._inflight: Optional[asyncio.Task] = None
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)
        self._pending: Set[asyncio.Future] = set()

    # ── Single flight ──

    @property
    def in_progress(self) -> bool:
        # Re-evaluated on every call; a finished task no longer counts
        return self._inflight is not None and not self._inflight.done()

    async def run_exclusive(
        self,
        factory: Callable[[], Awaitable[T]],
        policy: Optional[str] = None,
    ) -> T:
        """Run `factory()` unless a run is already in flight.

        join:   await the in-flight run and return its result
        reject: raise SyncInProgressError
        """
        policy = policy or self.policy
        if self.in_progress:
            if policy == POLICY_REJECT:
                logger.warning("Sync rejected: already in progress")
                raise SyncInProgressError()
            logger.info("Sync already in progress, joining in-flight run")
            # Shield so a cancelled joiner does not cancel the owner's run
            return await asyncio.shield(self._inflight)  # type: ignore[arg-type]

        task = asyncio.ensure_future(factory())
        self._inflight = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight is task and task.done():
                self._inflight = None

    # ── Publish / subscribe ──

    def subscribe(self, event_kind: str, handler: Handler) -> Callable[[], None]:
        """Register a handler ("*" for every kind). Returns an unsubscribe function."""
        self._subscribers[event_kind].append(handler)

        def _unsubscribe() -> None:
            handlers = self._subscribers.get(event_kind, [])
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def emit(self, event_kind: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """Deliver to every subscriber. A failing handler never affects the others.

        Coroutine handlers are scheduled on the running loop; their failures
        are logged when the task finishes. `drain()` waits for them.
        Returns the number of handlers that ran (or were scheduled) without raising.
        """
        event = {"kind": event_kind, **(payload or {})}
        handlers = list(self._subscribers.get(event_kind, [])) + list(
            self._subscribers.get("*", [])
        )
        delivered = 0
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._track(event_kind, result)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Event handler failed for '{event_kind}': {e}",
                    extra={"event_kind": event_kind},
                )
        return delivered

    def _track(self, event_kind: str, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)

        def _done(t: asyncio.Future) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            error = t.exception()
            if error is not None:
                logger.error(
                    f"Async event handler failed for '{event_kind}': {error}",
                    extra={"event_kind": event_kind},
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for every scheduled coroutine handler to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
