"""PulseSync — Component Wiring.

One store, client, coordinator, orchestrator and rollover scheduler per
process, shared by the API routes and the scheduler jobs.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from pulsesync.config import settings
from pulsesync.connectors.remote.client import RemoteClient
from pulsesync.reconcile.day_merge import DayMergeService
from pulsesync.scheduler.rollover import RolloverScheduler
from pulsesync.store.local_store import LocalStore
from pulsesync.sync.coordinator import SyncCoordinator
from pulsesync.sync.orchestrator import FullSyncOrchestrator


@dataclass
class Services:
    store: LocalStore
    client: RemoteClient
    coordinator: SyncCoordinator
    merger: DayMergeService
    orchestrator: FullSyncOrchestrator
    rollover: RolloverScheduler


def build_services(
    engine: Engine,
    client: Optional[RemoteClient] = None,
    coordinator: Optional[SyncCoordinator] = None,
) -> Services:
    store = LocalStore(engine)
    client = client or RemoteClient()
    coordinator = coordinator or SyncCoordinator(settings.sync_reentry_policy)
    merger = DayMergeService(store, client, coordinator, settings.retention_days)
    return Services(
        store=store,
        client=client,
        coordinator=coordinator,
        merger=merger,
        orchestrator=FullSyncOrchestrator(store, client, coordinator, merger),
        rollover=RolloverScheduler(store, coordinator),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Process-wide services, built on first use from the default engine."""
    global _services
    if _services is None:
        from pulsesync.database import engine

        _services = build_services(engine)
    return _services


def set_services(services: Optional[Services]) -> None:
    global _services
    _services = services


async def close_services() -> None:
    if _services is not None:
        await _services.coordinator.drain()
        await _services.client.close()
