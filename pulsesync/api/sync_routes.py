"""PulseSync — Sync & Retention API Routes."""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from pulsesync.core.errors import StorageError
from pulsesync.core.logging import get_logger
from pulsesync.models.sync_models import (
    ConflictRecord,
    DayOrigin,
    DayRow,
    MergeMode,
    SyncCheck,
    SyncResult,
    SyncStatus,
)
from pulsesync.reconcile.day_merge import build_day_row
from pulsesync.reconcile.dedupe import dedupe_by_video_day
from pulsesync.services import Services, get_services

logger = get_logger("api.sync")

router = APIRouter(tags=["Sync"])


# ── Request / Response Models ──


class RunSyncRequest(BaseModel):
    """Request body for POST /sync/run."""

    mode: Optional[MergeMode] = None
    """"union" or "overwrite". Defaults to the configured merge mode."""
    preserve_local: bool = False
    """Overwrite mode only: keep local records the remote does not have."""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"mode": "union"},
                {"mode": "overwrite", "preserve_local": True},
            ]
        }
    }


class RetentionResponse(BaseModel):
    today: str
    window: List[str]
    eligible_for_eviction: List[str]


class EvictionResponse(BaseModel):
    status: str = "success"
    evicted: Dict[str, int]


# ── Endpoints ──


@router.get("/sync/status", response_model=SyncStatus)
async def sync_status(services: Services = Depends(get_services)):
    try:
        return services.store.load_sync_status()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to load sync status: {e}")


@router.get("/sync/check", response_model=SyncCheck)
async def sync_check(services: Services = Depends(get_services)):
    """Whether a full sync is due, and why."""
    try:
        return services.orchestrator.check_sync_needed()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Sync check failed: {e}")


@router.post("/sync/run", response_model=SyncResult)
async def run_sync(
    request: RunSyncRequest,
    services: Services = Depends(get_services),
):
    """Run a full local ↔ remote sync.

    A call made while a sync is running joins it (or is refused, depending
    on the configured reentry policy).
    """
    try:
        return await services.orchestrator.perform_full_sync(
            mode=request.mode, preserve_local=request.preserve_local
        )
    except StorageError as e:
        logger.error(f"Sync run failed: {e}")
        raise HTTPException(status_code=500, detail=f"Sync failed: {e}")


@router.get("/days", response_model=List[DayRow])
async def list_days(services: Services = Depends(get_services)):
    """Aggregates for every day in the current retention window, oldest first."""
    try:
        services.rollover.check()
        window = services.rollover.window
        by_day = services.store.get_range(window)
        audit_counts = services.store.count_conflicts(window)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to read days: {e}")
    return [
        build_day_row(
            day, dedupe_by_video_day(by_day[day]), DayOrigin.LOCAL, audit_counts[day]
        )
        for day in window
    ]


@router.get("/retention", response_model=RetentionResponse)
async def retention(services: Services = Depends(get_services)):
    rollover = services.rollover
    try:
        rollover.check()
        eligible = rollover.eviction_candidates()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to read partitions: {e}")
    return RetentionResponse(
        today=rollover.current_day,
        window=rollover.window,
        eligible_for_eviction=eligible,
    )


@router.get("/conflicts", response_model=List[ConflictRecord])
async def list_conflicts(
    day_key: Optional[str] = Query(None, description="YYYY-MM-DD"),
    services: Services = Depends(get_services),
):
    """Audit trail of divergent records the resolver chose between."""
    try:
        return services.store.list_conflicts(day_key)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to read conflicts: {e}")


@router.post("/retention/evict", response_model=EvictionResponse)
async def evict(services: Services = Depends(get_services)):
    """Delete every stored partition older than the retention window."""
    try:
        evicted = services.rollover.evict_expired()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Eviction failed: {e}")
    return EvictionResponse(evicted=evicted)


@router.delete("/admin/records")
async def purge_records(
    confirm: bool = Query(False, description="Must be true to purge"),
    services: Services = Depends(get_services),
):
    """Admin purge: remove every local record and sync bookkeeping."""
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to purge")
    try:
        deleted = services.store.purge_all()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Purge failed: {e}")
    return {"status": "success", "deleted": deleted}
