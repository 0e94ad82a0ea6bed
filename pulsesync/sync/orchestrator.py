"""PulseSync — Full Sync Orchestrator.

Runs a complete local ↔ remote pass:
  download window snapshot → merge & persist each day → upload local-only
  winners, replace remote days where a local record superseded the remote one
  → record failures → persist SyncStatus

Only one pass runs at a time (SyncCoordinator single flight).
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from pulsesync.config import settings
from pulsesync.connectors.remote.client import RemoteClient
from pulsesync.core.days import today_key, window_day_keys
from pulsesync.core.errors import StorageError, SyncInProgressError
from pulsesync.core.logging import get_logger
from pulsesync.models.record_models import Record
from pulsesync.models.sync_models import (
    MergeMode,
    ReplaceResult,
    SyncCheck,
    SyncOutcome,
    SyncResult,
    SyncStats,
    SyncStatus,
    UploadResult,
)
from pulsesync.reconcile.day_merge import DayMergeService
from pulsesync.reconcile.dedupe import dedupe_by_date
from pulsesync.store.local_store import LocalStore
from pulsesync.sync.coordinator import SyncCoordinator

logger = get_logger("sync.orchestrator")

EVENT_SYNC_STARTED = "sync.started"
EVENT_SYNC_COMPLETED = "sync.completed"
EVENT_SYNC_FAILED = "sync.failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FullSyncOrchestrator:
    """Decides whether a sync is due and drives one full reconciliation pass."""

    def __init__(
        self,
        store: LocalStore,
        client: RemoteClient,
        coordinator: SyncCoordinator,
        merger: Optional[DayMergeService] = None,
        stale_minutes: Optional[int] = None,
        count_drift: Optional[int] = None,
        retention_days: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.client = client
        self.coordinator = coordinator
        self.retention_days = retention_days or settings.retention_days
        self.merger = merger or DayMergeService(
            store, client, coordinator, self.retention_days
        )
        self.stale_after = timedelta(
            minutes=stale_minutes if stale_minutes is not None else settings.sync_stale_minutes
        )
        self.count_drift = count_drift if count_drift is not None else settings.sync_count_drift
        self.clock = clock

    def _window(self) -> List[str]:
        return window_day_keys(today_key(self.clock()), self.retention_days)

    # ── Sync needed? ──

    def check_sync_needed(self) -> SyncCheck:
        if self.coordinator.in_progress:
            return SyncCheck(needed=False, reason="sync already in progress")

        status = self.store.load_sync_status()
        if status.last_sync_timestamp is None:
            return SyncCheck(needed=True, reason="never synced")

        age = self.clock() - status.last_sync_timestamp
        if age > self.stale_after:
            minutes = int(age.total_seconds() // 60)
            return SyncCheck(
                needed=True,
                reason=f"last sync {minutes}m ago exceeds {int(self.stale_after.total_seconds() // 60)}m threshold",
            )

        if status.last_sync_outcome != SyncOutcome.COMPLETED:
            return SyncCheck(
                needed=True, reason=f"last sync outcome: {status.last_sync_outcome.value}"
            )

        if status.pending_failures > 0:
            return SyncCheck(
                needed=True, reason=f"{status.pending_failures} failed uploads pending"
            )

        local_count = self.store.count_in_days(self._window())
        if abs(local_count - status.last_remote_count) > self.count_drift:
            return SyncCheck(
                needed=True,
                reason=f"local count {local_count} differs from remote count {status.last_remote_count}",
            )

        return SyncCheck(needed=False, reason="up to date")

    # ── Full sync ──

    async def perform_full_sync(
        self,
        mode: Optional[MergeMode] = None,
        preserve_local: bool = False,
        policy: Optional[str] = None,
    ) -> SyncResult:
        mode = mode or MergeMode(settings.default_merge_mode)
        try:
            return await self.coordinator.run_exclusive(
                lambda: self._run(mode, preserve_local), policy=policy
            )
        except SyncInProgressError as e:
            return SyncResult(
                success=False, outcome=SyncOutcome.IN_PROGRESS, errors=[str(e)]
            )

    async def _run(self, mode: MergeMode, preserve_local: bool) -> SyncResult:
        started = self.clock()
        today = today_key(started)
        days = window_day_keys(today, self.retention_days)
        previous = self.store.load_sync_status()
        logger.info(f"Full sync starting for {today}", extra={"mode": mode.value})
        self.coordinator.emit(EVENT_SYNC_STARTED, {"mode": mode.value, "today": today})

        # ── Step 1: Remote snapshot ──
        snapshot = await self.client.download_all(self.retention_days)
        if not snapshot.success:
            error = snapshot.error or "remote snapshot unavailable"
            logger.error(f"Full sync made no progress: {error}")
            self.store.save_sync_status(
                previous.model_copy(update={"last_sync_outcome": SyncOutcome.FAILED})
            )
            self.coordinator.emit(EVENT_SYNC_FAILED, {"error": error})
            return SyncResult(success=False, outcome=SyncOutcome.FAILED, errors=[error])

        window = set(days)
        remote_by_day: Dict[str, List[Record]] = {
            day: records
            for day, records in dedupe_by_date(snapshot.records).items()
            if day in window
        }
        downloaded = sum(len(v) for v in remote_by_day.values())

        try:
            # ── Step 2: Merge & persist ──
            merged = await self.merger.load_and_merge_days(
                mode,
                remote_snapshot=remote_by_day,
                preserve_local=preserve_local,
                today=today,
            )

            # ── Step 3: Upload local winners and earlier failures ──
            candidates = self._upload_candidates(merged.local_winners, days)
            replace_days = self._days_needing_replace(candidates, remote_by_day)
            to_upload = [r for r in candidates if r.day_key not in replace_days]
            upload = (
                await self.client.upload_batch(to_upload) if to_upload else UploadResult()
            )
            self._record_upload_outcome(upload, to_upload)
            replaced = await self._replace_days(
                replace_days, [r for r in candidates if r.day_key in replace_days]
            )

            # ── Step 4: Status ──
            local_count = self.store.count_in_days(days)
        except StorageError as e:
            logger.error(f"Full sync aborted by local storage failure: {e}")
            self.coordinator.emit(EVENT_SYNC_FAILED, {"error": str(e)})
            raise

        failed_batches = upload.failed_batches
        replace_failed = not replaced.success
        issues = bool(
            failed_batches or replace_failed or merged.stats.failed_days or snapshot.rejected
        )
        outcome = SyncOutcome.COMPLETED_WITH_ISSUES if issues else SyncOutcome.COMPLETED
        if failed_batches or replace_failed:
            # Best estimate of what the remote holds now
            replaced_before = sum(len(remote_by_day.get(d, [])) for d in replaced.day_keys)
            remote_count = downloaded + upload.uploaded
            if replaced.success:
                remote_count += replaced.inserted - replaced_before
        else:
            remote_count = local_count

        self.store.save_sync_status(
            SyncStatus(
                last_sync_timestamp=self.clock(),
                last_sync_outcome=outcome,
                last_remote_count=remote_count,
                last_local_count=local_count,
            )
        )

        stats = SyncStats(
            uploaded=upload.uploaded,
            replaced_days=len(replaced.day_keys) if replaced.success else 0,
            downloaded=downloaded,
            conflicts=len(merged.conflicts),
            failed_batches=len(failed_batches),
            failed_days=merged.stats.failed_days,
            rejected=snapshot.rejected,
        )
        errors = [b.error for b in failed_batches if b.error]
        if replaced.error:
            errors.append(replaced.error)
        duration_ms = int((self.clock() - started).total_seconds() * 1000)
        logger.info(
            f"Full sync {outcome.value}: uploaded={stats.uploaded} downloaded={stats.downloaded} "
            f"replaced_days={stats.replaced_days} conflicts={stats.conflicts} "
            f"failed_batches={stats.failed_batches}",
            extra={"mode": mode.value, "duration_ms": duration_ms},
        )
        self.coordinator.emit(
            EVENT_SYNC_COMPLETED, {"outcome": outcome.value, **stats.model_dump()}
        )
        return SyncResult(
            success=True,
            outcome=outcome,
            merged_days=merged.merged_days,
            conflicts=merged.conflicts,
            stats=stats,
            errors=errors,
        )

    def _upload_candidates(self, local_winners: List[Record], days: List[str]) -> List[Record]:
        """Local winners plus records from earlier failed batches still in the window."""
        candidates: Dict[str, Record] = {r.id: r for r in local_winners}
        pending = set(self.store.failed_upload_ids())
        if pending:
            still_present = set()
            for records in self.store.get_range(days).values():
                for r in records:
                    if r.id in pending:
                        candidates.setdefault(r.id, r)
                        still_present.add(r.id)
            # Records merged away or evicted have nothing left to upload
            self.store.clear_failed_uploads(sorted(pending - still_present))
        return [candidates[k] for k in sorted(candidates)]

    def _record_upload_outcome(self, upload: UploadResult, records: List[Record]) -> None:
        by_id = {r.id: r for r in records}
        succeeded: List[str] = []
        for batch in upload.batches:
            if batch.success:
                succeeded.extend(batch.record_ids)
            else:
                self.store.record_failed_uploads(
                    [by_id[i] for i in batch.record_ids],
                    batch.error or "upload failed",
                    batch.attempts,
                )
        self.store.clear_failed_uploads(succeeded)

    @staticmethod
    def _days_needing_replace(
        candidates: List[Record], remote_by_day: Dict[str, List[Record]]
    ) -> List[str]:
        """Days where a local record must supersede one the remote already holds.

        A bulk insert there would leave two remote records for one
        (day_key, video) pair, so those days are replaced wholesale.
        """
        remote_keys = {
            (r.day_key, r.external_video_id)
            for records in remote_by_day.values()
            for r in records
        }
        return sorted(
            {r.day_key for r in candidates if (r.day_key, r.external_video_id) in remote_keys}
        )

    async def _replace_days(self, day_keys: List[str], winners: List[Record]) -> ReplaceResult:
        if not day_keys:
            return ReplaceResult(success=True)
        canonical = [r for records in self.store.get_range(day_keys).values() for r in records]
        replaced = await self.client.replace_date_range(day_keys, canonical)
        if replaced.success:
            self.store.clear_failed_uploads([r.id for r in winners])
        else:
            self.store.record_failed_uploads(
                winners, replaced.error or "replace failed", replaced.attempts
            )
        return replaced
