"""PulseSync — Day Merge Service.

Reconciles one day partition's local and remote record sets into a
canonical set, then persists it with a single atomic partition replace.

Modes:
  overwrite — remote is authoritative; remote-absent local records are
              dropped (and audited) unless preserve_local is set.
  union     — keep every key from either side; keys on both sides are
              settled by the priority resolver.
"""

import hashlib
import json
from typing import Dict, List, Optional, Protocol, Sequence

from pulsesync.config import settings
from pulsesync.core.days import today_key, window_day_keys
from pulsesync.core.logging import get_logger
from pulsesync.models.record_models import CollectionType, Record
from pulsesync.models.sync_models import (
    ConflictRecord,
    DayMergeOutcome,
    DayOrigin,
    DayRow,
    DownloadResult,
    MergeMode,
    MergeResult,
    MergeStats,
)
from pulsesync.reconcile.dedupe import dedupe_by_video_day
from pulsesync.reconcile.priority import priority, resolve
from pulsesync.store.local_store import LocalStore
from pulsesync.sync.coordinator import SyncCoordinator

logger = get_logger("reconcile.day_merge")

EVENT_DAYS_MERGED = "days.merged"


class DayDownloader(Protocol):
    async def download_by_date(self, day_key: str) -> DownloadResult: ...


def _compared_fields(record: Record) -> tuple:
    """Values whose divergence between sides is worth an audit entry."""
    c = record.classification
    return (
        record.view_count,
        record.collection_type.value,
        c.category,
        c.sub_category,
        c.status.value,
    )


def _fingerprint(local: Optional[Record], remote: Optional[Record]) -> str:
    def _side(r: Optional[Record]) -> list:
        if r is None:
            return []
        return [r.id, *_compared_fields(r), r.collection_timestamp.isoformat()]

    payload = json.dumps([_side(local), _side(remote)], default=str)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


def _divergence_reason(local: Record, remote: Record) -> str:
    parts = []
    if local.view_count != remote.view_count:
        parts.append(f"view_count {local.view_count} vs {remote.view_count}")
    if local.collection_type != remote.collection_type:
        parts.append(
            f"collection_type {local.collection_type.value} vs {remote.collection_type.value}"
        )
    if local.classification != remote.classification:
        parts.append(
            f"status {local.classification.status.value} vs {remote.classification.status.value}"
        )
    parts.append(f"priority {priority(local)} vs {priority(remote)}")
    return "; ".join(parts)


def _same_record(a: Record, b: Record) -> bool:
    return a.id == b.id and _compared_fields(a) == _compared_fields(b)


def _day_origin(canonical: Dict[str, Record], remote: Dict[str, Record]) -> DayOrigin:
    """Where the canonical set came from, judged by its content only.

    A remote day merged once and merged again is still "remote", since the
    stored copy equals the remote copy.
    """
    if not remote:
        return DayOrigin.LOCAL
    if canonical.keys() == remote.keys() and all(
        _same_record(canonical[k], remote[k]) for k in canonical
    ):
        return DayOrigin.REMOTE
    return DayOrigin.MERGED


def build_day_row(
    day_key: str,
    records: Sequence[Record],
    origin: DayOrigin,
    conflicts: int = 0,
) -> DayRow:
    by_source = {t.value: 0 for t in CollectionType}
    classified = 0
    for r in records:
        by_source[r.collection_type.value] += 1
        if r.is_classified:
            classified += 1
    return DayRow(
        day_key=day_key,
        total=len(records),
        classified=classified,
        by_source=by_source,
        origin=origin,
        conflicts=conflicts,
    )


def merge_by_day(
    day_key: str,
    local_records: Sequence[Record],
    remote_records: Sequence[Record],
    mode: MergeMode = MergeMode.UNION,
    preserve_local: bool = False,
) -> DayMergeOutcome:
    """Reconcile one day. Pure: no I/O."""
    local = {r.external_video_id: r for r in dedupe_by_video_day(local_records)}
    remote = {r.external_video_id: r for r in dedupe_by_video_day(remote_records)}

    canonical: Dict[str, Record] = {}
    conflicts: List[ConflictRecord] = []
    local_winners: List[Record] = []

    for video_id in sorted(set(local) | set(remote)):
        l_rec = local.get(video_id)
        r_rec = remote.get(video_id)

        if l_rec is None:
            canonical[video_id] = r_rec
            continue

        if r_rec is None:
            if mode == MergeMode.OVERWRITE and not preserve_local:
                conflicts.append(
                    ConflictRecord(
                        day_key=day_key,
                        external_video_id=video_id,
                        resolution="remote",
                        reason="overwrite: local-only record dropped",
                        fingerprint=_fingerprint(l_rec, None),
                    )
                )
                continue
            canonical[video_id] = l_rec
            local_winners.append(l_rec)
            continue

        if mode == MergeMode.OVERWRITE:
            winner = r_rec
        else:
            winner = resolve(l_rec, r_rec)
        canonical[video_id] = winner

        if _compared_fields(l_rec) == _compared_fields(r_rec):
            continue

        from_local = winner is l_rec
        if from_local:
            local_winners.append(l_rec)
        reason = _divergence_reason(l_rec, r_rec)
        if mode == MergeMode.OVERWRITE:
            reason = f"overwrite: remote authoritative; {reason}"
        conflicts.append(
            ConflictRecord(
                day_key=day_key,
                external_video_id=video_id,
                resolution="local" if from_local else "remote",
                reason=reason,
                fingerprint=_fingerprint(l_rec, r_rec),
            )
        )

    records = [canonical[v] for v in sorted(canonical)]
    origin = _day_origin(canonical, remote)
    return DayMergeOutcome(
        day_row=build_day_row(day_key, records, origin, len(conflicts)),
        records=records,
        conflicts=conflicts,
        local_winners=local_winners,
    )


class DayMergeService:
    """Runs merge_by_day over the retention window and persists each day."""

    def __init__(
        self,
        store: LocalStore,
        downloader: Optional[DayDownloader] = None,
        coordinator: Optional[SyncCoordinator] = None,
        retention_days: Optional[int] = None,
    ):
        self.store = store
        self.downloader = downloader
        self.coordinator = coordinator
        self.retention_days = retention_days or settings.retention_days

    def merge_by_day(
        self,
        day_key: str,
        local_records: Sequence[Record],
        remote_records: Sequence[Record],
        mode: MergeMode = MergeMode.UNION,
        preserve_local: bool = False,
    ) -> DayMergeOutcome:
        return merge_by_day(day_key, local_records, remote_records, mode, preserve_local)

    async def load_and_merge_days(
        self,
        mode: MergeMode = MergeMode.UNION,
        remote_snapshot: Optional[Dict[str, List[Record]]] = None,
        preserve_local: bool = False,
        today: Optional[str] = None,
    ) -> MergeResult:
        """Merge and persist every day of the window ending at `today`.

        Without a snapshot each day is downloaded individually. A day whose
        download fails is left untouched locally and counted as failed.
        """
        if remote_snapshot is None and self.downloader is None:
            raise ValueError("load_and_merge_days needs a remote snapshot or a downloader")

        days = window_day_keys(today or today_key(), self.retention_days)
        local_by_day = self.store.get_range(days)
        logger.info(
            f"Merging {len(days)} days: {days[0] if days else '-'} → {days[-1] if days else '-'}",
            extra={"mode": mode.value},
        )

        result = MergeResult()
        stats = MergeStats()

        for day in days:
            local_records = local_by_day.get(day, [])

            if remote_snapshot is not None:
                remote_records = remote_snapshot.get(day, [])
            else:
                downloaded = await self.downloader.download_by_date(day)  # type: ignore[union-attr]
                if not downloaded.success:
                    logger.warning(
                        f"Remote read failed, keeping local partition: {downloaded.error}",
                        extra={"day_key": day},
                    )
                    stats.failed_days += 1
                    result.failed_day_keys.append(day)
                    if local_records:
                        stats.local_days += 1
                        result.merged_days.append(
                            build_day_row(
                                day, dedupe_by_video_day(local_records), DayOrigin.LOCAL
                            )
                        )
                    continue
                remote_records = downloaded.records

            if not local_records and not remote_records:
                continue
            if local_records:
                stats.local_days += 1
            if remote_records:
                stats.server_days += 1

            outcome = merge_by_day(day, local_records, remote_records, mode, preserve_local)
            self.store.replace_by_day(day, outcome.records)
            if outcome.conflicts:
                self.store.append_conflicts(outcome.conflicts)

            result.merged_days.append(outcome.day_row)
            result.conflicts.extend(outcome.conflicts)
            result.local_winners.extend(outcome.local_winners)

        # Report the day's whole audit trail so a re-run shows the same rows
        audit_counts = self.store.count_conflicts([d.day_key for d in result.merged_days])
        result.merged_days = [
            d.model_copy(update={"conflicts": audit_counts[d.day_key]})
            for d in result.merged_days
        ]

        stats.merged_days = len(result.merged_days)
        stats.total_days = len(result.merged_days)
        stats.conflicts = len(result.conflicts)
        result.stats = stats

        logger.info(
            f"Merge complete: {stats.merged_days} days, {stats.conflicts} conflicts, "
            f"{stats.failed_days} failed",
            extra={"mode": mode.value},
        )
        if self.coordinator is not None:
            self.coordinator.emit(
                EVENT_DAYS_MERGED,
                {
                    "days": [d.day_key for d in result.merged_days],
                    "conflicts": stats.conflicts,
                    "failed_days": result.failed_day_keys,
                },
            )
        return result
