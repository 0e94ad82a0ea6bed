"""PulseSync — Local Store Adapter.

Durable local persistence of metric records, partitioned by day_key.
Record partitions change only through `replace_by_day` / `delete_by_day`
(plus collector `put` and admin purge), each of which is one transaction.
Failures surface as StorageError; nothing here retries.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from pulsesync.core.days import validate_day_key
from pulsesync.core.errors import StorageError, ValidationError
from pulsesync.core.logging import get_logger
from pulsesync.models.record_models import MetricRecordRow, Record
from pulsesync.models.sync_models import (
    ConflictAuditRow,
    ConflictRecord,
    FailedUploadRow,
    SyncOutcome,
    SyncStatus,
    SyncStatusRow,
)

logger = get_logger("store.local")


class LocalStore:
    """SQLModel-backed record store keyed by record id."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        """Session that commits on success and rolls back on any DB error."""
        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Local store {operation} failed: {e}", extra={"operation": operation})
            raise StorageError(f"{operation} failed: {e}", operation) from e
        finally:
            session.close()

    @contextmanager
    def _read(self, operation: str) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Local store {operation} failed: {e}", extra={"operation": operation})
            raise StorageError(f"{operation} failed: {e}", operation) from e

    # ── Records ──

    def put(self, records: Iterable[Record]) -> int:
        """Insert or update records by id. Records with a bad day_key are dropped."""
        rows = []
        for record in records:
            if not validate_day_key(record.day_key):
                logger.warning(
                    f"Dropping record: invalid day_key {record.day_key!r}",
                    extra={"record_id": record.id},
                )
                continue
            rows.append(MetricRecordRow.from_record(record))
        if not rows:
            return 0
        with self._transaction("put") as session:
            for row in rows:
                session.merge(row)
        logger.info(f"Stored {len(rows)} records")
        return len(rows)

    def get_by_day(self, day_key: str) -> List[Record]:
        with self._read("get_by_day") as session:
            rows = session.exec(
                select(MetricRecordRow)
                .where(MetricRecordRow.day_key == day_key)
                .order_by(MetricRecordRow.external_video_id, MetricRecordRow.id)
            ).all()
            return [r.to_record() for r in rows]

    def get_range(self, day_keys: Sequence[str]) -> Dict[str, List[Record]]:
        """Records for each requested day; every requested key is present."""
        result: Dict[str, List[Record]] = {d: [] for d in day_keys}
        if not day_keys:
            return result
        with self._read("get_range") as session:
            rows = session.exec(
                select(MetricRecordRow)
                .where(MetricRecordRow.day_key.in_(list(day_keys)))  # type: ignore
                .order_by(MetricRecordRow.external_video_id, MetricRecordRow.id)
            ).all()
            for r in rows:
                result[r.day_key].append(r.to_record())
        return result

    def replace_by_day(self, day_key: str, records: Sequence[Record]) -> int:
        """Atomically swap the whole partition for `records`."""
        stray = [r.id for r in records if r.day_key != day_key]
        if stray:
            raise ValidationError(
                f"replace_by_day({day_key}) given records from other days: {stray}"
            )
        with self._transaction("replace_by_day") as session:
            session.execute(
                delete(MetricRecordRow).where(MetricRecordRow.day_key == day_key)  # type: ignore
            )
            session.add_all([MetricRecordRow.from_record(r) for r in records])
        logger.info(
            f"Replaced partition with {len(records)} records",
            extra={"day_key": day_key},
        )
        return len(records)

    def delete_by_day(self, day_key: str) -> int:
        with self._transaction("delete_by_day") as session:
            result = session.execute(
                delete(MetricRecordRow).where(MetricRecordRow.day_key == day_key)  # type: ignore
            )
            deleted = result.rowcount or 0
        logger.info(f"Deleted {deleted} records", extra={"day_key": day_key})
        return deleted

    def list_day_keys(self) -> List[str]:
        with self._read("list_day_keys") as session:
            keys = session.exec(
                select(MetricRecordRow.day_key).distinct().order_by(MetricRecordRow.day_key)
            ).all()
            return list(keys)

    def count_in_days(self, day_keys: Sequence[str]) -> int:
        if not day_keys:
            return 0
        with self._read("count_in_days") as session:
            count = session.exec(
                select(func.count())
                .select_from(MetricRecordRow)
                .where(MetricRecordRow.day_key.in_(list(day_keys)))  # type: ignore
            ).one()
            return int(count)

    def purge_all(self) -> int:
        """Admin purge: remove every record and the sync bookkeeping."""
        with self._transaction("purge_all") as session:
            result = session.execute(delete(MetricRecordRow))
            session.execute(delete(FailedUploadRow))
            session.execute(delete(ConflictAuditRow))
            session.execute(delete(SyncStatusRow))
            deleted = result.rowcount or 0
        logger.warning(f"Admin purge removed {deleted} records")
        return deleted

    # ── Sync status ──

    def load_sync_status(self) -> SyncStatus:
        with self._read("load_sync_status") as session:
            row = session.get(SyncStatusRow, 1)
            pending = session.exec(
                select(func.count()).select_from(FailedUploadRow)
            ).one()
        if row is None:
            return SyncStatus(pending_failures=int(pending))
        ts = row.last_sync_timestamp
        if ts is not None and ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return SyncStatus(
            last_sync_timestamp=ts,
            last_sync_outcome=SyncOutcome(row.last_sync_outcome),
            last_remote_count=row.last_remote_count,
            last_local_count=row.last_local_count,
            pending_failures=int(pending),
        )

    def save_sync_status(self, status: SyncStatus) -> None:
        ts = status.last_sync_timestamp
        with self._transaction("save_sync_status") as session:
            session.merge(
                SyncStatusRow(
                    id=1,
                    last_sync_timestamp=ts.astimezone(timezone.utc) if ts else None,
                    last_sync_outcome=status.last_sync_outcome.value,
                    last_remote_count=status.last_remote_count,
                    last_local_count=status.last_local_count,
                    updated_at=datetime.now(timezone.utc),
                )
            )

    # ── Conflict audit ──

    def append_conflicts(self, conflicts: Sequence[ConflictRecord]) -> int:
        """Add conflicts to the audit trail; already-recorded fingerprints are skipped."""
        if not conflicts:
            return 0
        fingerprints = [c.fingerprint for c in conflicts]
        with self._transaction("append_conflicts") as session:
            existing = set(
                session.exec(
                    select(ConflictAuditRow.fingerprint).where(
                        ConflictAuditRow.fingerprint.in_(fingerprints)  # type: ignore
                    )
                ).all()
            )
            added = 0
            for conflict in conflicts:
                fp = conflict.fingerprint
                if fp in existing:
                    continue
                existing.add(fp)
                session.add(
                    ConflictAuditRow(
                        day_key=conflict.day_key,
                        external_video_id=conflict.external_video_id,
                        resolution=conflict.resolution,
                        reason=conflict.reason,
                        fingerprint=fp,
                    )
                )
                added += 1
        return added

    def count_conflicts(self, day_keys: Sequence[str]) -> Dict[str, int]:
        """Audit-trail size per day; every requested key is present."""
        counts = {d: 0 for d in day_keys}
        if not day_keys:
            return counts
        with self._read("count_conflicts") as session:
            rows = session.exec(
                select(ConflictAuditRow.day_key, func.count())
                .where(ConflictAuditRow.day_key.in_(list(day_keys)))  # type: ignore
                .group_by(ConflictAuditRow.day_key)
            ).all()
        for day_key, count in rows:
            counts[day_key] = int(count)
        return counts

    def list_conflicts(self, day_key: Optional[str] = None) -> List[ConflictRecord]:
        with self._read("list_conflicts") as session:
            query = select(ConflictAuditRow).order_by(ConflictAuditRow.id)  # type: ignore
            if day_key:
                query = query.where(ConflictAuditRow.day_key == day_key)
            rows = session.exec(query).all()
            return [
                ConflictRecord(
                    day_key=r.day_key,
                    external_video_id=r.external_video_id,
                    resolution=r.resolution,
                    reason=r.reason,
                    fingerprint=r.fingerprint,
                )
                for r in rows
            ]

    # ── Failed uploads (dead letter) ──

    def record_failed_uploads(
        self, records: Sequence[Record], error: str, attempts: int
    ) -> None:
        if not records:
            return
        with self._transaction("record_failed_uploads") as session:
            for r in records:
                session.merge(
                    FailedUploadRow(
                        record_id=r.id,
                        day_key=r.day_key,
                        error=error[:500],
                        attempts=attempts,
                    )
                )
        logger.warning(f"Recorded {len(records)} records as failed uploads")

    def failed_upload_ids(self) -> List[str]:
        with self._read("failed_upload_ids") as session:
            return list(session.exec(select(FailedUploadRow.record_id)).all())

    def clear_failed_uploads(self, record_ids: Sequence[str]) -> None:
        if not record_ids:
            return
        with self._transaction("clear_failed_uploads") as session:
            session.execute(
                delete(FailedUploadRow).where(
                    FailedUploadRow.record_id.in_(list(record_ids))  # type: ignore
                )
            )
