from datetime import datetime, timedelta, timezone

import pytest

from pulsesync.database import init_db, make_engine
from pulsesync.models.record_models import Record
from pulsesync.models.sync_models import (
    BatchResult,
    DownloadResult,
    ReplaceResult,
    UploadResult,
)
from pulsesync.store.local_store import LocalStore

# 12:00 in Asia/Seoul
NOW = datetime(2025, 6, 1, 3, 0, tzinfo=timezone.utc)
TODAY = "2025-06-01"


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return LocalStore(engine)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


class FakeRemote:
    """In-memory stand-in for RemoteClient."""

    def __init__(
        self,
        records: list[Record] | None = None,
        fail_days: set[str] | None = None,
        snapshot_error: str | None = None,
        upload_error: str | None = None,
        replace_error: str | None = None,
    ):
        self.records = list(records or [])
        self.fail_days = fail_days or set()
        self.snapshot_error = snapshot_error
        self.upload_error = upload_error
        self.replace_error = replace_error
        self.uploaded: list[Record] = []
        self.upload_calls = 0
        self.replaced: list[tuple[list[str], list[str]]] = []

    async def download_by_date(self, day_key: str) -> DownloadResult:
        if day_key in self.fail_days:
            return DownloadResult(success=False, error=f"timeout reading {day_key}")
        return DownloadResult(
            success=True, records=[r for r in self.records if r.day_key == day_key]
        )

    async def download_all(self, days: int | None = None) -> DownloadResult:
        if self.snapshot_error:
            return DownloadResult(success=False, error=self.snapshot_error)
        return DownloadResult(success=True, records=list(self.records))

    async def upload_batch(self, records, batch_size=None) -> UploadResult:
        self.upload_calls += 1
        batch = BatchResult(
            index=0,
            size=len(records),
            attempts=1,
            record_ids=[r.id for r in records],
        )
        if self.upload_error:
            batch.success = False
            batch.attempts = 3
            batch.error = self.upload_error
        else:
            batch.success = True
            self.uploaded.extend(records)
            self.records.extend(records)
        return UploadResult(batches=[batch])

    async def replace_date_range(self, day_keys, records) -> ReplaceResult:
        if self.replace_error:
            return ReplaceResult(
                success=False, day_keys=list(day_keys), attempts=3, error=self.replace_error
            )
        self.replaced.append((list(day_keys), [r.id for r in records]))
        self.records = [r for r in self.records if r.day_key not in day_keys] + list(records)
        return ReplaceResult(
            success=True, day_keys=list(day_keys), inserted=len(records), attempts=1
        )

    async def close(self) -> None:
        pass


@pytest.fixture
def fake_remote():
    return FakeRemote()
