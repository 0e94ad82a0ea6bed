"""PulseSync — Reconciliation & Sync Models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict
from pydantic import BaseModel, Field as PydanticField
from sqlmodel import SQLModel, Field, UniqueConstraint

from pulsesync.models.record_models import Record


# ─────────────────────────────────────────────
# DATABASE MODELS — Sync bookkeeping
# ─────────────────────────────────────────────


class SyncStatusRow(SQLModel, table=True):
    """Single-row table holding the outcome of the last full sync."""

    __tablename__ = "sync_status"

    id: int = Field(default=1, primary_key=True)
    last_sync_timestamp: Optional[datetime] = Field(default=None)
    last_sync_outcome: str = Field(default="never")
    last_remote_count: int = Field(default=0)
    last_local_count: int = Field(default=0)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ConflictAuditRow(SQLModel, table=True):
    """Audit trail of resolver decisions.

    The fingerprint covers both diverging representations, so re-merging
    unchanged inputs never adds a second entry.
    """

    __tablename__ = "conflict_audit"
    __table_args__ = (UniqueConstraint("fingerprint", name="uq_conflict_fingerprint"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    day_key: str = Field(index=True)
    external_video_id: str = Field(index=True)
    resolution: str = Field(description="local | remote")
    reason: str = Field(default="")
    fingerprint: str = Field(description="sha1 of local|remote representations")
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FailedUploadRow(SQLModel, table=True):
    """Dead-letter entry for a record whose upload batch exhausted its retries."""

    __tablename__ = "failed_uploads"

    record_id: str = Field(primary_key=True)
    day_key: str = Field(index=True)
    error: str = Field(default="")
    attempts: int = Field(default=0)
    failed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS — Merge results
# ─────────────────────────────────────────────


class MergeMode(str, Enum):
    OVERWRITE = "overwrite"
    UNION = "union"


class DayOrigin(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    MERGED = "merged"


class SyncOutcome(str, Enum):
    NEVER = "never"
    COMPLETED = "completed"
    COMPLETED_WITH_ISSUES = "completed_with_issues"
    FAILED = "failed"
    IN_PROGRESS = "in_progress"


class DayRow(BaseModel):
    """Aggregate of one day partition. Always recomputed, never stored."""

    day_key: str
    total: int = 0
    classified: int = 0
    by_source: Dict[str, int] = {}
    origin: DayOrigin = DayOrigin.MERGED
    conflicts: int = 0


class ConflictRecord(BaseModel):
    """Informational entry: the resolver chose between divergent values."""

    day_key: str
    external_video_id: str
    resolution: str
    reason: str
    fingerprint: str = ""


class DayMergeOutcome(BaseModel):
    """Result of reconciling one day partition."""

    day_row: DayRow
    records: List[Record] = []
    conflicts: List[ConflictRecord] = []
    local_winners: List[Record] = []
    """Canonical records whose winning representation came from the local side."""


class MergeStats(BaseModel):
    total_days: int = 0
    server_days: int = 0
    local_days: int = 0
    merged_days: int = 0
    conflicts: int = 0
    failed_days: int = 0


class MergeResult(BaseModel):
    merged_days: List[DayRow] = []
    conflicts: List[ConflictRecord] = []
    stats: MergeStats = PydanticField(default_factory=MergeStats)
    local_winners: List[Record] = []
    failed_day_keys: List[str] = []


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS — Remote transport results
# ─────────────────────────────────────────────


class BatchResult(BaseModel):
    index: int
    size: int
    attempts: int = 0
    success: bool = False
    error: Optional[str] = None
    record_ids: List[str] = []


class UploadResult(BaseModel):
    batches: List[BatchResult] = []

    @property
    def uploaded(self) -> int:
        return sum(b.size for b in self.batches if b.success)

    @property
    def failed(self) -> int:
        return sum(b.size for b in self.batches if not b.success)

    @property
    def failed_batches(self) -> List[BatchResult]:
        return [b for b in self.batches if not b.success]


class DownloadResult(BaseModel):
    success: bool
    records: List[Record] = []
    rejected: int = 0
    error: Optional[str] = None


class ReplaceResult(BaseModel):
    success: bool
    day_keys: List[str] = []
    inserted: int = 0
    attempts: int = 0
    error: Optional[str] = None


# ─────────────────────────────────────────────
# PYDANTIC SCHEMAS — Orchestrator
# ─────────────────────────────────────────────


class SyncStatus(BaseModel):
    last_sync_timestamp: Optional[datetime] = None
    last_sync_outcome: SyncOutcome = SyncOutcome.NEVER
    last_remote_count: int = 0
    last_local_count: int = 0
    pending_failures: int = 0


class SyncCheck(BaseModel):
    needed: bool
    reason: str


class SyncStats(BaseModel):
    uploaded: int = 0
    replaced_days: int = 0
    downloaded: int = 0
    conflicts: int = 0
    failed_batches: int = 0
    failed_days: int = 0
    rejected: int = 0


class SyncResult(BaseModel):
    success: bool
    outcome: SyncOutcome
    merged_days: List[DayRow] = []
    conflicts: List[ConflictRecord] = []
    stats: SyncStats = PydanticField(default_factory=SyncStats)
    errors: List[str] = []
