"""PulseSync — Metric Record Models.

`Record` is the immutable domain object the reconciliation engine works on.
`MetricRecordRow` is its local-store representation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field as PydanticField
from sqlmodel import SQLModel, Field, Index


class CollectionType(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"
    UNSPECIFIED = "unspecified"


class ClassificationStatus(str, Enum):
    UNCLASSIFIED = "unclassified"
    PENDING = "pending"
    CLASSIFIED = "classified"


class Classification(BaseModel):
    """Fields owned by the external classification workflow."""

    model_config = {"frozen": True}

    category: str = ""
    sub_category: str = ""
    status: ClassificationStatus = ClassificationStatus.UNCLASSIFIED


class Record(BaseModel):
    """One collected view-count observation of a video on a calendar day."""

    model_config = {"frozen": True}

    id: str
    external_video_id: str
    external_channel_id: str = ""
    view_count: int = PydanticField(default=0, ge=0)
    day_key: str
    collection_timestamp: datetime
    collection_type: CollectionType = CollectionType.UNSPECIFIED
    classification: Classification = Classification()
    collection_source: str = ""
    title: str = ""
    channel_name: str = ""

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.day_key, self.external_video_id)

    @property
    def is_classified(self) -> bool:
        return self.classification.status == ClassificationStatus.CLASSIFIED


class MetricRecordRow(SQLModel, table=True):
    """Local persisted record.

    Not unique on (day_key, external_video_id): concurrent writers may
    store duplicates, which the dedup engine collapses on merge.
    """

    __tablename__ = "metric_records"
    __table_args__ = (
        Index("ix_metric_records_day_video", "day_key", "external_video_id"),
    )

    id: str = Field(primary_key=True, description="Opaque record id")
    external_video_id: str = Field(description="YouTube video id")
    external_channel_id: str = Field(default="")
    view_count: int = Field(default=0)
    day_key: str = Field(index=True, description="YYYY-MM-DD in the fixed timezone")
    collection_timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    collection_type: str = Field(default=CollectionType.UNSPECIFIED.value)
    category: str = Field(default="")
    sub_category: str = Field(default="")
    status: str = Field(default=ClassificationStatus.UNCLASSIFIED.value)
    collection_source: str = Field(default="")
    title: str = Field(default="")
    channel_name: str = Field(default="")
    stored_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_record(cls, record: Record) -> "MetricRecordRow":
        return cls(
            id=record.id,
            external_video_id=record.external_video_id,
            external_channel_id=record.external_channel_id,
            view_count=record.view_count,
            day_key=record.day_key,
            collection_timestamp=record.collection_timestamp.astimezone(timezone.utc),
            collection_type=record.collection_type.value,
            category=record.classification.category,
            sub_category=record.classification.sub_category,
            status=record.classification.status.value,
            collection_source=record.collection_source,
            title=record.title,
            channel_name=record.channel_name,
        )

    def to_record(self) -> Record:
        ts = self.collection_timestamp
        # SQLite drops tzinfo on round-trip; stored values are UTC
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return Record(
            id=self.id,
            external_video_id=self.external_video_id,
            external_channel_id=self.external_channel_id,
            view_count=self.view_count,
            day_key=self.day_key,
            collection_timestamp=ts,
            collection_type=CollectionType(self.collection_type),
            classification=Classification(
                category=self.category,
                sub_category=self.sub_category,
                status=ClassificationStatus(self.status),
            ),
            collection_source=self.collection_source,
            title=self.title,
            channel_name=self.channel_name,
        )


def make_record(
    record_id: str,
    video_id: str,
    day_key: str,
    view_count: int = 0,
    collection_type: CollectionType = CollectionType.UNSPECIFIED,
    status: ClassificationStatus = ClassificationStatus.UNCLASSIFIED,
    collection_timestamp: Optional[datetime] = None,
    **extra,
) -> Record:
    """Build a Record from flat keyword arguments."""
    classification = Classification(
        category=extra.pop("category", ""),
        sub_category=extra.pop("sub_category", ""),
        status=status,
    )
    return Record(
        id=record_id,
        external_video_id=video_id,
        day_key=day_key,
        view_count=view_count,
        collection_type=collection_type,
        classification=classification,
        collection_timestamp=collection_timestamp or datetime.now(timezone.utc),
        **extra,
    )
