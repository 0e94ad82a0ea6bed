"""PulseSync — Remote Wire ↔ Record Transformer.

Converts the remote store's camelCase JSON records into `Record` objects and
back. Malformed records are dropped with a logged reason.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from pulsesync.core.days import day_key_for, validate_day_key, zone
from pulsesync.core.errors import ValidationError
from pulsesync.core.logging import get_logger
from pulsesync.models.record_models import (
    Classification,
    ClassificationStatus,
    CollectionType,
    Record,
)

logger = get_logger("remote.transformer")


def _parse_timestamp(value: Any, record_id: str = "") -> Optional[datetime]:
    """Accept ISO-8601 strings, epoch milliseconds, or datetimes.

    Returns None when absent; raises ValidationError when present but unusable.
    """
    if value is None or value == "":
        return None
    try:
        if isinstance(value, datetime):
            ts = value
        elif isinstance(value, (int, float)):
            ts = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        else:
            ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (OverflowError, OSError, ValueError) as e:
        raise ValidationError(f"invalid collection timestamp {value!r}: {e}", record_id) from e
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _enum_value(enum_cls, value: Any, default):
    try:
        return enum_cls(str(value).lower()) if value else default
    except ValueError:
        return default


def wire_to_record(data: Dict[str, Any]) -> Record:
    """Build a Record from one wire dict. Raises ValidationError if malformed."""
    record_id = str(data.get("id") or "")
    video_id = data.get("videoId") or data.get("externalVideoId")
    if not video_id:
        raise ValidationError("missing videoId", record_id)

    timestamp = _parse_timestamp(
        data.get("collectionTimestamp") or data.get("collectionDate"), record_id
    )
    day_key = validate_day_key(data.get("dayKey") or data.get("dayKeyLocal"))
    if day_key is None:
        if timestamp is None:
            raise ValidationError("missing dayKey and collection timestamp", record_id)
        try:
            day_key = day_key_for(timestamp)
        except (OverflowError, ValueError) as e:
            raise ValidationError(f"collection timestamp out of range: {e}", record_id) from e
    if timestamp is None:
        # Noon in the fixed timezone maps back to the same day_key
        timestamp = datetime.fromisoformat(f"{day_key}T12:00:00").replace(tzinfo=zone())

    if not record_id:
        record_id = f"{video_id}_{day_key}"

    try:
        return Record(
            id=record_id,
            external_video_id=str(video_id),
            external_channel_id=str(data.get("channelId") or data.get("externalChannelId") or ""),
            view_count=int(data.get("viewCount") or 0),
            day_key=day_key,
            collection_timestamp=timestamp,
            collection_type=_enum_value(
                CollectionType, data.get("collectionType"), CollectionType.UNSPECIFIED
            ),
            classification=Classification(
                category=data.get("category") or "",
                sub_category=data.get("subCategory") or "",
                status=_enum_value(
                    ClassificationStatus,
                    data.get("status"),
                    ClassificationStatus.UNCLASSIFIED,
                ),
            ),
            collection_source=data.get("collectionSource") or "",
            title=data.get("title") or data.get("videoTitle") or "",
            channel_name=data.get("channelName") or "",
        )
    except (PydanticValidationError, TypeError, ValueError) as e:
        raise ValidationError(f"invalid field values: {e}", record_id) from e


def record_to_wire(record: Record) -> Dict[str, Any]:
    return {
        "id": record.id,
        "videoId": record.external_video_id,
        "channelId": record.external_channel_id,
        "viewCount": record.view_count,
        "dayKey": record.day_key,
        "collectionDate": record.collection_timestamp.isoformat(),
        "collectionType": record.collection_type.value,
        "collectionSource": record.collection_source,
        "category": record.classification.category,
        "subCategory": record.classification.sub_category,
        "status": record.classification.status.value,
        "title": record.title,
        "channelName": record.channel_name,
    }


def parse_records(rows: List[Any]) -> Tuple[List[Record], int]:
    """Transform a wire batch. Returns (records, rejected_count)."""
    records: List[Record] = []
    rejected = 0
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            logger.warning(f"Dropping wire record #{i}: not an object")
            rejected += 1
            continue
        try:
            records.append(wire_to_record(row))
        except ValidationError as e:
            logger.warning(
                f"Dropping wire record #{i}: {e}", extra={"record_id": e.record_id or None}
            )
            rejected += 1
    return records, rejected
