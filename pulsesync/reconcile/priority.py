"""PulseSync — Conflict Resolver / Priority Ranker.

The only place that decides how trustworthy a record is. An unspecified
collection_type counts as auto only when the record carries the automatic
collector's source signature; otherwise it ranks lowest.
"""

from pulsesync.models.record_models import CollectionType, Record

AUTO_SOURCE_PREFIX = "auto"

PRIORITY_MANUAL_CLASSIFIED = 4
PRIORITY_MANUAL = 3
PRIORITY_AUTO = 2
PRIORITY_AUTO_SHAPED = 1
PRIORITY_OTHER = 0


def is_auto_shaped(record: Record) -> bool:
    return record.collection_source.lower().startswith(AUTO_SOURCE_PREFIX)


def priority(record: Record) -> int:
    if record.collection_type == CollectionType.MANUAL:
        return PRIORITY_MANUAL_CLASSIFIED if record.is_classified else PRIORITY_MANUAL
    if record.collection_type == CollectionType.AUTO:
        return PRIORITY_AUTO
    if is_auto_shaped(record):
        return PRIORITY_AUTO_SHAPED
    return PRIORITY_OTHER


def resolve(a: Record, b: Record) -> Record:
    """Pick the representation to keep: higher priority, then later timestamp, then `a`."""
    pa, pb = priority(a), priority(b)
    if pa != pb:
        return a if pa > pb else b
    if b.collection_timestamp > a.collection_timestamp:
        return b
    return a
