"""PulseSync — Deduplication Engine.

Collapses records that describe the same observation, keyed by
(day_key, external_video_id). One canonical tie-break rule everywhere:

  1. higher view_count wins
  2. equal view_count: classified beats unclassified / pending
  3. full tie: first seen in input order wins
"""

from collections import OrderedDict
from typing import Dict, Iterable, List

from pulsesync.models.record_models import Record


def _beats(candidate: Record, incumbent: Record) -> bool:
    """True if `candidate` should replace `incumbent` in its dedup group."""
    if candidate.view_count != incumbent.view_count:
        return candidate.view_count > incumbent.view_count
    return candidate.is_classified and not incumbent.is_classified


def dedupe_by_video_day(records: Iterable[Record]) -> List[Record]:
    """Keep one record per (day_key, external_video_id).

    Output is sorted by dedup key, so the result does not depend on input
    order except through the first-seen rule for full ties.
    """
    kept: Dict[tuple[str, str], Record] = {}
    for record in records:
        key = record.dedup_key
        incumbent = kept.get(key)
        if incumbent is None or _beats(record, incumbent):
            kept[key] = record
    return [kept[key] for key in sorted(kept)]


def dedupe_by_date(records: Iterable[Record]) -> "OrderedDict[str, List[Record]]":
    """Group records by day_key for reporting. No canonicalisation."""
    groups: Dict[str, List[Record]] = {}
    for record in records:
        groups.setdefault(record.day_key, []).append(record)
    return OrderedDict((day, groups[day]) for day in sorted(groups))
