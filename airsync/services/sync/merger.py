"""
Incremental Merger - fold one cycle's records into the running snapshot

Records are matched by id within each resource key: a known id is replaced
in place (updated), an unknown id is appended (created). The newest
`last_modified` value seen in the cycle becomes the next sync cursor.
"""
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ...models import Record
from ...utils.logger import get_logger
from ...utils.serialization import parse_timestamp, utc_now

logger = get_logger('merger')

Snapshot = Dict[str, List[Record]]
CycleResult = Mapping[str, Sequence[Record]]

LAST_MODIFIED_FIELD = 'last_modified'


class IncrementalMerger:
    """Snapshot merge and cursor computation (stateless)."""

    @staticmethod
    def merge_cycle(snapshot: Snapshot, cycle_result: CycleResult) -> Tuple[int, int]:
        """Merge `cycle_result` into `snapshot` in place.

        Args:
            snapshot: Resource key -> records, mutated
            cycle_result: Resource key -> records fetched this cycle

        Returns:
            (created_count, updated_count)
        """
        created_count = 0
        updated_count = 0

        for key, records in cycle_result.items():
            existing = snapshot.setdefault(key, [])
            index_by_id = {record.id: i for i, record in enumerate(existing)}

            for record in records:
                position = index_by_id.get(record.id)
                if position is not None:
                    existing[position] = record
                    updated_count += 1
                else:
                    index_by_id[record.id] = len(existing)
                    existing.append(record)
                    created_count += 1

        if created_count or updated_count:
            logger.info(f"[Merger] Merged cycle: created={created_count}, updated={updated_count}")
        return created_count, updated_count

    @staticmethod
    def newest_modified_date(cycle_result: CycleResult, now: Optional[datetime] = None) -> datetime:
        """Newest parseable `fields.last_modified` across every resource.

        Falls back to `now` (current UTC time by default) when no record
        carries a parseable value.
        """
        newest: Optional[datetime] = None
        for records in cycle_result.values():
            for record in records:
                stamp = parse_timestamp((record.fields or {}).get(LAST_MODIFIED_FIELD))
                if stamp is not None and (newest is None or stamp > newest):
                    newest = stamp

        if newest is None:
            return now or utc_now()
        return newest

    @staticmethod
    def advance_cursor(current: Optional[datetime], candidate: datetime) -> datetime:
        """Cursor after a cycle: never moves backwards."""
        if current is not None and candidate < current:
            return current
        return candidate
