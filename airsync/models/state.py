"""
Restorable sync state

The bundle a caller can persist between process restarts. Reading and
writing it (file, database, ...) is left to the caller.

Structure of to_dict():
    {
      "log": [{"uid": 3, "at": "...", "type": "success", "data": {...}}, ...],
      "lastParsed": <whatever the transform returned>,
      "fromDate": "2024-03-01T08:15:00.000Z" | null,
      "previousFetch": {"widgets": [{"id": "rec1", "fields": {...}}, ...]}
    }
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from ..utils.serialization import isoformat_z, parse_timestamp
from .record import Record, snapshot_to_dict
from .status import StatusEvent


@dataclass
class SyncState:
    log: List[StatusEvent] = field(default_factory=list)
    last_parsed: Any = None
    from_date: Optional[datetime] = None
    previous_fetch: Dict[str, List[Record]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'log': [event.to_dict() for event in self.log],
            'lastParsed': self.last_parsed,
            'fromDate': isoformat_z(self.from_date) if self.from_date else None,
            'previousFetch': snapshot_to_dict(self.previous_fetch),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> 'SyncState':
        return cls(
            log=[StatusEvent.from_dict(item) for item in payload.get('log') or []],
            last_parsed=payload.get('lastParsed'),
            from_date=parse_timestamp(payload.get('fromDate')),
            previous_fetch={
                key: [Record.from_api(item) for item in records]
                for key, records in (payload.get('previousFetch') or {}).items()
            },
        )
