"""
Status event model
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from ..utils.serialization import isoformat_z, parse_timestamp, utc_now

# Event types
READY = 'ready'
IDLE = 'idle'
FETCHING = 'fetching'
RATELIMITED = 'ratelimited'
PARSING = 'parsing'
SUCCESS = 'success'
ERRORED = 'errored'
RESET = 'reset'

EVENT_TYPES = (READY, IDLE, FETCHING, RATELIMITED, PARSING, SUCCESS, ERRORED, RESET)


@dataclass
class StatusEvent:
    """
    One entry of the status log.

    `repeat_count` is only set on entries of the collapsed view.
    """

    uid: int
    type: str
    at: datetime = field(default_factory=utc_now)
    data: Optional[Dict[str, Any]] = None
    repeat_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'uid': self.uid,
            'at': isoformat_z(self.at),
            'type': self.type,
        }
        if self.data is not None:
            result['data'] = self.data
        if self.repeat_count is not None:
            result['repeatCount'] = self.repeat_count
        return result

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> 'StatusEvent':
        at = parse_timestamp(payload.get('at')) or utc_now()
        return cls(
            uid=int(payload.get('uid') or 0),
            type=payload['type'],
            at=at,
            data=payload.get('data'),
            repeat_count=payload.get('repeatCount'),
        )
