"""
Status Log - append-only, newest-first record of sync status events

StatusLog stores events and derives the collapsed view used for display.
StatusMachine sits on top of it: transition() is the only way to change the
current sync status, and every transition is appended to the log and
broadcast to subscribers before it returns.
"""
import threading
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from ...models import StatusEvent
from ...models.status import (
    ERRORED, FETCHING, IDLE, PARSING, RATELIMITED, RESET, SUCCESS,
)
from ...utils.logger import get_logger
from .errors import InvalidTransitionError

logger = get_logger('status_log')

_uid_lock = threading.Lock()
_last_uid = -1


def next_uid(floor: int = -1) -> int:
    """Next process-wide event uid, always above `floor`."""
    global _last_uid
    with _uid_lock:
        _last_uid = max(_last_uid, floor) + 1
        return _last_uid


class StatusLog:
    """Newest-first event log.

    Example:
        >>> log = StatusLog()
        >>> _ = log.record('errored', {'err': {'message': 'boom'}})
        >>> _ = log.record('errored', {'err': {'message': 'boom'}})
        >>> log.collapsed()[0].repeat_count
        2
    """

    # Event types kept in the collapsed view
    COLLAPSED_TYPES = ('update', SUCCESS, ERRORED, RESET)

    def __init__(self, events: Optional[Iterable[StatusEvent]] = None, broadcaster=None):
        """Initialize the log.

        Args:
            events: Restored events, newest first
            broadcaster: Receives every recorded event (publish_status)
        """
        self._events: List[StatusEvent] = list(events or [])
        self._uid_floor = max((event.uid for event in self._events), default=-1)
        self._broadcaster = broadcaster
        self._lock = threading.RLock()

    def record(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> StatusEvent:
        """Append an event at the front of the log and notify subscribers."""
        with self._lock:
            event = StatusEvent(uid=next_uid(self._uid_floor), type=event_type, data=data)
            self._events.insert(0, event)
            # Published under the lock so delivery order matches log order
            if self._broadcaster is not None:
                self._broadcaster.publish_status(event)
        return event

    def current(self) -> Optional[StatusEvent]:
        with self._lock:
            return self._events[0] if self._events else None

    def events(self) -> List[StatusEvent]:
        with self._lock:
            return list(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def collapsed(self) -> List[StatusEvent]:
        """Filtered, de-duplicated copy of the log.

        Adjacent errored events with the same message, and adjacent success
        events that both report zero changes, fold into the newer entry with
        repeat_count counting the folded events.
        """
        with self._lock:
            filtered = [event for event in self._events if event.type in self.COLLAPSED_TYPES]

        collapsed: List[StatusEvent] = []
        for event in filtered:
            previous = collapsed[-1] if collapsed else None
            if previous is not None and _is_repeat(previous, event):
                previous.repeat_count = (previous.repeat_count or 1) + 1
            else:
                collapsed.append(replace(event, repeat_count=None))
        return collapsed


def _error_message(event: StatusEvent) -> Optional[str]:
    err = (event.data or {}).get('err') or {}
    return err.get('message')


def _total_count(event: StatusEvent) -> Optional[int]:
    return (event.data or {}).get('total_count')


def _is_repeat(newer: StatusEvent, older: StatusEvent) -> bool:
    if newer.type == ERRORED and older.type == ERRORED:
        return _error_message(newer) == _error_message(older)
    if newer.type == SUCCESS and older.type == SUCCESS:
        return _total_count(newer) == 0 and _total_count(older) == 0
    return False


class StatusMachine:
    """Sync status state machine backed by a StatusLog."""

    TRANSITIONS = {
        IDLE: frozenset({FETCHING}),
        ERRORED: frozenset({FETCHING}),
        SUCCESS: frozenset({IDLE}),
        FETCHING: frozenset({FETCHING, RATELIMITED, PARSING, SUCCESS, ERRORED}),
        RATELIMITED: frozenset({RATELIMITED, FETCHING, ERRORED}),
        PARSING: frozenset({SUCCESS, ERRORED}),
    }

    def __init__(self, log: StatusLog, initial: str = IDLE):
        self.log = log
        self._state = initial
        self._event: Optional[StatusEvent] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        return self._state

    @property
    def event(self) -> Optional[StatusEvent]:
        """Event of the latest transition, None before the first one."""
        return self._event

    def can_transition(self, target: str) -> bool:
        return target in self.TRANSITIONS.get(self._state, ())

    def transition(self, target: str, data: Optional[Dict[str, Any]] = None) -> StatusEvent:
        """Move to `target`, append the event to the log and return it.

        Raises:
            InvalidTransitionError: If `target` is not reachable from the current state
        """
        with self._lock:
            if not self.can_transition(target):
                raise InvalidTransitionError(self._state, target)
            previous, self._state = self._state, target
            logger.debug(f"[StatusMachine] {previous} -> {target}")
            self._event = self.log.record(target, data)
            return self._event

    def mark(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> StatusEvent:
        """Record a marker event (ready, reset) without changing state."""
        return self.log.record(event_type, data)
