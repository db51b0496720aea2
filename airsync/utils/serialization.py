"""
Serialization helpers

Pure functions shared by the sync engine and the API layer: timestamps,
table keys and loggable error payloads. No I/O here.
"""
import re
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes copied from an exception into its serialized form when present
ERROR_ATTRIBUTES = ('when', 'resource', 'page', 'status_code', 'body')

_WORD_RE = re.compile(r'[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|[0-9]+')


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_z(dt: datetime) -> str:
    """
    Serialize a datetime as ISO-8601 with millisecond precision and a 'Z'
    suffix, e.g. 2024-03-01T08:15:00.000Z.
    """
    return ensure_utc(dt).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp coming from a record field.

    Accepts ISO-8601 strings (with or without 'Z'), epoch milliseconds and
    datetime objects. Returns None for anything that does not parse.
    """
    if value is None or value == '' or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def camel_case(name: str) -> str:
    """
    Convert a table name to a camelCase key.

    >>> camel_case('PCRName')
    'pcrName'
    >>> camel_case('Drug Route')
    'drugRoute'
    """
    words = _WORD_RE.findall(name or '')
    if not words:
        return ''
    head, *tail = words
    return head.lower() + ''.join(word.lower().capitalize() for word in tail)


def serialize_error(err: BaseException) -> Dict[str, Any]:
    """
    Turn an exception into a JSON-safe dict for the status log.

    Keeps the class name, message, stack and a handful of known context
    attributes; the cause chain is serialized recursively.
    """
    data: Dict[str, Any] = {
        'name': type(err).__name__,
        'message': str(err),
    }
    for attr in ERROR_ATTRIBUTES:
        value = getattr(err, attr, None)
        if value is not None:
            data[attr] = _json_safe(value)

    stack = traceback.format_exception(type(err), err, err.__traceback__)
    data['stack'] = ''.join(stack)

    if err.__cause__ is not None:
        data['cause'] = serialize_error(err.__cause__)
    return data


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, datetime):
        return isoformat_z(value)
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return str(value)
