"""
Input validation helpers
"""
import re
from typing import Any, List, Optional, Tuple

from ..models.record import ResourceSpec

# Airtable table names: anything printable, bounded length
_TABLE_NAME_RE = re.compile(r'^[^\x00-\x1f]{1,255}$')

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off', '')


def validate_table_name(name: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate one table name

    Returns:
        (is_valid, error_message)
    """
    if not name:
        return False, 'Table name must not be empty'

    if not isinstance(name, str):
        return False, 'Table name must be a string'

    if not _TABLE_NAME_RE.match(name.strip()):
        return False, f'Invalid table name: {name!r}'

    return True, None


def validate_table_settings(settings: Any) -> Tuple[bool, Optional[str], List[ResourceSpec]]:
    """
    Validate table settings

    Accepts a list whose items are table names, (name, query) pairs or
    {'name': ..., 'query': {...}} mappings.

    Returns:
        (is_valid, error_message, resource_specs)
    """
    if not settings:
        return False, 'At least one table is required', []

    if not isinstance(settings, (list, tuple)):
        return False, 'Table settings must be a list', []

    specs = []
    seen = set()
    for i, item in enumerate(settings):
        try:
            spec = ResourceSpec.parse(item)
        except (KeyError, TypeError, ValueError):
            return False, f'Table settings[{i}] is not a name, a (name, query) pair or a mapping', []

        valid, error = validate_table_name(spec.name)
        if not valid:
            return False, f'Table settings[{i}]: {error}', []

        if not all(isinstance(k, str) and isinstance(v, str) for k, v in spec.query.items()):
            return False, f'Table settings[{i}]: query keys and values must be strings', []

        if spec.name in seen:
            return False, f'Table {spec.name!r} is listed twice', []
        seen.add(spec.name)
        specs.append(spec)

    return True, None, specs


def validate_limit(
    value: Any,
    default: Optional[int] = None,
    max_value: int = 1000
) -> Tuple[bool, Optional[str], Optional[int]]:
    """
    Validate an optional positive integer query parameter

    Returns:
        (is_valid, error_message, cleaned_value)
    """
    if value is None or value == '':
        return True, None, default

    try:
        cleaned = int(value)
    except (TypeError, ValueError):
        return False, 'limit must be an integer', None

    if cleaned <= 0:
        return False, 'limit must be a positive integer', None

    return True, None, min(cleaned, max_value)


def parse_bool_flag(value: Any, default: bool = False) -> bool:
    """Interpret a query-string flag such as ?collapsed=1"""
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default
