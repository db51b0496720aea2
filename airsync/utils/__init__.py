"""
Utility modules
"""
from .responses import success_response, error_response, ApiResponse
from .validators import validate_table_settings, validate_limit, parse_bool_flag
from .logger import setup_logger, get_logger
from .serialization import camel_case, serialize_error

__all__ = [
    'success_response',
    'error_response',
    'ApiResponse',
    'validate_table_settings',
    'validate_limit',
    'parse_bool_flag',
    'setup_logger',
    'get_logger',
    'camel_case',
    'serialize_error',
]
