"""
Service Layer

This module exports the sync service and its engine components.
"""
from .sync_service import SyncService
from .status_broadcaster import StatusBroadcaster

from .sync.status_log import StatusLog, StatusMachine
from .sync.rate_limited_queue import RateLimitedQueue
from .sync.fetcher import PaginatedFetcher
from .sync.merger import IncrementalMerger
from .sync.transport import AirtableTransport

__all__ = [
    'SyncService',
    'StatusBroadcaster',
    'StatusLog',
    'StatusMachine',
    'RateLimitedQueue',
    'PaginatedFetcher',
    'IncrementalMerger',
    'AirtableTransport',
]
