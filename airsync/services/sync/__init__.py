"""
Sync Engine Module - fetch orchestration building blocks

This package contains the components a SyncService is assembled from:
- status_log: Status log, collapsed view and status state machine
- rate_limited_queue: Bounded-concurrency, bounded-rate async task queue
- transport: Pooled HTTP access to the Airtable REST API
- fetcher: Paginated, rate-limit aware page fetching
- merger: Snapshot merge and sync cursor computation
- errors: Error taxonomy
"""
from .errors import (
    SyncError,
    HttpStatusError,
    FetchPageError,
    TaskTimeoutError,
    TransformError,
    CycleInProgressError,
    InvalidTransitionError,
)
from .status_log import StatusLog, StatusMachine
from .rate_limited_queue import RateLimitedQueue
from .transport import AirtableTransport, build_modified_after_formula
from .fetcher import CycleContext, PageTask, PaginatedFetcher
from .merger import IncrementalMerger

__all__ = [
    'SyncError',
    'HttpStatusError',
    'FetchPageError',
    'TaskTimeoutError',
    'TransformError',
    'CycleInProgressError',
    'InvalidTransitionError',
    'StatusLog',
    'StatusMachine',
    'RateLimitedQueue',
    'AirtableTransport',
    'build_modified_after_formula',
    'CycleContext',
    'PageTask',
    'PaginatedFetcher',
    'IncrementalMerger',
]
