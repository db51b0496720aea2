"""
Data models
"""
from .record import ResourceSpec, Record, snapshot_to_dict
from .status import StatusEvent
from .state import SyncState

__all__ = ['ResourceSpec', 'Record', 'StatusEvent', 'SyncState', 'snapshot_to_dict']
