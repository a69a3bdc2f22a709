"""
Core business logic components.

This package contains the capture store components:
- Data masking engine
- Ring buffer with filtering and statistics
- Write coalescer for file persistence
- JSON / CSV export
- Sync status and metrics collection
"""

from .buffer import EVENT_CLEARED, EVENT_DATA_RELOADED, EVENT_NEW_LOG, LogBuffer
from .coalescer import WriteCoalescer
from .exceptions import PersistenceError, SnifferException, UnsupportedFormatError, ValidationError
from .masking import DEFAULT_MASK_FIELDS, MASK_TOKEN, MaskingEngine
from .store import LogStore

__all__ = [
    "DEFAULT_MASK_FIELDS",
    "EVENT_CLEARED",
    "EVENT_DATA_RELOADED",
    "EVENT_NEW_LOG",
    "LogBuffer",
    "LogStore",
    "MASK_TOKEN",
    "MaskingEngine",
    "PersistenceError",
    "SnifferException",
    "UnsupportedFormatError",
    "ValidationError",
    "WriteCoalescer",
]
