"""
Pydantic data models package.

Contains the data models for:
- Captured request/response entries
- Query filters
- Statistics and sync status views
"""

from .log_entry import CapturedRequest, CapturedResponse, LogEntry, LogFilter
from .status import EndpointCount, LogListResponse, Statistics, SyncMode, SyncStatus

__all__ = [
    # Entry models
    "CapturedRequest",
    "CapturedResponse",
    "LogEntry",
    "LogFilter",

    # Derived views
    "EndpointCount",
    "LogListResponse",
    "Statistics",
    "SyncMode",
    "SyncStatus",
]
