"""
Derived views over the store: statistics and persistence sync status.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from .log_entry import LogEntry, SnifferModel


class SyncMode(str, Enum):
    """Write coalescer modes."""

    IDLE = "idle"
    DEBOUNCING = "debouncing"
    BATCHING = "batching"
    FLUSHING = "flushing"


class EndpointCount(SnifferModel):
    """Request count for one `METHOD path` pair."""

    endpoint: str
    count: int


class Statistics(SnifferModel):
    """Aggregates recomputed from the current buffer on every call."""

    total: int = Field(default=0, description="Entries currently buffered")
    status_codes: Dict[str, int] = Field(
        default_factory=dict, description="Counts by status class (2xx, 4xx, ...)"
    )
    methods: Dict[str, int] = Field(default_factory=dict, description="Counts by method")
    average_response_time: float = Field(default=0.0, description="Mean latency (ms)")
    p95_response_time: float = Field(default=0.0, description="95th percentile latency (ms)")
    p99_response_time: float = Field(default=0.0, description="99th percentile latency (ms)")
    error_rate: float = Field(default=0.0, description="Share of 4xx and 5xx responses")
    top_endpoints: List[EndpointCount] = Field(default_factory=list)


class SyncStatus(SnifferModel):
    """Snapshot of the write coalescer for external inspection."""

    current_mode: SyncMode = SyncMode.IDLE
    persistence_enabled: bool = False
    file_path: Optional[str] = None
    pending_entries: int = 0
    flush_count: int = 0
    average_flush_ms: float = 0.0
    last_flush_at: Optional[datetime] = None
    coalesced_entries: int = 0
    flush_errors: int = 0
    last_error: Optional[str] = None


class LogListResponse(SnifferModel):
    """Response body for log queries."""

    logs: List[LogEntry] = Field(default_factory=list)
    count: int = Field(default=0, description="Entries returned")
    total: int = Field(default=0, description="Entries currently buffered")
