"""
Sync status tracking for the write coalescer.

Holds the current coalescing mode and cumulative flush figures so the
dashboard can show how far the file lags behind memory.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog

from ..models.status import SyncMode, SyncStatus

logger = structlog.get_logger(__name__)


class SyncMonitor:
    """Mutable counters behind `SyncStatus` snapshots."""

    def __init__(self, persistence_enabled: bool = False, file_path: Optional[Path] = None) -> None:
        self.persistence_enabled = persistence_enabled
        self.file_path = file_path
        self.mode = SyncMode.IDLE
        self.pending_entries = 0
        self.flush_count = 0
        self.coalesced_entries = 0
        self.flush_errors = 0
        self.last_error: Optional[str] = None
        self.last_flush_at: Optional[datetime] = None
        self._total_flush_ms = 0.0

    def set_mode(self, mode: SyncMode) -> None:
        if mode != self.mode:
            logger.debug("Sync mode changed", previous=self.mode.value, current=mode.value)
            self.mode = mode

    def record_flush(self, duration_ms: float, entries_flushed: int) -> None:
        """Count a completed flush; entries beyond the first rode along for free."""
        self.flush_count += 1
        self._total_flush_ms += duration_ms
        self.last_flush_at = datetime.now(timezone.utc)
        self.coalesced_entries += max(0, entries_flushed - 1)

    def record_error(self, error: BaseException) -> None:
        self.flush_errors += 1
        self.last_error = f"{type(error).__name__}: {error}"

    @property
    def average_flush_ms(self) -> float:
        if not self.flush_count:
            return 0.0
        return self._total_flush_ms / self.flush_count

    def status(self) -> SyncStatus:
        """Immutable snapshot for callers."""
        return SyncStatus(
            current_mode=self.mode,
            persistence_enabled=self.persistence_enabled,
            file_path=str(self.file_path) if self.file_path else None,
            pending_entries=self.pending_entries,
            flush_count=self.flush_count,
            average_flush_ms=round(self.average_flush_ms, 3),
            last_flush_at=self.last_flush_at,
            coalesced_entries=self.coalesced_entries,
            flush_errors=self.flush_errors,
            last_error=self.last_error,
        )
