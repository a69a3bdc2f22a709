"""
Log store facade.

One object per monitored app: ring buffer, masking policy and optional
file persistence behind a single interface used by the capture
middleware, the dashboard API and library callers.
"""

from typing import Any, Callable, Iterable, List, Optional

import structlog

from ..config import PersistenceSettings, Settings
from ..models.log_entry import LogEntry, LogFilter
from ..models.status import Statistics, SyncStatus
from .buffer import LogBuffer, Observer
from .coalescer import WriteCoalescer
from .exporter import export_entries
from .masking import MaskingEngine
from .metrics import MetricsCollector
from .sync_status import SyncMonitor

logger = structlog.get_logger(__name__)


class LogStore:
    """
    Bounded capture history with optional adaptive file persistence.

    Without persistence settings (or with `enabled=False`) the store is
    memory-only; ring buffer and masking behave identically either way.
    """

    def __init__(
        self,
        max_logs: int = 1000,
        mask_fields: Optional[Iterable[Any]] = None,
        persistence: Optional[PersistenceSettings] = None,
        metrics: Optional[MetricsCollector] = None,
        top_endpoints: int = 10,
    ) -> None:
        self.metrics = metrics
        self.masking = MaskingEngine(mask_fields)
        self.buffer = LogBuffer(
            max_logs=max_logs,
            masking=self.masking,
            metrics=metrics,
            top_endpoints=top_endpoints,
        )
        self.coalescer: Optional[WriteCoalescer] = None
        self._memory_monitor = SyncMonitor(persistence_enabled=False)
        self._destroyed = False

        if persistence is not None and persistence.enabled:
            self.coalescer = WriteCoalescer(self.buffer, persistence, metrics)
            if persistence.refresh_on_startup:
                self.coalescer.load()

        logger.info(
            "Log store initialized",
            max_logs=max_logs,
            persistent=self.coalescer is not None,
        )

    @classmethod
    def from_settings(cls, settings: Settings, metrics: Optional[MetricsCollector] = None) -> "LogStore":
        """Build a store from application settings."""
        return cls(
            max_logs=settings.store.max_logs,
            mask_fields=settings.store.mask_fields,
            persistence=settings.persistence,
            metrics=metrics,
            top_endpoints=settings.store.top_endpoints,
        )

    @property
    def persistent(self) -> bool:
        return self.coalescer is not None

    async def __aenter__(self) -> "LogStore":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.destroy()

    # Capture

    def add_log(self, entry: Any) -> Optional[int]:
        """
        Store one captured exchange; returns its sequence number.

        Never blocks on I/O and never raises: rejected records return None.
        """
        try:
            return self.buffer.add_log(entry)
        except Exception as e:
            logger.error(
                "Failed to store captured entry",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return None

    # Queries

    def get_logs(self, log_filter: Optional[LogFilter] = None, **criteria: Any) -> List[LogEntry]:
        return self.buffer.get_logs(log_filter, **criteria)

    def get_stats(self) -> Statistics:
        return self.buffer.get_stats()

    def export_logs(self, export_format: str = "json", log_filter: Optional[LogFilter] = None, **criteria: Any) -> str:
        """Serialize the filtered entries (most recent first) as json or csv."""
        return export_entries(self.get_logs(log_filter, **criteria), export_format)

    def clear_logs(self) -> None:
        self.buffer.clear()

    def get_sync_status(self) -> SyncStatus:
        if self.coalescer is not None:
            return self.coalescer.status()
        return self._memory_monitor.status()

    # Subscriptions

    def subscribe(self, event: str, callback: Observer) -> Callable[[], None]:
        """Register for `new_log`, `data_reloaded` or `cleared`."""
        return self.buffer.subscribe(event, callback)

    def unsubscribe(self, event: str, callback: Observer) -> None:
        self.buffer.unsubscribe(event, callback)

    # Lifecycle

    async def start(self) -> None:
        """Start background persistence on the running event loop."""
        if self.coalescer is not None:
            await self.coalescer.start()

    async def refresh(self) -> int:
        """Reload entries from the persisted file; memory-only stores keep their data."""
        if self.coalescer is None:
            return len(self.buffer)
        return await self.coalescer.refresh()

    async def flush(self) -> bool:
        """Write the buffer now. Memory-only stores have nothing to write."""
        if self.coalescer is None:
            return False
        return await self.coalescer.flush()

    async def destroy(self) -> None:
        """Final flush, then release timers and observers. Idempotent."""
        if self._destroyed:
            return
        self._destroyed = True

        if self.coalescer is not None:
            await self.coalescer.destroy()
        self.buffer.destroy()
        logger.info("Log store destroyed")
