"""
Tests for the log store facade.

Tests memory-only mode, sync status and metrics wiring.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List

import pytest

from apisniffer.config import PersistenceSettings, Settings, StoreSettings
from apisniffer.core.buffer import EVENT_NEW_LOG
from apisniffer.core.masking import MASK_TOKEN
from apisniffer.core.metrics import MetricsCollector
from apisniffer.core.store import LogStore
from apisniffer.models import SyncMode


class TestMemoryOnly:
    """Test a store without persistence."""

    def test_not_persistent(self, memory_store: LogStore) -> None:
        assert memory_store.persistent is False
        assert memory_store.coalescer is None

    def test_disabled_persistence_is_memory_only(self, log_file: Path) -> None:
        """Test enabled=False never touches the file."""
        store = LogStore(persistence=PersistenceSettings(enabled=False, file_path=log_file))

        assert store.persistent is False
        assert not log_file.exists()

    def test_sync_status(self, memory_store: LogStore, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test status reports idle with persistence disabled."""
        memory_store.add_log(record_factory())

        status = memory_store.get_sync_status()

        assert status.persistence_enabled is False
        assert status.current_mode == SyncMode.IDLE
        assert status.file_path is None
        assert status.flush_count == 0

    @pytest.mark.asyncio
    async def test_lifecycle_is_noop(self, memory_store: LogStore, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test start, flush and refresh are harmless without a file."""
        await memory_store.start()
        memory_store.add_log(record_factory())

        assert await memory_store.flush() is False
        assert await memory_store.refresh() == 1

        await memory_store.destroy()
        await memory_store.destroy()

    def test_clear_logs(self, memory_store: LogStore, record_factory: Callable[..., Dict[str, Any]]) -> None:
        memory_store.add_log(record_factory())

        memory_store.clear_logs()

        assert memory_store.get_logs() == []
        assert memory_store.get_stats().total == 0

    def test_subscribe(self, memory_store: LogStore, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test subscriptions pass through to the buffer."""
        received: List[Any] = []
        memory_store.subscribe(EVENT_NEW_LOG, received.append)

        memory_store.add_log(record_factory())
        memory_store.unsubscribe(EVENT_NEW_LOG, received.append)
        memory_store.add_log(record_factory())

        assert len(received) == 1

    def test_add_log_never_raises(self, memory_store: LogStore) -> None:
        """Test garbage input is swallowed and reported as None."""
        assert memory_store.add_log(None) is None
        assert memory_store.add_log({"request": []}) is None


class TestFromSettings:
    """Test building a store from settings."""

    def test_settings_applied(self, log_file: Path, record_factory: Callable[..., Dict[str, Any]]) -> None:
        settings = Settings(
            store=StoreSettings(max_logs=2, mask_fields=["ssn"], top_endpoints=1),
            persistence=PersistenceSettings(enabled=False, file_path=log_file),
        )

        store = LogStore.from_settings(settings)
        for _ in range(3):
            store.add_log(record_factory(body={"ssn": "123-45-6789"}))

        assert len(store.get_logs()) == 2
        assert store.get_logs()[0].request.body == {"ssn": MASK_TOKEN}
        assert len(store.get_stats().top_endpoints) == 1


class TestMetrics:
    """Test Prometheus metrics wiring."""

    def test_capture_metrics(self, metrics: MetricsCollector, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test captures, evictions and buffer size are recorded."""
        store = LogStore(max_logs=2, metrics=metrics)

        for _ in range(3):
            store.add_log(record_factory(method="GET"))

        registry = metrics.registry
        assert registry.get_sample_value("sniffer_logs_captured_total", {"method": "GET"}) == 3
        assert registry.get_sample_value("sniffer_logs_evicted_total") == 1
        assert registry.get_sample_value("sniffer_buffer_entries") == 2

    @pytest.mark.asyncio
    async def test_flush_metrics(
        self, metrics: MetricsCollector, persistence_settings: PersistenceSettings,
        record_factory: Callable[..., Dict[str, Any]],
    ) -> None:
        """Test flushes are counted by trigger."""
        store = LogStore(persistence=persistence_settings, metrics=metrics)
        await store.start()
        store.add_log(record_factory())

        assert await store.flush() is True

        registry = metrics.registry
        assert registry.get_sample_value("sniffer_flushes_total", {"trigger": "manual"}) == 1
        assert registry.get_sample_value("sniffer_pending_entries") == 0

        await store.destroy()
        assert registry.get_sample_value("sniffer_flushes_total", {"trigger": "shutdown"}) == 1
