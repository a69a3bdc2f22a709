"""
Tests for the bounded log buffer.

Tests sequence numbering, FIFO eviction, masking on insert and observers.
"""

import threading
from typing import Any, Callable, Dict, List

import pytest

from apisniffer.core.buffer import EVENT_CLEARED, EVENT_DATA_RELOADED, EVENT_NEW_LOG, LogBuffer
from apisniffer.core.masking import MASK_TOKEN, MaskingEngine
from apisniffer.core.metrics import MetricsCollector


class TestSequenceAndEviction:
    """Test numbering and capacity handling."""

    def test_sequences_start_at_one(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test the first entry gets sequence 1 and numbers increase by one."""
        buffer = LogBuffer(max_logs=10)

        sequences = [buffer.add_log(record_factory()) for _ in range(3)]

        assert sequences == [1, 2, 3]
        assert buffer.last_sequence == 3

    def test_fifo_eviction(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test the oldest entries are dropped once capacity is exceeded."""
        buffer = LogBuffer(max_logs=3)

        for i in range(5):
            buffer.add_log(record_factory(path=f"/items/{i}"))

        assert len(buffer) == 3
        assert [e.sequence for e in buffer.snapshot()] == [3, 4, 5]
        assert [e.request.path for e in buffer.snapshot()] == ["/items/2", "/items/3", "/items/4"]

    def test_sequences_not_reused_after_clear(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test clearing keeps the counter running."""
        buffer = LogBuffer(max_logs=10)
        buffer.add_log(record_factory())
        buffer.add_log(record_factory())

        buffer.clear()

        assert len(buffer) == 0
        assert buffer.add_log(record_factory()) == 3

    @pytest.mark.parametrize("max_logs", [0, -5])
    def test_non_positive_capacity_keeps_nothing(
        self, max_logs: int, record_factory: Callable[..., Dict[str, Any]]
    ) -> None:
        """Test a zero or negative capacity stores nothing but still numbers entries."""
        buffer = LogBuffer(max_logs=max_logs)

        assert buffer.add_log(record_factory()) == 1
        assert buffer.add_log(record_factory()) == 2
        assert len(buffer) == 0

    def test_invalid_record_rejected(self, metrics: MetricsCollector) -> None:
        """Test malformed records return None and do not consume a sequence."""
        buffer = LogBuffer(max_logs=10, metrics=metrics)

        assert buffer.add_log({"request": {"method": "GET"}}) is None
        assert buffer.add_log("not a record") is None
        assert buffer.add_log({"request": {"method": "GET", "path": "/"},
                               "response": {"statusCode": 999}, "responseTime": 1}) is None

        assert len(buffer) == 0
        assert buffer.last_sequence == 0
        assert metrics.registry.get_sample_value("sniffer_logs_rejected_total") == 3

    def test_concurrent_adds_unique_sequences(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test captures from many threads never share a sequence."""
        buffer = LogBuffer(max_logs=1000)
        results: List[Any] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(50):
                seq = buffer.add_log(record_factory())
                with lock:
                    results.append(seq)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == list(range(1, 401))
        assert len(buffer) == 400


class TestMaskingOnInsert:
    """Test sensitive values never reach the buffer."""

    def test_request_and_response_masked(self, sensitive_record: Dict[str, Any]) -> None:
        """Test headers, query and bodies are masked before storage."""
        buffer = LogBuffer(max_logs=10, masking=MaskingEngine(["apiKey"]))

        buffer.add_log(sensitive_record)
        entry = buffer.snapshot()[0]

        assert entry.request.method == "POST"
        assert entry.request.headers["Authorization"] == MASK_TOKEN
        assert entry.request.headers["Content-Type"] == "application/json"
        assert entry.request.query == {"token": MASK_TOKEN, "page": "1"}
        assert entry.request.body["password"] == MASK_TOKEN
        assert entry.request.body["profile"] == {"apiKey": MASK_TOKEN, "city": "Lisbon"}
        assert entry.response.headers["Set-Cookie"] == MASK_TOKEN
        assert entry.response.body == {"access_token": MASK_TOKEN, "expires_in": 3600}

    def test_caller_record_not_modified(self, sensitive_record: Dict[str, Any]) -> None:
        """Test the original record keeps its values."""
        buffer = LogBuffer(max_logs=10)

        buffer.add_log(sensitive_record)

        assert sensitive_record["request"]["body"]["password"] == "super_secret_password"

    def test_timestamp_defaults_to_now(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test a record without a timestamp is stamped in UTC."""
        buffer = LogBuffer(max_logs=10)

        buffer.add_log(record_factory())

        assert buffer.snapshot()[0].timestamp.tzinfo is not None


class TestObservers:
    """Test event subscriptions."""

    def test_new_log_event(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test subscribers receive each stored entry."""
        buffer = LogBuffer(max_logs=10)
        received: List[Any] = []
        buffer.subscribe(EVENT_NEW_LOG, received.append)

        buffer.add_log(record_factory())

        assert len(received) == 1
        assert received[0].sequence == 1

    def test_unsubscribe(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test the returned function stops delivery."""
        buffer = LogBuffer(max_logs=10)
        received: List[Any] = []
        unsubscribe = buffer.subscribe(EVENT_NEW_LOG, received.append)

        unsubscribe()
        buffer.add_log(record_factory())

        assert received == []

    def test_cleared_and_reloaded_events(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test clear and replace notify their own events."""
        buffer = LogBuffer(max_logs=10)
        cleared: List[Any] = []
        reloaded: List[Any] = []
        buffer.subscribe(EVENT_CLEARED, cleared.append)
        buffer.subscribe(EVENT_DATA_RELOADED, reloaded.append)

        buffer.add_log(record_factory())
        buffer.clear()
        buffer.replace([])

        assert cleared == [1]
        assert reloaded == [[]]

    def test_failing_observer_does_not_break_capture(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test an exception in one callback reaches neither the caller nor other callbacks."""
        buffer = LogBuffer(max_logs=10)
        received: List[Any] = []

        def broken(_entry: Any) -> None:
            raise RuntimeError("observer failure")

        buffer.subscribe(EVENT_NEW_LOG, broken)
        buffer.subscribe(EVENT_NEW_LOG, received.append)

        assert buffer.add_log(record_factory()) == 1
        assert len(received) == 1

    def test_unknown_event_rejected(self) -> None:
        """Test subscribing to an unknown event raises."""
        buffer = LogBuffer(max_logs=10)

        with pytest.raises(ValueError):
            buffer.subscribe("bogus", lambda _: None)

    def test_destroyed_buffer_ignores_captures(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test capture after destroy is a no-op."""
        buffer = LogBuffer(max_logs=10)
        buffer.destroy()
        buffer.destroy()

        assert buffer.add_log(record_factory()) is None
        assert len(buffer) == 0


class TestReload:
    """Test replacing the buffer with persisted entries."""

    def test_load_records_keeps_sequences(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test loaded entries keep their numbers and the counter moves past them."""
        source = LogBuffer(max_logs=10)
        for _ in range(3):
            source.add_log(record_factory())
        records = [entry.to_dict() for entry in source.snapshot()]

        buffer = LogBuffer(max_logs=10)
        loaded = buffer.load_records(records)

        assert loaded == 3
        assert [e.sequence for e in buffer.snapshot()] == [1, 2, 3]
        assert buffer.add_log(record_factory()) == 4

    def test_load_records_truncates_to_newest(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test only the newest max_logs entries survive a reload."""
        source = LogBuffer(max_logs=10)
        for _ in range(5):
            source.add_log(record_factory())
        records = [entry.to_dict() for entry in source.snapshot()]

        buffer = LogBuffer(max_logs=2)
        buffer.load_records(records)

        assert [e.sequence for e in buffer.snapshot()] == [4, 5]
        assert buffer.add_log(record_factory()) == 6

    def test_load_records_skips_invalid(self, record_factory: Callable[..., Dict[str, Any]]) -> None:
        """Test broken records are skipped and the rest loaded."""
        source = LogBuffer(max_logs=10)
        source.add_log(record_factory())
        records: List[Any] = [source.snapshot()[0].to_dict(), {"garbage": True}, 17]

        buffer = LogBuffer(max_logs=10)

        assert buffer.load_records(records) == 1

    def test_load_records_applies_current_masking(self) -> None:
        """Test persisted values are masked again under the current policy."""
        record = {
            "sequence": 7,
            "timestamp": "2025-01-01T00:00:00Z",
            "request": {"method": "GET", "path": "/", "headers": {"X-Tenant": "acme"}},
            "response": {"statusCode": 200},
            "responseTime": 1.0,
        }
        buffer = LogBuffer(max_logs=10, masking=MaskingEngine(["x-tenant"]))

        buffer.load_records([record])

        assert buffer.snapshot()[0].request.headers["X-Tenant"] == MASK_TOKEN
        assert buffer.snapshot()[0].sequence == 7
