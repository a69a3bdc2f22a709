"""
Bounded in-memory store of captured request/response pairs.

Owns sequence numbering, FIFO eviction, filtering, statistics and
observer notification. Never performs I/O.
"""

import re
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from ..models.log_entry import LogEntry, LogFilter
from ..models.status import Statistics
from .exceptions import ValidationError
from .masking import MaskingEngine
from .metrics import MetricsCollector
from .stats import compute_stats

logger = structlog.get_logger(__name__)

EVENT_NEW_LOG = "new_log"
EVENT_DATA_RELOADED = "data_reloaded"
EVENT_CLEARED = "cleared"
EVENTS = (EVENT_NEW_LOG, EVENT_DATA_RELOADED, EVENT_CLEARED)

Observer = Callable[[Any], None]

# Parts of a capture record that pass through the masking engine
_MASKED_REQUEST_FIELDS = ("query", "headers", "body")
_MASKED_RESPONSE_FIELDS = ("headers", "body")


class LogBuffer:
    """
    Fixed-capacity ring buffer of LogEntry objects.

    Features:
    - Monotonic sequence numbers, never reused across evictions or clears
    - Strict FIFO eviction once `max_logs` is exceeded
    - Masking applied before an entry becomes visible
    - Synchronous observer callbacks per event
    """

    def __init__(
        self,
        max_logs: int = 1000,
        masking: Optional[MaskingEngine] = None,
        metrics: Optional[MetricsCollector] = None,
        top_endpoints: int = 10,
    ) -> None:
        self.max_logs = max_logs
        self.masking = masking or MaskingEngine()
        self.metrics = metrics
        self.top_endpoints = top_endpoints
        self._entries: Deque[LogEntry] = deque()
        self._sequence = 0
        self._lock = threading.Lock()
        self._observers: Dict[str, List[Observer]] = {event: [] for event in EVENTS}
        self._destroyed = False

        logger.debug("Log buffer initialized", max_logs=max_logs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def last_sequence(self) -> int:
        """Highest sequence number handed out so far."""
        return self._sequence

    def add_log(self, raw_entry: Any) -> Optional[int]:
        """
        Mask, number and append a capture record.

        Returns the assigned sequence, or None when the record is rejected.
        Never raises and never blocks on I/O.
        """
        if self._destroyed:
            logger.warning("Capture ignored, buffer destroyed")
            return None

        try:
            entry = self._build_entry(raw_entry)
        except (ModelValidationError, TypeError, ValueError) as e:
            logger.warning(
                "Rejected invalid capture record",
                error=str(e),
                error_type=type(e).__name__,
            )
            if self.metrics:
                self.metrics.record_rejected()
            return None

        with self._lock:
            self._sequence += 1
            entry = entry.model_copy(update={"sequence": self._sequence})
            self._entries.append(entry)

            evicted = 0
            while len(self._entries) > max(self.max_logs, 0):
                self._entries.popleft()
                evicted += 1
            size = len(self._entries)

        if self.metrics:
            self.metrics.record_capture(
                entry.request.method, entry.response_time, size, evicted
            )

        logger.debug(
            "Captured entry",
            sequence=entry.sequence,
            endpoint=entry.endpoint,
            status_code=entry.response.status_code,
            evicted=evicted,
        )

        self._notify(EVENT_NEW_LOG, entry)
        return entry.sequence

    def _mask_record(self, raw_entry: Any) -> Dict[str, Any]:
        """Copy a record into a plain dict with sensitive values masked."""
        if isinstance(raw_entry, BaseModel):
            data = raw_entry.model_dump(by_alias=True)
        elif isinstance(raw_entry, Mapping):
            data = dict(raw_entry)
        else:
            raise TypeError(f"Capture record must be a mapping, got {type(raw_entry).__name__}")

        request = dict(data.get("request") or {})
        response = dict(data.get("response") or {})

        for field in _MASKED_REQUEST_FIELDS:
            if field in request:
                request[field] = self.masking.mask(request[field])
        for field in _MASKED_RESPONSE_FIELDS:
            if field in response:
                response[field] = self.masking.mask(response[field])

        data["request"] = request
        data["response"] = response
        return data

    def _build_entry(self, raw_entry: Any) -> LogEntry:
        """Normalize, mask and validate a record with a placeholder sequence."""
        data = self._mask_record(raw_entry)
        data["sequence"] = 1
        if not data.get("timestamp"):
            data["timestamp"] = datetime.now(timezone.utc)

        return LogEntry.model_validate(data)

    def snapshot(self) -> List[LogEntry]:
        """Private copy of the buffer, oldest first."""
        with self._lock:
            return list(self._entries)

    def get_logs(self, log_filter: Optional[LogFilter] = None, **criteria: Any) -> List[LogEntry]:
        """
        Return matching entries, most recent first.

        Accepts a LogFilter or the same fields as keyword arguments.
        """
        if log_filter is None:
            log_filter = LogFilter(**criteria)

        pattern = None
        if log_filter.path_pattern:
            try:
                pattern = re.compile(log_filter.path_pattern)
            except re.error as e:
                raise ValidationError(
                    "Invalid path pattern",
                    details={"path_pattern": log_filter.path_pattern, "error": str(e)},
                )

        method = log_filter.method.upper() if log_filter.method else None
        limit = log_filter.limit

        results: List[LogEntry] = []
        if limit == 0:
            return results

        for entry in reversed(self.snapshot()):
            if method and entry.request.method != method:
                continue
            if log_filter.status_code is not None and entry.response.status_code != log_filter.status_code:
                continue
            if pattern and not pattern.search(entry.request.path):
                continue
            if log_filter.since and entry.timestamp < log_filter.since:
                continue

            results.append(entry)
            if limit is not None and len(results) >= limit:
                break

        return results

    def get_stats(self) -> Statistics:
        """Statistics computed fresh from the current buffer."""
        return compute_stats(self.snapshot(), self.top_endpoints)

    def clear(self) -> None:
        """Drop every entry. The sequence counter keeps counting."""
        with self._lock:
            cleared = len(self._entries)
            self._entries.clear()

        if self.metrics:
            self.metrics.record_buffer_size(0)

        logger.info("Log buffer cleared", entries_cleared=cleared)
        self._notify(EVENT_CLEARED, cleared)

    def replace(self, entries: List[LogEntry]) -> None:
        """
        Swap in entries loaded from storage.

        Keeps the newest `max_logs` by sequence and moves the counter past
        the highest loaded sequence.
        """
        ordered = sorted(entries, key=lambda e: e.sequence)
        keep = ordered[-self.max_logs:] if self.max_logs > 0 else []

        with self._lock:
            self._entries = deque(keep)
            if ordered:
                self._sequence = max(self._sequence, ordered[-1].sequence)
            size = len(self._entries)

        if self.metrics:
            self.metrics.record_buffer_size(size)

        logger.info("Log buffer reloaded", entries_loaded=size, last_sequence=self._sequence)
        self._notify(EVENT_DATA_RELOADED, keep)

    def load_records(self, records: List[Any]) -> int:
        """
        Replace the buffer with persisted records.

        Sequence and timestamp are kept; masking is applied again under the
        current policy. Invalid records are skipped.
        """
        entries: List[LogEntry] = []
        skipped = 0
        for record in records:
            try:
                entries.append(LogEntry.model_validate(self._mask_record(record)))
            except (ModelValidationError, TypeError, ValueError):
                skipped += 1

        if skipped:
            logger.warning("Skipped invalid persisted entries", skipped=skipped, loaded=len(entries))

        self.replace(entries)
        return len(self)

    def subscribe(self, event: str, callback: Observer) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        if event not in self._observers:
            raise ValueError(f"Unknown event {event!r}, expected one of {EVENTS}")
        self._observers[event].append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(event, callback)

        return unsubscribe

    def unsubscribe(self, event: str, callback: Observer) -> None:
        """Remove a callback. Unknown callbacks are ignored."""
        callbacks = self._observers.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _notify(self, event: str, payload: Any) -> None:
        for callback in list(self._observers[event]):
            try:
                callback(payload)
            except Exception as e:
                logger.error(
                    "Observer callback failed",
                    event=event,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )

    def destroy(self) -> None:
        """Release observers. Safe to call more than once."""
        if self._destroyed:
            return
        self._destroyed = True
        for callbacks in self._observers.values():
            callbacks.clear()
        logger.debug("Log buffer destroyed")
