"""
Write coalescer persisting the log buffer to a JSON file.

Many rapid captures are merged into one deferred write:
- debounce timer: flush once captures go quiet for `write_debounce_ms`
- ceiling timer: flush at most `write_interval_ms` after the first unflushed capture
- batch threshold: flush at once when `write_batch_size` captures are pending

Only one flush runs at a time. Each flush writes the full buffer to a
temporary file and atomically replaces the destination.
"""

import asyncio
import json
import os
import threading
import time
from pathlib import Path
from typing import Any, List, Optional

import aiofiles.os
import structlog
from aiofiles import open as aio_open

from ..config import PersistenceSettings
from ..models.log_entry import LogEntry
from ..models.status import SyncMode, SyncStatus
from .buffer import EVENT_CLEARED, EVENT_NEW_LOG, LogBuffer
from .exceptions import PersistenceError
from .metrics import MetricsCollector
from .sync_status import SyncMonitor

logger = structlog.get_logger(__name__)

TRIGGER_DEBOUNCE = "debounce"
TRIGGER_INTERVAL = "interval"
TRIGGER_BATCH = "batch"
TRIGGER_RESIDUAL = "residual"
TRIGGER_MANUAL = "manual"
TRIGGER_SHUTDOWN = "shutdown"


class WriteCoalescer:
    """
    Adaptive flush scheduler and file owner for a LogBuffer.

    Scheduling state lives on the event loop bound by `start()`; buffer
    mutations from other threads are handed to the loop thread-safely.
    """

    def __init__(
        self,
        buffer: LogBuffer,
        settings: PersistenceSettings,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.buffer = buffer
        self.file_path = Path(settings.file_path)
        self.tmp_path = self.file_path.with_name(self.file_path.name + ".tmp")
        self.write_interval = max(settings.write_interval_ms, 0) / 1000.0
        self.write_debounce = max(settings.write_debounce_ms, 0) / 1000.0
        self.write_batch_size = max(settings.write_batch_size, 1)
        self.metrics = metrics
        self.monitor = SyncMonitor(persistence_enabled=True, file_path=self.file_path)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._dirty = 0
        self._dirty_lock = threading.Lock()
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._ceiling_handle: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional["asyncio.Task[bool]"] = None
        self._flush_requested = False
        self._closed = False

        self._unsubscribers = [
            buffer.subscribe(EVENT_NEW_LOG, self._on_mutation),
            buffer.subscribe(EVENT_CLEARED, self._on_mutation),
        ]

        logger.info(
            "Write coalescer initialized",
            file_path=str(self.file_path),
            write_interval_ms=settings.write_interval_ms,
            write_batch_size=self.write_batch_size,
            write_debounce_ms=settings.write_debounce_ms,
        )

    @property
    def pending(self) -> int:
        """Mutations not yet covered by a completed flush."""
        return self._dirty

    @property
    def is_flushing(self) -> bool:
        return self._flush_task is not None

    # ------------------------------------------------------------------
    # Loading

    def load(self) -> int:
        """
        Load the persisted file into the buffer.

        A missing file means an empty buffer. A corrupt file is logged and
        also gives an empty buffer; it never aborts startup.
        """
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            logger.info("No persisted log file, starting empty", file_path=str(self.file_path))
            self.buffer.replace([])
            return 0
        except OSError as e:
            logger.warning("Could not read persisted log file", file_path=str(self.file_path), error=str(e))
            self.buffer.replace([])
            return 0

        return self._load_text(raw)

    async def refresh(self) -> int:
        """
        Re-read the persisted file, replacing the in-memory buffer.

        Captures newer than the file are discarded along with the pending
        count, since the buffer now mirrors the file.
        """
        # An in-flight flush would overwrite the file with the old snapshot
        while self._flush_task is not None:
            await self._flush_task

        try:
            async with aio_open(self.file_path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            raw = "[]"
        except OSError as e:
            logger.warning("Could not read persisted log file", file_path=str(self.file_path), error=str(e))
            raw = "[]"

        loaded = self._load_text(raw)
        self._cancel_timers()
        self._flush_requested = False
        with self._dirty_lock:
            self._dirty = 0
        self._update_pending()
        if not self.is_flushing:
            self.monitor.set_mode(SyncMode.IDLE)
        return loaded

    def _load_text(self, raw: str) -> int:
        try:
            records = self._parse(raw)
        except (ValueError, PersistenceError) as e:
            logger.warning(
                "Persisted log file is corrupt, starting empty",
                file_path=str(self.file_path),
                error=str(e),
            )
            records = []

        loaded = self.buffer.load_records(records)
        logger.info("Persisted logs loaded", file_path=str(self.file_path), entries=loaded)
        return loaded

    def _parse(self, raw: str) -> List[Any]:
        if not raw.strip():
            return []

        data = json.loads(raw)
        # Older files wrap the array in {"logs": [...]}
        if isinstance(data, dict) and isinstance(data.get("logs"), list):
            data = data["logs"]
        if not isinstance(data, list):
            raise PersistenceError(
                "Persisted log file does not contain an entry array",
                details={"type": type(data).__name__},
            )
        return data

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> None:
        """Bind to the running loop and schedule anything captured before start."""
        self._loop = asyncio.get_running_loop()
        self._closed = False
        if self._dirty:
            self._schedule()
        logger.info("Write coalescer started", pending=self._dirty)

    async def flush(self) -> bool:
        """
        Flush now, after any in-flight flush. Returns True on success.

        Once destroy() has started the final flush belongs to it, so this
        returns False.
        """
        if self._closed:
            return False
        self._ensure_loop()
        while self._flush_task is not None:
            await self._flush_task
        self._cancel_timers()
        return await self._start_flush(TRIGGER_MANUAL)

    async def destroy(self) -> None:
        """
        Stop scheduling and write a final snapshot.

        Waits for an in-flight flush, then flushes once more regardless of
        the pending count. Safe to call more than once.
        """
        if self._closed:
            return
        self._closed = True
        self._cancel_timers()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

        while self._flush_task is not None:
            await self._flush_task

        self._flush_task = asyncio.get_running_loop().create_task(self._run_flush(TRIGGER_SHUTDOWN))
        ok = await self._flush_task
        self.monitor.set_mode(SyncMode.IDLE)

        logger.info(
            "Write coalescer stopped",
            final_flush_ok=ok,
            flush_count=self.monitor.flush_count,
            flush_errors=self.monitor.flush_errors,
        )

    def status(self) -> SyncStatus:
        self.monitor.pending_entries = self._dirty
        return self.monitor.status()

    # ------------------------------------------------------------------
    # Scheduling

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _on_mutation(self, _payload: Any) -> None:
        """Buffer observer; may be called from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed() or self._closed:
            # Not scheduling yet; count it so start() or destroy() covers it
            with self._dirty_lock:
                self._dirty += 1
            return

        if self._on_loop_thread():
            self._record_mutation()
        else:
            loop.call_soon_threadsafe(self._record_mutation)

    def _record_mutation(self) -> None:
        with self._dirty_lock:
            self._dirty += 1
        self._update_pending()
        if self._closed:
            return
        self._schedule()

    def _schedule(self) -> None:
        """Decide between an immediate batch flush and (re)arming the timers."""
        if self.is_flushing:
            # Single-flight: keep timers running for the residual entries
            self._arm_timers()
            return

        if self._dirty >= self.write_batch_size:
            self._cancel_timers()
            self.monitor.set_mode(SyncMode.BATCHING)
            self._spawn_flush(TRIGGER_BATCH)
            return

        self._arm_timers()
        self.monitor.set_mode(SyncMode.DEBOUNCING)

    def _arm_timers(self) -> None:
        loop = self._ensure_loop()
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = loop.call_later(self.write_debounce, self._on_timer, TRIGGER_DEBOUNCE)

        # The ceiling is measured from the first unflushed entry and never reset
        if self._ceiling_handle is None:
            self._ceiling_handle = loop.call_later(self.write_interval, self._on_timer, TRIGGER_INTERVAL)

    def _cancel_timers(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        if self._ceiling_handle is not None:
            self._ceiling_handle.cancel()
            self._ceiling_handle = None

    def _on_timer(self, trigger: str) -> None:
        if trigger == TRIGGER_DEBOUNCE:
            self._debounce_handle = None
        else:
            self._ceiling_handle = None

        if self._closed:
            return

        if self.is_flushing:
            self._flush_requested = True
            return

        if not self._dirty:
            self._cancel_timers()
            self.monitor.set_mode(SyncMode.IDLE)
            return

        self._cancel_timers()
        self._spawn_flush(trigger)

    def _spawn_flush(self, trigger: str) -> None:
        loop = self._ensure_loop()
        self._flush_task = loop.create_task(self._run_flush(trigger))

    def _start_flush(self, trigger: str) -> "asyncio.Task[bool]":
        self._spawn_flush(trigger)
        assert self._flush_task is not None
        return self._flush_task

    async def _run_flush(self, trigger: str) -> bool:
        self.monitor.set_mode(SyncMode.FLUSHING)
        ok = False
        try:
            ok = await self._flush_once(trigger)
        finally:
            self._flush_task = None
            self._after_flush(ok)
        return ok

    def _after_flush(self, ok: bool) -> None:
        """Resume scheduling for entries that arrived while writing."""
        if self._closed:
            return

        requested = self._flush_requested
        self._flush_requested = False

        if not self._dirty:
            self._cancel_timers()
            self.monitor.set_mode(SyncMode.IDLE)
            return

        if not ok:
            # Retry no later than the ceiling; new captures may retry sooner
            if self._ceiling_handle is None:
                self._ceiling_handle = self._ensure_loop().call_later(
                    self.write_interval, self._on_timer, TRIGGER_INTERVAL
                )
            self.monitor.set_mode(SyncMode.DEBOUNCING)
            return

        if requested or self._dirty >= self.write_batch_size:
            self._cancel_timers()
            if self._dirty >= self.write_batch_size:
                self.monitor.set_mode(SyncMode.BATCHING)
            self._spawn_flush(TRIGGER_RESIDUAL)
            return

        if self._debounce_handle is None:
            self._arm_timers()
        self.monitor.set_mode(SyncMode.DEBOUNCING)

    # ------------------------------------------------------------------
    # Writing

    async def _flush_once(self, trigger: str) -> bool:
        """Write one full snapshot; the pending count drops only on success."""
        with self._dirty_lock:
            covered = self._dirty
        entries = self.buffer.snapshot()
        started = time.perf_counter()

        try:
            await self._write_snapshot(entries)
        except Exception as e:
            self.monitor.record_error(e)
            if self.metrics:
                self.metrics.record_flush_error()
            logger.error(
                "Flush failed, keeping pending entries",
                trigger=trigger,
                file_path=str(self.file_path),
                pending=covered,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        duration = time.perf_counter() - started
        with self._dirty_lock:
            self._dirty = max(0, self._dirty - covered)
        self.monitor.record_flush(duration * 1000.0, covered)
        self._update_pending()
        if self.metrics:
            self.metrics.record_flush(trigger, duration)

        logger.debug(
            "Flushed log buffer",
            trigger=trigger,
            entries=len(entries),
            covered=covered,
            duration_ms=round(duration * 1000.0, 3),
        )
        return True

    async def _write_snapshot(self, entries: List[LogEntry]) -> None:
        """Serialize to a temp file next to the destination, then replace it."""
        payload = json.dumps([entry.to_dict() for entry in entries], ensure_ascii=False)

        await aiofiles.os.makedirs(self.file_path.parent, exist_ok=True)
        async with aio_open(self.tmp_path, "w", encoding="utf-8") as f:
            await f.write(payload)
            await f.flush()
            await asyncio.to_thread(os.fsync, f.fileno())
        await aiofiles.os.replace(self.tmp_path, self.file_path)

    def _update_pending(self) -> None:
        self.monitor.pending_entries = self._dirty
        if self.metrics:
            self.metrics.update_pending(self._dirty)
