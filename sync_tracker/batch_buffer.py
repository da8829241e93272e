"""Batch buffer: thread-safe pending list flushed when it reaches batch_size."""

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class BatchBuffer:
    """Accumulates entries in insertion order and hands them to *on_flush*
    as one batch when the buffer reaches *batch_size*, or on close().

    One lock covers appends and the whole flush-and-clear sequence, so two
    flushes never overlap and no entry joins a batch after it was handed to
    *on_flush*. If *on_flush* raises, the buffer is left exactly as it was
    and the exception propagates.
    """

    def __init__(self, batch_size: int, on_flush: Callable[[list], None]):
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self._batch_size = batch_size
        self._on_flush = on_flush
        self._entries: list = []
        self._lock = threading.Lock()
        self._closed = False

    def add(self, entry) -> bool:
        """Append *entry*; flush synchronously if the threshold is reached.

        Returns True when this call flushed the buffer.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("BatchBuffer is closed")
            self._entries.append(entry)
            if len(self._entries) >= self._batch_size:
                self._flush_locked()
                return True
            return False

    def flush(self) -> int:
        """Flush whatever is pending. Returns the number of entries flushed."""
        with self._lock:
            return self._flush_locked()

    def close(self) -> int:
        """Reject further entries, then flush what remains.

        The buffer is closed even if the final flush raises.
        """
        with self._lock:
            self._closed = True
            return self._flush_locked()

    def _flush_locked(self) -> int:
        if not self._entries:
            return 0
        batch = list(self._entries)
        self._on_flush(batch)
        self._entries.clear()
        return len(batch)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @batch_size.setter
    def batch_size(self, value: int):
        if value < 1:
            raise ValueError(f"batch_size must be at least 1, got {value}")
        with self._lock:
            self._batch_size = value
            if len(self._entries) >= value:
                self._flush_locked()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def pending(self) -> list:
        """Return a copy of the pending entries, oldest first."""
        with self._lock:
            return list(self._entries)

    @property
    def closed(self) -> bool:
        return self._closed
