"""Metrics collector: thread-safe counters and percentiles for log flushes."""

import threading
import time


class MetricsCollector:
    """Collects and reports metrics about log shipper flushes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._flushes: int = 0
        self._failed_flushes: int = 0
        self._total_events: int = 0
        self._batch_sizes: list[int] = []
        self._write_times: list[float] = []
        self._flush_triggers: dict = {"size": 0, "manual": 0, "shutdown": 0}
        self._start_time = time.monotonic()

    def record_flush(
        self,
        batch_size: int,
        write_time_ms: float,
        trigger: str = "size",
    ) -> None:
        """Record metrics for a single successful flush.

        Args:
            batch_size: Number of log events in the write unit.
            write_time_ms: Time taken by the write, in milliseconds.
            trigger: What caused the flush: "size", "manual" or "shutdown".
        """
        with self._lock:
            self._flushes += 1
            self._total_events += batch_size
            self._batch_sizes.append(batch_size)
            self._write_times.append(write_time_ms)
            self._flush_triggers[trigger] = self._flush_triggers.get(trigger, 0) + 1

    def record_failure(self) -> None:
        with self._lock:
            self._failed_flushes += 1

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all collected metrics.

        Returns:
            Dictionary containing counters, averages, percentiles,
            flush trigger counts, and uptime.
        """
        with self._lock:
            batch_sizes = list(self._batch_sizes)
            write_times = list(self._write_times)

            avg_batch = (
                sum(batch_sizes) / len(batch_sizes) if batch_sizes else 0.0
            )
            avg_write = (
                sum(write_times) / len(write_times) if write_times else 0.0
            )

            return {
                "flushes": self._flushes,
                "failed_flushes": self._failed_flushes,
                "total_events": self._total_events,
                "avg_batch_size": avg_batch,
                "p50_batch_size": self._percentile(batch_sizes, 50),
                "avg_write_time_ms": avg_write,
                "p95_write_time_ms": self._percentile(write_times, 95),
                "flush_triggers": dict(self._flush_triggers),
                "uptime_seconds": time.monotonic() - self._start_time,
            }

    @staticmethod
    def _percentile(data: list, pct: float) -> float:
        """Compute an interpolated percentile from a list of numeric values.

        Args:
            data: List of numeric values (will be sorted internally).
            pct: Desired percentile (0-100).

        Returns:
            Interpolated value at the given percentile, or 0.0 if data is empty.
        """
        if not data:
            return 0.0

        sorted_data = sorted(data)
        n = len(sorted_data)

        if n == 1:
            return float(sorted_data[0])

        idx = (pct / 100) * (n - 1)
        lower = int(idx)
        upper = lower + 1
        fraction = idx - lower

        if upper >= n:
            return float(sorted_data[-1])

        return float(sorted_data[lower] + fraction * (sorted_data[upper] - sorted_data[lower]))
