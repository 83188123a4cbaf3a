"""
Metrics collection for observability.

Tracks request latency, error rates, in-flight depth and inbound traffic.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Any
from collections import deque
import threading

from .message import MessageKind


@dataclass
class MetricsSnapshot:
    """Point-in-time snapshot of all metrics."""

    # Counters
    requests_total: int = 0
    requests_success: int = 0
    requests_failed: int = 0
    requests_disposed: int = 0

    # Latency (milliseconds)
    latency_avg_ms: float = 0.0
    latency_p50_ms: float = 0.0
    latency_p95_ms: float = 0.0
    latency_p99_ms: float = 0.0
    latency_min_ms: float = 0.0
    latency_max_ms: float = 0.0

    # In-flight requests
    in_flight: int = 0
    in_flight_max: int = 0

    # Inbound traffic
    messages_received: Dict[str, int] = field(default_factory=dict)
    malformed_lines: int = 0
    write_failures: int = 0

    # Timestamp
    timestamp: float = field(default_factory=time.time)


class Metrics:
    """
    Thread-safe metrics collector for AppServerBridge.

    Usage:
        metrics = Metrics()

        start = metrics.start_request()
        # ... await the reply ...
        metrics.end_request(start, success=True)

        snapshot = metrics.snapshot()
        print(f"Avg latency: {snapshot.latency_avg_ms}ms")
    """

    def __init__(self, max_latency_samples: int = 1000):
        self.max_latency_samples = max_latency_samples

        self._lock = threading.Lock()
        self._requests_total = 0
        self._requests_success = 0
        self._requests_failed = 0
        self._requests_disposed = 0

        self._in_flight = 0
        self._in_flight_max = 0

        self._messages_received: Dict[str, int] = {kind.value: 0 for kind in MessageKind}
        self._malformed_lines = 0
        self._write_failures = 0

        # Latency samples (circular buffer)
        self._latencies: deque = deque(maxlen=max_latency_samples)

    def start_request(self) -> float:
        """
        Start tracking a request.

        Returns start timestamp for later end_request() call.
        """
        with self._lock:
            self._requests_total += 1
            self._in_flight += 1
            self._in_flight_max = max(self._in_flight_max, self._in_flight)

        return time.perf_counter()

    def end_request(self, start_time: float, success: bool = True) -> float:
        """
        End tracking a request.

        Returns latency in milliseconds.
        """
        latency_ms = (time.perf_counter() - start_time) * 1000

        with self._lock:
            self._in_flight -= 1

            if success:
                self._requests_success += 1
            else:
                self._requests_failed += 1

            self._latencies.append(latency_ms)

        return latency_ms

    def record_disposed(self, count: int):
        """Record requests rejected by disposal."""
        with self._lock:
            self._requests_disposed += count

    def record_message(self, kind: MessageKind):
        """Record one classified inbound message."""
        with self._lock:
            self._messages_received[kind.value] += 1

    def record_malformed_line(self):
        """Record an inbound line that failed parsing or classification."""
        with self._lock:
            self._malformed_lines += 1

    def record_write_failure(self):
        with self._lock:
            self._write_failures += 1

    def snapshot(self) -> MetricsSnapshot:
        """Get a point-in-time snapshot of all metrics."""
        with self._lock:
            latencies = list(self._latencies)

            if latencies:
                sorted_latencies = sorted(latencies)
                n = len(sorted_latencies)
                p50_idx = int(n * 0.50)
                p95_idx = int(n * 0.95)
                p99_idx = int(n * 0.99)

                latency_avg = sum(latencies) / n
                latency_p50 = sorted_latencies[min(p50_idx, n - 1)]
                latency_p95 = sorted_latencies[min(p95_idx, n - 1)]
                latency_p99 = sorted_latencies[min(p99_idx, n - 1)]
                latency_min = sorted_latencies[0]
                latency_max = sorted_latencies[-1]
            else:
                latency_avg = latency_p50 = latency_p95 = latency_p99 = 0.0
                latency_min = latency_max = 0.0

            return MetricsSnapshot(
                requests_total=self._requests_total,
                requests_success=self._requests_success,
                requests_failed=self._requests_failed,
                requests_disposed=self._requests_disposed,
                latency_avg_ms=latency_avg,
                latency_p50_ms=latency_p50,
                latency_p95_ms=latency_p95,
                latency_p99_ms=latency_p99,
                latency_min_ms=latency_min,
                latency_max_ms=latency_max,
                in_flight=self._in_flight,
                in_flight_max=self._in_flight_max,
                messages_received=dict(self._messages_received),
                malformed_lines=self._malformed_lines,
                write_failures=self._write_failures,
            )

    def reset(self):
        """Reset all metrics."""
        with self._lock:
            self._requests_total = 0
            self._requests_success = 0
            self._requests_failed = 0
            self._requests_disposed = 0
            self._in_flight = 0
            self._in_flight_max = 0
            self._messages_received = {kind.value: 0 for kind in MessageKind}
            self._malformed_lines = 0
            self._write_failures = 0
            self._latencies.clear()

    def to_dict(self) -> Dict[str, Any]:
        """Get metrics as a dictionary (for logging/serialization)."""
        snapshot = self.snapshot()
        return {
            "requests": {
                "total": snapshot.requests_total,
                "success": snapshot.requests_success,
                "failed": snapshot.requests_failed,
                "disposed": snapshot.requests_disposed,
                "error_rate": (
                    snapshot.requests_failed / snapshot.requests_total
                    if snapshot.requests_total > 0
                    else 0.0
                ),
            },
            "latency_ms": {
                "avg": round(snapshot.latency_avg_ms, 2),
                "p50": round(snapshot.latency_p50_ms, 2),
                "p95": round(snapshot.latency_p95_ms, 2),
                "p99": round(snapshot.latency_p99_ms, 2),
                "min": round(snapshot.latency_min_ms, 2),
                "max": round(snapshot.latency_max_ms, 2),
            },
            "in_flight": {
                "current": snapshot.in_flight,
                "max": snapshot.in_flight_max,
            },
            "inbound": {
                "messages": snapshot.messages_received,
                "malformed_lines": snapshot.malformed_lines,
            },
            "write_failures": snapshot.write_failures,
        }
