# ─────────────────────────────────────────────────────────────────────────────
# Generation Metrics — thread-safe request accounting
# ─────────────────────────────────────────────────────────────────────────────
# Counts every /generate outcome (admitted, throttled, rejected, provider
# success/failure/timeout) and keeps a bounded provider-latency history.
# Exposed via GET /metrics and bridged to Prometheus.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any


@dataclass
class GenerationMetrics:
    """Thread-safe /generate metrics."""

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    requests_total: int = 0
    admitted_total: int = 0
    throttled_total: int = 0
    rejected_total: int = 0  # configuration / validation failures
    successes_total: int = 0
    provider_failures_total: int = 0
    provider_timeouts_total: int = 0
    images_returned_total: int = 0

    # Bounded -- only keeps last 1000 latencies, oldest auto-evicted
    _latency_history: deque[float] = field(default_factory=lambda: deque(maxlen=1000), repr=False)

    _start_time: float = field(default_factory=time.time, repr=False)

    def record_request(self) -> None:
        with self._lock:
            self.requests_total += 1

    def record_rejected(self) -> None:
        with self._lock:
            self.rejected_total += 1

    def record_throttled(self) -> None:
        with self._lock:
            self.throttled_total += 1

    def record_admitted(self) -> None:
        with self._lock:
            self.admitted_total += 1

    def record_result(
        self,
        latency_ms: float,
        success: bool,
        images: int = 0,
        timed_out: bool = False,
    ) -> None:
        """Record the outcome of one provider call."""
        with self._lock:
            self._latency_history.append(latency_ms)
            if success:
                self.successes_total += 1
                self.images_returned_total += images
            elif timed_out:
                self.provider_timeouts_total += 1
            else:
                self.provider_failures_total += 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for the /metrics endpoint."""
        with self._lock:
            latencies = sorted(self._latency_history)
            n = len(latencies)
            return {
                "requests_total": self.requests_total,
                "admitted_total": self.admitted_total,
                "throttled_total": self.throttled_total,
                "rejected_total": self.rejected_total,
                "successes_total": self.successes_total,
                "provider_failures_total": self.provider_failures_total,
                "provider_timeouts_total": self.provider_timeouts_total,
                "images_returned_total": self.images_returned_total,
                "latency_p50_ms": round(latencies[n // 2], 1) if n else 0,
                "latency_p95_ms": round(latencies[int(n * 0.95)], 1) if n else 0,
                "latency_mean_ms": round(sum(latencies) / n, 1) if n else 0,
                "uptime_seconds": int(time.time() - self._start_time),
            }
