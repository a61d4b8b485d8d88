"""
Capture Pipeline Metrics

In-process counters and histograms exported in Prometheus text format:
- Frames written, repeated, skipped and excluded
- Screenshot capture latency
- Encoder write latency
- Job outcomes by error code
"""

import os
import time
import logging
from typing import Optional, Dict, List
from collections import defaultdict

logger = logging.getLogger(__name__)


class Histogram:
    """Simple histogram implementation"""

    def __init__(self, name: str, help_text: str, buckets: List[float]):
        self.name = name
        self.help = help_text
        self.buckets = sorted(buckets) + [float("inf")]
        self._counts = [0] * len(self.buckets)
        self._sum = 0.0
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def observe(self, value: float):
        """Record a value"""
        self._sum += value
        self._count += 1
        for i, bound in enumerate(self.buckets):
            if value <= bound:
                self._counts[i] += 1

    def to_prometheus(self) -> str:
        """Export in Prometheus format"""
        lines = [
            f"# HELP {self.name} {self.help}",
            f"# TYPE {self.name} histogram",
        ]
        for i, bound in enumerate(self.buckets):
            le = "+Inf" if bound == float("inf") else str(bound)
            lines.append(f'{self.name}_bucket{{le="{le}"}} {self._counts[i]}')

        lines.append(f"{self.name}_sum {self._sum}")
        lines.append(f"{self.name}_count {self._count}")
        return "\n".join(lines)


class Counter:
    """Simple counter implementation"""

    def __init__(self, name: str, help_text: str):
        self.name = name
        self.help = help_text
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def inc(self, value: int = 1):
        """Increment counter"""
        self._value += value

    def to_prometheus(self) -> str:
        """Export in Prometheus format"""
        return f"# HELP {self.name} {self.help}\n# TYPE {self.name} counter\n{self.name} {self._value}"


class CaptureMetrics:
    """
    Collects capture pipeline metrics.

    Configure via environment variables:
    - VTCAPTURE_METRICS_ENABLED: Enable/disable metrics (default: true)
    - VTCAPTURE_METRICS_PREFIX: Prefix for metric names (default: vtcapture)
    """

    def __init__(self, enabled: Optional[bool] = None, prefix: Optional[str] = None):
        if enabled is None:
            enabled = os.getenv("VTCAPTURE_METRICS_ENABLED", "true").lower() == "true"
        self.enabled = enabled
        self.prefix = prefix or os.getenv("VTCAPTURE_METRICS_PREFIX", "vtcapture")
        self._start_time = time.time()

        # Frame counters
        self.frames_written = Counter(
            f"{self.prefix}_frames_written_total",
            "Frames sent to the encoder with fresh pixels"
        )
        self.frames_repeated = Counter(
            f"{self.prefix}_frames_repeated_total",
            "Frames emitted as repeats of the previous frame"
        )
        self.frames_skipped = Counter(
            f"{self.prefix}_frames_skipped_total",
            "Frames lost to capture failures"
        )
        self.frames_excluded = Counter(
            f"{self.prefix}_frames_excluded_total",
            "Clock steps not forwarded because recording was inactive"
        )

        # Job counters
        self.jobs_total = Counter(
            f"{self.prefix}_jobs_total",
            "Capture jobs finished"
        )
        self.jobs_failed = Counter(
            f"{self.prefix}_jobs_failed_total",
            "Capture jobs that ended with an error"
        )

        # Latency histograms (in milliseconds)
        capture_buckets = [5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000]
        self.capture_latency = Histogram(
            f"{self.prefix}_capture_latency_ms",
            "Screenshot capture latency in milliseconds",
            capture_buckets
        )
        write_buckets = [1, 2.5, 5, 10, 25, 50, 100, 250, 1000, 5000]
        self.encoder_write_latency = Histogram(
            f"{self.prefix}_encoder_write_latency_ms",
            "Encoder write and drain latency in milliseconds",
            write_buckets
        )

        self._error_counts: Dict[str, int] = defaultdict(int)

    def record_write(self, latency_ms: float, repeat: bool = False):
        """Record one frame accepted by the encoder"""
        if not self.enabled:
            return
        if repeat:
            self.frames_repeated.inc()
        else:
            self.frames_written.inc()
        self.encoder_write_latency.observe(latency_ms)

    def record_capture(self, latency_ms: float):
        if not self.enabled:
            return
        self.capture_latency.observe(latency_ms)

    def record_skip(self):
        if self.enabled:
            self.frames_skipped.inc()

    def record_excluded(self):
        if self.enabled:
            self.frames_excluded.inc()

    def record_job(self, success: bool, error_code: Optional[str] = None):
        """Record a finished job"""
        if not self.enabled:
            return
        self.jobs_total.inc()
        if not success:
            self.jobs_failed.inc()
            if error_code:
                self._error_counts[error_code] += 1

    def get_metrics(self) -> str:
        """Get all metrics in Prometheus format"""
        if not self.enabled:
            return "# Metrics disabled\n"

        lines = []

        uptime = time.time() - self._start_time
        lines.append(f"# HELP {self.prefix}_uptime_seconds Process uptime in seconds")
        lines.append(f"# TYPE {self.prefix}_uptime_seconds gauge")
        lines.append(f"{self.prefix}_uptime_seconds {uptime:.2f}")
        lines.append("")

        for counter in (
            self.frames_written,
            self.frames_repeated,
            self.frames_skipped,
            self.frames_excluded,
            self.jobs_total,
            self.jobs_failed,
        ):
            lines.append(counter.to_prometheus())
            lines.append("")

        if self._error_counts:
            lines.append(f"# HELP {self.prefix}_errors_by_type_total Failed jobs by error code")
            lines.append(f"# TYPE {self.prefix}_errors_by_type_total counter")
            for error_code, count in self._error_counts.items():
                lines.append(f'{self.prefix}_errors_by_type_total{{error_code="{error_code}"}} {count}')
            lines.append("")

        lines.append(self.capture_latency.to_prometheus())
        lines.append("")
        lines.append(self.encoder_write_latency.to_prometheus())
        lines.append("")

        return "\n".join(lines)


# Global metrics collector
_metrics: Optional[CaptureMetrics] = None


def get_metrics() -> CaptureMetrics:
    """Get or create the global metrics collector"""
    global _metrics
    if _metrics is None:
        _metrics = CaptureMetrics()
        if _metrics.enabled:
            logger.info("[METRICS] Capture metrics enabled")
    return _metrics
