"""Lightweight Prometheus-compatible metrics collection.

Request counts, latency histograms and archive operation outcomes, exported in
Prometheus text exposition format at /api/metrics.
"""

import threading
from collections import defaultdict


class Metrics:
    """Thread-safe metrics collector with Prometheus text format export."""

    DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)

    def __init__(self):
        self._lock = threading.Lock()
        self._request_count: dict[tuple[str, str, int], int] = defaultdict(int)
        self._duration_buckets: dict[tuple[str, str], list[int]] = {}
        self._duration_sum: dict[tuple[str, str], float] = defaultdict(float)
        self._duration_count: dict[tuple[str, str], int] = defaultdict(int)
        # (operation, outcome) -> count; outcome is "ok" or an error code
        self._archive_ops: dict[tuple[str, str], int] = defaultdict(int)

    def record_request(self, method: str, path: str, status: int, duration: float):
        normalized = self._normalize_path(path)
        key = (method, normalized)
        with self._lock:
            self._request_count[(method, normalized, status)] += 1
            self._duration_sum[key] += duration
            self._duration_count[key] += 1
            buckets = self._duration_buckets.setdefault(key, [0] * len(self.DURATION_BUCKETS))
            # Smallest matching bucket only; cumulative computed at export
            for i, bound in enumerate(self.DURATION_BUCKETS):
                if duration <= bound:
                    buckets[i] += 1
                    break

    def record_archive_op(self, operation: str, outcome: str):
        with self._lock:
            self._archive_ops[(operation, outcome)] += 1

    def archive_op_count(self, operation: str, outcome: str) -> int:
        with self._lock:
            return self._archive_ops.get((operation, outcome), 0)

    @staticmethod
    def _normalize_path(path: str) -> str:
        """Collapse numeric path segments to {id} to reduce metric cardinality."""
        return "/".join("{id}" if part.isdigit() else part for part in path.split("/"))

    def export(self) -> str:
        lines: list[str] = []

        with self._lock:
            if self._request_count:
                lines.append("# HELP pma_http_requests_total Total HTTP requests")
                lines.append("# TYPE pma_http_requests_total counter")
                for (method, path, status), count in sorted(self._request_count.items()):
                    lines.append(
                        f'pma_http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}'
                    )

            if self._duration_buckets:
                lines.append("# HELP pma_http_request_duration_seconds Request duration in seconds")
                lines.append("# TYPE pma_http_request_duration_seconds histogram")
            for (method, path), buckets in sorted(self._duration_buckets.items()):
                labels = f'method="{method}",path="{path}"'
                cumulative = 0
                for i, bound in enumerate(self.DURATION_BUCKETS):
                    cumulative += buckets[i]
                    lines.append(f'pma_http_request_duration_seconds_bucket{{{labels},le="{bound}"}} {cumulative}')
                total = self._duration_count[(method, path)]
                lines.append(f'pma_http_request_duration_seconds_bucket{{{labels},le="+Inf"}} {total}')
                lines.append(
                    f"pma_http_request_duration_seconds_sum{{{labels}}} {self._duration_sum[(method, path)]:.6f}"
                )
                lines.append(f"pma_http_request_duration_seconds_count{{{labels}}} {total}")

            if self._archive_ops:
                lines.append("# HELP pma_archive_operations_total Archive operations by outcome")
                lines.append("# TYPE pma_archive_operations_total counter")
                for (operation, outcome), count in sorted(self._archive_ops.items()):
                    lines.append(
                        f'pma_archive_operations_total{{operation="{operation}",outcome="{outcome}"}} {count}'
                    )

        lines.append("")
        return "\n".join(lines)

    def reset(self):
        """Reset all metrics. Used by tests."""
        with self._lock:
            self._request_count.clear()
            self._duration_buckets.clear()
            self._duration_sum.clear()
            self._duration_count.clear()
            self._archive_ops.clear()


metrics = Metrics()
