"""
Performance Monitoring for Dashboard Data Loading

Collects timing metrics for coordination passes and upstream requests and
turns them into a summary report.

Key Capabilities:
- Timers: start_timer() returns a finish callable recording one metric
- Network tracking: per-request success/failure with status, cache hit and retry count
- Reports: pandas aggregation of totals, success rate, cache-hit rate and slowest operations
- Export: JSON or CSV
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable
from contextlib import contextmanager
from enum import Enum
import io
import json
import time
import uuid
import logging

import pandas as pd

logger = logging.getLogger(__name__)

# Operations slower than this are logged at info level
SLOW_OPERATION_SECONDS = 1.0
DEFAULT_MAX_METRICS = 1000


class MetricKind(Enum):
    """Types of metrics for categorization."""
    OPERATION = "operation"
    NETWORK = "network"


@dataclass
class PerformanceMetric:
    """One timed operation."""
    name: str
    kind: MetricKind
    duration_ms: float
    timestamp: datetime
    success: bool = True
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    # Network-only fields
    url: Optional[str] = None
    method: Optional[str] = None
    status: Optional[int] = None
    cache_hit: Optional[bool] = None
    retry_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result["kind"] = self.kind.value
        result["timestamp"] = self.timestamp.isoformat()
        return result


class NetworkRequestTracker:
    """Handle returned by track_network_request(); call success() or failure() once."""

    def __init__(self, finish: Callable[..., PerformanceMetric]):
        self._finish = finish

    def success(
        self,
        status: int = 200,
        cache_hit: bool = False,
        retry_count: int = 0,
    ) -> PerformanceMetric:
        return self._finish(True, None, status=status, cache_hit=cache_hit, retry_count=retry_count)

    def failure(
        self,
        error: str,
        status: Optional[int] = None,
        retry_count: int = 0,
    ) -> PerformanceMetric:
        return self._finish(False, error, status=status, cache_hit=False, retry_count=retry_count)


class PerformanceMonitor:
    """
    In-memory metric store.

    Usage:
        monitor = get_performance_monitor()
        finish = monitor.start_timer("weekly_coordination", {"start_date": "2025-09-02"})
        ...
        finish(success=True)

        tracker = monitor.track_network_request("/api/dashboard/main-data")
        tracker.success(status=200)

        print(monitor.generate_report())
    """

    def __init__(self, max_metrics: int = DEFAULT_MAX_METRICS, clock: Callable[[], float] = time.perf_counter):
        self.max_metrics = max_metrics
        self.session_id = f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        self._clock = clock
        self._started = clock()
        self._metrics: List[PerformanceMetric] = []

    def start_timer(
        self,
        name: str,
        metadata: Dict[str, Any] = None,
        kind: MetricKind = MetricKind.OPERATION,
    ) -> Callable[..., PerformanceMetric]:
        """
        Start timing an operation.

        Returns:
            finish(success=True, error=None, **fields) recording the metric
        """
        started = self._clock()
        timestamp = datetime.now()
        base_metadata = dict(metadata or {})

        def finish(success: bool = True, error: Optional[str] = None, **fields) -> PerformanceMetric:
            duration_ms = (self._clock() - started) * 1000
            extra = fields.pop("metadata", None) or {}
            metric = PerformanceMetric(
                name=name,
                kind=kind,
                duration_ms=duration_ms,
                timestamp=timestamp,
                success=success,
                error=error,
                metadata={**base_metadata, **extra},
                **fields,
            )
            self._add_metric(metric)

            if duration_ms > SLOW_OPERATION_SECONDS * 1000 or not success:
                status = "completed" if success else "failed"
                logger.info(
                    f"{name} {status} in {duration_ms:.2f}ms"
                    + (f" (error: {error})" if error else "")
                )
            return metric

        return finish

    @contextmanager
    def track(self, name: str, metadata: Dict[str, Any] = None):
        """Time a block, recording failure if it raises."""
        finish = self.start_timer(name, metadata)
        try:
            yield
        except Exception as e:
            finish(False, f"{type(e).__name__}: {e}")
            raise
        finish(True)

    def track_network_request(
        self,
        url: str,
        method: str = "GET",
        metadata: Dict[str, Any] = None,
    ) -> NetworkRequestTracker:
        finish = self.start_timer(
            f"network_{method.lower()}_{url}",
            metadata,
            kind=MetricKind.NETWORK,
        )

        def finish_network(success, error, **fields):
            return finish(success, error, url=url, method=method.upper(), **fields)

        return NetworkRequestTracker(finish_network)

    def _add_metric(self, metric: PerformanceMetric) -> None:
        self._metrics.append(metric)
        if len(self._metrics) > self.max_metrics:
            self._metrics = self._metrics[-self.max_metrics:]

    def get_metrics(
        self,
        name: Optional[str] = None,
        kind: Optional[MetricKind] = None,
        success: Optional[bool] = None,
    ) -> List[PerformanceMetric]:
        """Filtered metrics, newest first. ``name`` is a substring match."""
        filtered = list(self._metrics)
        if name:
            filtered = [m for m in filtered if name in m.name]
        if kind is not None:
            filtered = [m for m in filtered if m.kind == kind]
        if success is not None:
            filtered = [m for m in filtered if m.success == success]
        return sorted(filtered, key=lambda m: m.timestamp, reverse=True)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([m.to_dict() for m in self._metrics])

    def generate_report(self) -> Dict[str, Any]:
        """Aggregate all recorded metrics."""
        if not self._metrics:
            return {"message": "No metrics available"}

        df = self.to_dataframe()
        network = df[df["kind"] == MetricKind.NETWORK.value]
        failures = df[~df["success"]]

        network_summary = {
            "total_requests": int(len(network)),
            "average_response_time_ms": round(float(network["duration_ms"].mean()), 2) if len(network) else 0,
            "cache_hit_rate": round(float(network["cache_hit"].fillna(False).astype(bool).mean() * 100), 2) if len(network) else 0,
            "retries_count": int(network["retry_count"].fillna(0).sum()) if len(network) else 0,
            "errors_by_status": (
                network[~network["success"]]["status"]
                .apply(lambda s: "unknown" if pd.isna(s) else str(int(s)))
                .value_counts()
                .to_dict()
            ),
        }

        slowest = df.sort_values("duration_ms", ascending=False).head(10)

        return {
            "session_id": self.session_id,
            "session_duration_ms": round((self._clock() - self._started) * 1000, 2),
            "summary": {
                "total_operations": int(len(df)),
                "total_duration_ms": round(float(df["duration_ms"].sum()), 2),
                "average_duration_ms": round(float(df["duration_ms"].mean()), 2),
                "success_rate": round(float(df["success"].mean() * 100), 2),
                "failed_operations": int(len(failures)),
            },
            "network": network_summary,
            "slowest_operations": [
                {
                    "name": row["name"],
                    "duration_ms": round(float(row["duration_ms"]), 2),
                    "success": bool(row["success"]),
                    "timestamp": row["timestamp"],
                }
                for _, row in slowest.iterrows()
            ],
            "errors": [
                {"name": row["name"], "error": row["error"], "timestamp": row["timestamp"]}
                for _, row in failures.iterrows()
            ],
        }

    def export_metrics(self, fmt: str = "json") -> str:
        """Serialize all metrics as JSON or CSV."""
        if fmt == "csv":
            buffer = io.StringIO()
            df = self.to_dataframe()
            if not df.empty:
                df["metadata"] = df["metadata"].apply(json.dumps)
            df.to_csv(buffer, index=False)
            return buffer.getvalue()
        if fmt != "json":
            raise ValueError(f"Unsupported export format: {fmt}")

        return json.dumps(
            {
                "session_id": self.session_id,
                "exported_at": datetime.now().isoformat(),
                "metrics": [m.to_dict() for m in self.get_metrics()],
            },
            indent=2,
            default=str,
        )

    def clear(self) -> None:
        count = len(self._metrics)
        self._metrics = []
        logger.info(f"Cleared {count} metrics")


# Global monitor instance
_monitor: Optional[PerformanceMonitor] = None


def get_performance_monitor() -> PerformanceMonitor:
    """Get the global performance monitor instance."""
    global _monitor
    if _monitor is None:
        _monitor = PerformanceMonitor()
    return _monitor


def reset_performance_monitor():
    """Reset the global monitor (for testing)."""
    global _monitor
    _monitor = None
