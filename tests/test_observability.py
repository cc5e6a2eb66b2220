"""
Tests for the performance monitor.
"""
import json

import pytest

from sales_dashboard.core.observability import (
    MetricKind,
    PerformanceMonitor,
    get_performance_monitor,
    reset_performance_monitor,
)


@pytest.fixture
def monitor(fake_clock):
    return PerformanceMonitor(clock=fake_clock)


class TestTimers:

    def test_start_timer_records_duration(self, monitor, fake_clock):
        finish = monitor.start_timer("weekly_coordination", {"start_date": "2025-09-02"})
        fake_clock.advance(0.25)
        metric = finish()

        assert metric.duration_ms == pytest.approx(250.0)
        assert metric.success is True
        assert metric.metadata == {"start_date": "2025-09-02"}
        assert monitor.get_metrics() == [metric]

    def test_track_records_failure_and_reraises(self, monitor):
        with pytest.raises(RuntimeError):
            with monitor.track("reduce"):
                raise RuntimeError("bad breakdown")

        metric = monitor.get_metrics("reduce")[0]
        assert metric.success is False
        assert metric.error == "RuntimeError: bad breakdown"

    def test_slow_operation_logged(self, monitor, fake_clock, caplog):
        finish = monitor.start_timer("monthly_coordination")
        fake_clock.advance(1.5)
        with caplog.at_level("INFO", logger="sales_dashboard.core.observability"):
            finish()
        assert "monthly_coordination completed in 1500.00ms" in caplog.text

    def test_max_metrics(self, fake_clock):
        monitor = PerformanceMonitor(max_metrics=3, clock=fake_clock)
        for i in range(5):
            monitor.start_timer(f"op{i}")()
        names = {m.name for m in monitor.get_metrics()}
        assert names == {"op2", "op3", "op4"}


class TestNetworkTracking:

    def test_success_and_failure(self, monitor):
        monitor.track_network_request("/api/dashboard/main-data").success(status=200, cache_hit=True)
        monitor.track_network_request("/api/dashboard/weekly-batch", "post").failure("HTTP error! status: 503", status=503, retry_count=2)

        network = monitor.get_metrics(kind=MetricKind.NETWORK)
        assert len(network) == 2
        failed = monitor.get_metrics(success=False)[0]
        assert failed.method == "POST"
        assert failed.status == 503
        assert failed.retry_count == 2
        assert failed.name == "network_post_/api/dashboard/weekly-batch"


class TestReport:

    def test_empty(self, monitor):
        assert monitor.generate_report() == {"message": "No metrics available"}

    def test_report(self, monitor, fake_clock):
        finish = monitor.start_timer("weekly_coordination")
        fake_clock.advance(0.3)
        finish()
        tracker = monitor.track_network_request("/api/dashboard/main-data")
        fake_clock.advance(0.1)
        tracker.success(cache_hit=True)
        tracker = monitor.track_network_request("/api/dashboard/main-data")
        fake_clock.advance(0.1)
        tracker.failure("HTTP error! status: 404", status=404, retry_count=1)
        monitor.track_network_request("/api/dashboard/get-hours-chart").failure("Network error: refused")

        report = monitor.generate_report()

        assert report["summary"]["total_operations"] == 4
        assert report["summary"]["failed_operations"] == 2
        assert report["summary"]["success_rate"] == 50.0
        assert report["network"]["total_requests"] == 3
        assert report["network"]["cache_hit_rate"] == pytest.approx(33.33)
        assert report["network"]["retries_count"] == 1
        assert report["network"]["errors_by_status"] == {"404": 1, "unknown": 1}
        assert report["slowest_operations"][0]["name"] == "weekly_coordination"
        assert len(report["errors"]) == 2


class TestExport:

    def test_json(self, monitor):
        monitor.start_timer("op", {"fetch": "current-data"})()
        exported = json.loads(monitor.export_metrics("json"))
        assert exported["session_id"] == monitor.session_id
        assert exported["metrics"][0]["kind"] == "operation"
        assert exported["metrics"][0]["metadata"] == {"fetch": "current-data"}

    def test_csv(self, monitor):
        monitor.start_timer("op", {"fetch": "current-data"})()
        exported = monitor.export_metrics("csv")
        header = exported.splitlines()[0]
        assert "duration_ms" in header
        assert "op" in exported.splitlines()[1]

    def test_unsupported(self, monitor):
        with pytest.raises(ValueError, match="Unsupported export format"):
            monitor.export_metrics("xml")

    def test_clear(self, monitor):
        monitor.start_timer("op")()
        monitor.clear()
        assert monitor.get_metrics() == []


def test_global_monitor_reset():
    reset_performance_monitor()
    first = get_performance_monitor()
    assert get_performance_monitor() is first
    reset_performance_monitor()
    assert get_performance_monitor() is not first
