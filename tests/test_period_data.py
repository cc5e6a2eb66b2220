"""
Tests for the period data session: view updates, load fencing and shutdown.
"""
import asyncio

import pytest

from sales_dashboard.core.error_taxonomy import AllCallsFailedError, UpstreamHTTPError
from sales_dashboard.core.loading_state import LoadingPhase, LoadingStateCoordinator
from sales_dashboard.core.observability import PerformanceMonitor
from sales_dashboard.core.period_data import PeriodDataSession, PeriodView, coordinate_period
from sales_dashboard.core.request_coordinator import RequestCoordinator
from sales_dashboard.core.retry_manager import build_retry_policies
from sales_dashboard.data.cache_manager import create_cache_registry

WEEK = ("2025-09-02", "2025-09-08")
PREVIOUS_WEEK = ("2025-08-26", "2025-09-01")
NEXT_WEEK = ("2025-09-09", "2025-09-15")


@pytest.fixture
def coordinator(fake_client, app_config, recording_sleep):
    fake_client.totals[WEEK] = 180000
    fake_client.totals[PREVIOUS_WEEK] = 150000
    fake_client.totals[NEXT_WEEK] = 198000
    return RequestCoordinator(
        fake_client,
        create_cache_registry(app_config),
        build_retry_policies(app_config, sleep=recording_sleep),
        monitor=PerformanceMonitor(),
    )


class TestPeriodDataSession:

    def test_initial_load(self, coordinator):
        session = asyncio.run(coordinate_period(coordinator, *WEEK, "weekly"))

        view = session.view
        assert view.is_loading is False
        assert view.error is None
        assert view.current_data.total == 180000
        assert view.percentage_change == 20.0
        assert view.previous_amount == 150000
        assert view.performance_metrics is not None

    def test_update_range(self, coordinator):
        async def run():
            session = await coordinate_period(coordinator, *WEEK, "weekly")
            await session.update_range(*NEXT_WEEK)
            return session

        session = asyncio.run(run())

        assert session.view.current_data.total == 198000
        assert session.view.percentage_change == 10.0
        assert session.generation == 2

    def test_superseded_load_discarded(self, coordinator, fake_client):
        fake_client.latency = 0.05
        session = PeriodDataSession(coordinator, *WEEK, "weekly")

        async def run():
            first = asyncio.ensure_future(session.load())
            await asyncio.sleep(0)
            second = await session.update_range(*NEXT_WEEK)
            await first
            return second

        second = asyncio.run(run())

        assert session.view is second
        assert session.view.current_data.total == 198000

    def test_error_stored_in_view(self, coordinator, fake_client):
        fake_client.fail("main", UpstreamHTTPError(404), UpstreamHTTPError(404))
        fake_client.fail("weekly", UpstreamHTTPError(404))

        session = asyncio.run(coordinate_period(coordinator, *WEEK, "weekly"))

        assert isinstance(session.view.error, AllCallsFailedError)
        assert session.view.is_loading is False
        assert session.view.current_data is None

    def test_refetch_uses_cache(self, coordinator, fake_client):
        async def run():
            session = await coordinate_period(coordinator, *WEEK, "weekly")
            await session.refetch()
            return session

        asyncio.run(run())
        assert fake_client.call_count == 3

    def test_forced_refetch_invalidates(self, coordinator, fake_client):
        async def run():
            session = await coordinate_period(coordinator, *WEEK, "weekly")
            await session.refetch(force=True)
            return session

        asyncio.run(run())
        assert fake_client.call_count == 5

    def test_idle_range(self, coordinator, fake_client):
        session = asyncio.run(coordinate_period(coordinator, "", "", "weekly"))

        assert session.view.result.is_idle
        assert session.view.current_data is None
        assert session.view.error is None
        assert fake_client.call_count == 0

    def test_close_discards_in_flight_result(self, coordinator, fake_client):
        fake_client.latency = 0.05
        session = PeriodDataSession(coordinator, *WEEK, "weekly")

        async def run():
            pending = asyncio.ensure_future(session.load())
            await asyncio.sleep(0)
            session.close()
            await pending

        asyncio.run(run())

        assert session.closed
        assert session.view.current_data is None

    def test_load_after_close_is_noop(self, coordinator, fake_client):
        session = PeriodDataSession(coordinator, *WEEK, "weekly")
        session.close()

        view = asyncio.run(session.load())

        assert view == PeriodView()
        assert fake_client.call_count == 0


class TestLoadingIntegration:

    def test_loading_held_after_fast_load(self, coordinator, fake_clock, fake_scheduler):
        loading = LoadingStateCoordinator(clock=fake_clock, scheduler=fake_scheduler)

        asyncio.run(coordinate_period(coordinator, *WEEK, "weekly", loading=loading))

        assert loading.show_loading is True
        fake_scheduler.advance(0.5)
        assert loading.phase == LoadingPhase.DONE

    def test_cleared_range_while_loading_hides_indicator(self, coordinator, fake_client):
        fake_client.latency = 0.05
        session = PeriodDataSession(coordinator, *WEEK, "weekly")

        async def run():
            session.loading = LoadingStateCoordinator(minimum_loading_time=0.01, settle_delay=0)
            first = asyncio.ensure_future(session.load())
            await asyncio.sleep(0.01)
            assert session.loading.phase == LoadingPhase.LOADING
            await session.update_range("", "")
            await first
            await asyncio.sleep(0.05)
            return session.loading

        loading = asyncio.run(run())

        assert loading.phase == LoadingPhase.DONE
        assert loading.show_loading is False
        assert session.view.result.is_idle

    def test_failed_load_hides_indicator(self, coordinator, fake_clock, fake_scheduler):
        loading = LoadingStateCoordinator(clock=fake_clock, scheduler=fake_scheduler)
        loading.observe({"current-data": True})
        session = PeriodDataSession(coordinator, *WEEK, "quarterly", loading=loading)

        asyncio.run(session.load())

        assert isinstance(session.view.error, ValueError)
        fake_scheduler.advance(0.5)
        assert loading.phase == LoadingPhase.DONE
        assert loading.show_loading is False

    def test_close_stops_loading_timer(self, coordinator, fake_clock, fake_scheduler):
        loading = LoadingStateCoordinator(clock=fake_clock, scheduler=fake_scheduler)
        session = asyncio.run(coordinate_period(coordinator, *WEEK, "weekly", loading=loading))

        session.close()

        assert not loading.has_pending_timer
        assert fake_scheduler.active == []
