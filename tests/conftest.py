"""
Shared test fakes: controllable clocks, schedulers and an in-memory sales API.
"""
import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from config.settings import AppConfig, CachePolicy, RetryPolicy
from sales_dashboard.core.schemas import (
    BatchResponse,
    HoursChartResponse,
    MainDashboardResponse,
    validate_response,
)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(float(delay))


class FakeTimer:
    def __init__(self, scheduler: "FakeScheduler", due: float, callback: Callable[[], None]):
        self.scheduler = scheduler
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Timer scheduler driven by a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: List[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self, self.clock.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order."""
        target = self.clock.now + seconds
        while True:
            due = sorted(
                (t for t in self.active if t.due <= target),
                key=lambda t: t.due,
            )
            if not due:
                break
            timer = due[0]
            self.clock.now = timer.due
            timer.cancelled = True
            timer.callback()
        self.clock.now = target


def main_payload(total: float, cards: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "success": True,
        "data": {
            "sales": {"total": total, "subtotal": total / 1.16},
            "cards": cards or {},
        },
    }


class FakeSalesClient:
    """
    In-memory stand-in for SalesApiClient.

    Totals are looked up by (start_date, end_date); failures can be queued per
    endpoint as a list of exceptions raised on successive calls.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.totals: Dict[tuple, float] = {}
        self.cards: Dict[tuple, Dict[str, Any]] = {}
        self.batch_payload: Dict[str, Any] = {}
        self.hours_payload: Dict[str, Any] = {}
        self.failures: Dict[str, List[Exception]] = {}
        self.calls: List[tuple] = []
        self.closed = False

    def fail(self, endpoint: str, *errors: Exception) -> None:
        self.failures.setdefault(endpoint, []).extend(errors)

    async def _respond(self, endpoint: str, *args) -> None:
        self.calls.append((endpoint,) + args)
        if self.latency:
            await asyncio.sleep(self.latency)
        queued = self.failures.get(endpoint)
        if queued:
            raise queued.pop(0)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def calls_to(self, endpoint: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == endpoint]

    async def get_main_dashboard_data(self, start_date: str, end_date: str) -> MainDashboardResponse:
        await self._respond("main", start_date, end_date)
        key = (start_date, end_date)
        return validate_response(
            main_payload(self.totals.get(key, 0), self.cards.get(key)),
            MainDashboardResponse,
        )

    async def get_weekly_batch(self, current_week, previous_week) -> BatchResponse:
        await self._respond("weekly", tuple(current_week), tuple(previous_week))
        return validate_response({"success": True, "data": self.batch_payload}, BatchResponse)

    async def get_monthly_batch(self, current_weeks, previous_weeks) -> BatchResponse:
        await self._respond("monthly", len(current_weeks), len(previous_weeks))
        return validate_response({"success": True, "data": self.batch_payload}, BatchResponse)

    async def get_hours_chart(self, date: str) -> HoursChartResponse:
        await self._respond("hours", date)
        return validate_response({"success": True, "data": self.hours_payload}, HoursChartResponse)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_scheduler(fake_clock):
    return FakeScheduler(fake_clock)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def fake_client():
    return FakeSalesClient()


@pytest.fixture
def app_config():
    """Configuration with fast, jitter-free retries."""
    return AppConfig(
        cache_policies={
            "daily": CachePolicy(ttl=120, max_size=200),
            "weekly": CachePolicy(ttl=300, max_size=100),
            "monthly": CachePolicy(ttl=600, max_size=50),
        },
        retry_policies={
            "critical": RetryPolicy(max_attempts=5, base_delay=2.0, max_delay=30.0, backoff_factor=2.0, jitter=False),
            "realtime": RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0, backoff_factor=1.5, jitter=False),
            "background": RetryPolicy(max_attempts=7, base_delay=5.0, max_delay=60.0, backoff_factor=1.8, jitter=False),
            "interactive": RetryPolicy(max_attempts=2, base_delay=0.5, max_delay=2.0, backoff_factor=2.0, jitter=False),
        },
    )
