"""
Request Coordinator

Produces everything the dashboard renders for one reporting period from at
most three upstream calls: current totals, comparison totals and the chart
breakdown.

Pipeline per coordination call:
1. PLANNING            - derive comparison range, breakdown sub-ranges and cache keys
2. FETCHING_CONCURRENT - serve fresh cache hits, start every remaining call, then
                         wait for all of them to settle
3. REDUCING            - fold successes, fall back to stale data, compute the change
4. SETTLED | ALL_FAILED

A failed sub-call degrades the result instead of failing it. When every issued
call fails and no fresh cache hit exists, the call raises AllCallsFailedError,
even if stale entries are still held.
"""
import time
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sales_dashboard.core.date_periods import (
    DateRange,
    PeriodType,
    WeekRange,
    comparison_range,
    month_weeks,
    parse_range,
    previous_month_weeks,
    week_breakdown_dates,
)
from sales_dashboard.core.error_taxonomy import AllCallsFailedError, RetryExhaustedError, classify_error
from sales_dashboard.core.observability import PerformanceMonitor, get_performance_monitor
from sales_dashboard.core.retry_manager import RetryManager, RetryState
from sales_dashboard.core.schemas import MainDashboardResponse
from sales_dashboard.data.cache_manager import (
    CacheLookup,
    CacheManager,
    CacheRegistry,
    invalidate_related_cache,
)
from sales_dashboard.tools.sales_metrics import (
    BranchSummary,
    build_hours_chart,
    build_monthly_chart,
    build_weekly_chart,
    percentage_change,
    summarize_branches,
)
from sales_dashboard.tools.sales_api_client import (
    HOURS_CHART_PATH,
    MAIN_DATA_PATH,
    MONTHLY_BATCH_PATH,
    WEEKLY_BATCH_PATH,
)

logger = logging.getLogger(__name__)

FETCH_CURRENT = "current-data"
FETCH_COMPARISON = "comparison-data"
FETCH_CHART = "chart-data"

# Which retry profile guards each period's calls
PERIOD_RETRY_POLICY = {
    PeriodType.DAILY: "realtime",
    PeriodType.WEEKLY: "realtime",
    PeriodType.MONTHLY: "critical",
    PeriodType.CUSTOM: "interactive",
}

# Naive sequential estimate: the three calls one after another
SEQUENTIAL_CALL_FACTOR = 3


class CoordinationState(Enum):
    """Lifecycle of one coordination call."""
    IDLE = "idle"
    PLANNING = "planning"
    FETCHING_CONCURRENT = "fetching_concurrent"
    REDUCING = "reducing"
    SETTLED = "settled"
    ALL_FAILED = "all_failed"


@dataclass(frozen=True)
class PeriodRequestPlan:
    """Everything derived from (start_date, end_date, period_type) before any I/O."""
    period_type: PeriodType
    current: DateRange
    comparison: Optional[DateRange]
    week_dates: Tuple[date, ...] = ()
    previous_week_dates: Tuple[date, ...] = ()
    weeks: Tuple[WeekRange, ...] = ()
    previous_weeks: Tuple[WeekRange, ...] = ()
    hours_date: Optional[date] = None
    cache_keys: Dict[str, str] = field(default_factory=dict)

    @property
    def has_breakdown(self) -> bool:
        return FETCH_CHART in self.cache_keys

    @property
    def fetch_names(self) -> List[str]:
        return list(self.cache_keys)


def build_plan(start_date, end_date, period_type) -> Optional[PeriodRequestPlan]:
    """
    Derive the request plan for a period.

    Returns:
        The plan, or None when the range is empty, invalid or inverted

    Raises:
        ValueError: unknown period type
    """
    period_type = PeriodType.parse(period_type)
    current = parse_range(start_date, end_date)
    if current is None:
        return None

    comparison = comparison_range(current, period_type)
    prefix = period_type.value
    keys = {FETCH_CURRENT: _cache_key(f"{prefix}-current", current)}
    if comparison is not None:
        keys[FETCH_COMPARISON] = _cache_key(f"{prefix}-comparison", comparison)

    extra: Dict[str, Any] = {}
    if period_type == PeriodType.WEEKLY:
        dates = week_breakdown_dates(current)
        if dates is None:
            logger.warning(f"Weekly range {current} is {current.days} days, skipping breakdown")
        else:
            extra["week_dates"] = tuple(dates)
            extra["previous_week_dates"] = tuple(comparison.dates())
            keys[FETCH_CHART] = _cache_key(f"{prefix}-chart", current)
    elif period_type == PeriodType.MONTHLY:
        weeks = month_weeks(current)
        if weeks:
            extra["weeks"] = tuple(weeks)
            extra["previous_weeks"] = tuple(previous_month_weeks(weeks))
            keys[FETCH_CHART] = _cache_key(f"{prefix}-chart", current)
    elif period_type == PeriodType.DAILY:
        extra["hours_date"] = current.start_date
        keys[FETCH_CHART] = _cache_key(f"{prefix}-chart", current)

    return PeriodRequestPlan(
        period_type=period_type,
        current=current,
        comparison=comparison,
        cache_keys=keys,
        **extra,
    )


def _cache_key(prefix: str, period: DateRange) -> str:
    return CacheManager.generate_key(prefix, period.to_params())


def _status_of(error: BaseException) -> Optional[int]:
    """HTTP status behind an error, looking through retry exhaustion."""
    if isinstance(error, RetryExhaustedError) and error.errors:
        error = error.errors[-1]
    return getattr(error, "status", None)


@dataclass(frozen=True)
class CoordinationMetrics:
    """Advisory timing for one coordination call. Never used for decisions."""
    total_time_ms: float
    parallel_execution_time_ms: float
    estimated_sequential_time_ms: float
    improvement_percentage: int
    slowest_call: Optional[str]
    slowest_call_ms: float
    network_calls: int
    cache_hits: int
    failed_calls: int
    states: Tuple[CoordinationState, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_time_ms": round(self.total_time_ms, 2),
            "parallel_execution_time_ms": round(self.parallel_execution_time_ms, 2),
            "estimated_sequential_time_ms": round(self.estimated_sequential_time_ms, 2),
            "improvement_percentage": self.improvement_percentage,
            "slowest_call": self.slowest_call,
            "slowest_call_ms": round(self.slowest_call_ms, 2),
            "network_calls": self.network_calls,
            "cache_hits": self.cache_hits,
            "failed_calls": self.failed_calls,
            "states": [s.value for s in self.states],
        }


@dataclass(frozen=True)
class UnifiedPeriodResult:
    """
    The merged view-model for one period.

    Equality ignores performance_metrics, so two passes over a warm cache
    compare equal.
    """
    current_data: Optional[MainDashboardResponse] = None
    comparison_data: Optional[MainDashboardResponse] = None
    chart_data: Optional[Any] = None
    percentage_change: Optional[float] = None
    previous_amount: Optional[float] = None
    branches: Optional[BranchSummary] = None
    plan: Optional[PeriodRequestPlan] = None
    failed_calls: Dict[str, str] = field(default_factory=dict)
    stale_sources: Tuple[str, ...] = ()
    performance_metrics: Optional[CoordinationMetrics] = field(default=None, compare=False)

    @classmethod
    def idle(cls) -> "UnifiedPeriodResult":
        return cls()

    @property
    def is_idle(self) -> bool:
        return self.plan is None

    @property
    def is_degraded(self) -> bool:
        return bool(self.failed_calls or self.stale_sources)

    @property
    def current_total(self) -> Optional[float]:
        return self.current_data.total if self.current_data else None


@dataclass
class _Fetch:
    """One logical fetch within a coordination call."""
    name: str
    cache_key: str
    operation: Callable[[], Awaitable[Any]]
    method: str = "GET"
    path: str = MAIN_DATA_PATH
    cached: Optional[CacheLookup] = None
    result: Any = None
    error: Optional[BaseException] = None
    duration_ms: float = 0.0

    @property
    def needs_network(self) -> bool:
        return self.cached is None or self.cached.is_stale


StatusCallback = Callable[[Dict[str, bool]], None]


class RequestCoordinator:
    """
    Fan-out / fan-in coordinator for one dashboard period.

    Usage:
        coordinator = RequestCoordinator(client, create_cache_registry(), build_retry_policies())
        result = await coordinator.coordinate("2025-09-02", "2025-09-08", "weekly")
        print(result.percentage_change)
    """

    def __init__(
        self,
        client,
        caches: CacheRegistry,
        retry_policies: Dict[str, RetryManager],
        monitor: Optional[PerformanceMonitor] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.client = client
        self.caches = caches
        self.retry_policies = retry_policies
        self.monitor = monitor or get_performance_monitor()
        self._clock = clock
        self.last_state = CoordinationState.IDLE

    def _transition(self, states: List[CoordinationState], state: CoordinationState) -> None:
        states.append(state)
        self.last_state = state
        logger.debug(f"Coordination state -> {state.value}")

    def invalidate(self, start_date: str, end_date: str) -> int:
        """Drop cached responses for a range so the next pass refetches them."""
        return invalidate_related_cache(self.caches, start_date, end_date)

    def _operations(self, plan: PeriodRequestPlan) -> Dict[str, Tuple[str, str, Callable[[], Awaitable[Any]]]]:
        """(method, endpoint path, operation) per fetch name."""
        current_start, current_end = plan.current.start_date.isoformat(), plan.current.end_date.isoformat()
        operations = {
            FETCH_CURRENT: ("GET", MAIN_DATA_PATH, lambda: self.client.get_main_dashboard_data(current_start, current_end)),
        }
        if plan.comparison is not None:
            comp_start, comp_end = plan.comparison.start_date.isoformat(), plan.comparison.end_date.isoformat()
            operations[FETCH_COMPARISON] = (
                "GET", MAIN_DATA_PATH, lambda: self.client.get_main_dashboard_data(comp_start, comp_end)
            )

        if plan.has_breakdown:
            if plan.period_type == PeriodType.WEEKLY:
                current_week = [d.isoformat() for d in plan.week_dates]
                previous_week = [d.isoformat() for d in plan.previous_week_dates]
                operations[FETCH_CHART] = (
                    "POST", WEEKLY_BATCH_PATH, lambda: self.client.get_weekly_batch(current_week, previous_week)
                )
            elif plan.period_type == PeriodType.MONTHLY:
                current_weeks = [w.to_dict() for w in plan.weeks]
                previous_weeks = [w.to_dict() for w in plan.previous_weeks]
                operations[FETCH_CHART] = (
                    "POST", MONTHLY_BATCH_PATH, lambda: self.client.get_monthly_batch(current_weeks, previous_weeks)
                )
            elif plan.period_type == PeriodType.DAILY:
                hours_date = plan.hours_date.isoformat()
                operations[FETCH_CHART] = ("POST", HOURS_CHART_PATH, lambda: self.client.get_hours_chart(hours_date))
        return operations

    def _tracker(self, fetch: _Fetch):
        return self.monitor.track_network_request(
            fetch.path, fetch.method, metadata={"fetch": fetch.name, "cache_key": fetch.cache_key}
        )

    async def _run_network(self, fetch: _Fetch, retry: RetryManager, cache, label: str) -> Any:
        tracker = self._tracker(fetch)
        state = RetryState()
        started = self._clock()
        try:
            result = await retry.execute_with_retry(fetch.operation, label, state=state)
        except Exception as e:
            tracker.failure(str(e), status=_status_of(e), retry_count=max(state.attempt - 1, 0))
            raise
        finally:
            fetch.duration_ms = (self._clock() - started) * 1000

        tracker.success(status=200, retry_count=state.attempt - 1)
        cache.set(fetch.cache_key, result, tag=f"{fetch.name}-{int(time.time() * 1000)}")
        return result

    async def coordinate(
        self,
        start_date,
        end_date,
        period_type,
        on_status: Optional[StatusCallback] = None,
    ) -> UnifiedPeriodResult:
        """
        Coordinate one pass for a period.

        Args:
            start_date: ISO yyyy-MM-dd start (inclusive)
            end_date: ISO yyyy-MM-dd end (inclusive)
            period_type: daily, weekly, monthly or custom
            on_status: Called with the per-fetch loading flags whenever a
                       fetch starts or settles

        Returns:
            UnifiedPeriodResult; the idle result for an empty, invalid or
            inverted range

        Raises:
            AllCallsFailedError: every issued call failed and nothing was fresh in cache
        """
        states: List[CoordinationState] = [CoordinationState.IDLE]
        started = self._clock()

        self._transition(states, CoordinationState.PLANNING)
        plan = build_plan(start_date, end_date, period_type)
        if plan is None:
            logger.info(f"No valid range ({start_date!r}..{end_date!r}), returning idle result")
            self.last_state = CoordinationState.IDLE
            if on_status is not None:
                on_status({})
            return UnifiedPeriodResult.idle()

        cache = self.caches.for_period(plan.period_type.value)
        retry = self.retry_policies[PERIOD_RETRY_POLICY[plan.period_type]]
        label_prefix = f"{plan.period_type.value}:{plan.current}"

        operations = self._operations(plan)
        fetches = []
        for name in plan.fetch_names:
            method, path, operation = operations[name]
            fetches.append(_Fetch(
                name=name,
                cache_key=plan.cache_keys[name],
                operation=operation,
                method=method,
                path=path,
                cached=cache.get(plan.cache_keys[name]),
            ))
        pending = [f for f in fetches if f.needs_network]
        cache_hits = len(fetches) - len(pending)

        flags = {f.name: f.needs_network for f in fetches}

        def report(name: Optional[str] = None) -> None:
            if name is not None:
                flags[name] = False
            if on_status is not None:
                on_status(dict(flags))

        self._transition(states, CoordinationState.FETCHING_CONCURRENT)
        logger.info(
            f"Coordinating {label_prefix}: {len(pending)} network call(s), {cache_hits} cache hit(s)"
        )
        report()
        for fetch in fetches:
            if not fetch.needs_network:
                self._tracker(fetch).success(status=200, cache_hit=True)

        async def settle(fetch: _Fetch) -> Any:
            try:
                return await self._run_network(fetch, retry, cache, f"{label_prefix} {fetch.name}")
            finally:
                report(fetch.name)

        parallel_started = self._clock()
        tasks = [asyncio.ensure_future(settle(f)) for f in pending]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        parallel_ms = (self._clock() - parallel_started) * 1000

        self._transition(states, CoordinationState.REDUCING)
        for fetch, outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException):
                fetch.error = outcome
            else:
                fetch.result = outcome

        # Stale data only backs up a pass in which some issued call came through
        issued_all_failed = bool(pending) and all(f.error is not None for f in pending)

        data: Dict[str, Any] = {}
        failures: Dict[str, BaseException] = {}
        stale_sources: List[str] = []
        for fetch in fetches:
            if fetch.error is None:
                data[fetch.name] = fetch.result if fetch.needs_network else fetch.cached.data
            elif fetch.cached is not None and not issued_all_failed:
                logger.warning(f"{fetch.name} revalidation failed, serving stale data: {fetch.error}")
                data[fetch.name] = fetch.cached.data
                stale_sources.append(fetch.name)
            else:
                classified = classify_error(fetch.error, pipeline_phase=fetch.name)
                logger.error(f"{fetch.name} failed ({classified.category.name}): {fetch.error}")
                failures[fetch.name] = fetch.error

        slowest = max(pending, key=lambda f: f.duration_ms, default=None)
        sequential_ms = parallel_ms * SEQUENTIAL_CALL_FACTOR
        total_ms = (self._clock() - started) * 1000

        if issued_all_failed and not cache_hits:
            self._transition(states, CoordinationState.ALL_FAILED)
            logger.error(f"All {len(pending)} API call(s) failed for {label_prefix}")
            raise AllCallsFailedError(failures)

        self._transition(states, CoordinationState.SETTLED)
        metrics = CoordinationMetrics(
            total_time_ms=total_ms,
            parallel_execution_time_ms=parallel_ms,
            estimated_sequential_time_ms=sequential_ms,
            improvement_percentage=round((sequential_ms - parallel_ms) / sequential_ms * 100) if pending and sequential_ms > 0 else 0,
            slowest_call=slowest.name if slowest else None,
            slowest_call_ms=slowest.duration_ms if slowest else 0.0,
            network_calls=len(pending),
            cache_hits=cache_hits,
            failed_calls=len(failures),
            states=tuple(states),
        )

        result = self._reduce(plan, data, failures, tuple(stale_sources), metrics)
        logger.info(
            f"Coordinated {label_prefix} in {total_ms:.0f}ms "
            f"(parallel {parallel_ms:.0f}ms, {len(failures)} failed, change={result.percentage_change})"
        )
        return result

    def _reduce(
        self,
        plan: PeriodRequestPlan,
        data: Dict[str, Any],
        failures: Dict[str, BaseException],
        stale_sources: Tuple[str, ...],
        metrics: CoordinationMetrics,
    ) -> UnifiedPeriodResult:
        current = data.get(FETCH_CURRENT)
        comparison = data.get(FETCH_COMPARISON)

        change = None
        previous_amount = None
        if current is not None and comparison is not None:
            previous_amount = comparison.total
            change = percentage_change(current.total, previous_amount)

        chart = None
        breakdown = data.get(FETCH_CHART)
        if breakdown is not None:
            chart = self._build_chart(plan, breakdown)

        return UnifiedPeriodResult(
            current_data=current,
            comparison_data=comparison,
            chart_data=chart,
            percentage_change=change,
            previous_amount=previous_amount,
            branches=summarize_branches(current.data.cards) if current is not None else None,
            plan=plan,
            failed_calls={name: str(exc) for name, exc in failures.items()},
            stale_sources=stale_sources,
            performance_metrics=metrics,
        )

    @staticmethod
    def _build_chart(plan: PeriodRequestPlan, breakdown: Any) -> Any:
        """Chart points, or the raw breakdown when its shape is not the expected one."""
        if plan.period_type == PeriodType.WEEKLY:
            points = build_weekly_chart(breakdown, list(plan.week_dates), list(plan.previous_week_dates))
        elif plan.period_type == PeriodType.MONTHLY:
            points = build_monthly_chart(breakdown, list(plan.weeks), list(plan.previous_weeks))
        else:
            points = build_hours_chart(breakdown)

        if points is None:
            logger.warning(f"Unexpected breakdown shape for {plan.period_type.value}, keeping raw response")
            return breakdown
        return points
