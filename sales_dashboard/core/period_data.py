"""
Period Data Session

The client-facing contract of the data layer: one session per dashboard
view, holding the current PeriodView and reloading it on refetch or when the
date range changes.

Overlapping loads are fenced with a generation counter: only the most
recently started load may update the view, and nothing updates it after
close().
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sales_dashboard.core.loading_state import LoadingStateCoordinator
from sales_dashboard.core.request_coordinator import (
    CoordinationMetrics,
    RequestCoordinator,
    UnifiedPeriodResult,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodView:
    """What the dashboard renders for one period."""
    current_data: Any = None
    comparison_data: Any = None
    chart_data: Any = None
    percentage_change: Optional[float] = None
    previous_amount: Optional[float] = None
    is_loading: bool = False
    error: Optional[Exception] = None
    performance_metrics: Optional[CoordinationMetrics] = field(default=None, compare=False)
    result: Optional[UnifiedPeriodResult] = None

    @classmethod
    def from_result(cls, result: UnifiedPeriodResult) -> "PeriodView":
        return cls(
            current_data=result.current_data,
            comparison_data=result.comparison_data,
            chart_data=result.chart_data,
            percentage_change=result.percentage_change,
            previous_amount=result.previous_amount,
            performance_metrics=result.performance_metrics,
            result=result,
        )


class PeriodDataSession:
    """
    Keeps one period's view up to date.

    Usage:
        session = await coordinate_period(coordinator, "2025-09-02", "2025-09-08", "weekly")
        print(session.view.percentage_change)
        await session.update_range("2025-09-09", "2025-09-15")
        session.close()
    """

    def __init__(
        self,
        coordinator: RequestCoordinator,
        start_date: str,
        end_date: str,
        period_type: str,
        loading: Optional[LoadingStateCoordinator] = None,
    ):
        self.coordinator = coordinator
        self.start_date = start_date
        self.end_date = end_date
        self.period_type = period_type
        self.loading = loading
        self.view = PeriodView()
        self.generation = 0
        self.closed = False

    def _on_status(self, generation: int):
        def report(flags):
            if generation == self.generation and not self.closed and self.loading is not None:
                self.loading.observe(flags)
        return report

    async def load(self) -> PeriodView:
        """
        Run one coordination pass and fold it into the view.

        A pass that was superseded by a newer load (or by close()) leaves the
        view untouched.
        """
        if self.closed:
            return self.view

        self.generation += 1
        generation = self.generation
        self.view = PeriodView(
            current_data=self.view.current_data,
            comparison_data=self.view.comparison_data,
            chart_data=self.view.chart_data,
            percentage_change=self.view.percentage_change,
            previous_amount=self.view.previous_amount,
            is_loading=True,
            result=self.view.result,
        )

        try:
            result = await self.coordinator.coordinate(
                self.start_date,
                self.end_date,
                self.period_type,
                on_status=self._on_status(generation),
            )
        except Exception as e:
            if self._is_stale(generation):
                logger.debug(f"Discarding failure of superseded load #{generation}: {e}")
                return self.view
            logger.error(f"Loading {self.period_type} {self.start_date}..{self.end_date} failed: {e}")
            self._finish_loading()
            self.view = PeriodView(error=e)
            return self.view

        if self._is_stale(generation):
            logger.debug(f"Discarding result of superseded load #{generation}")
            return self.view

        self._finish_loading()
        self.view = PeriodView.from_result(result)
        return self.view

    def _finish_loading(self) -> None:
        # Flags from a superseded pass may still read as loading
        if self.loading is not None:
            self.loading.observe({})

    def _is_stale(self, generation: int) -> bool:
        return self.closed or generation != self.generation

    async def refetch(self, force: bool = False) -> PeriodView:
        """
        Reload the current range.

        Args:
            force: Drop cached responses for the range first
        """
        if force:
            self.coordinator.invalidate(self.start_date, self.end_date)
        return await self.load()

    async def update_range(self, start_date: str, end_date: str, period_type: Optional[str] = None) -> PeriodView:
        self.start_date = start_date
        self.end_date = end_date
        if period_type is not None:
            self.period_type = period_type
        return await self.load()

    def close(self) -> None:
        """Stop accepting results and cancel any loading timer."""
        self.closed = True
        if self.loading is not None:
            self.loading.close()


async def coordinate_period(
    coordinator: RequestCoordinator,
    start_date: str,
    end_date: str,
    period_type: str,
    loading: Optional[LoadingStateCoordinator] = None,
) -> PeriodDataSession:
    """Open a session and perform its initial load."""
    session = PeriodDataSession(coordinator, start_date, end_date, period_type, loading=loading)
    await session.load()
    return session
