"""
Sales Metric Calculations

All numbers shown on the dashboard are computed here by deterministic code:
period-over-period change, branch rankings and the chart series built from
batch breakdown responses.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional
import logging

import numpy as np
import pandas as pd

from sales_dashboard.core.date_periods import WeekRange
from sales_dashboard.core.schemas import BatchResponse, BranchCard, HoursChartResponse

logger = logging.getLogger(__name__)

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
DAY_ABBR = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def _safe_divide(numerator: float, denominator: float) -> Optional[float]:
    """Safe division with zero handling."""
    if denominator == 0:
        return None
    return numerator / denominator


def format_currency(value: float) -> str:
    """Format as currency."""
    if abs(value) >= 1_000_000:
        return f"${value/1_000_000:,.2f}M"
    elif abs(value) >= 1_000:
        return f"${value/1_000:,.2f}K"
    else:
        return f"${value:,.2f}"


def percentage_change(current: float, previous: float) -> float:
    """
    Period-over-period change in percent, rounded half-up to one decimal.

    A zero previous total yields 0 rather than an infinite change.

    Examples:
        percentage_change(180000, 150000) -> 20.0
        percentage_change(500, 0) -> 0
    """
    ratio = _safe_divide(current - previous, previous)
    if ratio is None:
        return 0
    rounded = Decimal(str(ratio * 100)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return float(rounded)


# ==================== CHART SERIES ====================

@dataclass(frozen=True)
class WeekdayPoint:
    """One day of the weekly comparison chart."""
    day: str
    day_name: str
    date: str
    current: float
    previous: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day,
            "day_name": self.day_name,
            "date": self.date,
            "current": self.current,
            "previous": self.previous,
        }


@dataclass(frozen=True)
class WeekPoint:
    """One Monday-start week of the monthly comparison chart."""
    week: str
    week_name: str
    current: float
    previous: float
    start_date: str
    end_date: str
    previous_start_date: Optional[str]
    previous_end_date: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "week": self.week,
            "week_name": self.week_name,
            "current": self.current,
            "previous": self.previous,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "previous_start_date": self.previous_start_date,
            "previous_end_date": self.previous_end_date,
        }


@dataclass(frozen=True)
class HourPoint:
    """One hour of the daily comparison chart."""
    hour: str
    current: float
    previous: float
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hour": self.hour,
            "current": self.current,
            "previous": self.previous,
            "timestamp": self.timestamp,
        }


def build_weekly_chart(
    response: BatchResponse,
    current_dates: List[date],
    previous_dates: List[date],
) -> Optional[List[WeekdayPoint]]:
    """
    Per-day current vs previous totals.

    Returns:
        Seven points, or None when the response lacks the current_week group
    """
    current = response.group("current_week")
    if current is None or len(current_dates) != 7:
        return None
    previous = response.group("previous_week") or {}

    points = []
    for day, prev_day in zip(current_dates, previous_dates):
        cur_entry = current.get(day.isoformat())
        prev_entry = previous.get(prev_day.isoformat())
        points.append(WeekdayPoint(
            day=DAY_ABBR[day.weekday()],
            day_name=DAY_NAMES[day.weekday()],
            date=day.isoformat(),
            current=cur_entry.total if cur_entry else 0,
            previous=prev_entry.total if prev_entry else 0,
        ))
    return points


def build_monthly_chart(
    response: BatchResponse,
    current_weeks: List[WeekRange],
    previous_weeks: List[WeekRange],
) -> Optional[List[WeekPoint]]:
    """
    Per-week current vs previous totals.

    Returns:
        One point per week, or None when the response lacks the
        current_month_weeks group or there are no weeks
    """
    current = response.group("current_month_weeks")
    if current is None or not current_weeks:
        return None
    previous = response.group("previous_month_weeks") or {}

    points = []
    for index, week in enumerate(current_weeks):
        prev_week = previous_weeks[index] if index < len(previous_weeks) else None
        cur_entry = current.get(week.week_key)
        prev_entry = previous.get(prev_week.week_key) if prev_week else None
        points.append(WeekPoint(
            week=f"W{index + 1}",
            week_name=week.week_name,
            current=cur_entry.total if cur_entry else 0,
            previous=prev_entry.total if prev_entry else 0,
            start_date=week.start_date.isoformat(),
            end_date=week.end_date.isoformat(),
            previous_start_date=prev_week.start_date.isoformat() if prev_week else None,
            previous_end_date=prev_week.end_date.isoformat() if prev_week else None,
        ))
    return points


def build_hours_chart(response: HoursChartResponse) -> Optional[List[HourPoint]]:
    """
    Per-hour totals for the two most recent dates in the response.

    Hours keep the upstream order of the most recent date; hours only present
    on the previous date are appended. With a single date the previous series
    is all zeros.

    Returns:
        Hour points, or None when the response holds no dates
    """
    date_keys = sorted(response.data)[-2:]
    if not date_keys:
        return None

    if len(date_keys) == 1:
        only = date_keys[0]
        return [
            HourPoint(hour=hour, current=value, previous=0, timestamp=f"{only} {hour}:00")
            for hour, value in response.data[only].items()
        ]

    previous_date, current_date = date_keys
    current = response.data[current_date]
    previous = response.data[previous_date]

    hours = list(current) if current else list(previous)
    hours += [hour for hour in previous if hour not in hours]

    return [
        HourPoint(
            hour=hour,
            current=current.get(hour, 0),
            previous=previous.get(hour, 0),
            timestamp=f"{current_date} {hour}:00",
        )
        for hour in hours
    ]


# ==================== BRANCH SUMMARY ====================

@dataclass(frozen=True)
class BranchRanking:
    """One branch's share of a period's sales."""
    rank: int
    name: str
    store_id: Any
    total_sales: float
    open_amount: float
    closed_amount: float
    open_tickets: float
    closed_tickets: float
    average_ticket: float
    percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "name": self.name,
            "store_id": self.store_id,
            "total_sales": self.total_sales,
            "open_amount": self.open_amount,
            "closed_amount": self.closed_amount,
            "open_tickets": self.open_tickets,
            "closed_tickets": self.closed_tickets,
            "average_ticket": self.average_ticket,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class BranchSummary:
    """Ranked branches plus network-wide aggregates."""
    branches: List[BranchRanking]
    total_sales: float
    total_tickets: float
    average_ticket: float
    average_branch_sales: float
    median_branch_sales: float

    @property
    def top_branch(self) -> Optional[BranchRanking]:
        return self.branches[0] if self.branches else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branches": [b.to_dict() for b in self.branches],
            "total_sales": self.total_sales,
            "total_tickets": self.total_tickets,
            "average_ticket": self.average_ticket,
            "average_branch_sales": self.average_branch_sales,
            "median_branch_sales": self.median_branch_sales,
        }

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([b.to_dict() for b in self.branches])


EMPTY_BRANCH_SUMMARY = BranchSummary(
    branches=[],
    total_sales=0,
    total_tickets=0,
    average_ticket=0,
    average_branch_sales=0,
    median_branch_sales=0,
)


def summarize_branches(cards: Dict[str, BranchCard], top_n: Optional[int] = None) -> BranchSummary:
    """
    Rank branches by sales for one period.

    Sales are open-account money plus closed-ticket money. Branches without
    sales are dropped. The network average ticket is weighted by ticket count
    (total sales / total tickets), not a mean of branch averages.

    Args:
        cards: Branch cards keyed by branch name
        top_n: Keep only the N best branches; percentages are then shares of
               the top-N total
    """
    if not cards:
        return EMPTY_BRANCH_SUMMARY

    df = pd.DataFrame([
        {
            "name": name,
            "store_id": card.store_id,
            "open_amount": card.open_accounts.money,
            "closed_amount": card.closed_ticket.money,
            "open_tickets": card.open_accounts.total,
            "closed_tickets": card.closed_ticket.total,
            "average_ticket": card.average_ticket,
        }
        for name, card in cards.items()
    ])
    df["total_sales"] = df["open_amount"] + df["closed_amount"]
    df = df[df["total_sales"] > 0]

    if df.empty:
        return EMPTY_BRANCH_SUMMARY

    df = df.sort_values("total_sales", ascending=False, kind="mergesort").reset_index(drop=True)
    if top_n is not None:
        df = df.head(top_n).copy()

    total_sales = float(df["total_sales"].sum())
    total_tickets = float((df["open_tickets"] + df["closed_tickets"]).sum())
    df["rank"] = np.arange(1, len(df) + 1)
    df["percentage"] = df["total_sales"] / total_sales * 100

    branches = [
        BranchRanking(
            rank=int(row.rank),
            name=row.name,
            store_id=row.store_id,
            total_sales=float(row.total_sales),
            open_amount=float(row.open_amount),
            closed_amount=float(row.closed_amount),
            open_tickets=float(row.open_tickets),
            closed_tickets=float(row.closed_tickets),
            average_ticket=float(row.average_ticket),
            percentage=float(row.percentage),
        )
        for row in df.itertuples(index=False)
    ]

    logger.debug(f"Ranked {len(branches)} branches, total sales {format_currency(total_sales)}")

    return BranchSummary(
        branches=branches,
        total_sales=total_sales,
        total_tickets=total_tickets,
        average_ticket=_safe_divide(total_sales, total_tickets) or 0,
        average_branch_sales=float(df["total_sales"].mean()),
        median_branch_sales=float(df["total_sales"].median()),
    )
