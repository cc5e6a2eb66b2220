"""
Upstream Response Schemas

Pydantic models for validating sales API responses at the boundary, so a
malformed payload fails loudly as a DataFormatError instead of surfacing
later as a KeyError deep inside the coordinator.

Missing numeric fields default to 0 and missing maps to {}; numeric strings
are coerced.
"""
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar
import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sales_dashboard.core.error_taxonomy import DataFormatError, UpstreamResponseError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class _UpstreamModel(BaseModel):
    """Tolerates extra upstream fields."""
    model_config = ConfigDict(extra="allow")


class SalesSummary(_UpstreamModel):
    total: float = 0
    subtotal: float = 0

    @field_validator("total", "subtotal", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return 0 if v is None or v == "" else v


class CountAndMoney(_UpstreamModel):
    total: float = 0
    money: float = 0

    @field_validator("total", "money", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return 0 if v is None or v == "" else v


class PercentageBadge(_UpstreamModel):
    icon: Optional[str] = None
    qty: Optional[Any] = None


class BranchCard(_UpstreamModel):
    """Per-branch figures from the main dashboard endpoint."""
    open_accounts: CountAndMoney = Field(default_factory=CountAndMoney)
    closed_ticket: CountAndMoney = Field(default_factory=CountAndMoney)
    average_ticket: float = 0
    percentage: Optional[PercentageBadge] = None
    date: Optional[str] = None
    store_id: Optional[Any] = None

    @field_validator("average_ticket", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return 0 if v is None or v == "" else v


class MainDashboardData(_UpstreamModel):
    sales: SalesSummary = Field(default_factory=SalesSummary)
    cards: Dict[str, BranchCard] = Field(default_factory=dict)

    @field_validator("cards", mode="before")
    @classmethod
    def empty_list_to_dict(cls, v):
        # PHP serializes an empty associative array as []
        if v is None or v == []:
            return {}
        return v


class MainDashboardResponse(_UpstreamModel):
    """Totals and branch cards for one date range."""
    success: bool = True
    message: Optional[str] = None
    data: MainDashboardData = Field(default_factory=MainDashboardData)

    @property
    def total(self) -> float:
        return self.data.sales.total


class BatchEntry(_UpstreamModel):
    """One date or week of a batch breakdown."""
    total: float = 0
    details: Optional[Any] = None

    @field_validator("total", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return 0 if v is None or v == "" else v


class BatchResponse(_UpstreamModel):
    """
    Weekly/monthly batch breakdown.

    ``data`` maps a group name (current_week, previous_week,
    current_month_weeks, previous_month_weeks) to entries keyed by date or
    week key. Unknown groups are kept as-is.
    """
    success: bool = True
    message: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    def group(self, name: str) -> Optional[Dict[str, BatchEntry]]:
        """Entries of a group, or None when the group is absent or not a mapping."""
        raw = self.data.get(name)
        if not isinstance(raw, dict):
            return None
        return {
            key: value if isinstance(value, BatchEntry) else BatchEntry.model_validate(value or {})
            for key, value in raw.items()
        }


class HoursChartResponse(_UpstreamModel):
    """Sales by hour for a set of dates: ``data[date][hour] = amount``."""
    success: bool = True
    message: Optional[str] = None
    data: Dict[str, Dict[str, float]] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def empty_list_to_dict(cls, v):
        if v is None or v == []:
            return {}
        return v


def validate_response(payload: Any, schema: Type[ModelT], endpoint: str = "") -> ModelT:
    """
    Validate a decoded JSON payload against a schema.

    Raises:
        UpstreamResponseError: payload reports success=false
        DataFormatError: payload does not match the schema
    """
    if not isinstance(payload, dict):
        raise DataFormatError(
            f"Unexpected response format from {endpoint or schema.__name__}: {type(payload).__name__}",
            context={"endpoint": endpoint},
        )

    if payload.get("success") is False:
        message = payload.get("message") or f"Request to {endpoint or schema.__name__} was not successful"
        raise UpstreamResponseError(message)

    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Schema validation failed for {endpoint or schema.__name__}: {e}")
        raise DataFormatError(
            f"Invalid response from {endpoint or schema.__name__}: {e.error_count()} validation error(s)",
            context={"endpoint": endpoint, "errors": _error_summary(e)},
        ) from e


def _error_summary(error: ValidationError) -> List[Tuple[str, str]]:
    return [(".".join(str(p) for p in err["loc"]), err["msg"]) for err in error.errors()]
