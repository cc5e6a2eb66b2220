"""
Sales API Client

HTTP access to the upstream sales dashboard API.

This module handles:
1. Bearer-token session setup
2. The four dashboard endpoints (main data, weekly batch, monthly batch, hours chart)
3. Mapping transport and HTTP failures onto the error taxonomy
4. Schema validation of every response

Blocking requests calls run in a worker thread via asyncio.to_thread so
several calls can be in flight on one event loop.
"""
import asyncio
import threading
import logging
from typing import Any, Dict, List, Optional

import requests

from config.settings import SalesApiConfig
from sales_dashboard.core.error_taxonomy import (
    SessionExpiredError,
    UpstreamHTTPError,
    UpstreamRequestError,
)
from sales_dashboard.core.schemas import (
    BatchResponse,
    HoursChartResponse,
    MainDashboardResponse,
    validate_response,
)

logger = logging.getLogger(__name__)

MAIN_DATA_PATH = "/api/dashboard/main-data"
WEEKLY_BATCH_PATH = "/api/dashboard/weekly-batch"
MONTHLY_BATCH_PATH = "/api/dashboard/monthly-batch"
HOURS_CHART_PATH = "/api/dashboard/get-hours-chart"

SESSION_EXPIRED_STATUS = 419


class SalesApiClient:
    """
    Client for the sales dashboard API.

    Usage:
        client = SalesApiClient(get_config().api)
        main = await client.get_main_dashboard_data("2025-09-02", "2025-09-08")
        print(main.total)
    """

    def __init__(self, config: SalesApiConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._session = session
        self._session_lock = threading.Lock()

    def _get_session(self) -> requests.Session:
        """Get or create the authenticated session. Safe to call from worker threads."""
        with self._session_lock:
            if self._session is None:
                session = requests.Session()
                session.headers.update(self._get_headers())
                self._session = session
            return self._session

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Requested-With": "XMLHttpRequest",
        }
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Perform one blocking request and return the decoded JSON body."""
        url = f"{self.base_url}{path}"
        timeout = timeout or self.config.timeout

        try:
            response = self._get_session().request(
                method, url, params=params, json=body, timeout=timeout
            )
        except requests.Timeout as e:
            logger.error(f"{method} {path} timed out after {timeout}s")
            raise UpstreamRequestError("Request timeout - please try again", timeout=True) from e
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise UpstreamRequestError(f"Network error: {type(e).__name__} on {method} {path}") from e

        if response.status_code == SESSION_EXPIRED_STATUS:
            logger.warning(f"{method} {path}: session expired")
            raise SessionExpiredError()

        if not 200 <= response.status_code < 300:
            logger.error(f"{method} {path} returned HTTP {response.status_code}")
            raise UpstreamHTTPError(response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamHTTPError(
                response.status_code,
                f"Invalid JSON from {path}: {e}",
            ) from e

    async def _call(self, method: str, path: str, **kwargs) -> Any:
        return await asyncio.to_thread(self._request, method, path, **kwargs)

    async def get_main_dashboard_data(self, start_date: str, end_date: str) -> MainDashboardResponse:
        """Totals and per-branch cards for a date range."""
        payload = await self._call(
            "GET",
            MAIN_DATA_PATH,
            params={"start_date": start_date, "end_date": end_date},
        )
        result = validate_response(payload, MainDashboardResponse, MAIN_DATA_PATH)
        logger.debug(f"Main data {start_date}..{end_date}: total={result.total}")
        return result

    async def get_weekly_batch(self, current_week: List[str], previous_week: List[str]) -> BatchResponse:
        """Per-day totals for two weeks, keyed by date."""
        payload = await self._call(
            "POST",
            WEEKLY_BATCH_PATH,
            body={"current_week": current_week, "previous_week": previous_week},
            timeout=self.config.batch_timeout,
        )
        return validate_response(payload, BatchResponse, WEEKLY_BATCH_PATH)

    async def get_monthly_batch(
        self,
        current_weeks: List[Dict[str, str]],
        previous_weeks: List[Dict[str, str]],
    ) -> BatchResponse:
        """Per-week totals for two months, keyed by week_key."""
        payload = await self._call(
            "POST",
            MONTHLY_BATCH_PATH,
            body={"current_month_weeks": current_weeks, "previous_month_weeks": previous_weeks},
            timeout=self.config.batch_timeout,
        )
        return validate_response(payload, BatchResponse, MONTHLY_BATCH_PATH)

    async def get_hours_chart(self, date: str) -> HoursChartResponse:
        """Sales by hour for a date and the same weekday of the previous week."""
        payload = await self._call("POST", HOURS_CHART_PATH, body={"date": date})
        return validate_response(payload, HoursChartResponse, HOURS_CHART_PATH)

    def close(self) -> None:
        with self._session_lock:
            if self._session is not None:
                self._session.close()
                self._session = None


# Singleton instance
_client: Optional[SalesApiClient] = None


def get_sales_api_client() -> SalesApiClient:
    """Get the sales API client instance."""
    global _client
    if _client is None:
        from config.settings import get_config
        _client = SalesApiClient(get_config().api)
    return _client
