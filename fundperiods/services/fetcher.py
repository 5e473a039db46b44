"""
Upstream access: retry policy, request throttle and the fund guide HTTP client.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import httpx

from fundperiods.core.logging_config import get_background_logger
from .periods import SeriesPayload, parse_series

bg_logger = get_background_logger()

T = TypeVar('T')

# Upstream statuses meaning "slow down" or "try again later"
TRANSIENT_STATUS_CODES = {429, 503}

# Transport failures worth retrying (timeouts, connection reset/refused)
TRANSIENT_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)

SOURCE_URL_TEMPLATE = "{base_url}/fonder/om-fonden.html/{fund_id}"

# Fund guide list filter; only the paging fields change between requests
FUND_LIST_FILTER: Dict[str, Any] = {
    "indexFund": False,
    "lowCo2": False,
    "regionFilter": [],
    "countryFilter": [],
    "alignmentFilter": [],
    "industryFilter": [],
    "fundTypeFilter": [],
    "interestTypeFilter": [],
    "sortField": "name",
    "sortDirection": "DESCENDING",
    "name": "",
    "recommendedHoldingPeriodFilter": [],
    "companyFilter": [],
    "productInvolvementsFilter": [],
}


class FetchError(Exception):
    """
    Raised when an upstream request fails.

    transient: the failure may go away on retry (timeouts, 429/503)
    terminal: no further attempts will be made for this request
    """

    def __init__(
        self,
        message: str,
        transient: bool = False,
        status_code: int | None = None,
        terminal: bool = False,
    ):
        self.message = message
        self.transient = transient
        self.status_code = status_code
        self.terminal = terminal
        super().__init__(self.message)


def to_fetch_error(error: BaseException) -> FetchError:
    """Classify an exception raised by a request as a FetchError."""
    if isinstance(error, FetchError):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return FetchError(
            f"HTTP {status} from {error.request.url}",
            transient=status in TRANSIENT_STATUS_CODES,
            status_code=status,
        )
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return FetchError(f"{type(error).__name__}: {error}", transient=True)
    return FetchError(f"{type(error).__name__}: {error}", transient=False)


def is_transient_error(error: BaseException) -> bool:
    """Default transient predicate for RetryPolicy."""
    return to_fetch_error(error).transient


@dataclass
class RetryPolicy:
    """Bounded exponential backoff: retry n waits base_delay * 2 ** (n - 1)."""
    max_retries: int = 3
    base_delay: float = 30.0
    is_transient: Callable[[BaseException], bool] = field(default=is_transient_error)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))


class RetryingFetcher:
    """
    Applies a RetryPolicy to arbitrary upstream requests.

    Usage:
        fetcher = RetryingFetcher(RetryPolicy(max_retries=3, base_delay=30.0))
        payload = await fetcher.fetch(lambda: client.fetch_series(fund_id, start, end))
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep

    async def fetch(self, request: Callable[[], Awaitable[T]], description: str = "request") -> T:
        """
        Run `request` until it succeeds, fails non-transiently, or retries run out.

        Raises:
            FetchError: tagged terminal, carrying the last failure
        """
        attempt = 0
        while True:
            try:
                return await request()
            except Exception as e:
                error = to_fetch_error(e)
                error.transient = self.policy.is_transient(e)

                if not error.transient:
                    error.terminal = True
                    if error is e:
                        raise
                    raise error from e

                if attempt >= self.policy.max_retries:
                    error.terminal = True
                    bg_logger.error(
                        f"{description}: giving up after {attempt + 1} attempts: {error.message}"
                    )
                    if error is e:
                        raise
                    raise error from e

                attempt += 1
                delay = self.policy.delay_for(attempt)
                bg_logger.warning(
                    f"{description}: {error.message} (retry {attempt}/{self.policy.max_retries}). "
                    f"Waiting {delay:.1f}s..."
                )
                await self._sleep(delay)


class RequestThrottle:
    """Keeps at least `min_interval` seconds between request starts, across all workers."""

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()
        self._last_request: Optional[float] = None

    async def wait(self) -> None:
        """Wait until the next request may start, then claim the slot."""
        async with self._lock:
            if self._last_request is not None and self.min_interval > 0:
                remaining = self.min_interval - (self._clock() - self._last_request)
                if remaining > 0:
                    await self._sleep(remaining)
            self._last_request = self._clock()


@dataclass
class FundListPage:
    """One page of the fund guide catalog."""
    fund_ids: List[int]
    total: Optional[int] = None


class FundGuideClient:
    """HTTP client for the Avanza fund guide endpoints."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = "https://www.avanza.se",
        tz: str = "Europe/Stockholm",
    ):
        self._http = http_client
        self.base_url = base_url.rstrip("/")
        self.tz = tz

    def source_url(self, fund_id: int) -> str:
        """Public fund page."""
        return SOURCE_URL_TEMPLATE.format(base_url=self.base_url, fund_id=fund_id)

    async def fetch_series(self, fund_id: int, start: date, end: date) -> SeriesPayload:
        """Fetch the return series of a fund over [start, end]."""
        url = (
            f"{self.base_url}/_api/fund-guide/chart/{fund_id}/"
            f"{start.isoformat()}/{end.isoformat()}"
        )
        response = await self._http.get(url)
        response.raise_for_status()
        return parse_series(response.json(), tz=self.tz)

    async def fetch_fund_list_page(self, start_index: int, batch_size: int = 20) -> FundListPage:
        """Fetch one page of fund ids starting at `start_index`."""
        body = {"startIndex": start_index, "pageSize": batch_size, **FUND_LIST_FILTER}
        response = await self._http.post(f"{self.base_url}/_api/fund-guide/list", json=body)
        response.raise_for_status()
        data = response.json()

        fund_ids = [int(view["orderbookId"]) for view in data.get("fundListViews") or []]
        total = data.get("totalNoFunds")
        return FundListPage(fund_ids=fund_ids, total=int(total) if total is not None else None)

    async def list_all_fund_ids(
        self,
        fetcher: RetryingFetcher,
        throttle: RequestThrottle | None = None,
        batch_size: int = 20,
    ) -> List[int]:
        """
        Enumerate the whole catalog.

        Pages until the total reported on the first page is reached, or until an
        empty page when no total is reported.
        """
        fund_ids: List[int] = []
        seen = set()
        total: Optional[int] = None
        start_index = 0

        while total is None or start_index < total:
            async def request(index=start_index):
                if throttle is not None:
                    await throttle.wait()
                return await self.fetch_fund_list_page(index, batch_size)

            page = await fetcher.fetch(request, description=f"fund list {start_index}-{start_index + batch_size}")
            bg_logger.debug(f"Read fund list {start_index} - {start_index + batch_size}: {len(page.fund_ids)} ids")

            if total is None and page.total is not None:
                total = page.total
            if not page.fund_ids:
                break

            for fund_id in page.fund_ids:
                if fund_id not in seen:
                    seen.add(fund_id)
                    fund_ids.append(fund_id)
            start_index += batch_size

        return fund_ids
