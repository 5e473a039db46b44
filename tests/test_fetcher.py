import json
from datetime import date
from unittest.mock import AsyncMock

import httpx
import pytest

from fundperiods.services.fetcher import (
    FetchError,
    FundGuideClient,
    RequestThrottle,
    RetryingFetcher,
    RetryPolicy,
    to_fetch_error,
)


class FlakyRequest:
    """Fails `failures` times with `error`, then returns `result`."""

    def __init__(self, failures: int, error: Exception, result="payload"):
        self.failures = failures
        self.error = error
        self.result = result
        self.attempts = 0

    async def __call__(self):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        return self.result


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://www.avanza.se/_api/fund-guide/chart/1/2000-01-01/2001-01-01")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [1, 3])
async def test_transient_failures_are_retried_with_doubling_delays(failures):
    sleep = AsyncMock()
    fetcher = RetryingFetcher(RetryPolicy(max_retries=3, base_delay=2.0), sleep=sleep)
    request = FlakyRequest(failures, FetchError("rate limited", transient=True, status_code=429))

    result = await fetcher.fetch(request)

    assert result == "payload"
    assert request.attempts == failures + 1
    delays = [call.args[0] for call in sleep.await_args_list]
    assert delays == [2.0 * 2 ** i for i in range(failures)]
    assert all(later > earlier for earlier, later in zip(delays, delays[1:]))


@pytest.mark.asyncio
async def test_non_transient_failure_is_not_retried():
    sleep = AsyncMock()
    fetcher = RetryingFetcher(RetryPolicy(max_retries=5, base_delay=1.0), sleep=sleep)
    request = FlakyRequest(1, _status_error(404))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(request)

    assert request.attempts == 1
    sleep.assert_not_awaited()
    assert exc_info.value.status_code == 404
    assert exc_info.value.transient is False
    assert exc_info.value.terminal is True


@pytest.mark.asyncio
async def test_exhausted_retries_raise_last_error_as_terminal():
    sleep = AsyncMock()
    fetcher = RetryingFetcher(RetryPolicy(max_retries=2, base_delay=0.5), sleep=sleep)
    request = FlakyRequest(10, httpx.ConnectTimeout("timed out"))

    with pytest.raises(FetchError) as exc_info:
        await fetcher.fetch(request, description="fund 42")

    assert request.attempts == 3
    assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]
    assert exc_info.value.transient is True
    assert exc_info.value.terminal is True


@pytest.mark.asyncio
async def test_custom_transient_predicate():
    sleep = AsyncMock()
    policy = RetryPolicy(max_retries=1, base_delay=1.0, is_transient=lambda e: isinstance(e, KeyError))
    fetcher = RetryingFetcher(policy, sleep=sleep)
    request = FlakyRequest(1, KeyError("dataSerie"))

    assert await fetcher.fetch(request) == "payload"
    assert request.attempts == 2


def test_error_classification():
    assert to_fetch_error(_status_error(429)).transient is True
    assert to_fetch_error(_status_error(503)).transient is True
    assert to_fetch_error(_status_error(404)).transient is False
    assert to_fetch_error(_status_error(400)).transient is False
    assert to_fetch_error(httpx.ReadTimeout("slow")).transient is True
    assert to_fetch_error(httpx.ReadError("connection reset by peer")).transient is True
    assert to_fetch_error(httpx.ConnectError("refused")).transient is True
    assert to_fetch_error(ValueError("bad json")).transient is False

    original = FetchError("boom", transient=True)
    assert to_fetch_error(original) is original


def test_retry_policy_delays():
    policy = RetryPolicy(max_retries=4, base_delay=30.0)
    assert [policy.delay_for(n) for n in range(1, 5)] == [30.0, 60.0, 120.0, 240.0]


@pytest.mark.asyncio
async def test_throttle_spaces_requests():
    now = [0.0]
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)
        now[0] += seconds

    throttle = RequestThrottle(1.0, clock=lambda: now[0], sleep=fake_sleep)

    await throttle.wait()
    now[0] += 0.3
    await throttle.wait()
    now[0] += 2.0
    await throttle.wait()

    assert slept == [pytest.approx(0.7)]


@pytest.mark.asyncio
async def test_zero_interval_throttle_never_sleeps():
    sleep = AsyncMock()
    throttle = RequestThrottle(0, sleep=sleep)
    for _ in range(3):
        await throttle.wait()
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_client_fetch_series():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={
            "name": "Småbolagsfond",
            "dataSerie": [
                {"x": 946681200000, "y": None},  # 2000-01-01 Stockholm
                {"x": 978303600000, "y": 14.2},  # 2001-01-01 Stockholm
            ],
        })

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = FundGuideClient(http, base_url="https://www.avanza.se/")
        series = await client.fetch_series(1234, date(2000, 1, 1), date(2001, 1, 1))

    assert requests[0].url.path == "/_api/fund-guide/chart/1234/2000-01-01/2001-01-01"
    assert series.name == "Småbolagsfond"
    assert [s.timestamp for s in series.samples] == [date(2000, 1, 1), date(2001, 1, 1)]
    assert series.terminal_value == pytest.approx(14.2)
    assert client.source_url(1234) == "https://www.avanza.se/fonder/om-fonden.html/1234"


@pytest.mark.asyncio
async def test_client_retries_service_unavailable_through_fetcher():
    statuses = iter([503, 429, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json={"name": "F", "dataSerie": [{"x": 978303600000, "y": 3.0}]})

    sleep = AsyncMock()
    fetcher = RetryingFetcher(RetryPolicy(max_retries=3, base_delay=1.0), sleep=sleep)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = FundGuideClient(http)
        series = await fetcher.fetch(lambda: client.fetch_series(1, date(2000, 1, 1), date(2001, 1, 1)))

    assert series.terminal_value == pytest.approx(3.0)
    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_client_not_found_is_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404)

    sleep = AsyncMock()
    fetcher = RetryingFetcher(RetryPolicy(max_retries=3, base_delay=1.0), sleep=sleep)
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = FundGuideClient(http)
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(lambda: client.fetch_series(1, date(2000, 1, 1), date(2001, 1, 1)))

    assert len(calls) == 1
    assert exc_info.value.status_code == 404
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_list_all_fund_ids_pages_until_total():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        start = body["startIndex"]
        ids = [i for i in range(start, min(start + 20, 45))]
        payload = {"fundListViews": [{"orderbookId": i} for i in ids]}
        if start == 0:
            payload["totalNoFunds"] = 45
        return httpx.Response(200, json=payload)

    fetcher = RetryingFetcher(RetryPolicy(max_retries=0), sleep=AsyncMock())
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = FundGuideClient(http)
        fund_ids = await client.list_all_fund_ids(fetcher, RequestThrottle(0), batch_size=20)

    assert fund_ids == list(range(45))
    assert [b["startIndex"] for b in bodies] == [0, 20, 40]
    assert bodies[0]["sortField"] == "name"


@pytest.mark.asyncio
async def test_list_all_fund_ids_without_total_stops_on_empty_page():
    def handler(request: httpx.Request) -> httpx.Response:
        start = json.loads(request.content)["startIndex"]
        if start >= 40:
            return httpx.Response(200, json={"fundListViews": []})
        # Overlapping pages: the second page repeats id 19
        ids = range(start - 1 if start else 0, start + 20)
        return httpx.Response(200, json={"fundListViews": [{"orderbookId": str(i)} for i in ids]})

    fetcher = RetryingFetcher(RetryPolicy(max_retries=0), sleep=AsyncMock())
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        client = FundGuideClient(http)
        fund_ids = await client.list_all_fund_ids(fetcher, batch_size=20)

    assert fund_ids == list(range(40))
