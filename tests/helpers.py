"""Shared test data builders and fakes."""
from datetime import date
from typing import Dict, List, Optional, Set, Tuple

from fundperiods.services.fetcher import FetchError
from fundperiods.services.periods import RawSample, SeriesPayload

FLOOR_YEAR = 1998
WINDOW_END = date(2021, 12, 31)


def monthly(start: Tuple[int, int], end: Tuple[int, int], value: float = 1.0, day: int = 15) -> List[RawSample]:
    """Usable samples on `day` of every month from start to end inclusive."""
    samples = []
    year, month = start
    while (year, month) <= end:
        samples.append(RawSample(date(year, month, day), value))
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return samples


class FakeFundGuide:
    """
    Stand-in for FundGuideClient.

    The full-history request (ending at WINDOW_END) returns `samples`; narrow
    period requests return a single sample whose value encodes the start month.
    """

    def __init__(self, name: str = "Test Fund", samples: Optional[List[RawSample]] = None):
        self.name = name
        self.samples = samples or []
        self.calls: List[Tuple[int, date, date]] = []
        self.fail_periods: Set[date] = set()
        self.fail_history: Optional[FetchError] = None
        self.values: Dict[date, float] = {}

    def source_url(self, fund_id: int) -> str:
        return f"https://www.avanza.se/fonder/om-fonden.html/{fund_id}"

    async def fetch_series(self, fund_id: int, start: date, end: date) -> SeriesPayload:
        self.calls.append((fund_id, start, end))
        if end == WINDOW_END:
            if self.fail_history is not None:
                raise self.fail_history
            return SeriesPayload(name=self.name, samples=list(self.samples))

        if start in self.fail_periods:
            raise FetchError(f"HTTP 404 for {start}", transient=False, status_code=404)
        value = self.values.get(start, start.year + start.month / 100)
        return SeriesPayload(name=self.name, samples=[
            RawSample(start, 0.0),
            RawSample(end, value),
        ])

    @property
    def period_calls(self) -> List[Tuple[int, date, date]]:
        return [call for call in self.calls if call[2] != WINDOW_END]
