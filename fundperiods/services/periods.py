"""
Rolling-period derivation from raw upstream return series.

A fund's series is sampled irregularly (daily, weekly or with holes). Every
stored period starts on the first day of a month and ends on the first day of
the same month `years` later; a start month is only usable when the series
has an observation in its end month.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd


class PeriodType(str, Enum):
    """Rolling-window lengths tracked per fund."""
    ONE_YEAR = "1-year"
    FIVE_YEARS = "5-year"
    TEN_YEARS = "10-year"

    @property
    def years(self) -> int:
        return int(self.value.split("-")[0])


@dataclass(frozen=True)
class RawSample:
    """One upstream observation: calendar date and return value (None if missing)."""
    timestamp: date
    value: Optional[float]

    @property
    def is_usable(self) -> bool:
        # Upstream reports zero for days before the fund existed
        if self.value is None or self.value == 0:
            return False
        return not math.isnan(self.value)


@dataclass(frozen=True)
class Period:
    """A calendar-aligned rolling period."""
    start_date: date
    end_date: date


@dataclass
class SeriesPayload:
    """Parsed series response."""
    name: Optional[str]
    samples: List[RawSample] = field(default_factory=list)

    @property
    def terminal_value(self) -> Optional[float]:
        """Value of the last sample, or None when the series is empty or ends in a gap."""
        if not self.samples:
            return None
        last = self.samples[-1].value
        if last is None or math.isnan(last):
            return None
        return last


def _next_month(year: int, month: int) -> Tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def _first_start_month(anchor: date, floor_year: int) -> Tuple[int, int]:
    """
    Start month of the first candidate period.

    The anchor month itself when the series starts inside the window, otherwise
    the month after the anchor month, moved into the floor year.
    """
    if anchor.year >= floor_year:
        return anchor.year, anchor.month
    return floor_year, anchor.month % 12 + 1


def derive_periods(samples: Iterable[RawSample], window_years: int, floor_year: int) -> List[Period]:
    """
    Derive the consecutive rolling periods available in a raw series.

    Args:
        samples: Chronologically ordered raw samples
        window_years: Period length in years
        floor_year: First calendar year a period may start in

    Returns:
        Periods ordered by start date. Derivation stops at the first start month
        whose end month has no usable sample, even if the series resumes later.
    """
    usable = [sample for sample in samples if sample.is_usable]
    if not usable:
        return []

    usable_months = {(sample.timestamp.year, sample.timestamp.month) for sample in usable}
    year, month = _first_start_month(usable[0].timestamp, floor_year)

    periods: List[Period] = []
    while (year + window_years, month) in usable_months:
        periods.append(Period(
            start_date=date(year, month, 1),
            end_date=date(year + window_years, month, 1),
        ))
        year, month = _next_month(year, month)

    return periods


def parse_series(payload: Dict[str, Any], tz: str = "Europe/Stockholm") -> SeriesPayload:
    """
    Parse an upstream chart response into a SeriesPayload.

    Timestamps are epoch milliseconds at local midnight, so they are converted
    in the upstream's timezone before taking the calendar date. ISO date
    strings are accepted as well.
    """
    points = payload.get("dataSerie") or []
    name = payload.get("name")
    if not points:
        return SeriesPayload(name=name, samples=[])

    df = pd.DataFrame(points, columns=["x", "y"])
    if pd.api.types.is_numeric_dtype(df["x"]):
        stamps = pd.to_datetime(df["x"], unit="ms", utc=True).dt.tz_convert(tz)
    else:
        stamps = pd.to_datetime(df["x"])

    values = pd.to_numeric(df["y"], errors="coerce")

    samples = [
        RawSample(
            timestamp=stamp.date(),
            value=None if pd.isna(value) else float(value),
        )
        for stamp, value in zip(stamps, values)
    ]
    return SeriesPayload(name=name, samples=samples)
