"""Fund period services package facade."""
from __future__ import annotations

from .periods import PeriodType, Period, RawSample, SeriesPayload, derive_periods, parse_series
from .fetcher import (
    FetchError,
    FundGuideClient,
    FundListPage,
    RequestThrottle,
    RetryingFetcher,
    RetryPolicy,
)
from .store import FundStore
from .progress import ProgressReporter, SyncPhase, WorkerEvent
from .sync import (
    FundSyncResult,
    FundWorkQueue,
    SkipReason,
    SyncCoordinator,
    SyncOutcome,
    SyncRunSummary,
    build_coordinator,
)

__all__ = [
    "PeriodType",
    "Period",
    "RawSample",
    "SeriesPayload",
    "derive_periods",
    "parse_series",
    "FetchError",
    "FundGuideClient",
    "FundListPage",
    "RequestThrottle",
    "RetryingFetcher",
    "RetryPolicy",
    "FundStore",
    "ProgressReporter",
    "SyncPhase",
    "WorkerEvent",
    "FundSyncResult",
    "FundWorkQueue",
    "SkipReason",
    "SyncCoordinator",
    "SyncOutcome",
    "SyncRunSummary",
    "build_coordinator",
]
