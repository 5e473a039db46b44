"""
Incremental synchronization of fund period returns.

For each fund the full history is fetched once, the required periods are
derived and diffed against what is already stored, and only the missing
periods are fetched and inserted. Re-running converges: stored periods are
never fetched again, and an interrupted run loses at most the period in flight.
"""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from fundperiods.core.config import Settings
from fundperiods.core.logging_config import (
    get_background_logger,
    log_background_start,
    log_background_complete,
)

from .fetcher import FetchError, FundGuideClient, RequestThrottle, RetryingFetcher, RetryPolicy
from .periods import Period, PeriodType, SeriesPayload, derive_periods
from .progress import ProgressReporter, SyncPhase, WorkerEvent
from .store import FundStore

bg_logger = get_background_logger()


class SyncOutcome(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERRORED = "errored"


class SkipReason(str, Enum):
    NO_HISTORY = "no historical data"
    ALREADY_COMPLETE = "already complete"


@dataclass
class FundSyncResult:
    """Outcome of synchronizing one fund."""
    fund_id: int
    outcome: SyncOutcome
    new_points: int = 0
    skip_reason: Optional[SkipReason] = None
    error: Optional[str] = None


@dataclass
class SyncRunSummary:
    """Run-scoped tally of fund outcomes."""
    total_funds: int = 0
    new: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    new_points: int = 0
    results: List[FundSyncResult] = field(default_factory=list)

    def record(self, result: FundSyncResult) -> None:
        if result.outcome == SyncOutcome.NEW:
            self.new += 1
        elif result.outcome == SyncOutcome.UPDATED:
            self.updated += 1
        elif result.outcome == SyncOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.errored += 1
        self.new_points += result.new_points
        self.results.append(result)

    @property
    def processed(self) -> int:
        return len(self.results)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total_funds": self.total_funds,
            "processed": self.processed,
            "new": self.new,
            "updated": self.updated,
            "skipped": self.skipped,
            "errored": self.errored,
            "new_points": self.new_points,
        }


class FundWorkQueue:
    """Shared queue of fund ids; every index is handed out exactly once."""

    def __init__(self, fund_ids: Iterable[int], start_index: int = 0):
        self._fund_ids = list(fund_ids)
        self._next_index = max(0, start_index)
        self._lock = threading.Lock()

    @property
    def remaining(self) -> int:
        """Number of ids not yet claimed."""
        with self._lock:
            return max(0, len(self._fund_ids) - self._next_index)

    def claim(self) -> Optional[Tuple[int, int]]:
        """Claim the next (index, fund_id), or None when drained."""
        with self._lock:
            if self._next_index >= len(self._fund_ids):
                return None
            index = self._next_index
            self._next_index += 1
            return index, self._fund_ids[index]


class SyncCoordinator:
    """Synchronizes funds from the fund guide into the store."""

    def __init__(
        self,
        client: FundGuideClient,
        store: FundStore,
        fetcher: RetryingFetcher,
        throttle: RequestThrottle,
        floor_year: int,
        window_end: date,
        reporter: ProgressReporter | None = None,
        fund_delay: float = 0.0,
    ) -> None:
        self.client = client
        self.store = store
        self.fetcher = fetcher
        self.throttle = throttle
        self.floor_year = floor_year
        self.window_end = window_end
        self.reporter = reporter
        self.fund_delay = fund_delay

    def _emit(self, worker_id: int, fund_id: int, phase: SyncPhase, progress: int = 0,
              total: int = 0, is_update: bool = False) -> None:
        if self.reporter is not None:
            self.reporter.handle(WorkerEvent(worker_id, fund_id, phase, progress, total, is_update))

    async def _fetch_series(self, fund_id: int, start: date, end: date) -> SeriesPayload:
        async def request():
            await self.throttle.wait()
            return await self.client.fetch_series(fund_id, start, end)

        return await self.fetcher.fetch(request, description=f"fund {fund_id} {start}..{end}")

    async def _fetch_terminal_value(self, fund_id: int, period: Period) -> float:
        series = await self._fetch_series(fund_id, period.start_date, period.end_date)
        value = series.terminal_value
        if value is None:
            raise FetchError(
                f"No terminal value for {period.start_date}..{period.end_date}",
                transient=False,
                terminal=True
            )
        return value

    async def sync_fund(self, fund_id: int, worker_id: int = 0) -> FundSyncResult:
        """
        Synchronize one fund.

        Steps:
        1. Fetch the full history (floor year to window end)
        2. Upsert fund metadata
        3. Derive required periods per period type and diff against stored ones
        4. Skip if nothing is missing
        5. Fetch and insert each missing period, in period-type then date order

        Upstream failures are returned as an errored result; periods inserted
        before the failure are kept.
        """
        self._emit(worker_id, fund_id, SyncPhase.FETCHING_SERIES)

        # Step 1: Full history
        try:
            series = await self._fetch_series(fund_id, date(self.floor_year, 1, 1), self.window_end)
        except FetchError as e:
            bg_logger.error(f"Error fetching history for fund {fund_id}: {e}")
            self._emit(worker_id, fund_id, SyncPhase.ERRORED)
            return FundSyncResult(fund_id, SyncOutcome.ERRORED, error=str(e))

        # Step 2: Metadata
        await self.store.upsert_fund(fund_id, series.name, self.client.source_url(fund_id))

        # Step 3: Required vs. existing
        missing: Dict[PeriodType, List[Period]] = {}
        derived_any = False
        prior_points = 0
        for period_type in PeriodType:
            required = derive_periods(series.samples, period_type.years, self.floor_year)
            existing = await self.store.existing_start_dates(fund_id, period_type)
            derived_any = derived_any or bool(required)
            prior_points += len(existing)
            missing[period_type] = [p for p in required if p.start_date not in existing]

        total_missing = sum(len(periods) for periods in missing.values())

        # Step 4: Nothing to do
        if total_missing == 0:
            reason = SkipReason.ALREADY_COMPLETE if derived_any else SkipReason.NO_HISTORY
            bg_logger.debug(f"Fund {fund_id} skipped: {reason.value}")
            self._emit(worker_id, fund_id, SyncPhase.SKIPPED)
            return FundSyncResult(fund_id, SyncOutcome.SKIPPED, skip_reason=reason)

        # Step 5: Gap fill
        is_update = prior_points > 0
        outcome = SyncOutcome.UPDATED if is_update else SyncOutcome.NEW
        bg_logger.info(
            f"Fund {fund_id} ({series.name}): {total_missing} missing periods"
            f"{' (update)' if is_update else ''}"
        )

        inserted = 0
        done = 0
        self._emit(worker_id, fund_id, SyncPhase.FETCHING_PERIODS, 0, total_missing, is_update)
        for period_type, periods in missing.items():
            for period in periods:
                try:
                    value = await self._fetch_terminal_value(fund_id, period)
                except FetchError as e:
                    bg_logger.error(
                        f"Error fetching {period_type.value} period {period.start_date} "
                        f"for fund {fund_id}: {e} ({inserted} periods stored before failure)"
                    )
                    self._emit(worker_id, fund_id, SyncPhase.ERRORED, done, total_missing, is_update)
                    return FundSyncResult(fund_id, SyncOutcome.ERRORED, new_points=inserted, error=str(e))

                if await self.store.insert_data_point_if_absent(
                    fund_id, period_type, period.start_date, period.end_date, value
                ):
                    inserted += 1
                done += 1
                self._emit(worker_id, fund_id, SyncPhase.FETCHING_PERIODS, done, total_missing, is_update)

        self._emit(worker_id, fund_id, SyncPhase.DONE, done, total_missing, is_update)
        return FundSyncResult(fund_id, outcome, new_points=inserted)

    async def _worker(self, worker_id: int, queue: FundWorkQueue, summary: SyncRunSummary) -> None:
        while True:
            claimed = queue.claim()
            if claimed is None:
                return
            index, fund_id = claimed
            bg_logger.debug(f"Worker {worker_id} claimed fund {fund_id} (index {index})")

            try:
                result = await self.sync_fund(fund_id, worker_id)
            except Exception as e:
                bg_logger.error(f"Error syncing fund {fund_id}: {type(e).__name__}: {e}")
                self._emit(worker_id, fund_id, SyncPhase.ERRORED)
                result = FundSyncResult(fund_id, SyncOutcome.ERRORED, error=str(e))

            summary.record(result)

            # Delay between funds (non-blocking)
            if self.fund_delay and queue.remaining:
                await asyncio.sleep(self.fund_delay)

    async def run(self, fund_ids: Iterable[int], workers: int = 1, start_index: int = 0) -> SyncRunSummary:
        """Synchronize a list of funds with `workers` concurrent workers."""
        queue = FundWorkQueue(fund_ids, start_index=start_index)
        summary = SyncRunSummary(total_funds=queue.remaining)
        workers = max(1, workers)

        log_background_start("Fund period sync", f"{summary.total_funds} funds, {workers} workers")
        if self.reporter is not None:
            self.reporter.run_started(summary.total_funds)

        await asyncio.gather(*(self._worker(worker_id, queue, summary) for worker_id in range(workers)))

        if self.reporter is not None:
            self.reporter.run_finished(summary.as_dict())
        log_background_complete(
            "Fund period sync",
            f"{summary.new} new, {summary.updated} updated, {summary.skipped} skipped, "
            f"{summary.errored} errored, {summary.new_points} new data points"
        )
        return summary


def build_coordinator(
    settings: Settings,
    store: FundStore,
    http_client: httpx.AsyncClient,
    reporter: ProgressReporter | None = None,
) -> SyncCoordinator:
    """Wire a coordinator from settings."""
    client = FundGuideClient(
        http_client,
        base_url=settings.upstream_base_url,
        tz=settings.series_timezone
    )
    fetcher = RetryingFetcher(RetryPolicy(
        max_retries=settings.max_retries,
        base_delay=settings.initial_retry_delay
    ))
    return SyncCoordinator(
        client=client,
        store=store,
        fetcher=fetcher,
        throttle=RequestThrottle(settings.request_delay),
        floor_year=settings.floor_year,
        window_end=settings.window_end,
        reporter=reporter,
        fund_delay=settings.fund_delay,
    )
