"""
Background synchronization runs triggered through the API.

At most one run is active at a time; its progress is exposed through the
run's ProgressReporter.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

import httpx

from fundperiods.core.config import Settings
from fundperiods.core.logging_config import get_background_logger, log_background_error
from .progress import ProgressReporter
from .store import FundStore
from .sync import SyncCoordinator, SyncRunSummary, build_coordinator

bg_logger = get_background_logger()


class BackgroundSync:
    """Owns the background sync task and its reporter."""

    def __init__(
        self,
        settings: Settings,
        store: FundStore,
        http_client: httpx.AsyncClient,
        coordinator_factory: Callable[..., SyncCoordinator] = build_coordinator,
    ) -> None:
        self.settings = settings
        self.store = store
        self.http_client = http_client
        self.reporter = ProgressReporter(min_interval=settings.progress_interval)
        self._coordinator_factory = coordinator_factory
        self._task: asyncio.Task | None = None
        self.last_summary: Optional[SyncRunSummary] = None
        self.last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, fund_ids: List[int]) -> bool:
        """
        Start a run unless one is already active.

        Returns:
            True if a new run was started
        """
        if self.is_running:
            return False

        coordinator = self._coordinator_factory(self.settings, self.store, self.http_client, self.reporter)
        self.last_error = None
        self._task = asyncio.create_task(self._run(coordinator, fund_ids))
        return True

    async def _run(self, coordinator: SyncCoordinator, fund_ids: List[int]) -> None:
        try:
            self.last_summary = await coordinator.run(fund_ids, workers=self.settings.workers)
        except Exception as e:
            log_background_error("Fund period sync", str(e))
            self.last_error = str(e)

    async def wait(self) -> None:
        """Wait for the active run, if any."""
        if self._task is not None:
            await self._task

    async def cancel(self) -> None:
        """Cancel the active run (used on shutdown)."""
        if self.is_running:
            bg_logger.warning("Cancelling background sync")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    def get_status_dict(self) -> Dict[str, Any]:
        status = self.reporter.get_status_dict()
        status["is_syncing"] = self.is_running
        status["error"] = self.last_error
        return status
