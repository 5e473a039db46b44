"""
Thread-safe progress tracking for synchronization runs.

The coordinator pushes WorkerEvents; the reporter keeps the latest state per
worker and renders it to the log at a bounded rate. Nothing here feeds back
into control flow.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from fundperiods.core.logging_config import get_main_logger


class SyncPhase(str, Enum):
    """Phases a worker goes through for one fund."""
    FETCHING_SERIES = "fetching_series"
    FETCHING_PERIODS = "fetching_periods"
    DONE = "done"
    SKIPPED = "skipped"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncPhase.DONE, SyncPhase.SKIPPED, SyncPhase.ERRORED)


@dataclass(frozen=True)
class WorkerEvent:
    """State of one worker at a point in time."""
    worker_id: int
    fund_id: int
    phase: SyncPhase
    phase_progress: int = 0
    phase_total: int = 0
    is_update: bool = False


class ProgressReporter:
    """
    Renders worker progress to a logger, at most once per `min_interval` seconds.

    Terminal phases (done/skipped/errored) are always rendered so that every
    finished fund shows up in the log.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self._logger = logger or get_main_logger()
        self._clock = clock
        self._lock = threading.RLock()

        self._workers: Dict[int, WorkerEvent] = {}
        self._total_funds = 0
        self._funds_finished = 0
        self._is_running = False
        self._started_at: Optional[str] = None
        self._finished_at: Optional[str] = None
        self._summary: Optional[Dict[str, Any]] = None
        self._last_render: Optional[float] = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._is_running

    def run_started(self, total_funds: int) -> None:
        """Reset state for a new run."""
        with self._lock:
            self._workers.clear()
            self._total_funds = total_funds
            self._funds_finished = 0
            self._is_running = True
            self._started_at = datetime.now().isoformat()
            self._finished_at = None
            self._summary = None
            self._last_render = None
        self._logger.info(f"Synchronizing {total_funds} funds")

    def handle(self, event: WorkerEvent) -> None:
        """Record a worker event; render if due."""
        with self._lock:
            self._workers[event.worker_id] = event
            if event.phase.is_terminal:
                self._funds_finished += 1

            now = self._clock()
            due = self._last_render is None or now - self._last_render >= self.min_interval
            if not (due or event.phase.is_terminal):
                return
            self._last_render = now
            line = self.render()

        self._logger.info(line)

    def run_finished(self, summary: Dict[str, Any]) -> None:
        with self._lock:
            self._is_running = False
            self._finished_at = datetime.now().isoformat()
            self._summary = dict(summary)
        self._logger.info(
            f"Done: {summary.get('new', 0)} new, {summary.get('updated', 0)} updated, "
            f"{summary.get('skipped', 0)} skipped, {summary.get('errored', 0)} errored, "
            f"{summary.get('new_points', 0)} new data points"
        )

    def render(self) -> str:
        """Human-readable one-line view of all workers."""
        with self._lock:
            parts = [f"[{self._funds_finished}/{self._total_funds}]"]
            for worker_id in sorted(self._workers):
                event = self._workers[worker_id]
                part = f"w{worker_id}: fund {event.fund_id} {event.phase.value}"
                if event.phase_total:
                    part += f" {event.phase_progress}/{event.phase_total}"
                if event.is_update:
                    part += " (update)"
                parts.append(part)
            return " | ".join(parts)

    def get_status_dict(self) -> Dict[str, Any]:
        """Snapshot for the status API."""
        with self._lock:
            progress = self._funds_finished / self._total_funds if self._total_funds else 0.0
            return {
                "is_syncing": self._is_running,
                "started_at": self._started_at,
                "finished_at": self._finished_at,
                "total_funds": self._total_funds,
                "funds_finished": self._funds_finished,
                "progress": min(1.0, progress),
                "workers": [
                    {**asdict(event), "phase": event.phase.value}
                    for _, event in sorted(self._workers.items())
                ],
                "summary": self._summary,
            }
