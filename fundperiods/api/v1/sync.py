"""
Sync API endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import List, Optional

from fundperiods.core.deps import get_background_sync
from fundperiods.services.background import BackgroundSync

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncRequest(BaseModel):
    """Funds to synchronize."""
    fund_ids: List[int] = Field(min_length=1)


class SyncTriggerResponse(BaseModel):
    started: bool
    fund_count: int


class WorkerStatus(BaseModel):
    worker_id: int
    fund_id: int
    phase: str
    phase_progress: int = 0
    phase_total: int = 0
    is_update: bool = False


class RunSummary(BaseModel):
    total_funds: int
    processed: int
    new: int
    updated: int
    skipped: int
    errored: int
    new_points: int


class SyncStatusResponse(BaseModel):
    """Response model for sync status endpoint."""
    is_syncing: bool
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    total_funds: int = 0
    funds_finished: int = 0
    progress: float = 0.0
    workers: List[WorkerStatus] = []
    summary: Optional[RunSummary] = None
    error: Optional[str] = None


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(background_sync: BackgroundSync = Depends(get_background_sync)):
    """
    Get progress of the current (or last) background sync run.

    Returns:
        SyncStatusResponse with per-worker state and the last run summary.
    """
    return SyncStatusResponse(**background_sync.get_status_dict())


@router.post("", response_model=SyncTriggerResponse, status_code=202)
async def trigger_sync(
    request: SyncRequest,
    background_sync: BackgroundSync = Depends(get_background_sync)
):
    """
    Start a background sync for the given funds.

    Returns 409 if a run is already in progress.
    """
    if not background_sync.trigger(request.fund_ids):
        raise HTTPException(status_code=409, detail="A sync run is already in progress")
    return SyncTriggerResponse(started=True, fund_count=len(request.fund_ids))
