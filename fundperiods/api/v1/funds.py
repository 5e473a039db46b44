"""
Fund-related API endpoints.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Dict, List, Optional

from fundperiods.core.deps import get_store
from fundperiods.services.export import fund_period_arrays, fund_statistics
from fundperiods.services.store import FundStore

router = APIRouter(prefix="/funds", tags=["funds"])


class FundItem(BaseModel):
    """Stored fund metadata."""
    id: int
    name: Optional[str] = None
    source_url: Optional[str] = None


class FundListResponse(BaseModel):
    funds: List[FundItem]
    count: int


class PeriodItem(BaseModel):
    start: str
    end: str
    value: float


class FundPeriodsResponse(BaseModel):
    """Period arrays keyed by period type (1-year, 5-year, 10-year)."""
    fund_id: int
    periods: Dict[str, List[PeriodItem]]


class PeriodStatistics(BaseModel):
    count: int
    average: Optional[float] = None
    median: Optional[float] = None
    std: Optional[float] = None


class FundStatisticsResponse(BaseModel):
    fund_id: int
    statistics: Dict[str, PeriodStatistics]


@router.get("", response_model=FundListResponse)
async def list_funds(store: FundStore = Depends(get_store)):
    """
    Get all synchronized funds.

    Returns:
        Funds ordered by id
    """
    funds = await store.list_funds()
    return FundListResponse(
        funds=[FundItem(id=f.id, name=f.name, source_url=f.source_url) for f in funds],
        count=len(funds)
    )


@router.get("/{fund_id}/periods", response_model=FundPeriodsResponse)
async def get_fund_periods(fund_id: int, store: FundStore = Depends(get_store)):
    """
    Get stored rolling-period returns for a fund.

    Args:
        fund_id: Upstream fund id (orderbook id)

    Returns:
        Period arrays with start/end month and value
    """
    periods = await fund_period_arrays(store, fund_id)
    return FundPeriodsResponse(fund_id=fund_id, periods=periods)


@router.get("/{fund_id}/statistics", response_model=FundStatisticsResponse)
async def get_fund_statistics(fund_id: int, store: FundStore = Depends(get_store)):
    """
    Get count, average, median and standard deviation per period type.

    Args:
        fund_id: Upstream fund id (orderbook id)
    """
    statistics = await fund_statistics(store, fund_id)
    return FundStatisticsResponse(fund_id=fund_id, statistics=statistics)
