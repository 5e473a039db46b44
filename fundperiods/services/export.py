"""
Hand-off of stored periods to downstream consumers: per-fund period arrays
and basic aggregate statistics.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

import pandas as pd

from fundperiods.core.exceptions import FundNotFoundError
from fundperiods.core.logging_config import get_main_logger
from .periods import PeriodType
from .store import FundStore

logger = get_main_logger()


def aggregate_statistics(values: Iterable[float]) -> Dict[str, Any]:
    """
    Count, average, median and sample standard deviation of period values.

    Fields other than count are None when there are no values (std also when
    there is a single value).
    """
    series = pd.Series(list(values), dtype="float64")
    if series.empty:
        return {"count": 0, "average": None, "median": None, "std": None}

    std = series.std()
    return {
        "count": int(series.count()),
        "average": float(series.mean()),
        "median": float(series.median()),
        "std": None if pd.isna(std) else float(std),
    }


async def fund_period_arrays(store: FundStore, fund_id: int) -> Dict[str, List[Dict[str, Any]]]:
    """
    Stored periods of a fund keyed by period type.

    Returns:
        {"1-year": [{"start": "YYYY-MM", "end": "YYYY-MM", "value": float}], ...}
    """
    if await store.get_fund(fund_id) is None:
        raise FundNotFoundError(fund_id)

    arrays: Dict[str, List[Dict[str, Any]]] = {}
    for period_type in PeriodType:
        points = await store.get_data_points(fund_id, period_type)
        arrays[period_type.value] = [
            {
                "start": point.start_date.strftime("%Y-%m"),
                "end": point.end_date.strftime("%Y-%m"),
                "value": point.value
            }
            for point in points
        ]
    return arrays


async def fund_statistics(store: FundStore, fund_id: int) -> Dict[str, Dict[str, Any]]:
    """Aggregate statistics per period type for one fund."""
    arrays = await fund_period_arrays(store, fund_id)
    return {
        period_type: aggregate_statistics(point["value"] for point in points)
        for period_type, points in arrays.items()
    }


async def export_data_points(store: FundStore, output_dir: str | Path) -> Tuple[int, int]:
    """
    Write one `<fund_id>.json` file of period arrays per fund with data.

    Returns:
        (number of fund files written, total data points exported)
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    fund_count = 0
    total_points = 0
    for fund_id in await store.all_fund_ids():
        arrays = await fund_period_arrays(store, fund_id)
        points = sum(len(values) for values in arrays.values())
        if points == 0:
            continue

        (output_dir / f"{fund_id}.json").write_text(json.dumps(arrays), encoding="utf-8")
        fund_count += 1
        total_points += points

    logger.info(f"Exported {fund_count} fund files to {output_dir} ({total_points} data points)")
    return fund_count, total_points
