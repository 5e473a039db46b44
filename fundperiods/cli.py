"""Command line interface for fund period synchronization."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import typer

from fundperiods.core.config import Settings, settings
from fundperiods.core.logging_config import setup_logging
from fundperiods.db.database import create_engine, init_db
from fundperiods.services.export import export_data_points
from fundperiods.services.fetcher import (
    FetchError,
    FundGuideClient,
    RequestThrottle,
    RetryingFetcher,
    RetryPolicy,
)
from fundperiods.services.progress import ProgressReporter
from fundperiods.services.store import FundStore
from fundperiods.services.sync import SyncRunSummary, build_coordinator

app = typer.Typer(add_completion=False, help="Rolling-period fund return synchronization")


def _with_overrides(base: Settings, **overrides: Any) -> Settings:
    """Copy settings, replacing the options given on the command line."""
    update = {key: value for key, value in overrides.items() if value is not None}
    return base.model_copy(update=update)


def load_fund_ids(path: Path) -> List[int]:
    """Read a JSON array of fund ids."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array of fund ids")
    return [int(fund_id) for fund_id in data]


async def _run_sync(run_settings: Settings, fund_ids: List[int], start_index: int = 0) -> SyncRunSummary:
    engine = create_engine(run_settings.database_url)
    try:
        await init_db(engine)
        store = FundStore(engine)
        async with httpx.AsyncClient(timeout=run_settings.request_timeout) as http_client:
            reporter = ProgressReporter(min_interval=run_settings.progress_interval)
            coordinator = build_coordinator(run_settings, store, http_client, reporter)
            return await coordinator.run(fund_ids, workers=run_settings.workers, start_index=start_index)
    finally:
        await engine.dispose()


async def _list_fund_ids(run_settings: Settings) -> List[int]:
    async with httpx.AsyncClient(timeout=run_settings.request_timeout) as http_client:
        client = FundGuideClient(
            http_client,
            base_url=run_settings.upstream_base_url,
            tz=run_settings.series_timezone
        )
        fetcher = RetryingFetcher(RetryPolicy(
            max_retries=run_settings.max_retries,
            base_delay=run_settings.initial_retry_delay
        ))
        return await client.list_all_fund_ids(
            fetcher,
            RequestThrottle(run_settings.request_delay),
            batch_size=run_settings.list_batch_size
        )


async def _export(run_settings: Settings, output_dir: Path) -> tuple[int, int]:
    engine = create_engine(run_settings.database_url)
    try:
        await init_db(engine)
        return await export_data_points(FundStore(engine), output_dir)
    finally:
        await engine.dispose()


async def _init_db(run_settings: Settings) -> None:
    engine = create_engine(run_settings.database_url)
    try:
        await init_db(engine)
    finally:
        await engine.dispose()


@app.callback()
def main(
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Directory for log files."),
) -> None:
    setup_logging(log_dir or settings.log_dir)


@app.command()
def sync(
    fund_list: Path = typer.Argument(..., help="JSON file with an array of fund ids."),
    floor_year: Optional[int] = typer.Option(None, help="First year a period may start in."),
    end_date: Optional[datetime] = typer.Option(None, formats=["%Y-%m-%d"], help="End of the history window."),
    request_delay: Optional[float] = typer.Option(None, help="Seconds between upstream requests."),
    fund_delay: Optional[float] = typer.Option(None, help="Seconds between funds, per worker."),
    max_retries: Optional[int] = typer.Option(None, help="Retries for transient upstream failures."),
    retry_delay: Optional[float] = typer.Option(None, help="Initial retry delay in seconds (doubles per retry)."),
    workers: Optional[int] = typer.Option(None, help="Concurrent workers."),
    start_index: int = typer.Option(0, help="Skip the first N ids of the list."),
    database_url: Optional[str] = typer.Option(None, help="SQLAlchemy async database URL."),
) -> None:
    """Fetch missing 1/5/10-year periods for every fund in FUND_LIST."""
    if not fund_list.is_file():
        typer.echo(f"ERROR: fund list not found: {fund_list}", err=True)
        raise typer.Exit(code=1)

    try:
        fund_ids = load_fund_ids(fund_list)
    except ValueError as exc:
        typer.echo(f"ERROR: cannot read fund list {fund_list}: {exc}", err=True)
        raise typer.Exit(code=1)

    run_settings = _with_overrides(
        settings,
        floor_year=floor_year,
        end_date=end_date.date() if end_date else None,
        request_delay=request_delay,
        fund_delay=fund_delay,
        max_retries=max_retries,
        initial_retry_delay=retry_delay,
        workers=workers,
        database_url=database_url,
    )

    summary = asyncio.run(_run_sync(run_settings, fund_ids, start_index=start_index))

    counts: Dict[str, Any] = summary.as_dict()
    typer.echo(
        f"Funds: {counts['processed']}/{counts['total_funds']} processed - "
        f"{counts['new']} new, {counts['updated']} updated, "
        f"{counts['skipped']} skipped, {counts['errored']} errored"
    )
    typer.echo(f"New data points: {counts['new_points']}")


@app.command("list-funds")
def list_funds(
    output: Path = typer.Argument(..., help="Where to write the JSON array of fund ids."),
    batch_size: Optional[int] = typer.Option(None, help="Funds per list request."),
) -> None:
    """Enumerate the full fund catalog."""
    run_settings = _with_overrides(settings, list_batch_size=batch_size)
    try:
        fund_ids = asyncio.run(_list_fund_ids(run_settings))
    except FetchError as exc:
        typer.echo(f"ERROR: fund list request failed: {exc}", err=True)
        raise typer.Exit(code=1)

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(fund_ids, indent=1), encoding="utf-8")
    typer.echo(f"Total fund count: {len(fund_ids)}")


@app.command()
def export(
    output_dir: Path = typer.Argument(..., help="Directory for <fund_id>.json files."),
    database_url: Optional[str] = typer.Option(None, help="SQLAlchemy async database URL."),
) -> None:
    """Write stored period arrays, one JSON file per fund."""
    run_settings = _with_overrides(settings, database_url=database_url)
    fund_count, total_points = asyncio.run(_export(run_settings, output_dir))
    typer.echo(f"Exported {fund_count} fund files to {output_dir}")
    typer.echo(f"Total data points: {total_points}")


@app.command("init-db")
def init_database(
    database_url: Optional[str] = typer.Option(None, help="SQLAlchemy async database URL."),
) -> None:
    """Create the database schema."""
    run_settings = _with_overrides(settings, database_url=database_url)
    asyncio.run(_init_db(run_settings))
    typer.echo("Database initialized")


if __name__ == "__main__":
    app()
