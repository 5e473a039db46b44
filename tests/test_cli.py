import asyncio
import json
from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from fundperiods.cli import app, load_fund_ids
from fundperiods.db.database import create_engine, init_db
from fundperiods.services.fetcher import FetchError
from fundperiods.services.periods import PeriodType
from fundperiods.services.store import FundStore
from fundperiods.services.sync import FundSyncResult, SyncOutcome, SyncRunSummary

runner = CliRunner()


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch("fundperiods.cli.setup_logging") as mock_setup:
        yield mock_setup


def _summary() -> SyncRunSummary:
    summary = SyncRunSummary(total_funds=3)
    summary.record(FundSyncResult(1, SyncOutcome.NEW, new_points=120))
    summary.record(FundSyncResult(2, SyncOutcome.SKIPPED))
    summary.record(FundSyncResult(3, SyncOutcome.ERRORED, error="HTTP 404"))
    return summary


def test_sync_missing_fund_list_exits_with_error(tmp_path):
    result = runner.invoke(app, ["sync", str(tmp_path / "missing.json")])

    assert result.exit_code == 1


def test_sync_rejects_malformed_fund_list(tmp_path):
    fund_list = tmp_path / "funds.json"
    fund_list.write_text('{"ids": [1, 2]}', encoding="utf-8")

    result = runner.invoke(app, ["sync", str(fund_list)])

    assert result.exit_code == 1


def test_sync_prints_summary(tmp_path):
    fund_list = tmp_path / "funds.json"
    fund_list.write_text(json.dumps([1, 2, 3]), encoding="utf-8")

    with patch("fundperiods.cli._run_sync", new=AsyncMock(return_value=_summary())) as mock_run:
        result = runner.invoke(app, [
            "sync", str(fund_list),
            "--floor-year", "2000",
            "--end-date", "2020-06-30",
            "--workers", "4",
            "--start-index", "1",
            "--database-url", f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}",
        ])

    assert result.exit_code == 0, result.output
    assert "Funds: 3/3 processed - 1 new, 0 updated, 1 skipped, 1 errored" in result.output
    assert "New data points: 120" in result.output

    run_settings, fund_ids = mock_run.await_args.args
    assert fund_ids == [1, 2, 3]
    assert mock_run.await_args.kwargs["start_index"] == 1
    assert run_settings.floor_year == 2000
    assert run_settings.window_end == date(2020, 6, 30)
    assert run_settings.workers == 4
    assert run_settings.database_url.endswith("db.sqlite")


def test_list_funds_writes_json(tmp_path):
    output = tmp_path / "lists" / "fund_list.json"

    with patch("fundperiods.cli._list_fund_ids", new=AsyncMock(return_value=[5, 3, 9])):
        result = runner.invoke(app, ["list-funds", str(output), "--batch-size", "50"])

    assert result.exit_code == 0, result.output
    assert "Total fund count: 3" in result.output
    assert json.loads(output.read_text(encoding="utf-8")) == [5, 3, 9]


def test_list_funds_upstream_failure_exits_with_error(tmp_path):
    failing = AsyncMock(side_effect=FetchError("HTTP 503", transient=True, status_code=503))

    with patch("fundperiods.cli._list_fund_ids", new=failing):
        result = runner.invoke(app, ["list-funds", str(tmp_path / "out.json")])

    assert result.exit_code == 1
    assert not (tmp_path / "out.json").exists()


def test_export_writes_fund_files(tmp_path):
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'funds.db'}"

    async def seed():
        engine = create_engine(database_url)
        try:
            await init_db(engine)
            store = FundStore(engine)
            await store.upsert_fund(42, "Export Fund", None)
            await store.insert_data_point_if_absent(
                42, PeriodType.ONE_YEAR, date(2012, 1, 1), date(2013, 1, 1), 17.5
            )
        finally:
            await engine.dispose()

    asyncio.run(seed())
    output_dir = tmp_path / "export"

    result = runner.invoke(app, ["export", str(output_dir), "--database-url", database_url])

    assert result.exit_code == 0, result.output
    assert "Exported 1 fund files" in result.output
    assert "Total data points: 1" in result.output
    exported = json.loads((output_dir / "42.json").read_text(encoding="utf-8"))
    assert exported["1-year"] == [{"start": "2012-01", "end": "2013-01", "value": 17.5}]


def test_init_db_creates_database(tmp_path):
    db_path = tmp_path / "nested" / "funds.db"

    result = runner.invoke(app, ["init-db", "--database-url", f"sqlite+aiosqlite:///{db_path}"])

    assert result.exit_code == 0, result.output
    assert "Database initialized" in result.output
    assert db_path.exists()


def test_load_fund_ids(tmp_path):
    path = tmp_path / "ids.json"
    path.write_text('[1, "2", 3]', encoding="utf-8")
    assert load_fund_ids(path) == [1, 2, 3]

    path.write_text("not json", encoding="utf-8")
    with pytest.raises(ValueError):
        load_fund_ids(path)
