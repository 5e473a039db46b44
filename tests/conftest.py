import pytest
from typing import AsyncGenerator
from unittest.mock import AsyncMock

from sqlalchemy.ext.asyncio import AsyncEngine

from fundperiods.db.database import create_engine, init_db
from fundperiods.services.fetcher import RequestThrottle, RetryingFetcher, RetryPolicy
from fundperiods.services.store import FundStore
from fundperiods.services.sync import SyncCoordinator

from tests.helpers import FLOOR_YEAR, WINDOW_END, FakeFundGuide


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'funds.db'}"


@pytest.fixture
async def engine(database_url) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def store(engine) -> FundStore:
    return FundStore(engine)


@pytest.fixture
def fake_client() -> FakeFundGuide:
    return FakeFundGuide()


@pytest.fixture
def make_coordinator(store):
    def _make(client, reporter=None, max_retries: int = 0) -> SyncCoordinator:
        return SyncCoordinator(
            client=client,
            store=store,
            fetcher=RetryingFetcher(RetryPolicy(max_retries=max_retries, base_delay=0.01), sleep=AsyncMock()),
            throttle=RequestThrottle(0),
            floor_year=FLOOR_YEAR,
            window_end=WINDOW_END,
            reporter=reporter,
        )
    return _make
