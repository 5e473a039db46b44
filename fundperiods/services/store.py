"""
Persistence for funds and period data points.

Insertion of a data point whose (fund_id, period_type, start_date) already
exists is a silent no-op: the first recorded value wins. Concurrent workers and
separate processes sharing the database rely on this to converge.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional, Set

from sqlalchemy import select, func, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fundperiods.db.models import Fund, DataPoint
from .periods import PeriodType


def _dialect_insert(dialect_name: str):
    """Return the dialect's INSERT construct supporting ON CONFLICT, or None."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


class FundStore:
    """Idempotent store for Fund and DataPoint rows."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        self._insert = _dialect_insert(engine.dialect.name)

    async def upsert_fund(self, fund_id: int, name: Optional[str], source_url: Optional[str]) -> None:
        """Insert the fund, or refresh its name, source URL and updated_at."""
        now = datetime.utcnow()
        async with self._session() as session:
            if self._insert is not None:
                stmt = self._insert(Fund).values(
                    id=fund_id,
                    name=name,
                    source_url=source_url,
                    created_at=now,
                    updated_at=now
                ).on_conflict_do_update(
                    index_elements=[Fund.id],
                    set_={
                        "name": name,
                        "source_url": source_url,
                        "updated_at": now
                    }
                )
                await session.execute(stmt)
            else:
                record = await session.get(Fund, fund_id)
                if record:
                    record.name = name
                    record.source_url = source_url
                    record.updated_at = now
                else:
                    session.add(Fund(id=fund_id, name=name, source_url=source_url, created_at=now, updated_at=now))
            await session.commit()

    async def insert_data_point_if_absent(
        self,
        fund_id: int,
        period_type: PeriodType,
        start_date: date,
        end_date: date,
        value: float
    ) -> bool:
        """
        Store a period value unless the key already exists.

        Returns:
            True if a row was written, False if the key was already present
        """
        values = dict(
            fund_id=fund_id,
            period_type=PeriodType(period_type).value,
            start_date=start_date,
            end_date=end_date,
            value=float(value),
            created_at=datetime.utcnow()
        )
        async with self._session() as session:
            if self._insert is not None:
                stmt = self._insert(DataPoint).values(**values).on_conflict_do_nothing(
                    index_elements=["fund_id", "period_type", "start_date"]
                )
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount > 0

            session.add(DataPoint(**values))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
            return True

    async def existing_start_dates(self, fund_id: int, period_type: PeriodType) -> Set[date]:
        """Start dates already stored for a fund and period type."""
        async with self._session() as session:
            stmt = select(DataPoint.start_date).where(
                and_(
                    DataPoint.fund_id == fund_id,
                    DataPoint.period_type == PeriodType(period_type).value
                )
            )
            result = await session.execute(stmt)
            return set(result.scalars().all())

    async def get_fund(self, fund_id: int) -> Optional[Fund]:
        async with self._session() as session:
            return await session.get(Fund, fund_id)

    async def list_funds(self) -> List[Fund]:
        async with self._session() as session:
            result = await session.execute(select(Fund).order_by(Fund.id))
            return list(result.scalars().all())

    async def all_fund_ids(self) -> List[int]:
        async with self._session() as session:
            result = await session.execute(select(Fund.id).order_by(Fund.id))
            return list(result.scalars().all())

    async def get_data_points(self, fund_id: int, period_type: PeriodType) -> List[DataPoint]:
        """Stored periods for a fund and period type, oldest first."""
        async with self._session() as session:
            stmt = select(DataPoint).where(
                and_(
                    DataPoint.fund_id == fund_id,
                    DataPoint.period_type == PeriodType(period_type).value
                )
            ).order_by(DataPoint.start_date)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_latest_data_point(self, fund_id: int, period_type: PeriodType) -> Optional[DataPoint]:
        async with self._session() as session:
            stmt = select(DataPoint).where(
                and_(
                    DataPoint.fund_id == fund_id,
                    DataPoint.period_type == PeriodType(period_type).value
                )
            ).order_by(DataPoint.start_date.desc()).limit(1)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def count_data_points(self, fund_id: int, period_type: PeriodType | None = None) -> int:
        """Number of stored periods for a fund, optionally for one period type."""
        async with self._session() as session:
            stmt = select(func.count()).select_from(DataPoint).where(DataPoint.fund_id == fund_id)
            if period_type is not None:
                stmt = stmt.where(DataPoint.period_type == PeriodType(period_type).value)
            result = await session.execute(stmt)
            return result.scalar_one()

    async def count_funds_with_data(self) -> int:
        async with self._session() as session:
            result = await session.execute(select(func.count(func.distinct(DataPoint.fund_id))))
            return result.scalar_one()
