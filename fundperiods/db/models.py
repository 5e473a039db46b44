from sqlalchemy import Column, String, Integer, Float, Date, DateTime, ForeignKey, UniqueConstraint, Index
from datetime import datetime
from fundperiods.db.database import Base


class Fund(Base):
    """Fund metadata; the id is the upstream orderbook id."""
    __tablename__ = "funds"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(255), nullable=True)
    source_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class DataPoint(Base):
    """Return over one rolling period (1, 5 or 10 years) for a fund."""
    __tablename__ = "data_points"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fund_id = Column(Integer, ForeignKey("funds.id"), nullable=False)
    period_type = Column(String(10), nullable=False)  # 1-year | 5-year | 10-year
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    value = Column(Float, nullable=False)  # Development over the period, in percent
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('fund_id', 'period_type', 'start_date', name='uq_data_point_fund_period_start'),
        Index('ix_data_points_fund_period', 'fund_id', 'period_type'),
        Index('ix_data_points_fund_period_start', 'fund_id', 'period_type', 'start_date'),
    )
