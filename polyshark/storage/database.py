"""Trade journal storage."""
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import Column, DateTime, Integer, Numeric, String, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from polyshark.core.config import database_config
from polyshark.core.models import (
    ExitReason, ExitRecord, Position, PositionStatus, Side
)

Base = declarative_base()


class TradeModel(Base):
    """SQLAlchemy model for closed positions."""
    __tablename__ = 'trades'

    id = Column(String, primary_key=True)
    market_id = Column(String, nullable=False, index=True)
    token_id = Column(String, nullable=False)
    side = Column(String, nullable=False)
    size = Column(Numeric(36, 18), nullable=False)
    entry_price = Column(Numeric(36, 18), nullable=False)
    entry_fee = Column(Numeric(36, 18), default=0)
    entry_spread = Column(Numeric(36, 18), nullable=False)
    entry_time = Column(DateTime(timezone=True), nullable=False)
    exit_price = Column(Numeric(36, 18), nullable=False)
    exit_fee = Column(Numeric(36, 18), default=0)
    exit_reason = Column(String, nullable=False)
    realized_pnl = Column(Numeric(36, 18), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=False)


class DailyStatsModel(Base):
    """SQLAlchemy model for daily statistics."""
    __tablename__ = 'daily_stats'

    date = Column(String, primary_key=True)  # YYYY-MM-DD
    total_pnl = Column(Numeric(36, 18), default=0)
    trade_count = Column(Integer, default=0)
    win_count = Column(Integer, default=0)
    loss_count = Column(Integer, default=0)
    spent = Column(Numeric(36, 18), default=0)


class Database:
    """Async trade journal."""

    def __init__(self, database_url: Optional[str] = None):
        # Convert SQLite URL to async version if needed
        db_url = database_url or database_config.database_url
        if db_url.startswith('sqlite:///') and not db_url.startswith('sqlite+aiosqlite:///'):
            db_url = db_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        engine_kwargs = {"echo": False}
        if ":memory:" in db_url:
            # One shared connection so every session sees the same in-memory DB
            engine_kwargs.update(
                poolclass=StaticPool, connect_args={"check_same_thread": False}
            )

        self.url = db_url
        self.engine: AsyncEngine = create_async_engine(db_url, **engine_kwargs)
        self.session_maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def initialize(self):
        """Create tables, and the database directory for file-backed SQLite."""
        if self.url.startswith("sqlite") and ":memory:" not in self.url:
            Path(self.url.split(":///", 1)[1]).parent.mkdir(parents=True, exist_ok=True)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()

    # Trade operations
    async def save_exit(self, record: ExitRecord):
        """Journal a closed position. Re-saving the same position is a no-op."""
        position = record.position
        async with self.session_maker() as session:
            existing = await session.get(TradeModel, position.id)
            if existing is not None:
                return

            session.add(TradeModel(
                id=position.id,
                market_id=position.market_id,
                token_id=position.token_id,
                side=position.side.value,
                size=position.size,
                entry_price=position.entry_price,
                entry_fee=position.entry_fee,
                entry_spread=position.entry_spread,
                entry_time=position.entry_time,
                exit_price=record.exit_price,
                exit_fee=record.exit_fee,
                exit_reason=record.reason.value,
                realized_pnl=record.pnl,
                closed_at=record.closed_at,
            ))
            await session.commit()

    async def get_trades(
        self,
        market_id: Optional[str] = None,
        limit: int = 100
    ) -> List[ExitRecord]:
        """Most recent closed trades, newest first."""
        async with self.session_maker() as session:
            query = select(TradeModel).order_by(TradeModel.closed_at.desc()).limit(limit)

            if market_id:
                query = query.where(TradeModel.market_id == market_id)

            result = await session.execute(query)
            return [self._exit_from_model(t) for t in result.scalars().all()]

    async def count_trades(self) -> int:
        async with self.session_maker() as session:
            result = await session.execute(select(func.count()).select_from(TradeModel))
            return result.scalar_one()

    # Daily statistics
    async def save_daily_stats(
        self,
        date: str,
        total_pnl: Decimal,
        trade_count: int,
        win_count: int,
        spent: Decimal,
    ):
        """Insert or overwrite one day's summary."""
        async with self.session_maker() as session:
            row = await session.get(DailyStatsModel, date)
            if row is None:
                row = DailyStatsModel(date=date)
                session.add(row)
            row.total_pnl = total_pnl
            row.trade_count = trade_count
            row.win_count = win_count
            row.loss_count = trade_count - win_count
            row.spent = spent
            await session.commit()

    async def get_daily_stats(self, date: str) -> Optional[Dict]:
        async with self.session_maker() as session:
            row = await session.get(DailyStatsModel, date)
            if row is None:
                return None
            return {
                "date": row.date,
                "total_pnl": row.total_pnl,
                "trade_count": row.trade_count,
                "win_count": row.win_count,
                "loss_count": row.loss_count,
                "spent": row.spent,
            }

    # Helpers
    def _exit_from_model(self, model: TradeModel) -> ExitRecord:
        """Convert DB model to ExitRecord."""
        position = Position(
            id=model.id,
            market_id=model.market_id,
            token_id=model.token_id,
            side=Side(model.side),
            size=model.size,
            entry_price=model.entry_price,
            entry_fee=model.entry_fee or Decimal("0"),
            entry_spread=model.entry_spread,
            entry_time=model.entry_time,
            status=PositionStatus.CLOSED,
        )
        return ExitRecord(
            position=position,
            reason=ExitReason(model.exit_reason),
            exit_price=model.exit_price,
            exit_fee=model.exit_fee or Decimal("0"),
            pnl=model.realized_pnl,
            closed_at=model.closed_at,
        )
