"""Pytest fixtures and utilities for the PolyShark test suite."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List

import pytest
import pytest_asyncio

from polyshark.core.config import ExitConfig, RiskConfig
from polyshark.core.models import (
    ArbitrageSignal, ExitReason, ExitRecord, MarketSnapshot, OrderBook,
    Position, PositionStatus, PriceLevel, Side
)
from polyshark.execution.simulator import FeeSchedule, LatencyModel
from polyshark.positions.ledger import PositionLedger
from polyshark.risk.risk_manager import RiskManager
from polyshark.risk.spend_guard import SpendGuard
from polyshark.storage.database import Database


# =============================================================================
# Time Fixtures
# =============================================================================

@pytest.fixture
def t0() -> datetime:
    """Fixed reference time for deterministic exit evaluation."""
    return datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Market Data Fixtures
# =============================================================================

def make_book(token_id: str, asks=(), bids=()) -> OrderBook:
    """Build an order book from (price, size) tuples."""
    return OrderBook(
        token_id=token_id,
        asks=[PriceLevel(price=Decimal(str(p)), size=Decimal(str(s))) for p, s in asks],
        bids=[PriceLevel(price=Decimal(str(p)), size=Decimal(str(s))) for p, s in bids],
    )


def make_market(market_id: str, prices: List[str], token_ids: List[str] = None) -> MarketSnapshot:
    """Build a hydrated binary/multi-outcome market."""
    token_ids = token_ids or [f"{market_id}-tok{i}" for i in range(len(prices))]
    return MarketSnapshot(
        id=market_id,
        question=f"Will {market_id} resolve yes?",
        outcomes=["Yes", "No"] if len(prices) == 2 else [f"Outcome {i}" for i in range(len(prices))],
        outcome_prices=[Decimal(p) for p in prices],
        clob_token_ids=token_ids,
    )


@pytest.fixture
def book_factory():
    return make_book


@pytest.fixture
def market_factory():
    return make_market


@pytest.fixture
def sample_book() -> OrderBook:
    """Two ask levels and two bid levels for token tok-yes."""
    return make_book(
        "tok-yes",
        asks=[("0.41", "200"), ("0.42", "300")],
        bids=[("0.39", "100"), ("0.38", "500")],
    )


@pytest.fixture
def cheap_market() -> MarketSnapshot:
    """Bundle priced at 0.80: a buy signal at any threshold below 0.20."""
    return make_market("mkt-1", ["0.40", "0.40"], ["tok-yes", "tok-no"])


@pytest.fixture
def fair_market() -> MarketSnapshot:
    return make_market("mkt-2", ["0.50", "0.50"], ["tok-a", "tok-b"])


@pytest.fixture
def sample_signal(cheap_market) -> ArbitrageSignal:
    return ArbitrageSignal(
        market_id=cheap_market.id,
        spread=Decimal("0.20"),
        edge=Decimal("0.20"),
        side=Side.BUY,
        price_sum=Decimal("0.80"),
        token_ids=list(cheap_market.clob_token_ids),
        prices=list(cheap_market.outcome_prices),
    )


# =============================================================================
# Execution Fixtures
# =============================================================================

@pytest.fixture
def no_latency() -> LatencyModel:
    """Latency model with zero offset so book prices pass through unchanged."""
    return LatencyModel(base_ms=0, adverse_selection_std=0.0)


@pytest.fixture
def fee_schedule() -> FeeSchedule:
    return FeeSchedule(taker_fee_bps=200)


# =============================================================================
# Position Fixtures
# =============================================================================

@pytest.fixture
def open_position(t0) -> Position:
    """10 shares of tok-yes bought at 0.40 into a bundle with spread 0.20."""
    return Position(
        market_id="mkt-1",
        token_id="tok-yes",
        side=Side.BUY,
        size=Decimal("10"),
        entry_price=Decimal("0.40"),
        entry_spread=Decimal("0.20"),
        entry_fee=Decimal("0.08"),
        entry_time=t0,
    )


@pytest.fixture
def exit_record(open_position, t0) -> ExitRecord:
    return ExitRecord(
        position=open_position.model_copy(update={"status": PositionStatus.CLOSED}),
        reason=ExitReason.TAKE_PROFIT,
        exit_price=Decimal("0.48"),
        exit_fee=Decimal("0.0096"),
        pnl=Decimal("0.7104"),
        closed_at=t0 + timedelta(minutes=5),
    )


@pytest.fixture
def ledger() -> PositionLedger:
    return PositionLedger.from_config(ExitConfig())


# =============================================================================
# Risk & Allowance Fixtures
# =============================================================================

@pytest.fixture
def risk_config() -> RiskConfig:
    return RiskConfig(
        max_drawdown=0.10,
        max_daily_loss=50.0,
        max_consecutive_losses=3,
        volatility_threshold=0.5,
        min_liquidity=100.0,
        max_position_size=100.0,
        initial_balance=100.0,
    )


@pytest.fixture
def risk_manager(risk_config) -> RiskManager:
    return RiskManager(risk_config)


@pytest.fixture
def spend_guard() -> SpendGuard:
    return SpendGuard(daily_limit=Decimal("10"))


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def database():
    """In-memory trade journal."""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.initialize()
    yield db
    await db.close()
