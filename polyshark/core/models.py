"""Data models for the PolyShark arbitrage agent.

This module defines the structures that flow through one trading cycle:
- Market data: MarketSnapshot, OrderBook, PriceLevel
- Detection and execution: ArbitrageSignal, ExecutionResult
- Position lifecycle: Position, ExitRecord
- Read models: RiskStatus, AgentStats, TradeView

All monetary values and prices use Decimal for precision.
All timestamps are timezone-aware UTC datetime objects.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_decimal(value) -> Decimal:
    """Convert a float/int/str to Decimal without binary float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


ONE = Decimal("1")
ZERO = Decimal("0")


# =============================================================================
# Enums
# =============================================================================

class Side(str, Enum):
    """Trade side - buy or sell outcome tokens."""
    BUY = "buy"
    SELL = "sell"


class ExitReason(str, Enum):
    """Why a position was closed."""
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TIMEOUT = "timeout"


class PositionStatus(str, Enum):
    """Position lifecycle status. CLOSED is terminal."""
    OPEN = "open"
    CLOSED = "closed"


class StrategyMode(str, Enum):
    """Edge requirement tier selected from remaining allowance."""
    CONSERVATIVE = "conservative"   # < 30% allowance left
    NORMAL = "normal"
    AGGRESSIVE = "aggressive"       # > 70% allowance left


# =============================================================================
# Market Data Models
# =============================================================================

class PriceLevel(BaseModel):
    """One price level of an order book side."""
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    price: Decimal = Field(..., ge=0, le=1, description="Outcome token price")
    size: Decimal = Field(..., ge=0, description="Shares available at this price")

    @property
    def notional(self) -> Decimal:
        return self.price * self.size


class OrderBook(BaseModel):
    """Order book for a single outcome token.

    Bids are kept in descending price order and asks in ascending price
    order, so index 0 of each side is the top of book.

    Attributes:
        token_id: CLOB token identifier
        bids: Buy levels, best (highest) first
        asks: Sell levels, best (lowest) first
        timestamp: When the book was fetched
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    token_id: str = Field(..., description="CLOB token ID")
    bids: List[PriceLevel] = Field(default_factory=list, description="Bid levels")
    asks: List[PriceLevel] = Field(default_factory=list, description="Ask levels")
    timestamp: datetime = Field(default_factory=utc_now, description="Fetch time")

    @field_validator("bids")
    @classmethod
    def sort_bids(cls, v: List[PriceLevel]) -> List[PriceLevel]:
        """Bids are ordered best first (highest price)."""
        return sorted(v, key=lambda level: level.price, reverse=True)

    @field_validator("asks")
    @classmethod
    def sort_asks(cls, v: List[PriceLevel]) -> List[PriceLevel]:
        """Asks are ordered best first (lowest price)."""
        return sorted(v, key=lambda level: level.price)

    @property
    def best_bid(self) -> Optional[Decimal]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[Decimal]:
        return self.asks[0].price if self.asks else None

    @property
    def midpoint(self) -> Optional[Decimal]:
        """Mid price, or the single available side if the other is empty."""
        if self.best_bid is not None and self.best_ask is not None:
            return (self.best_bid + self.best_ask) / 2
        if self.best_bid is not None:
            return self.best_bid
        return self.best_ask

    def levels_for(self, side: "Side") -> List[PriceLevel]:
        """Levels a taker on `side` consumes: asks for BUY, bids for SELL."""
        return self.asks if side == Side.BUY else self.bids

    def depth_notional(self, side: Optional["Side"] = None) -> Decimal:
        """Total USDC resting on one side, or both sides if side is None."""
        if side is None:
            levels = self.bids + self.asks
        else:
            levels = self.levels_for(side)
        return sum((level.notional for level in levels), ZERO)


class MarketSnapshot(BaseModel):
    """A binary/multi-outcome market as seen in one cycle.

    Immutable once handed to the core; `with_prices` returns a hydrated copy.

    Attributes:
        id: Market identifier (condition or market id)
        question: Human readable market question
        outcomes: Outcome labels, e.g. ["Yes", "No"]
        outcome_prices: One price per outcome in [0, 1]
        clob_token_ids: One CLOB token per outcome
        liquidity: Reported market liquidity in USDC, when the source has it
    """
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    id: str = Field(..., description="Market ID")
    question: str = Field(default="", description="Market question")
    outcomes: List[str] = Field(default_factory=list, description="Outcome labels")
    outcome_prices: List[Decimal] = Field(default_factory=list, description="Outcome prices")
    clob_token_ids: List[str] = Field(default_factory=list, description="CLOB token IDs")
    liquidity: Optional[Decimal] = Field(default=None, description="Market liquidity")

    @field_validator("outcome_prices")
    @classmethod
    def prices_in_unit_interval(cls, v: List[Decimal]) -> List[Decimal]:
        """Validate every outcome price is a probability."""
        for price in v:
            if price < 0 or price > 1:
                raise ValueError(f"Outcome price {price} outside [0, 1]")
        return v

    @property
    def is_hydrated(self) -> bool:
        """True when there is exactly one price and one token per outcome."""
        return (
            len(self.outcome_prices) > 0
            and len(self.outcome_prices) == len(self.clob_token_ids) == len(self.outcomes)
        )

    @property
    def price_sum(self) -> Decimal:
        return sum(self.outcome_prices, ZERO)

    @property
    def spread(self) -> Decimal:
        """Absolute deviation of the bundle price from $1."""
        return abs(self.price_sum - ONE)

    def price_for_token(self, token_id: str) -> Optional[Decimal]:
        """Current outcome price for a token, None if unknown."""
        try:
            index = self.clob_token_ids.index(token_id)
        except ValueError:
            return None
        if index >= len(self.outcome_prices):
            return None
        return self.outcome_prices[index]

    def with_prices(self, prices: List[Decimal]) -> "MarketSnapshot":
        """Return a copy carrying the given outcome prices."""
        return MarketSnapshot(
            id=self.id,
            question=self.question,
            outcomes=list(self.outcomes),
            outcome_prices=prices,
            clob_token_ids=list(self.clob_token_ids),
            liquidity=self.liquidity,
        )


# =============================================================================
# Signal & Execution Models
# =============================================================================

class ArbitrageSignal(BaseModel):
    """A mispriced bundle detected in one market.

    Attributes:
        market_id: Market the signal refers to
        spread: |sum(prices) - 1|
        edge: Gross profit per bundle before execution costs
        side: BUY when the bundle is cheap, SELL when it is rich
        price_sum: Sum of outcome prices at detection time
        token_ids: Tokens making up the bundle
        prices: Outcome prices at detection time
    """
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    market_id: str = Field(..., description="Market ID")
    spread: Decimal = Field(..., ge=0, description="Absolute bundle mispricing")
    edge: Decimal = Field(..., description="Gross edge per bundle")
    side: Side = Field(..., description="Recommended side")
    price_sum: Decimal = Field(..., description="Sum of outcome prices")
    token_ids: List[str] = Field(default_factory=list, description="Bundle tokens")
    prices: List[Decimal] = Field(default_factory=list, description="Outcome prices")
    detected_at: datetime = Field(default_factory=utc_now, description="Detection time")


class ExecutionResult(BaseModel):
    """Outcome of one simulated taker fill.

    Invariants: filled_size <= requested_size and
    total_cost == filled_size * execution_price + fee_paid.
    """
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    token_id: str = Field(..., description="Filled token")
    side: Side = Field(..., description="Fill side")
    requested_size: Decimal = Field(..., gt=0, description="Shares requested")
    filled_size: Decimal = Field(..., gt=0, description="Shares filled")
    execution_price: Decimal = Field(..., ge=0, description="Price after slippage and latency")
    fee_paid: Decimal = Field(..., ge=0, description="Taker fee")
    total_cost: Decimal = Field(..., description="Notional plus fee")
    weighted_price: Decimal = Field(..., description="Size-weighted book price")
    latency_offset: Decimal = Field(default=ZERO, description="Latency price offset")

    @property
    def notional(self) -> Decimal:
        return self.filled_size * self.execution_price

    @property
    def is_partial(self) -> bool:
        return self.filled_size < self.requested_size


# =============================================================================
# Position Models
# =============================================================================

class Position(BaseModel):
    """A simulated holding of one outcome token.

    Attributes:
        market_id: Market the token belongs to
        token_id: Outcome token held
        side: Side the position was entered on
        size: Shares held (the filled size, never the request)
        entry_price: Execution price at entry
        entry_fee: Taker fee paid at entry
        entry_time: When the position was opened
        entry_spread: |sum(prices) - 1| of the market at entry
        status: OPEN until an exit trigger fires
    """
    model_config = ConfigDict(json_encoders={Decimal: str})

    market_id: str = Field(..., description="Market ID")
    token_id: str = Field(..., description="Token ID")
    side: Side = Field(..., description="Position side")
    size: Decimal = Field(..., gt=0, description="Shares held")
    entry_price: Decimal = Field(..., ge=0, le=1, description="Entry price")
    entry_spread: Decimal = Field(..., ge=0, description="Market spread at entry")
    entry_fee: Decimal = Field(default=ZERO, ge=0, description="Entry fee")
    entry_time: datetime = Field(default_factory=utc_now, description="Open time")
    id: str = Field(default_factory=lambda: str(uuid4()), description="Position ID")
    status: PositionStatus = Field(default=PositionStatus.OPEN, description="Status")

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def cost_basis(self) -> Decimal:
        """Total paid to enter, fee included."""
        return self.size * self.entry_price + self.entry_fee

    @classmethod
    def from_execution(
        cls,
        market_id: str,
        result: ExecutionResult,
        entry_spread: Decimal,
        entry_time: Optional[datetime] = None,
    ) -> "Position":
        """Open a position from a fill, sized by what was actually filled."""
        return cls(
            market_id=market_id,
            token_id=result.token_id,
            side=result.side,
            size=result.filled_size,
            entry_price=result.execution_price,
            entry_fee=result.fee_paid,
            entry_spread=entry_spread,
            entry_time=entry_time or utc_now(),
        )


class ExitRecord(BaseModel):
    """Immutable record of a closed position. pnl is computed exactly once."""
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    position: Position = Field(..., description="Position as it was closed")
    reason: ExitReason = Field(..., description="Exit trigger")
    exit_price: Decimal = Field(..., description="Mark price at exit")
    exit_fee: Decimal = Field(default=ZERO, description="Exit taker fee")
    pnl: Decimal = Field(..., description="Realized P&L")
    closed_at: datetime = Field(default_factory=utc_now, description="Close time")

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    @property
    def holding_secs(self) -> float:
        return (self.closed_at - self.position.entry_time).total_seconds()


# =============================================================================
# Read Models
# =============================================================================

class RiskStatus(BaseModel):
    """Point-in-time copy of the risk gate state."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    balance: Decimal
    peak_balance: Decimal
    daily_loss: Decimal
    consecutive_losses: int
    drawdown: Decimal
    volatility: float
    circuit_breaker: bool
    halted: bool
    halt_reason: Optional[str] = None
    recent_trades: int = 0


class AgentStats(BaseModel):
    """Dashboard statistics projection."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    permission_active: bool
    daily_limit: Decimal
    spent_today: Decimal
    total_trades: int
    win_rate: float = Field(..., description="Win rate in percent")
    total_pnl: Decimal
    open_positions: int


class TradeView(BaseModel):
    """Dashboard row for an open position."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    market_id: str
    token_id: str
    side: Side
    size: Decimal
    entry_price: Decimal
    entry_time: datetime

    @classmethod
    def from_position(cls, position: Position) -> "TradeView":
        return cls(
            market_id=position.market_id,
            token_id=position.token_id,
            side=position.side,
            size=position.size,
            entry_price=position.entry_price,
            entry_time=position.entry_time,
        )
