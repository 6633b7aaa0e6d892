"""Execution simulation against a depth-limited order book.

A simulated taker fill is priced in three layers:
- slippage: walking successive book levels gives a size-weighted price
- latency: a fixed cost plus a normally distributed adverse selection drift
  between the quote and the (delayed) fill
- fees: taker fee in basis points of the filled notional

Thin books are a normal market condition, so an empty side or a zero fill
returns None instead of raising.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import numpy as np
import structlog

from polyshark.core.config import ExecutionConfig
from polyshark.core.models import (
    ONE, ZERO, ExecutionResult, OrderBook, Side, to_decimal
)

logger = structlog.get_logger(__name__)

BPS_DIVISOR = Decimal("10000")

# Price cost of latency: one basis point per 100 ms of delay
LATENCY_COST_PER_MS = Decimal("0.000001")


@dataclass(frozen=True)
class FeeSchedule:
    """Taker fee schedule.

    Attributes:
        taker_fee_bps: Fee in basis points of notional (200 = 2%)
    """
    taker_fee_bps: int = 200

    @property
    def rate(self) -> Decimal:
        return Decimal(self.taker_fee_bps) / BPS_DIVISOR

    def fee_for(self, notional: Decimal) -> Decimal:
        """Fee owed on a filled notional."""
        return notional * Decimal(self.taker_fee_bps) / BPS_DIVISOR


@dataclass
class LatencyModel:
    """Price drift between quote and fill.

    offset = base_latency_cost + N(0, adverse_selection_std)

    Attributes:
        base_ms: Simulated network delay in milliseconds
        adverse_selection_std: Std dev of the drift, in price units
        rng: numpy Generator; seed it for reproducible draws
    """
    base_ms: int = 50
    adverse_selection_std: float = 0.001
    rng: np.random.Generator = field(default_factory=np.random.default_rng)

    @classmethod
    def seeded(cls, seed: int, base_ms: int = 50, adverse_selection_std: float = 0.001) -> "LatencyModel":
        """Deterministic model for tests and replays."""
        return cls(
            base_ms=base_ms,
            adverse_selection_std=adverse_selection_std,
            rng=np.random.default_rng(seed),
        )

    @property
    def base_latency_cost(self) -> Decimal:
        return Decimal(self.base_ms) * LATENCY_COST_PER_MS

    def draw_adverse_selection(self) -> Decimal:
        """One draw from N(0, adverse_selection_std)."""
        if self.adverse_selection_std <= 0:
            return ZERO
        return Decimal(str(float(self.rng.normal(0.0, self.adverse_selection_std))))

    def sample_offset(self) -> Decimal:
        return self.base_latency_cost + self.draw_adverse_selection()


def simulate_fill(
    book: OrderBook,
    requested_size: Decimal,
    side: Side,
    fee_schedule: FeeSchedule,
    latency_model: LatencyModel,
) -> Optional[ExecutionResult]:
    """
    Simulate a taker order walking one side of the book.

    Args:
        book: Order book for the token being traded
        requested_size: Shares wanted
        side: BUY consumes asks, SELL consumes bids
        fee_schedule: Taker fee schedule
        latency_model: Latency and adverse selection model

    Returns:
        ExecutionResult with filled_size <= requested_size, or None when
        nothing could be filled
    """
    requested_size = to_decimal(requested_size)
    levels = book.levels_for(side)

    if requested_size <= 0 or not levels:
        return None

    offset = latency_model.sample_offset()

    remaining = requested_size
    filled_size = ZERO
    gross = ZERO
    for level in levels:
        if remaining <= 0:
            break
        take = min(level.size, remaining)
        if take <= 0:
            continue
        filled_size += take
        gross += take * level.price
        remaining -= take

    if filled_size == 0:
        return None

    weighted_price = gross / filled_size

    # Latency works against the taker on either side
    if side == Side.BUY:
        execution_price = weighted_price + offset
    else:
        execution_price = weighted_price - offset
    execution_price = min(max(execution_price, ZERO), ONE)

    notional = filled_size * execution_price
    fee = fee_schedule.fee_for(notional)

    return ExecutionResult(
        token_id=book.token_id,
        side=side,
        requested_size=requested_size,
        filled_size=filled_size,
        execution_price=execution_price,
        fee_paid=fee,
        total_cost=notional + fee,
        weighted_price=weighted_price,
        latency_offset=offset,
    )


class ExecutionSimulator:
    """
    Stateless fill simulator bound to a default fee schedule and latency model.

    Fill counters are kept for reporting only; they never influence pricing.
    """

    def __init__(
        self,
        fee_schedule: Optional[FeeSchedule] = None,
        latency_model: Optional[LatencyModel] = None,
    ):
        self.fee_schedule = fee_schedule or FeeSchedule()
        self.latency_model = latency_model or LatencyModel()

        self.fills = 0
        self.partial_fills = 0
        self.no_fills = 0

    @classmethod
    def from_config(cls, config: ExecutionConfig) -> "ExecutionSimulator":
        rng = np.random.default_rng(config.random_seed)
        return cls(
            fee_schedule=FeeSchedule(taker_fee_bps=config.taker_fee_bps),
            latency_model=LatencyModel(
                base_ms=config.latency_base_ms,
                adverse_selection_std=config.adverse_selection_std,
                rng=rng,
            ),
        )

    def execute(
        self,
        book: OrderBook,
        requested_size: Decimal,
        side: Side,
        fee_schedule: Optional[FeeSchedule] = None,
        latency_model: Optional[LatencyModel] = None,
    ) -> Optional[ExecutionResult]:
        """Simulate a fill, falling back to the bound fee and latency models."""
        result = simulate_fill(
            book,
            requested_size,
            side,
            fee_schedule or self.fee_schedule,
            latency_model or self.latency_model,
        )

        if result is None:
            self.no_fills += 1
            logger.debug(
                "simulator.no_fill",
                token_id=book.token_id,
                side=side.value,
                requested=str(requested_size),
            )
            return None

        self.fills += 1
        if result.is_partial:
            self.partial_fills += 1
            logger.info(
                "simulator.partial_fill",
                token_id=book.token_id,
                requested=str(result.requested_size),
                filled=str(result.filled_size),
            )
        return result

    def get_stats(self) -> Dict[str, Any]:
        return {
            "fills": self.fills,
            "partial_fills": self.partial_fills,
            "no_fills": self.no_fills,
            "taker_fee_bps": self.fee_schedule.taker_fee_bps,
            "latency_base_ms": self.latency_model.base_ms,
        }
