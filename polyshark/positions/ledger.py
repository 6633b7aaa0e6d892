"""Position ledger - owns every simulated position from open to close.

Each position moves Open -> Closed exactly once. Aggregate statistics
(trade_count, win_rate, total_pnl) change only when a position closes, inside
the same write that moves it to the closed set, so a reader never sees a
closed position whose P&L is not yet counted (or counted twice).
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from polyshark.core.config import ExitConfig
from polyshark.core.models import (
    ZERO, ExitReason, ExitRecord, MarketSnapshot, Position, PositionStatus,
    Side, to_decimal, utc_now
)
from polyshark.utils.locks import RWLock

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Consistent point-in-time copy of the ledger."""
    open_positions: List[Position] = field(default_factory=list)
    trade_count: int = 0
    win_count: int = 0
    total_pnl: Decimal = ZERO

    @property
    def win_rate(self) -> float:
        if self.trade_count == 0:
            return 0.0
        return self.win_count / self.trade_count


class PositionLedger:
    """
    Open/closed position book with exit evaluation.

    Exit triggers, first match wins:
    1. TAKE_PROFIT - spread narrowed by more than profit_target_spread
    2. STOP_LOSS - spread widened by more than stop_loss_spread
    3. TIMEOUT - position held for at least position_timeout_secs
    """

    def __init__(
        self,
        profit_target_spread: Decimal = Decimal("0.005"),
        stop_loss_spread: Decimal = Decimal("0.02"),
        position_timeout_secs: int = 3600,
    ):
        self.profit_target_spread = to_decimal(profit_target_spread)
        self.stop_loss_spread = to_decimal(stop_loss_spread)
        self.position_timeout = timedelta(seconds=position_timeout_secs)

        self._lock = RWLock()
        self._open: List[Position] = []
        self._closed: List[ExitRecord] = []
        self._trade_count = 0
        self._win_count = 0
        self._total_pnl = ZERO

    @classmethod
    def from_config(cls, config: ExitConfig) -> "PositionLedger":
        return cls(
            profit_target_spread=to_decimal(config.profit_target_spread),
            stop_loss_spread=to_decimal(config.stop_loss_spread),
            position_timeout_secs=config.position_timeout_secs,
        )

    # === Writes ===

    def open_position(self, position: Position) -> Position:
        """Add a position to the open set. Spend recording is the caller's job."""
        if position.status != PositionStatus.OPEN:
            raise ValueError(f"Cannot open position {position.id} with status {position.status.value}")

        with self._lock.write():
            if any(p.id == position.id for p in self._open):
                raise ValueError(f"Position {position.id} is already open")
            self._open.append(position)

        logger.info(
            "ledger.position_opened",
            position_id=position.id,
            market_id=position.market_id,
            token_id=position.token_id,
            side=position.side.value,
            size=str(position.size),
            entry_price=str(position.entry_price),
            entry_spread=str(position.entry_spread),
        )
        return position

    def check_exits(
        self,
        current_snapshot: Iterable[MarketSnapshot],
        now: Optional[datetime] = None,
        exit_fee_rate: Decimal = ZERO,
    ) -> List[ExitRecord]:
        """
        Close every open position whose exit trigger fires.

        Args:
            current_snapshot: Markets as seen this cycle
            now: Evaluation time (defaults to current UTC time)
            exit_fee_rate: Taker fee rate charged on the exit notional

        Returns:
            ExitRecords for positions closed by this call only
        """
        now = now or utc_now()
        exit_fee_rate = to_decimal(exit_fee_rate)
        markets: Dict[str, MarketSnapshot] = {m.id: m for m in current_snapshot}

        closed_now: List[ExitRecord] = []
        with self._lock.write():
            still_open: List[Position] = []
            for position in self._open:
                decision = self._evaluate(position, markets.get(position.market_id), now)
                if decision is None:
                    still_open.append(position)
                    continue

                reason, exit_price = decision
                record = self._close(position, reason, exit_price, exit_fee_rate, now)
                closed_now.append(record)

            self._open = still_open
            for record in closed_now:
                self._closed.append(record)
                self._trade_count += 1
                if record.is_win:
                    self._win_count += 1
                self._total_pnl += record.pnl

        for record in closed_now:
            logger.info(
                "ledger.position_closed",
                position_id=record.position.id,
                market_id=record.position.market_id,
                reason=record.reason.value,
                exit_price=str(record.exit_price),
                pnl=str(record.pnl),
            )

        return closed_now

    # === Reads ===

    def get_positions(self) -> List[Position]:
        """Copies of all open positions."""
        with self._lock.read():
            return [p.model_copy() for p in self._open]

    def get_closed(self) -> List[ExitRecord]:
        with self._lock.read():
            return list(self._closed)

    def trade_count(self) -> int:
        with self._lock.read():
            return self._trade_count

    def win_rate(self) -> float:
        """Fraction of closed positions with pnl > 0."""
        with self._lock.read():
            if self._trade_count == 0:
                return 0.0
            return self._win_count / self._trade_count

    def total_pnl(self) -> Decimal:
        with self._lock.read():
            return self._total_pnl

    def open_count(self) -> int:
        with self._lock.read():
            return len(self._open)

    def snapshot(self) -> LedgerSnapshot:
        """All read accessors in one consistent copy."""
        with self._lock.read():
            return LedgerSnapshot(
                open_positions=[p.model_copy() for p in self._open],
                trade_count=self._trade_count,
                win_count=self._win_count,
                total_pnl=self._total_pnl,
            )

    # === Private Helper Methods ===

    def _evaluate(
        self,
        position: Position,
        market: Optional[MarketSnapshot],
        now: datetime,
    ) -> Optional[Tuple[ExitReason, Decimal]]:
        """Return (reason, exit mark) if the position should close now."""
        current_price = market.price_for_token(position.token_id) if market else None

        if market is not None and current_price is not None:
            current_spread = market.spread
            if position.entry_spread - current_spread > self.profit_target_spread:
                return ExitReason.TAKE_PROFIT, current_price
            if current_spread - position.entry_spread > self.stop_loss_spread:
                return ExitReason.STOP_LOSS, current_price

        if now - position.entry_time >= self.position_timeout:
            # Without a live price the position is marked flat at entry
            mark = current_price if current_price is not None else position.entry_price
            return ExitReason.TIMEOUT, mark

        return None

    @staticmethod
    def _close(
        position: Position,
        reason: ExitReason,
        exit_price: Decimal,
        exit_fee_rate: Decimal,
        now: datetime,
    ) -> ExitRecord:
        exit_value = position.size * exit_price
        exit_fee = exit_value * exit_fee_rate

        if position.side == Side.BUY:
            pnl = exit_value - position.cost_basis - exit_fee
        else:
            pnl = (position.size * position.entry_price - position.entry_fee) - exit_value - exit_fee

        return ExitRecord(
            position=position.model_copy(update={"status": PositionStatus.CLOSED}),
            reason=reason,
            exit_price=exit_price,
            exit_fee=exit_fee,
            pnl=pnl,
            closed_at=now,
        )
