"""Risk gate - the circuit breaker between signals and new positions.

This module owns the running balance, drawdown, daily loss, loss streak and
return volatility of the agent, and decides whether new trades may open.

CRITICAL: Any changes to this file must be reviewed and tested thoroughly.
The halt precedence and the atomicity of record_trade are what keep a losing
streak from turning into a blown allowance.
"""
from collections import deque
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Deque, Dict, Optional, Tuple

import numpy as np
import structlog

from polyshark.core.config import RiskConfig, risk_config
from polyshark.core.models import ZERO, RiskStatus, to_decimal, utc_now
from polyshark.utils.locks import RWLock

logger = structlog.get_logger(__name__)

RECENT_TRADES_WINDOW = 100


@dataclass
class RiskCheck:
    """Result of a risk validation check.

    Attributes:
        passed: Whether the trade passed all risk checks
        reason: Human-readable explanation if check failed
        risk_level: Severity level of the risk assessment
        rule_triggered: Name of the risk rule that triggered (if any)
        metadata: Additional diagnostic information
    """
    passed: bool
    reason: str = ""
    risk_level: str = "normal"
    rule_triggered: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_rejected(self) -> bool:
        return not self.passed

    @classmethod
    def approved(cls, **kwargs) -> "RiskCheck":
        return cls(passed=True, **kwargs)

    @classmethod
    def rejected(cls, reason: str, rule: str, risk_level: str = "warning", **kwargs) -> "RiskCheck":
        return cls(passed=False, reason=reason, risk_level=risk_level, rule_triggered=rule, **kwargs)


@dataclass
class RiskState:
    """Mutable risk state. Only RiskManager writes it, always under its lock."""
    balance: Decimal
    peak_balance: Decimal
    daily_loss: Decimal = ZERO
    consecutive_losses: int = 0
    recent_pnls: Deque[Decimal] = field(
        default_factory=lambda: deque(maxlen=RECENT_TRADES_WINDOW)
    )
    circuit_breaker: bool = False
    circuit_breaker_reason: Optional[str] = None

    def copy(self) -> "RiskState":
        return replace(self, recent_pnls=deque(self.recent_pnls, maxlen=RECENT_TRADES_WINDOW))


class RiskManager:
    """
    Risk gate for new positions.

    Halt conditions, evaluated in fixed precedence (first match reported):
    1. Circuit breaker flag (operator or automated trigger)
    2. Drawdown from peak balance above max_drawdown
    3. Daily realized loss above max_daily_loss
    4. Consecutive losses at or above max_consecutive_losses
    5. Volatility of per-trade returns above volatility_threshold

    Existing positions are never touched here; a halt only suppresses opens.
    """

    def __init__(self, config: Optional[RiskConfig] = None):
        self.config = config or risk_config

        self.max_drawdown = to_decimal(self.config.max_drawdown)
        self.max_daily_loss = to_decimal(self.config.max_daily_loss)
        self.max_consecutive_losses = self.config.max_consecutive_losses
        self.volatility_threshold = float(self.config.volatility_threshold)
        self.min_liquidity = to_decimal(self.config.min_liquidity)
        self.max_position_size = to_decimal(self.config.max_position_size)

        initial = to_decimal(self.config.initial_balance)
        self._state = RiskState(balance=initial, peak_balance=initial)
        self._lock = RWLock()
        self.circuit_breaker_history = []

    # === Halt Evaluation ===

    def should_halt(self) -> Tuple[bool, Optional[str]]:
        """
        Decide whether new trading must stop.

        Returns:
            (True, reason) for the first halt condition that holds,
            otherwise (False, None)
        """
        with self._lock.read():
            state = self._state.copy()
        reason = self._halt_reason(state)
        return reason is not None, reason

    def validate_trade(self, size: Decimal, liquidity: Decimal) -> RiskCheck:
        """
        Validate a prospective trade leg.

        Size and liquidity limits apply regardless of halt state; a trade
        that passes both is still rejected while trading is halted.

        Args:
            size: USDC value of the leg
            liquidity: USDC depth available in the leg's book

        Returns:
            RiskCheck indicating if the trade may proceed
        """
        size = to_decimal(size)
        liquidity = to_decimal(liquidity)

        if size > self.max_position_size:
            check = RiskCheck.rejected(
                f"Trade size {size} exceeds max {self.max_position_size}",
                rule="max_position_size",
                metadata={"size": str(size), "limit": str(self.max_position_size)},
            )
        elif liquidity < self.min_liquidity:
            check = RiskCheck.rejected(
                f"Insufficient liquidity: {liquidity} < {self.min_liquidity}",
                rule="min_liquidity",
                metadata={"liquidity": str(liquidity), "limit": str(self.min_liquidity)},
            )
        else:
            halted, reason = self.should_halt()
            if halted:
                check = RiskCheck.rejected(
                    f"Trading halted: {reason}",
                    rule="trading_halted",
                    risk_level="critical",
                )
            else:
                return RiskCheck.approved()

        logger.warning(
            "risk_manager.trade_rejected",
            rule=check.rule_triggered,
            reason=check.reason,
        )
        return check

    # === State Updates ===

    def record_trade(self, pnl: Decimal):
        """Apply one realized P&L as a single atomic update."""
        pnl = to_decimal(pnl)

        with self._lock.write():
            state = self._state
            state.balance += pnl
            if state.balance > state.peak_balance:
                state.peak_balance = state.balance
            if pnl < 0:
                state.daily_loss += abs(pnl)
                state.consecutive_losses += 1
            else:
                state.consecutive_losses = 0
            state.recent_pnls.append(pnl)
            snapshot = state.copy()

        logger.info(
            "risk_manager.trade_recorded",
            pnl=str(pnl),
            balance=str(snapshot.balance),
            peak_balance=str(snapshot.peak_balance),
            daily_loss=str(snapshot.daily_loss),
            consecutive_losses=snapshot.consecutive_losses,
        )

    def reset_daily(self):
        """Clear the daily loss counter. Called by the daily scheduler."""
        with self._lock.write():
            previous = self._state.daily_loss
            self._state.daily_loss = ZERO
        logger.info("risk_manager.daily_reset", previous_daily_loss=str(previous))

    def activate_circuit_breaker(self, reason: str):
        """Unconditionally halt new trading until deactivated."""
        with self._lock.write():
            self._state.circuit_breaker = True
            self._state.circuit_breaker_reason = reason
            self.circuit_breaker_history.append(
                {"activated_at": utc_now().isoformat(), "reason": reason}
            )
        logger.critical("risk_manager.circuit_breaker_activated", reason=reason)

    def deactivate_circuit_breaker(self, authorized_by: str = "operator") -> bool:
        """
        Manually clear the circuit breaker.

        Returns:
            True if the breaker was active and has been cleared
        """
        with self._lock.write():
            was_active = self._state.circuit_breaker
            self._state.circuit_breaker = False
            self._state.circuit_breaker_reason = None

        if was_active:
            logger.warning(
                "risk_manager.circuit_breaker_reset",
                authorized_by=authorized_by,
            )
        return was_active

    # === Reporting ===

    def current_drawdown(self) -> Decimal:
        with self._lock.read():
            state = self._state.copy()
        return self._drawdown(state)

    def volatility(self) -> float:
        with self._lock.read():
            state = self._state.copy()
        return self._volatility(state)

    def get_status(self) -> RiskStatus:
        """Consistent copy of the risk state with derived figures."""
        with self._lock.read():
            state = self._state.copy()
        reason = self._halt_reason(state)
        return RiskStatus(
            balance=state.balance,
            peak_balance=state.peak_balance,
            daily_loss=state.daily_loss,
            consecutive_losses=state.consecutive_losses,
            drawdown=self._drawdown(state),
            volatility=self._volatility(state),
            circuit_breaker=state.circuit_breaker,
            halted=reason is not None,
            halt_reason=reason,
            recent_trades=len(state.recent_pnls),
        )

    # === Private Helper Methods ===

    def _halt_reason(self, state: RiskState) -> Optional[str]:
        if state.circuit_breaker:
            return f"Circuit breaker activated: {state.circuit_breaker_reason or 'manual'}"

        drawdown = self._drawdown(state)
        if drawdown > self.max_drawdown:
            return (
                f"Max drawdown exceeded: {drawdown * 100:.2f}% "
                f"(limit {self.max_drawdown * 100:.2f}%)"
            )

        if state.daily_loss > self.max_daily_loss:
            return f"Daily loss limit hit: {state.daily_loss} (limit {self.max_daily_loss})"

        if state.consecutive_losses >= self.max_consecutive_losses:
            return (
                f"Too many consecutive losses: {state.consecutive_losses} "
                f"(limit {self.max_consecutive_losses})"
            )

        volatility = self._volatility(state)
        if volatility > self.volatility_threshold:
            return (
                f"Market too volatile: {volatility:.4f} "
                f"(limit {self.volatility_threshold:.4f})"
            )

        return None

    @staticmethod
    def _drawdown(state: RiskState) -> Decimal:
        """Fractional decline from peak; zero when there is no positive peak."""
        if state.peak_balance <= 0 or state.balance >= state.peak_balance:
            return ZERO
        return (state.peak_balance - state.balance) / state.peak_balance

    @staticmethod
    def _volatility(state: RiskState) -> float:
        """Population std of pnl / balance over the recent window."""
        if len(state.recent_pnls) < 2 or state.balance <= 0:
            return 0.0
        balance = float(state.balance)
        returns = np.array([float(pnl) / balance for pnl in state.recent_pnls])
        return float(np.std(returns))


# === Convenience Functions ===

def create_risk_manager(config: Optional[RiskConfig] = None) -> RiskManager:
    """Factory function to create a configured RiskManager instance."""
    return RiskManager(config)
