"""Unit tests for the risk gate."""
import threading
from decimal import Decimal

from polyshark.core.config import RiskConfig
from polyshark.risk import RiskCheck, RiskManager, create_risk_manager


def config_with(**overrides) -> RiskConfig:
    values = dict(
        max_drawdown=0.5,
        max_daily_loss=50.0,
        max_consecutive_losses=5,
        volatility_threshold=0.5,
        min_liquidity=100.0,
        max_position_size=100.0,
        initial_balance=100.0,
    )
    values.update(overrides)
    return RiskConfig(**values)


# =============================================================================
# Halt Condition Tests
# =============================================================================

class TestShouldHalt:
    def test_fresh_manager_does_not_halt(self, risk_manager):
        assert risk_manager.should_halt() == (False, None)

    def test_drawdown_halts(self, risk_manager):
        risk_manager.record_trade(Decimal("-11"))

        halted, reason = risk_manager.should_halt()

        assert halted
        assert "drawdown" in reason.lower()

    def test_drawdown_at_limit_does_not_halt(self, risk_manager):
        risk_manager.record_trade(Decimal("-10"))

        assert risk_manager.should_halt() == (False, None)

    def test_consecutive_losses_halt(self, risk_manager):
        for _ in range(3):
            risk_manager.record_trade(Decimal("-1"))

        halted, reason = risk_manager.should_halt()

        assert halted
        assert "consecutive" in reason.lower()

    def test_gain_resets_loss_streak(self, risk_manager):
        risk_manager.record_trade(Decimal("-1"))
        risk_manager.record_trade(Decimal("-1"))
        risk_manager.record_trade(Decimal("2"))
        risk_manager.record_trade(Decimal("-1"))

        assert risk_manager.get_status().consecutive_losses == 1
        assert not risk_manager.should_halt()[0]

    def test_daily_loss_halts(self):
        manager = RiskManager(config_with(max_daily_loss=5.0))
        manager.record_trade(Decimal("-3"))
        manager.record_trade(Decimal("0.5"))
        manager.record_trade(Decimal("-3"))

        halted, reason = manager.should_halt()

        assert halted
        assert reason.startswith("Daily loss limit hit")

    def test_volatility_halts(self):
        manager = RiskManager(config_with(volatility_threshold=0.01))
        manager.record_trade(Decimal("5"))
        manager.record_trade(Decimal("-5"))

        halted, reason = manager.should_halt()

        assert halted
        assert "volatile" in reason
        assert manager.volatility() > 0.01

    def test_volatility_needs_two_trades(self):
        manager = RiskManager(config_with(volatility_threshold=0.01))
        manager.record_trade(Decimal("5"))

        assert manager.volatility() == 0.0

    def test_circuit_breaker_takes_precedence(self, risk_manager):
        risk_manager.record_trade(Decimal("-20"))
        risk_manager.activate_circuit_breaker("operator pause")

        halted, reason = risk_manager.should_halt()

        assert halted
        assert reason == "Circuit breaker activated: operator pause"

    def test_deactivate_circuit_breaker(self, risk_manager):
        assert risk_manager.deactivate_circuit_breaker() is False

        risk_manager.activate_circuit_breaker("test")
        assert risk_manager.deactivate_circuit_breaker(authorized_by="tests") is True
        assert risk_manager.should_halt() == (False, None)
        assert len(risk_manager.circuit_breaker_history) == 1


# =============================================================================
# Trade Validation Tests
# =============================================================================

class TestValidateTrade:
    def test_valid_trade_passes(self, risk_manager):
        check = risk_manager.validate_trade(Decimal("10"), Decimal("500"))

        assert isinstance(check, RiskCheck)
        assert check.passed
        assert not check.is_rejected

    def test_oversized_trade_rejected(self, risk_manager):
        check = risk_manager.validate_trade(Decimal("150"), Decimal("500"))

        assert check.is_rejected
        assert check.rule_triggered == "max_position_size"
        assert "exceeds max" in check.reason

    def test_thin_liquidity_rejected(self, risk_manager):
        check = risk_manager.validate_trade(Decimal("10"), Decimal("50"))

        assert check.is_rejected
        assert check.rule_triggered == "min_liquidity"

    def test_halt_rejects_otherwise_valid_trade(self, risk_manager):
        risk_manager.activate_circuit_breaker("test")

        check = risk_manager.validate_trade(Decimal("10"), Decimal("500"))

        assert check.is_rejected
        assert check.rule_triggered == "trading_halted"
        assert check.risk_level == "critical"

    def test_size_limit_applies_regardless_of_halt(self, risk_manager):
        risk_manager.activate_circuit_breaker("test")

        check = risk_manager.validate_trade(Decimal("150"), Decimal("500"))

        assert check.rule_triggered == "max_position_size"


# =============================================================================
# State Update Tests
# =============================================================================

class TestRecordTrade:
    def test_balance_and_peak_tracking(self, risk_manager):
        risk_manager.record_trade(Decimal("5"))
        risk_manager.record_trade(Decimal("-2"))

        status = risk_manager.get_status()
        assert status.balance == Decimal("103")
        assert status.peak_balance == Decimal("105")
        assert status.daily_loss == Decimal("2")
        assert status.drawdown == Decimal("2") / Decimal("105")

    def test_break_even_trade_ends_loss_streak(self, risk_manager):
        # max_consecutive_losses is 3
        for pnl in ("-1", "-1", "0", "-1"):
            risk_manager.record_trade(Decimal(pnl))

        status = risk_manager.get_status()
        assert status.consecutive_losses == 1
        assert status.daily_loss == Decimal("3")
        assert risk_manager.should_halt() == (False, None)

    def test_reset_daily_clears_daily_loss_only(self, risk_manager):
        risk_manager.record_trade(Decimal("-2"))
        risk_manager.record_trade(Decimal("-1"))

        risk_manager.reset_daily()

        status = risk_manager.get_status()
        assert status.daily_loss == Decimal("0")
        assert status.consecutive_losses == 2
        assert status.balance == Decimal("97")

    def test_recent_window_is_bounded(self, risk_manager):
        for _ in range(150):
            risk_manager.record_trade(Decimal("0.01"))

        assert risk_manager.get_status().recent_trades == 100

    def test_concurrent_updates_are_not_lost(self):
        manager = RiskManager(config_with())

        def worker():
            for _ in range(100):
                manager.record_trade(Decimal("0.01"))
                manager.should_halt()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert manager.get_status().balance == Decimal("108")


class TestFactory:
    def test_create_risk_manager(self, risk_config):
        manager = create_risk_manager(risk_config)

        assert isinstance(manager, RiskManager)
        assert manager.max_drawdown == Decimal("0.1")
