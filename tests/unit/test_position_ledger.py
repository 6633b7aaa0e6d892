"""Unit tests for the position ledger and exit evaluation."""
from datetime import timedelta
from decimal import Decimal

import pytest

from polyshark.core.models import ExitReason, PositionStatus, Side
from polyshark.positions import PositionLedger


FEE_RATE = Decimal("0.02")


@pytest.fixture
def market_at(market_factory):
    """mkt-1 with both outcomes priced at `price`."""
    def build(price: str):
        return market_factory("mkt-1", [price, price], ["tok-yes", "tok-no"])
    return build


# =============================================================================
# Opening Positions
# =============================================================================

class TestOpenPosition:
    def test_open_position_is_tracked(self, ledger, open_position):
        ledger.open_position(open_position)

        assert ledger.open_count() == 1
        assert ledger.get_positions()[0].id == open_position.id

    def test_duplicate_id_rejected(self, ledger, open_position):
        ledger.open_position(open_position)

        with pytest.raises(ValueError):
            ledger.open_position(open_position)
        assert ledger.open_count() == 1

    def test_closed_position_cannot_be_opened(self, ledger, open_position):
        closed = open_position.model_copy(update={"status": PositionStatus.CLOSED})

        with pytest.raises(ValueError):
            ledger.open_position(closed)

    def test_get_positions_returns_copies(self, ledger, open_position):
        ledger.open_position(open_position)

        copy = ledger.get_positions()[0]
        copy.size = Decimal("999")

        assert ledger.get_positions()[0].size == Decimal("10")


# =============================================================================
# Exit Triggers
# =============================================================================

class TestExitTriggers:
    """Entry spread is 0.20; target 0.005, stop 0.02, timeout 1h."""

    def test_take_profit_when_spread_narrows(self, ledger, open_position, market_at, t0):
        ledger.open_position(open_position)

        records = ledger.check_exits([market_at("0.45")], t0 + timedelta(minutes=1), FEE_RATE)

        assert len(records) == 1
        record = records[0]
        assert record.reason == ExitReason.TAKE_PROFIT
        assert record.exit_price == Decimal("0.45")
        assert record.exit_fee == Decimal("0.09")
        # 10 * 0.45 - (10 * 0.40 + 0.08) - 0.09
        assert record.pnl == Decimal("0.33")
        assert record.position.status == PositionStatus.CLOSED

    def test_stop_loss_when_spread_widens(self, ledger, open_position, market_at, t0):
        ledger.open_position(open_position)

        records = ledger.check_exits([market_at("0.35")], t0 + timedelta(minutes=1), FEE_RATE)

        assert records[0].reason == ExitReason.STOP_LOSS
        # 10 * 0.35 - 4.08 - 0.07
        assert records[0].pnl == Decimal("-0.65")

    def test_small_moves_keep_position_open(self, ledger, open_position, market_at, t0):
        ledger.open_position(open_position)

        # spread 0.198 narrows by 0.002 (< 0.005); spread 0.21 widens by 0.01 (< 0.02)
        assert ledger.check_exits([market_at("0.401")], t0 + timedelta(minutes=1)) == []
        assert ledger.check_exits([market_at("0.395")], t0 + timedelta(minutes=1)) == []
        assert ledger.open_count() == 1

    def test_timeout_at_exact_boundary(self, ledger, open_position, market_at, t0):
        ledger.open_position(open_position)

        assert ledger.check_exits([market_at("0.40")], t0 + timedelta(seconds=3599)) == []

        records = ledger.check_exits([market_at("0.40")], t0 + timedelta(seconds=3600), FEE_RATE)
        assert records[0].reason == ExitReason.TIMEOUT
        assert records[0].pnl == Decimal("-0.16")

    def test_take_profit_has_precedence_over_timeout(self, ledger, open_position, market_at, t0):
        ledger.open_position(open_position)

        records = ledger.check_exits([market_at("0.45")], t0 + timedelta(hours=2))

        assert records[0].reason == ExitReason.TAKE_PROFIT

    def test_missing_market_only_times_out_at_entry_price(self, ledger, open_position, t0):
        ledger.open_position(open_position)

        assert ledger.check_exits([], t0 + timedelta(minutes=30)) == []

        records = ledger.check_exits([], t0 + timedelta(hours=1))
        assert records[0].reason == ExitReason.TIMEOUT
        assert records[0].exit_price == Decimal("0.40")
        assert records[0].pnl == Decimal("-0.08")

    def test_sell_position_pnl(self, ledger, open_position, market_at, t0):
        short = open_position.model_copy(update={
            "side": Side.SELL,
            "entry_price": Decimal("0.60"),
            "entry_fee": Decimal("0.12"),
        })
        ledger.open_position(short)

        records = ledger.check_exits([market_at("0.50")], t0 + timedelta(hours=1))

        # (10 * 0.60 - 0.12) - 10 * 0.50
        assert records[0].pnl == Decimal("0.88")


# =============================================================================
# Aggregates & Idempotency
# =============================================================================

class TestAggregates:
    def test_check_exits_is_idempotent(self, ledger, open_position, market_at, t0):
        ledger.open_position(open_position)
        snapshot = [market_at("0.45")]
        now = t0 + timedelta(minutes=1)

        first = ledger.check_exits(snapshot, now, FEE_RATE)
        second = ledger.check_exits(snapshot, now, FEE_RATE)

        assert len(first) == 1
        assert second == []
        assert len(ledger.get_closed()) == 1
        assert ledger.trade_count() == 1
        assert ledger.total_pnl() == first[0].pnl

    def test_win_rate_and_total_pnl(self, ledger, open_position, market_factory, t0):
        loser = open_position.model_copy(update={
            "id": "loser", "market_id": "mkt-9", "token_id": "tok-9"
        })
        ledger.open_position(open_position)
        ledger.open_position(loser)

        markets = [
            market_factory("mkt-1", ["0.45", "0.45"], ["tok-yes", "tok-no"]),
            market_factory("mkt-9", ["0.35", "0.35"], ["tok-9", "tok-10"]),
        ]
        records = ledger.check_exits(markets, t0 + timedelta(minutes=1), FEE_RATE)

        assert len(records) == 2
        assert ledger.trade_count() == 2
        assert ledger.win_rate() == 0.5
        assert ledger.total_pnl() == Decimal("0.33") + Decimal("-0.65")
        assert ledger.open_count() == 0

    def test_snapshot_is_consistent(self, ledger, open_position, market_at, t0):
        ledger.open_position(open_position)
        ledger.check_exits([market_at("0.45")], t0 + timedelta(minutes=1), FEE_RATE)

        snapshot = ledger.snapshot()

        assert snapshot.open_positions == []
        assert snapshot.trade_count == 1
        assert snapshot.win_count == 1
        assert snapshot.win_rate == 1.0
        assert snapshot.total_pnl == Decimal("0.33")

    def test_empty_ledger_reads(self):
        ledger = PositionLedger()

        assert ledger.trade_count() == 0
        assert ledger.win_rate() == 0.0
        assert ledger.total_pnl() == Decimal("0")
        assert ledger.get_positions() == []
