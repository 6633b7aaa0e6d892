"""Integration tests for the trading agent cycle."""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from polyshark.core.config import (
    DatabaseConfig, NotificationConfig, PermissionConfig, PolySharkConfig,
    RiskConfig, TradingConfig
)
from polyshark.core.engine import TradingAgent, create_trading_agent
from polyshark.core.errors import FetchError
from polyshark.core.models import ExitReason, MarketSnapshot, Side, StrategyMode
from polyshark.exchange import MarketDataSource
from polyshark.execution.simulator import ExecutionSimulator, LatencyModel
from polyshark.plugins import AgentPlugin, PluginAction, PluginDecision, PluginManager
from polyshark.positions.ledger import PositionLedger
from polyshark.risk import RiskManager, SpendGuard
from polyshark.strategies.arbitrage import ArbitrageDetector


class VetoPlugin(AgentPlugin):
    name = "veto"

    def on_trade_signal(self, signal):
        return PluginDecision.skip("manual blacklist")


class HaltPlugin(AgentPlugin):
    name = "halt"

    def on_error(self, error):
        return PluginAction.HALT


@pytest.fixture
def agent_config():
    config = PolySharkConfig()
    config.trading = TradingConfig(
        min_spread_threshold=0.02,
        min_profit_threshold=0.10,
        trade_size=5.0,
        max_position_value=50.0,
        poll_interval_secs=0.01,
    )
    config.permission = PermissionConfig(daily_limit=10.0, permission_active=True)
    config.risk = RiskConfig(min_liquidity=10.0, max_position_size=100.0, initial_balance=100.0)
    config.notification = NotificationConfig(enabled=False)
    config.database = DatabaseConfig(journal_enabled=True)
    return config


@pytest.fixture
def books(book_factory):
    """Deep books at 0.40 on both legs of mkt-1."""
    return {
        token: book_factory(token, asks=[("0.40", "100")], bids=[("0.38", "100")])
        for token in ("tok-yes", "tok-no")
    }


@pytest.fixture
def market_client(cheap_market, books):
    client = MagicMock()
    client.source = MarketDataSource.GAMMA
    client.fetch_markets = AsyncMock(return_value=[cheap_market])
    client.fetch_order_book = AsyncMock(side_effect=lambda token_id: books[token_id])
    client.hydrate_prices = AsyncMock(side_effect=lambda market: market)
    return client


@pytest.fixture
def build_agent(agent_config, market_client):
    def build(plugins=None, database=None, daily_limit=None):
        limit = Decimal(str(daily_limit)) if daily_limit is not None else Decimal("10")
        return TradingAgent(
            market_client=market_client,
            detector=ArbitrageDetector(Decimal("0.02")),
            simulator=ExecutionSimulator(latency_model=LatencyModel(base_ms=0, adverse_selection_std=0.0)),
            ledger=PositionLedger(),
            risk_manager=RiskManager(agent_config.risk),
            spend_guard=SpendGuard(daily_limit=limit),
            plugins=plugins,
            database=database,
            config=agent_config,
        )
    return build


# =============================================================================
# Entry Tests
# =============================================================================

class TestEntries:
    @pytest.mark.asyncio
    async def test_bundle_opens_and_records_spend(self, build_agent, t0):
        agent = build_agent()

        report = await agent.run_cycle(now=t0)

        assert report.markets == 1
        assert report.signals == 1
        assert report.mode == StrategyMode.AGGRESSIVE
        assert len(report.opened) == 2
        assert report.skipped == {}

        # 5 shares at 0.40 plus 2% fee, per leg
        assert agent.spend_guard.spent_today == Decimal("4.08")
        positions = agent.ledger.get_positions()
        assert {p.token_id for p in positions} == {"tok-yes", "tok-no"}
        for position in positions:
            assert position.side == Side.BUY
            assert position.size == Decimal("5")
            assert position.entry_price == Decimal("0.40")
            assert position.entry_fee == Decimal("0.04")
            assert position.entry_spread == Decimal("0.20")
            assert position.entry_time == t0

    @pytest.mark.asyncio
    async def test_insufficient_allowance_leaves_state_untouched(self, build_agent, t0):
        agent = build_agent(daily_limit=4)

        report = await agent.run_cycle(now=t0)

        assert report.skipped == {"mkt-1": "insufficient_allowance"}
        assert report.opened == []
        assert agent.spend_guard.spent_today == Decimal("0")
        assert agent.ledger.open_count() == 0

    @pytest.mark.asyncio
    async def test_second_bundle_blocked_once_allowance_is_used(self, build_agent, t0):
        agent = build_agent(daily_limit=5)

        await agent.run_cycle(now=t0)
        report = await agent.run_cycle(now=t0 + timedelta(seconds=5))

        assert report.mode == StrategyMode.CONSERVATIVE
        assert report.skipped == {"mkt-1": "insufficient_allowance"}
        assert agent.spend_guard.spent_today == Decimal("4.08")
        assert agent.ledger.open_count() == 2

    @pytest.mark.asyncio
    async def test_sell_signal_is_skipped(self, build_agent, market_client, market_factory, t0):
        market_client.fetch_markets.return_value = [
            market_factory("mkt-rich", ["0.60", "0.60"], ["r-yes", "r-no"])
        ]
        agent = build_agent()

        report = await agent.run_cycle(now=t0)

        assert report.signals == 1
        assert report.skipped == {"mkt-rich": "sell_unsupported"}
        market_client.fetch_order_book.assert_not_called()

    @pytest.mark.asyncio
    async def test_plugin_veto(self, build_agent, t0):
        plugins = PluginManager()
        plugins.register(VetoPlugin())
        agent = build_agent(plugins=plugins)

        report = await agent.run_cycle(now=t0)

        assert report.skipped == {"mkt-1": "plugin_veto"}
        assert agent.spend_guard.spent_today == Decimal("0")

    @pytest.mark.asyncio
    async def test_plugin_resize(self, build_agent, t0):
        class HalfSize(AgentPlugin):
            name = "half"

            def on_trade_signal(self, signal):
                return PluginDecision.modify_size(2)

        plugins = PluginManager()
        plugins.register(HalfSize())
        agent = build_agent(plugins=plugins)

        await agent.run_cycle(now=t0)

        assert {p.size for p in agent.ledger.get_positions()} == {Decimal("2")}
        assert agent.spend_guard.spent_today == Decimal("1.632")

    @pytest.mark.asyncio
    async def test_below_min_profit(self, build_agent, books, book_factory, t0):
        # Asks at 0.49 leave 5 - 2 * 2.499 = 0.002 after fees
        for token in books:
            books[token] = book_factory(token, asks=[("0.49", "100")])
        agent = build_agent()

        report = await agent.run_cycle(now=t0)

        assert report.skipped == {"mkt-1": "below_min_profit"}

    @pytest.mark.asyncio
    async def test_book_fetch_failure_skips_signal(self, build_agent, market_client, t0):
        market_client.fetch_order_book.side_effect = FetchError("clob", "timeout")
        agent = build_agent()

        report = await agent.run_cycle(now=t0)

        assert report.skipped == {"mkt-1": "book_fetch_failed"}
        assert agent.ledger.open_count() == 0

    @pytest.mark.asyncio
    async def test_thin_book_rejected_by_risk_gate(self, build_agent, books, book_factory, t0):
        books["tok-no"] = book_factory("tok-no", asks=[("0.40", "10")])
        agent = build_agent()

        report = await agent.run_cycle(now=t0)

        # 10 shares at 0.40 is only 4 USDC of depth
        assert report.skipped == {"mkt-1": "risk_rejected"}
        assert agent.spend_guard.spent_today == Decimal("0")


# =============================================================================
# Exit Tests
# =============================================================================

class TestExits:
    @pytest.mark.asyncio
    async def test_take_profit_feeds_risk_and_metrics(
        self, build_agent, market_client, market_factory, t0
    ):
        agent = build_agent()
        await agent.run_cycle(now=t0)

        market_client.fetch_markets.return_value = [
            market_factory("mkt-1", ["0.49", "0.49"], ["tok-yes", "tok-no"])
        ]
        report = await agent.run_cycle(now=t0 + timedelta(minutes=1))

        assert report.signals == 0
        assert len(report.closed) == 2
        assert {r.reason for r in report.closed} == {ExitReason.TAKE_PROFIT}
        # 5 * 0.49 - 2.04 - 2% exit fee, per leg
        assert {r.pnl for r in report.closed} == {Decimal("0.361")}

        assert agent.ledger.open_count() == 0
        assert agent.risk_manager.get_status().balance == Decimal("100.722")
        assert agent.metrics.get_metrics().trades_total == 2

        stats = agent.get_stats()
        assert stats.total_trades == 2
        assert stats.win_rate == 100.0
        assert stats.total_pnl == Decimal("0.722")

    @pytest.mark.asyncio
    async def test_unpriced_market_does_not_trigger_exits(
        self, build_agent, market_client, cheap_market, t0
    ):
        agent = build_agent()
        await agent.run_cycle(now=t0)

        # Same market, but its books no longer yield a midpoint on one leg
        unpriced = cheap_market.model_copy(update={"outcome_prices": []})
        market_client.fetch_markets.return_value = [unpriced]
        report = await agent.run_cycle(now=t0 + timedelta(minutes=1))

        assert report.signals == 0
        assert report.closed == []
        assert agent.ledger.open_count() == 2
        assert agent.risk_manager.get_status().balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_risk_halt_blocks_entries_but_not_exits(self, build_agent, t0):
        agent = build_agent()
        await agent.run_cycle(now=t0)
        agent.risk_manager.activate_circuit_breaker("operator pause")

        report = await agent.run_cycle(now=t0 + timedelta(hours=2))

        assert report.skipped == {"mkt-1": "risk_halt"}
        assert report.opened == []
        assert {r.reason for r in report.closed} == {ExitReason.TIMEOUT}
        assert {r.pnl for r in report.closed} == {Decimal("-0.08")}
        assert agent.spend_guard.spent_today == Decimal("4.08")

    @pytest.mark.asyncio
    async def test_exits_are_journaled(self, build_agent, database, t0):
        agent = build_agent(database=database)
        await agent.run_cycle(now=t0)

        await agent.run_cycle(now=t0 + timedelta(hours=2))

        assert await database.count_trades() == 2
        trades = await database.get_trades(market_id="mkt-1")
        assert {t.reason for t in trades} == {ExitReason.TIMEOUT}


# =============================================================================
# Safe Mode Tests
# =============================================================================

class TestSafeMode:
    @pytest.mark.asyncio
    async def test_fetch_failures_enter_and_leave_safe_mode(self, build_agent, market_client, cheap_market, t0):
        agent = build_agent()
        await agent.run_cycle(now=t0)

        market_client.fetch_markets.side_effect = FetchError("gamma", "503")
        later = t0 + timedelta(hours=2)
        reports = [await agent.run_cycle(now=later + timedelta(seconds=i)) for i in range(3)]

        assert all(r.fetch_failed for r in reports)
        # Exits still ran against the last good snapshot
        assert {r.reason for r in reports[0].closed} == {ExitReason.TIMEOUT}
        assert [r.safe_mode for r in reports] == [False, False, True]
        assert agent.metrics.get_metrics().is_safe_mode

        # Data is back but the cooldown has not elapsed
        market_client.fetch_markets.side_effect = None
        market_client.fetch_markets.return_value = [cheap_market]
        suspended = await agent.run_cycle(now=later + timedelta(seconds=60))
        assert suspended.safe_mode
        assert suspended.signals == 0
        assert suspended.opened == []

        resumed = await agent.run_cycle(now=later + timedelta(seconds=400))
        assert not resumed.safe_mode
        assert len(resumed.opened) == 2
        assert not agent.metrics.get_metrics().is_safe_mode

    @pytest.mark.asyncio
    async def test_halt_plugin_trips_circuit_breaker(self, build_agent, market_client, t0):
        plugins = PluginManager()
        plugins.register(HaltPlugin())
        agent = build_agent(plugins=plugins)
        market_client.fetch_markets.side_effect = FetchError("gamma", "503")

        await agent.run_cycle(now=t0)

        assert agent.risk_manager.get_status().circuit_breaker

    @pytest.mark.asyncio
    async def test_unhydrated_market_that_fails_is_dropped(
        self, build_agent, market_client, market_factory, t0
    ):
        bare = MarketSnapshot(id="bare", outcomes=["Yes", "No"], clob_token_ids=["b1", "b2"])
        market_client.fetch_markets.return_value = [bare, market_factory("mkt-2", ["0.5", "0.5"])]
        market_client.hydrate_prices.side_effect = FetchError("clob", "timeout")
        agent = build_agent()

        report = await agent.run_cycle(now=t0)

        assert not report.fetch_failed
        assert report.markets == 1


# =============================================================================
# Lifecycle & Reporting Tests
# =============================================================================

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_daily_reset(self, build_agent, database, t0):
        agent = build_agent(database=database)
        await agent.run_cycle(now=t0)
        await agent.run_cycle(now=t0 + timedelta(hours=2))

        await agent.daily_reset("2024-03-01")

        assert agent.spend_guard.spent_today == Decimal("0")
        assert agent.metrics.get_metrics().trades_today == 0
        assert agent.risk_manager.get_status().daily_loss == Decimal("0")

        stats = await database.get_daily_stats("2024-03-01")
        assert stats["trade_count"] == 2
        assert stats["win_count"] == 0
        assert abs(stats["spent"] - Decimal("4.08")) < Decimal("1e-9")

    @pytest.mark.asyncio
    async def test_get_trades_and_status(self, build_agent, t0):
        agent = build_agent()
        await agent.run_cycle(now=t0)

        trades = agent.get_trades()
        status = agent.get_status()

        assert {t.token_id for t in trades} == {"tok-yes", "tok-no"}
        assert status["source"] == "gamma"
        assert status["cycles"] == 1
        assert status["stats"]["open_positions"] == 2
        assert status["last_cycle"]["opened"] == 2
        assert status["simulator"]["fills"] == 2

    @pytest.mark.asyncio
    async def test_run_fixed_number_of_cycles(self, build_agent, market_client):
        agent = build_agent()

        await agent.run(cycles=3)

        assert agent.cycles == 3
        assert market_client.fetch_markets.await_count == 3
        assert not agent.is_running

    @pytest.mark.asyncio
    async def test_start_and_stop(self, build_agent):
        agent = build_agent()

        await agent.start()
        assert agent.is_running
        await agent.stop()

        assert not agent.is_running

    def test_factory_wires_components(self, agent_config, market_client):
        agent = create_trading_agent(agent_config, market_client=market_client)

        assert agent.spend_guard.daily_limit == Decimal("10")
        assert agent.detector.threshold == Decimal("0.02")
        assert agent.plugins.plugins == []
        assert agent.database is None
