"""Trading agent - drives one arbitrage cycle at a time."""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from polyshark.core.config import PolySharkConfig, polyshark_config
from polyshark.core.errors import FetchError, InsufficientAllowanceError, RiskHaltError
from polyshark.core.models import (
    ONE, AgentStats, ArbitrageSignal, ExecutionResult, ExitRecord,
    MarketSnapshot, OrderBook, Position, Side, StrategyMode, TradeView,
    to_decimal, utc_now
)
from polyshark.exchange.market_client import MarketDataClient, MarketDataSource
from polyshark.execution.simulator import ExecutionSimulator
from polyshark.monitoring.metrics import MetricsCollector
from polyshark.plugins.manager import (
    DecisionKind, NotificationPlugin, PluginAction, PluginManager
)
from polyshark.positions.ledger import PositionLedger
from polyshark.risk.risk_manager import RiskManager
from polyshark.risk.spend_guard import SpendGuard
from polyshark.storage.database import Database
from polyshark.strategies.adaptive import min_edge_for, select_mode
from polyshark.strategies.arbitrage import ArbitrageDetector

logger = structlog.get_logger(__name__)


@dataclass
class CycleReport:
    """What one trading cycle did."""
    started_at: datetime
    markets: int = 0
    signals: int = 0
    opened: List[Position] = field(default_factory=list)
    closed: List[ExitRecord] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)  # market_id -> reason
    fetch_failed: bool = False
    safe_mode: bool = False
    mode: StrategyMode = StrategyMode.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "markets": self.markets,
            "signals": self.signals,
            "opened": len(self.opened),
            "closed": len(self.closed),
            "skipped": dict(self.skipped),
            "fetch_failed": self.fetch_failed,
            "safe_mode": self.safe_mode,
            "mode": self.mode.value,
        }


class TradingAgent:
    """
    Arbitrage agent that orchestrates the trading cycle.

    Each cycle: fetch markets -> detect signals -> authorize against the
    spend guard and risk gate -> simulate fills -> open positions and record
    the spend -> evaluate exits and feed realized P&L back to the risk gate.

    Network fetches are the only suspension points. Nothing shared is
    mutated while a fetch is pending, and a bundle's spend and positions are
    committed together after every check has passed.
    """

    def __init__(
        self,
        market_client: MarketDataClient,
        detector: ArbitrageDetector,
        simulator: ExecutionSimulator,
        ledger: PositionLedger,
        risk_manager: RiskManager,
        spend_guard: SpendGuard,
        plugins: Optional[PluginManager] = None,
        metrics: Optional[MetricsCollector] = None,
        database: Optional[Database] = None,
        config: Optional[PolySharkConfig] = None,
    ):
        self.market_client = market_client
        self.detector = detector
        self.simulator = simulator
        self.ledger = ledger
        self.risk_manager = risk_manager
        self.spend_guard = spend_guard
        self.plugins = plugins or PluginManager()
        self.metrics = metrics or MetricsCollector(spend_guard.daily_limit)
        self.database = database
        self.config = config or polyshark_config

        # State
        self.last_snapshot: List[MarketSnapshot] = []
        self.cycles = 0
        self.safe_mode_until: Optional[datetime] = None
        self.last_report: Optional[CycleReport] = None

        # Control
        self._running = False
        self._main_task: Optional[asyncio.Task] = None

    # === Lifecycle ===

    async def start(self):
        """Start the trading loop in the background."""
        logger.info("agent.starting", source=self.market_client.source.value)

        self._running = True
        self.plugins.start_all()
        self._main_task = asyncio.create_task(self._main_loop())

        logger.info(
            "agent.started",
            daily_limit=str(self.spend_guard.daily_limit),
            plugins=[p.name for p in self.plugins.plugins],
        )

    async def stop(self):
        """Stop the loop between cycles."""
        logger.info("agent.stopping")
        self._running = False

        if self._main_task:
            self._main_task.cancel()
            try:
                await self._main_task
            except asyncio.CancelledError:
                pass
            self._main_task = None

        self.plugins.stop_all()
        logger.info("agent.stopped", cycles=self.cycles)

    async def run(self, cycles: Optional[int] = None):
        """Run cycles in the foreground, forever or `cycles` times."""
        self._running = True
        self.plugins.start_all()
        try:
            completed = 0
            while self._running and (cycles is None or completed < cycles):
                await self._safe_cycle()
                completed += 1
                if cycles is None or completed < cycles:
                    await asyncio.sleep(self.config.trading.poll_interval_secs)
        finally:
            self._running = False
            self.plugins.stop_all()

    @property
    def is_running(self) -> bool:
        return self._running

    async def _main_loop(self):
        while self._running:
            await self._safe_cycle()
            await asyncio.sleep(self.config.trading.poll_interval_secs)

    async def _safe_cycle(self):
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error("agent.loop_error", error=str(e))
            self._handle_plugin_error(str(e))

    # === Cycle ===

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        """Run one full fetch -> trade -> exit cycle."""
        now = now or utc_now()
        self.cycles += 1
        report = CycleReport(started_at=now)

        started = time.monotonic()
        try:
            markets = await self._fetch_snapshot()
        except FetchError as e:
            latency_ms = (time.monotonic() - started) * 1000
            self._on_fetch_failure(e, latency_ms, now)
            report.fetch_failed = True
            report.safe_mode = self.in_safe_mode(now)
            # Exits still run against the last good snapshot
            report.closed = await self._evaluate_exits(self.last_snapshot, now)
            self.last_report = report
            return report

        latency_ms = (time.monotonic() - started) * 1000
        self._on_fetch_success(latency_ms, now)
        self.last_snapshot = markets
        report.markets = len(markets)
        report.safe_mode = self.in_safe_mode(now)

        mode = self._update_mode()
        report.mode = mode

        stale = latency_ms > self.config.safety.max_data_delay_ms
        if stale:
            logger.warning(
                "agent.stale_data",
                latency_ms=round(latency_ms, 1),
                max_delay_ms=self.config.safety.max_data_delay_ms,
            )

        if report.safe_mode or stale:
            logger.info("agent.entries_suspended", safe_mode=report.safe_mode, stale=stale)
        else:
            signals = self.detector.scan(markets)
            report.signals = len(signals)
            by_id = {m.id: m for m in markets}
            for signal in signals:
                await self._process_signal(signal, by_id[signal.market_id], mode, now, report)
            self._update_mode()

        report.closed = await self._evaluate_exits(markets, now)

        logger.info(
            "agent.cycle_complete",
            cycle=self.cycles,
            markets=report.markets,
            signals=report.signals,
            opened=len(report.opened),
            closed=len(report.closed),
            mode=mode.value,
        )
        self.last_report = report
        return report

    async def _fetch_snapshot(self) -> List[MarketSnapshot]:
        markets = await self.market_client.fetch_markets()
        hydrated = []
        for market in markets:
            if market.is_hydrated:
                hydrated.append(market)
                continue
            try:
                hydrated.append(await self.market_client.hydrate_prices(market))
            except FetchError as e:
                logger.warning("agent.hydrate_failed", market_id=market.id, error=str(e))
        return hydrated

    async def _process_signal(
        self,
        signal: ArbitrageSignal,
        market: MarketSnapshot,
        mode: StrategyMode,
        now: datetime,
        report: CycleReport,
    ):
        """Authorize, fill and commit one bundle. Every rejection is local."""

        def skip(reason: str, **context):
            report.skipped[signal.market_id] = reason
            logger.info("agent.signal_skipped", market_id=signal.market_id, reason=reason, **context)

        if signal.side == Side.SELL:
            skip("sell_unsupported", price_sum=str(signal.price_sum))
            return

        size = to_decimal(self.config.trading.trade_size)
        decision = self.plugins.process_signal(signal)
        if decision.kind == DecisionKind.SKIP:
            skip("plugin_veto", detail=decision.reason)
            return
        if decision.kind == DecisionKind.MODIFY_SIZE:
            size = decision.value
        elif decision.kind == DecisionKind.MODIFY_SPREAD and signal.spread <= decision.value:
            skip("below_plugin_spread", spread=str(signal.spread), threshold=str(decision.value))
            return

        min_edge = min_edge_for(mode, self.config.strategy)
        if signal.edge < min_edge:
            skip("insufficient_edge", edge=str(signal.edge), min_edge=str(min_edge), mode=mode.value)
            return

        halted, reason = self.risk_manager.should_halt()
        if halted:
            skip("risk_halt", detail=reason)
            return

        # Fetch every leg's book before touching any state
        books: List[OrderBook] = []
        for token_id in signal.token_ids:
            try:
                books.append(await self.market_client.fetch_order_book(token_id))
            except FetchError as e:
                skip("book_fetch_failed", token_id=token_id, error=str(e))
                return

        fills = self._fill_bundle(books, size)
        if fills is None:
            skip("no_fill")
            return

        bundle_size = min(r.filled_size for r in fills)
        total_cost = sum((r.total_cost for r in fills), Decimal("0"))
        net_profit = bundle_size * ONE - total_cost
        min_profit = to_decimal(self.config.trading.min_profit_threshold)
        if net_profit < min_profit:
            skip("below_min_profit", net_profit=str(net_profit), min_profit=str(min_profit))
            return

        max_value = to_decimal(self.config.trading.max_position_value)
        if total_cost > max_value:
            skip("exceeds_max_position_value", total_cost=str(total_cost), max_value=str(max_value))
            return

        # Commit: spend first, then the legs. No suspension point in between.
        try:
            self._authorize(books, fills, total_cost)
            self.spend_guard.record_spend(total_cost)
        except RiskHaltError as e:
            skip("risk_rejected", rule=e.rule, detail=e.reason)
            return
        except InsufficientAllowanceError as e:
            skip("insufficient_allowance", detail=str(e))
            return

        for result in fills:
            position = Position.from_execution(market.id, result, signal.spread, now)
            report.opened.append(self.ledger.open_position(position))

        logger.info(
            "agent.bundle_opened",
            market_id=market.id,
            legs=len(fills),
            bundle_size=str(bundle_size),
            total_cost=str(total_cost),
            expected_profit=str(net_profit),
        )

    def _authorize(self, books: List[OrderBook], fills: List[ExecutionResult], total_cost: Decimal):
        """Raise unless every leg passes the risk gate and the bundle fits the allowance."""
        for book, result in zip(books, fills):
            check = self.risk_manager.validate_trade(result.total_cost, book.depth_notional())
            if check.is_rejected:
                raise RiskHaltError(check.reason, check.rule_triggered)

        if not self.spend_guard.can_spend(total_cost):
            raise InsufficientAllowanceError(total_cost, self.spend_guard.remaining())

    def _fill_bundle(self, books: List[OrderBook], size: Decimal) -> Optional[List[ExecutionResult]]:
        """Simulate a buy on every leg, trimming legs to the smallest fill."""
        fills = []
        for book in books:
            result = self.simulator.execute(book, size, Side.BUY)
            if result is None:
                return None
            fills.append(result)

        bundle_size = min(r.filled_size for r in fills)
        for i, (book, result) in enumerate(zip(books, fills)):
            if result.filled_size > bundle_size:
                trimmed = self.simulator.execute(book, bundle_size, Side.BUY)
                if trimmed is None:
                    return None
                fills[i] = trimmed
        return fills

    async def _evaluate_exits(self, markets: List[MarketSnapshot], now: datetime) -> List[ExitRecord]:
        records = self.ledger.check_exits(markets, now, self.simulator.fee_schedule.rate)
        for record in records:
            self.risk_manager.record_trade(record.pnl)
            self.metrics.record_trade(record.pnl, record.closed_at)
            self.plugins.notify_trade_complete(record)
            await self._journal(record)
        return records

    async def _journal(self, record: ExitRecord):
        if self.database is None or not self.config.database.journal_enabled:
            return
        try:
            await self.database.save_exit(record)
        except SQLAlchemyError as e:
            logger.error("agent.journal_failed", position_id=record.position.id, error=str(e))

    # === Safe mode ===

    def in_safe_mode(self, now: Optional[datetime] = None) -> bool:
        return self.safe_mode_until is not None and (now or utc_now()) < self.safe_mode_until

    def _on_fetch_failure(self, error: FetchError, latency_ms: float, now: datetime):
        failures = self.metrics.record_fetch(False, latency_ms)
        logger.warning("agent.fetch_failed", error=str(error), consecutive_failures=failures)

        if failures >= self.config.safety.max_consecutive_failures and not self.in_safe_mode(now):
            cooldown = self.config.safety.safe_mode_cooldown_secs
            self.safe_mode_until = now + timedelta(seconds=cooldown)
            self.metrics.set_safe_mode(True)
            logger.error("agent.safe_mode_entered", failures=failures, cooldown_secs=cooldown)

        self._handle_plugin_error(str(error))

    def _on_fetch_success(self, latency_ms: float, now: datetime):
        self.metrics.record_fetch(True, latency_ms)
        if self.safe_mode_until is not None and now >= self.safe_mode_until:
            self.safe_mode_until = None
            self.metrics.set_safe_mode(False)
            logger.info("agent.safe_mode_exited")

    def _handle_plugin_error(self, error: str):
        action = self.plugins.handle_error(error)
        if action == PluginAction.HALT:
            self.risk_manager.activate_circuit_breaker(f"Plugin requested halt: {error}")

    # === Allowance ===

    def _update_mode(self) -> StrategyMode:
        spend = self.spend_guard.snapshot()
        mode = select_mode(spend.remaining_fraction, self.config.strategy)
        self.metrics.update_spending(spend.spent_today, spend.daily_limit, mode)
        return mode

    async def daily_reset(self, date: Optional[str] = None):
        """Close out the day: journal its summary, then reset daily state."""
        date = date or utc_now().strftime("%Y-%m-%d")
        metrics = self.metrics.get_metrics()
        spend = self.spend_guard.snapshot()
        ledger = self.ledger.snapshot()

        if self.database is not None and self.config.database.journal_enabled:
            wins = sum(1 for r in self.ledger.get_closed()
                       if r.is_win and r.closed_at.strftime("%Y-%m-%d") == date)
            try:
                await self.database.save_daily_stats(
                    date, metrics.daily_pnl, metrics.trades_today, wins, spend.spent_today
                )
            except SQLAlchemyError as e:
                logger.error("agent.daily_stats_failed", date=date, error=str(e))

        self.spend_guard.reset()
        self.risk_manager.reset_daily()
        self.metrics.reset_daily()
        self._update_mode()

        logger.info(
            "agent.daily_reset",
            date=date,
            spent=str(spend.spent_today),
            daily_pnl=str(metrics.daily_pnl),
            total_trades=ledger.trade_count,
        )

    # === Read model ===

    def get_stats(self) -> AgentStats:
        """Dashboard statistics, each block copied under its own lock."""
        ledger = self.ledger.snapshot()
        spend = self.spend_guard.snapshot()
        return AgentStats(
            permission_active=spend.permission_active,
            daily_limit=spend.daily_limit,
            spent_today=spend.spent_today,
            total_trades=ledger.trade_count,
            win_rate=ledger.win_rate * 100,
            total_pnl=ledger.total_pnl,
            open_positions=len(ledger.open_positions),
        )

    def get_trades(self) -> List[TradeView]:
        return [TradeView.from_position(p) for p in self.ledger.get_positions()]

    def get_status(self) -> Dict[str, Any]:
        """Current agent status for the CLI and reporters."""
        return {
            "running": self._running,
            "source": self.market_client.source.value,
            "cycles": self.cycles,
            "safe_mode": self.in_safe_mode(),
            "stats": self.get_stats().model_dump(mode="json"),
            "risk": self.risk_manager.get_status().model_dump(mode="json"),
            "metrics": self.metrics.get_metrics().model_dump(mode="json"),
            "detector": self.detector.get_stats(),
            "simulator": self.simulator.get_stats(),
            "last_cycle": self.last_report.to_dict() if self.last_report else None,
        }


def create_trading_agent(
    config: Optional[PolySharkConfig] = None,
    market_client: Optional[MarketDataClient] = None,
    database: Optional[Database] = None,
) -> TradingAgent:
    """Factory function to build an agent wired from configuration."""
    config = config or polyshark_config

    if market_client is None:
        market_client = MarketDataClient(MarketDataSource(config.api.source), config.api)

    plugins = PluginManager()
    if config.notification.enabled:
        plugins.register(NotificationPlugin.from_config(config.notification))

    spend_guard = SpendGuard.from_config(config.permission)
    return TradingAgent(
        market_client=market_client,
        detector=ArbitrageDetector(to_decimal(config.trading.min_spread_threshold)),
        simulator=ExecutionSimulator.from_config(config.execution),
        ledger=PositionLedger.from_config(config.exits),
        risk_manager=RiskManager(config.risk),
        spend_guard=spend_guard,
        plugins=plugins,
        metrics=MetricsCollector(spend_guard.daily_limit),
        database=database,
        config=config,
    )
