"""Agent metrics collection and Prometheus export."""
from collections import deque
from datetime import datetime
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional

import numpy as np
import pandas as pd
import structlog
from pydantic import BaseModel, ConfigDict, Field

from polyshark.core.models import ZERO, StrategyMode, to_decimal, utc_now
from polyshark.utils.locks import RWLock

logger = structlog.get_logger(__name__)

AGENT_VERSION = "0.3.0"


class AgentMetrics(BaseModel):
    """Point-in-time agent metrics."""
    model_config = ConfigDict(json_encoders={Decimal: str})

    # Trading performance
    trades_today: int = 0
    trades_total: int = 0
    win_rate: float = 0.0
    avg_profit_per_trade: Decimal = ZERO
    total_pnl: Decimal = ZERO
    daily_pnl: Decimal = ZERO
    sharpe_ratio: float = 0.0

    # Data source health
    data_latency_ms: float = 0.0
    last_trade_time: Optional[datetime] = None
    consecutive_failures: int = 0
    is_safe_mode: bool = False

    # Allowance
    daily_spent: Decimal = ZERO
    daily_limit: Decimal = Decimal("10")
    remaining_allowance: Decimal = Decimal("10")
    strategy_mode: StrategyMode = StrategyMode.NORMAL

    # Runtime
    uptime_seconds: int = 0
    version: str = AGENT_VERSION
    last_updated: datetime = Field(default_factory=utc_now)


class MetricsCollector:
    """
    Collects trade and health metrics for reporting.

    Metrics are observational: nothing in the trading path reads them back
    to make decisions, except the strategy mode which mirrors the spend guard.
    Per-trade history is kept for the most recent `max_history` trades only;
    the DataFrame reports and the Sharpe ratio cover that window while the
    counters and totals cover the whole run.
    """

    def __init__(self, daily_limit: Decimal = Decimal("10"), max_history: int = 1000):
        self._lock = RWLock()
        limit = to_decimal(daily_limit)
        self._metrics = AgentMetrics(daily_limit=limit, remaining_allowance=limit)
        self._trades: Deque[Dict[str, Any]] = deque(maxlen=max_history)
        self._wins = 0
        self.start_time = utc_now()

    def record_trade(self, pnl: Decimal, closed_at: Optional[datetime] = None):
        """Record one realized trade."""
        pnl = to_decimal(pnl)
        closed_at = closed_at or utc_now()

        with self._lock.write():
            m = self._metrics
            self._trades.append({"closed_at": closed_at, "pnl": float(pnl)})
            if pnl > 0:
                self._wins += 1

            m.trades_today += 1
            m.trades_total += 1
            m.total_pnl += pnl
            m.daily_pnl += pnl
            m.last_trade_time = closed_at
            m.win_rate = self._wins / m.trades_total
            m.avg_profit_per_trade = m.total_pnl / m.trades_total
            m.sharpe_ratio = self._sharpe([t["pnl"] for t in self._trades])
            m.last_updated = utc_now()

    def record_fetch(self, success: bool, latency_ms: Optional[float] = None) -> int:
        """Record a market data fetch; returns the consecutive failure count."""
        with self._lock.write():
            m = self._metrics
            if success:
                m.consecutive_failures = 0
            else:
                m.consecutive_failures += 1
            if latency_ms is not None:
                m.data_latency_ms = latency_ms
            m.last_updated = utc_now()
            return m.consecutive_failures

    def update_spending(self, spent: Decimal, daily_limit: Decimal, mode: StrategyMode):
        """Mirror the spend guard's current budget and the selected mode."""
        spent = to_decimal(spent)
        daily_limit = to_decimal(daily_limit)
        with self._lock.write():
            m = self._metrics
            m.daily_spent = spent
            m.daily_limit = daily_limit
            m.remaining_allowance = max(daily_limit - spent, ZERO)
            m.strategy_mode = mode
            m.last_updated = utc_now()

    def set_safe_mode(self, enabled: bool):
        with self._lock.write():
            self._metrics.is_safe_mode = enabled
            self._metrics.last_updated = utc_now()

    def reset_daily(self):
        with self._lock.write():
            m = self._metrics
            m.trades_today = 0
            m.daily_pnl = ZERO
            m.daily_spent = ZERO
            m.remaining_allowance = m.daily_limit
            m.last_updated = utc_now()

    def get_metrics(self) -> AgentMetrics:
        """Copy of the current metrics with uptime filled in."""
        with self._lock.read():
            metrics = self._metrics.model_copy()
        metrics.uptime_seconds = int((utc_now() - self.start_time).total_seconds())
        return metrics

    def trades_frame(self) -> pd.DataFrame:
        """Recent realized trades as a DataFrame with a cumulative P&L column."""
        with self._lock.read():
            trades = list(self._trades)
        df = pd.DataFrame(trades, columns=["closed_at", "pnl"])
        df["cumulative_pnl"] = df["pnl"].cumsum()
        return df

    def daily_summary(self) -> pd.DataFrame:
        """Per-day trade count, wins and P&L."""
        df = self.trades_frame()
        if df.empty:
            return pd.DataFrame(columns=["date", "trades", "wins", "pnl"])
        df["date"] = pd.to_datetime(df["closed_at"], utc=True).dt.strftime("%Y-%m-%d")
        df["win"] = df["pnl"] > 0
        summary = df.groupby("date").agg(
            trades=("pnl", "size"), wins=("win", "sum"), pnl=("pnl", "sum")
        )
        return summary.reset_index()

    def performance_report(self) -> Dict[str, Any]:
        """Summary statistics over the recent trade window."""
        df = self.trades_frame()
        if df.empty:
            return {"total_trades": 0, "win_rate_pct": 0.0, "total_pnl": 0.0,
                    "max_drawdown": 0.0, "sharpe_ratio": 0.0}

        peak = df["cumulative_pnl"].cummax().clip(lower=0)
        drawdown = (peak - df["cumulative_pnl"]).max()
        return {
            "total_trades": len(df),
            "win_rate_pct": round(float((df["pnl"] > 0).mean() * 100), 2),
            "total_pnl": round(float(df["pnl"].sum()), 6),
            "max_drawdown": round(float(drawdown), 6),
            "sharpe_ratio": round(self._sharpe(df["pnl"].tolist()), 4),
        }

    def export_prometheus(self) -> str:
        """Render metrics in the Prometheus text exposition format."""
        m = self.get_metrics()
        lines = []

        def gauge(name: str, help_text: str, value, kind: str = "gauge"):
            lines.append(f"# HELP polyshark_{name} {help_text}")
            lines.append(f"# TYPE polyshark_{name} {kind}")
            lines.append(f"polyshark_{name} {value}")
            lines.append("")

        gauge("trades_total", "Total number of trades", m.trades_total, kind="counter")
        gauge("win_rate", "Win rate fraction", m.win_rate)
        gauge("pnl_total", "Total PnL in USDC", float(m.total_pnl))
        gauge("pnl_daily", "PnL today in USDC", float(m.daily_pnl))
        gauge("sharpe_ratio", "Per-trade Sharpe ratio", m.sharpe_ratio)
        gauge("data_latency_ms", "Market data latency in milliseconds", m.data_latency_ms)
        gauge("consecutive_failures", "Consecutive market data failures", m.consecutive_failures)
        gauge("safe_mode", "Safe mode status (1=enabled, 0=disabled)", 1 if m.is_safe_mode else 0)
        gauge("daily_spent", "USDC spent today", float(m.daily_spent))
        gauge("remaining_allowance", "USDC allowance remaining today", float(m.remaining_allowance))
        gauge("uptime_seconds", "Agent uptime in seconds", m.uptime_seconds, kind="counter")
        return "\n".join(lines)

    @staticmethod
    def _sharpe(pnls: List[float]) -> float:
        """Mean over sample std of per-trade P&L; 0 when undefined."""
        if len(pnls) < 2:
            return 0.0
        values = np.asarray(pnls, dtype=float)
        std = values.std(ddof=1)
        if std == 0:
            return 0.0
        return float(values.mean() / std)
