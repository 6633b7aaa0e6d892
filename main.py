"""
PolyShark - Main Entry Point

Simulated arbitrage agent for binary-outcome prediction markets.

Usage:
    # Check configuration
    python main.py --check

    # Run a single cycle and print what it did
    python main.py --once

    # Run ten cycles against the Envio indexer
    python main.py --cycles 10 --source envio

    # Show agent status
    python main.py --status

    # Initialize database
    python main.py --init-db
"""

import argparse
import asyncio
import json
import signal
from datetime import datetime, timedelta
from typing import Dict, Optional

import structlog

from polyshark.core.config import polyshark_config
from polyshark.core.engine import TradingAgent, create_trading_agent
from polyshark.core.errors import ConfigError
from polyshark.core.models import utc_now
from polyshark.storage.database import Database
from polyshark.utils.logging_config import LogBuffer, setup_logging

logger = structlog.get_logger(__name__)


class PolySharkApp:
    """
    Process owner for the agent, its collaborators and the log buffer.

    Runs the trading loop and a daily reset task until SIGINT/SIGTERM.
    """

    def __init__(self, log_buffer: LogBuffer):
        self.log_buffer = log_buffer
        self.agent: Optional[TradingAgent] = None
        self.database: Optional[Database] = None

        self._shutdown_event = asyncio.Event()
        self._reset_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """Build the agent and open the trade journal."""
        logger.info("app.initializing", source=polyshark_config.api.source)

        if polyshark_config.database.journal_enabled:
            self.database = Database()
            await self.database.initialize()
            logger.info("app.database_initialized", url=self.database.url)

        self.agent = create_trading_agent(polyshark_config, database=self.database)

        healthy = await self.agent.market_client.health_check()
        logger.info(
            "app.initialized",
            market_data_healthy=healthy,
            latency_ms=self.agent.market_client.last_latency_ms,
        )

    async def run(self):
        """Run until a shutdown signal arrives."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        try:
            await self.agent.start()
            self._reset_task = asyncio.create_task(self._daily_reset_loop())
            await self._shutdown_event.wait()
        except Exception as e:
            logger.error("app.error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def run_cycles(self, cycles: int):
        try:
            await self.agent.run(cycles=cycles)
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Perform graceful shutdown."""
        logger.info("app.shutting_down")

        if self._reset_task:
            self._reset_task.cancel()
            try:
                await self._reset_task
            except asyncio.CancelledError:
                pass

        if self.agent:
            if self.agent.is_running:
                await self.agent.stop()
            await self.agent.market_client.close()

        if self.database:
            await self.database.close()

        logger.info("app.shutdown_complete")

    def _signal_handler(self):
        logger.info("app.shutdown_signal_received")
        self._shutdown_event.set()

    async def _daily_reset_loop(self):
        """Reset the allowance and daily risk counters at each UTC midnight."""
        while True:
            now = utc_now()
            midnight = datetime(now.year, now.month, now.day, tzinfo=now.tzinfo) + timedelta(days=1)
            await asyncio.sleep((midnight - now).total_seconds())
            await self.agent.daily_reset(date=now.strftime("%Y-%m-%d"))

    def get_status(self) -> Dict:
        status = self.agent.get_status() if self.agent else {"running": False}
        status["recent_logs"] = self.log_buffer.recent(10)
        return status


def print_banner():
    """Print the startup banner."""
    banner = f"""
+==================================================================+
|                                                                  |
|                          POLYSHARK                               |
|                                                                  |
|       Simulated bundle arbitrage for prediction markets          |
|                                                                  |
|   source: {polyshark_config.api.source:<8} daily limit: {polyshark_config.permission.daily_limit:<10} USDC             |
+==================================================================+
"""
    print(banner)


def check_configuration() -> Dict:
    """
    Check if configuration is valid.

    Returns:
        Dictionary with validation results
    """
    validation = polyshark_config.validate_configuration()
    warnings = []

    if polyshark_config.execution.random_seed is not None:
        warnings.append(
            f"Fills are deterministic (RANDOM_SEED={polyshark_config.execution.random_seed})"
        )
    if not polyshark_config.database.journal_enabled:
        warnings.append("Trade journal is disabled")
    if polyshark_config.notification.enabled:
        warnings.append("Notifications are enabled")

    return {
        "valid": validation["valid"],
        "issues": validation["issues"],
        "warnings": warnings,
        "source": polyshark_config.api.source,
        "daily_limit": polyshark_config.permission.daily_limit,
    }


def print_status(status: Dict):
    """Print formatted status output."""
    print("\n" + "=" * 60)
    print("           POLYSHARK - AGENT STATUS")
    print("=" * 60)

    stats = status.get("stats", {})
    print(f"\nSource: {status.get('source', 'N/A')}")
    print(f"Safe mode: {status.get('safe_mode', False)}")
    print(f"Cycles: {status.get('cycles', 0)}")

    print("\nAllowance:")
    print(f"   Permission active: {stats.get('permission_active', 'N/A')}")
    print(f"   Spent today: {stats.get('spent_today', '0')} / {stats.get('daily_limit', 'N/A')} USDC")

    print("\nTrading:")
    print(f"   Total trades: {stats.get('total_trades', 0)}")
    print(f"   Win rate: {stats.get('win_rate', 0.0):.1f}%")
    print(f"   Total PnL: {stats.get('total_pnl', '0')} USDC")
    print(f"   Open positions: {stats.get('open_positions', 0)}")

    risk = status.get("risk", {})
    print("\nRisk:")
    print(f"   Halted: {risk.get('halted', False)}")
    if risk.get("halt_reason"):
        print(f"   Reason: {risk['halt_reason']}")

    print("\n" + "=" * 60)


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="PolyShark - simulated prediction market arbitrage agent"
    )

    parser.add_argument(
        "--source",
        choices=["gamma", "envio"],
        help="Market data backend (default: MARKET_DATA_SOURCE or gamma)",
    )
    parser.add_argument("--once", action="store_true", help="Run one cycle and exit")
    parser.add_argument("--cycles", type=int, help="Run N cycles and exit")

    # Actions
    parser.add_argument(
        "--status", action="store_true", help="Show agent status and exit"
    )
    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--init-db", action="store_true", help="Initialize database and exit"
    )

    args = parser.parse_args()

    # Setup logging
    log_buffer = LogBuffer(maxlen=polyshark_config.logging.log_buffer_size)
    setup_logging(buffer=log_buffer)

    if args.source:
        polyshark_config.api.source = args.source

    if not args.check and not args.status:
        print_banner()

    config_check = check_configuration()
    for warning in config_check["warnings"]:
        print(warning)

    # Handle --check
    if args.check:
        print("\n" + "=" * 60)
        print("           CONFIGURATION CHECK")
        print("=" * 60)

        if config_check["valid"]:
            print("\nConfiguration is valid")
        else:
            print("\nConfiguration errors:")
            for issue in config_check["issues"]:
                print(f"   - {issue}")

        print(f"\nMarket data source: {config_check['source']}")
        print(f"Daily limit: {config_check['daily_limit']} USDC")
        print("\n" + "=" * 60)
        return

    if not config_check["valid"]:
        raise ConfigError("; ".join(config_check["issues"]))

    # Handle --init-db
    if args.init_db:
        print("\nInitializing database...")
        db = Database()
        await db.initialize()
        print("Database initialized successfully")
        await db.close()
        return

    app = PolySharkApp(log_buffer)

    try:
        await app.initialize()

        if args.status:
            print_status(app.get_status())
            await app.shutdown()
            return

        if args.once or args.cycles:
            await app.run_cycles(1 if args.once else args.cycles)
            print(json.dumps(app.get_status()["last_cycle"], indent=2))
            return

        await app.run()

    except KeyboardInterrupt:
        print("\n\nShutdown requested by user...")
    except Exception as e:
        logger.error("main.error", error=str(e), exc_info=True)
        print(f"\nFatal error: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
