"""Bundle arbitrage detection.

A complete bundle of outcome tokens pays exactly $1 at resolution. When the
outcome prices of a market sum to less than $1 the bundle can be bought at a
discount; when they sum to more than $1 the bundle is overvalued.
"""
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import structlog

from polyshark.core.models import ONE, ArbitrageSignal, MarketSnapshot, Side, to_decimal

logger = structlog.get_logger(__name__)


class ArbitrageDetector:
    """Emit signals for markets whose bundle price deviates from $1."""

    def __init__(self, threshold: Decimal):
        self.threshold = to_decimal(threshold)

        # Track detector activity
        self.markets_scanned = 0
        self.signals_generated = 0

    @staticmethod
    def check(market: MarketSnapshot, threshold: Decimal) -> Optional[ArbitrageSignal]:
        """
        Check one market for a mispriced bundle.

        Args:
            market: Market with an outcome price vector
            threshold: Minimum |sum - 1| required to signal

        Returns:
            ArbitrageSignal if spread > threshold, otherwise None
        """
        if not market.outcome_prices:
            return None

        price_sum = market.price_sum
        spread = abs(price_sum - ONE)

        if spread <= to_decimal(threshold):
            return None

        return ArbitrageSignal(
            market_id=market.id,
            spread=spread,
            edge=spread,
            side=Side.BUY if price_sum < ONE else Side.SELL,
            price_sum=price_sum,
            token_ids=list(market.clob_token_ids),
            prices=list(market.outcome_prices),
        )

    def scan(self, markets: Iterable[MarketSnapshot]) -> List[ArbitrageSignal]:
        """Check every hydrated market against the configured threshold."""
        signals = []
        for market in markets:
            self.markets_scanned += 1
            if not market.is_hydrated:
                logger.debug("detector.market_not_hydrated", market_id=market.id)
                continue

            signal = self.check(market, self.threshold)
            if signal is None:
                continue

            self.signals_generated += 1
            signals.append(signal)
            logger.info(
                "detector.signal",
                market_id=signal.market_id,
                side=signal.side.value,
                spread=str(signal.spread),
                price_sum=str(signal.price_sum),
            )

        return signals

    def get_stats(self) -> Dict[str, Any]:
        """Get detector statistics."""
        return {
            "threshold": str(self.threshold),
            "markets_scanned": self.markets_scanned,
            "signals_generated": self.signals_generated,
        }
