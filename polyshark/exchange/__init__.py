"""Market data integration module for PolyShark."""

from polyshark.exchange.market_client import (
    MarketDataClient,
    MarketDataSource,
    RetryConfig,
    with_retry,
)

__all__ = [
    "MarketDataClient",
    "MarketDataSource",
    "RetryConfig",
    "with_retry",
]
