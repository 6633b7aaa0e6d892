"""Market data client for Polymarket-style prediction markets.

One capability with a closed set of backends, chosen once at startup:
- GAMMA: Gamma REST events API for markets, CLOB REST for order books
- ENVIO: Envio GraphQL indexer for both markets and order books

Every public fetch is bounded by the configured timeout. Network, HTTP,
decoding and timeout failures all surface as FetchError so the trading loop
can treat them as one recoverable condition.
"""
import asyncio
import json
import time
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
import structlog

from polyshark.core.config import ApiConfig
from polyshark.core.errors import FetchError
from polyshark.core.models import MarketSnapshot, OrderBook, PriceLevel, to_decimal

logger = structlog.get_logger(__name__)

ENVIO_MARKETS_QUERY = """
query Markets($limit: Int) {
  markets(limit: $limit) {
    id
    question
    outcomes
    outcomePrices
    clobTokenIds
    liquidity
    active
  }
}
"""

ENVIO_ORDER_BOOK_QUERY = """
query OrderBook($tokenId: String!) {
  orderBook(tokenId: $tokenId) {
    tokenId
    bids { price size }
    asks { price size }
    timestamp
  }
}
"""

ENVIO_HEALTH_QUERY = """
{
  _meta {
    block { number timestamp }
  }
}
"""


class MarketDataSource(str, Enum):
    """Available market data backends."""
    GAMMA = "gamma"
    ENVIO = "envio"


class RetryConfig:
    """Configuration for retry logic."""
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_BASE_DELAY = 0.5  # seconds
    DEFAULT_MAX_DELAY = 10.0  # seconds
    DEFAULT_EXPONENTIAL_BASE = 2.0


def with_retry(
    max_retries: int = RetryConfig.DEFAULT_MAX_RETRIES,
    base_delay: float = RetryConfig.DEFAULT_BASE_DELAY,
    max_delay: float = RetryConfig.DEFAULT_MAX_DELAY,
    exponential_base: float = RetryConfig.DEFAULT_EXPONENTIAL_BASE,
    retryable_exceptions: tuple = (httpx.TransportError,)
):
    """Decorator for adding retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        retryable_exceptions: Tuple of exceptions that should trigger a retry
    """
    def decorator(func):
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_exception = e
                    if attempt < max_retries:
                        delay = min(
                            base_delay * (exponential_base ** attempt),
                            max_delay
                        )
                        logger.warning(
                            f"{func.__name__}.retry_attempt",
                            attempt=attempt + 1,
                            max_retries=max_retries,
                            delay=delay,
                            error=str(e)
                        )
                        await asyncio.sleep(delay)

            # All retries exhausted
            logger.error(
                f"{func.__name__}.max_retries_exceeded",
                max_retries=max_retries,
                last_error=str(last_exception)
            )
            raise last_exception

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper
    return decorator


class MarketDataClient:
    """Market and order book retrieval for one backend.

    Attributes:
        source: Backend selected at startup
        config: API endpoints and timeouts
        last_latency_ms: Round trip of the most recent health check
    """

    def __init__(
        self,
        source: MarketDataSource,
        config: Optional[ApiConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.source = MarketDataSource(source)
        self.config = config or ApiConfig()
        self.timeout = self.config.fetch_timeout_secs
        self._client = client or httpx.AsyncClient(timeout=self.timeout)
        self._owns_client = client is None
        self.last_latency_ms: Optional[float] = None

    async def close(self):
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    # === Public API ===

    async def fetch_markets(self, limit: Optional[int] = None) -> List[MarketSnapshot]:
        """
        Fetch active markets from the configured backend.

        Args:
            limit: Maximum number of events/markets to request

        Returns:
            Parsed markets; malformed entries are skipped

        Raises:
            FetchError: network failure, bad response, or timeout
        """
        limit = limit or self.config.market_limit
        if self.source == MarketDataSource.GAMMA:
            coro = self._fetch_gamma_markets(limit)
        else:
            coro = self._fetch_envio_markets(limit)
        markets = await self._bounded(coro, "markets")
        logger.debug("market_client.markets_fetched", source=self.source.value, count=len(markets))
        return markets

    async def fetch_order_book(self, token_id: str) -> OrderBook:
        """Fetch a fresh order book for one token."""
        if self.source == MarketDataSource.GAMMA:
            coro = self._fetch_clob_book(token_id)
        else:
            coro = self._fetch_envio_book(token_id)
        return await self._bounded(coro, f"order book {token_id}")

    async def hydrate_prices(self, market: MarketSnapshot) -> MarketSnapshot:
        """Fill in missing outcome prices from order book midpoints.

        Prices are only replaced when every leg has a positive midpoint;
        otherwise the market is returned unhydrated and the detector skips it.
        """
        if market.is_hydrated:
            return market

        prices = []
        for token_id in market.clob_token_ids:
            book = await self.fetch_order_book(token_id)
            midpoint = book.midpoint
            if midpoint is None or midpoint <= 0:
                logger.debug(
                    "market_client.hydrate_skipped",
                    market_id=market.id,
                    token_id=token_id,
                )
                return market
            prices.append(midpoint)

        logger.debug(
            "market_client.prices_hydrated",
            market_id=market.id,
            prices=[str(p) for p in prices],
        )
        return market.with_prices(prices)

    async def health_check(self) -> bool:
        """Ping the backend and record its latency."""
        start = time.monotonic()
        try:
            if self.source == MarketDataSource.ENVIO:
                data = await self._bounded(self._post_graphql(ENVIO_HEALTH_QUERY), "health")
                healthy = "_meta" in data
            else:
                await self._bounded(
                    self._get_json(f"{self.config.gamma_url}/events", {"limit": 1}), "health"
                )
                healthy = True
        except FetchError as e:
            logger.warning("market_client.health_check_failed", source=self.source.value, error=str(e))
            healthy = False

        self.last_latency_ms = (time.monotonic() - start) * 1000
        return healthy

    # === Backends ===

    async def _fetch_gamma_markets(self, limit: int) -> List[MarketSnapshot]:
        events = await self._get_json(
            f"{self.config.gamma_url}/events",
            {"closed": "false", "active": "true", "limit": limit},
        )
        if not isinstance(events, list):
            raise FetchError(self.source.value, "events response is not a list")

        markets = []
        for event in events:
            for raw in event.get("markets") or []:
                market = self._parse_market(raw)
                if market is not None:
                    markets.append(market)
        return markets

    async def _fetch_envio_markets(self, limit: int) -> List[MarketSnapshot]:
        data = await self._post_graphql(ENVIO_MARKETS_QUERY, {"limit": limit})
        markets = []
        for raw in data.get("markets") or []:
            market = self._parse_market(raw)
            if market is not None:
                markets.append(market)
        return markets

    async def _fetch_clob_book(self, token_id: str) -> OrderBook:
        data = await self._get_json(f"{self.config.clob_url}/book", {"token_id": token_id})
        return self._parse_book(token_id, data)

    async def _fetch_envio_book(self, token_id: str) -> OrderBook:
        data = await self._post_graphql(ENVIO_ORDER_BOOK_QUERY, {"tokenId": token_id})
        book = data.get("orderBook")
        if not book:
            raise FetchError(self.source.value, f"no order book for token {token_id}")
        return self._parse_book(token_id, book)

    # === Transport ===

    @with_retry()
    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._client.get(url, params=params)
        response.raise_for_status()
        return response.json()

    @with_retry()
    async def _post_graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict:
        payload = {"query": query}
        if variables:
            payload["variables"] = variables
        response = await self._client.post(self.config.envio_url, json=payload)
        response.raise_for_status()
        body = response.json()
        if body.get("errors"):
            raise FetchError(self.source.value, f"GraphQL errors: {body['errors']}")
        return body.get("data") or {}

    async def _bounded(self, coro, what: str):
        """Await `coro` under the fetch timeout, normalising failures."""
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise FetchError(self.source.value, f"{what} timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            raise FetchError(self.source.value, f"{what}: {e}") from e
        except (ValueError, KeyError, TypeError, AttributeError, ArithmeticError) as e:
            raise FetchError(self.source.value, f"{what}: malformed response ({e})") from e

    # === Parsing ===

    def _parse_market(self, raw: Dict[str, Any]) -> Optional[MarketSnapshot]:
        """Build a snapshot from a Gamma or Envio market record."""
        token_ids = [str(t) for t in _decode_list(raw.get("clobTokenIds"))]
        if len(token_ids) < 2:
            return None

        outcomes = [str(o) for o in _decode_list(raw.get("outcomes"))]
        if len(outcomes) != len(token_ids):
            outcomes = [f"Outcome {i}" for i in range(len(token_ids))]

        prices = [_decimal_or_none(p) for p in _decode_list(raw.get("outcomePrices"))]
        if len(prices) != len(token_ids) or any(p is None for p in prices):
            prices = []

        try:
            return MarketSnapshot(
                id=str(raw.get("id") or raw.get("conditionId") or ""),
                question=raw.get("question") or "",
                outcomes=outcomes,
                outcome_prices=prices,
                clob_token_ids=token_ids,
                liquidity=_decimal_or_none(raw.get("liquidity")),
            )
        except ValueError as e:
            logger.warning("market_client.market_skipped", market_id=raw.get("id"), error=str(e))
            return None

    @staticmethod
    def _parse_book(token_id: str, data: Dict[str, Any]) -> OrderBook:
        return OrderBook(
            token_id=str(data.get("tokenId") or data.get("asset_id") or token_id),
            bids=_parse_levels(data.get("bids")),
            asks=_parse_levels(data.get("asks")),
        )


def _decode_list(value) -> List[Any]:
    """Gamma encodes some list fields as JSON strings."""
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    return list(value) if isinstance(value, list) else []


def _decimal_or_none(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        d = to_decimal(value)
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def _parse_levels(raw_levels) -> List[PriceLevel]:
    """Parse book levels, dropping empty and out-of-range entries."""
    levels = []
    for raw in raw_levels or []:
        price = _decimal_or_none(raw.get("price"))
        size = _decimal_or_none(raw.get("size"))
        if price is None or size is None or size <= 0 or price < 0 or price > 1:
            continue
        levels.append(PriceLevel(price=price, size=size))
    return levels
