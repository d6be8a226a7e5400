"""Price oracle protocol and in-process implementations."""
import logging
import time
from typing import Callable, Protocol, runtime_checkable

from consensus_trader.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


@runtime_checkable
class PriceOracle(Protocol):
    """Protocol for pull-based price sources."""

    async def get_price(self, symbol: str) -> float:
        """Get the current price. Raises UpstreamUnavailable on failure."""
        ...


class StaticPriceOracle:
    """Serves prices from a fixed table; used for replays and tests."""

    def __init__(self, prices: dict[str, float] | None = None):
        self._prices: dict[str, float] = dict(prices or {})

    def set_price(self, symbol: str, price: float) -> None:
        self._prices[symbol] = price

    async def get_price(self, symbol: str) -> float:
        price = self._prices.get(symbol)
        if price is None or price <= 0:
            raise UpstreamUnavailable(f"No price for {symbol}")
        return price


class CachedPriceOracle:
    """Wraps another oracle with a bounded-staleness cache.

    Prices younger than ``refresh_seconds`` are served without asking the
    upstream. When the upstream fails, the last price is served as long as
    it is no older than ``max_age_seconds``; past that UpstreamUnavailable
    is raised.
    """

    def __init__(
        self,
        upstream: PriceOracle,
        max_age_seconds: float = 10.0,
        refresh_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.upstream = upstream
        self.max_age_seconds = max_age_seconds
        self.refresh_seconds = min(refresh_seconds, max_age_seconds)
        self.clock = clock
        self._cache: dict[str, tuple[float, float]] = {}  # symbol -> (price, fetched_at)

    async def get_price(self, symbol: str) -> float:
        now = self.clock()
        cached = self._cache.get(symbol)
        if cached is not None and now - cached[1] <= self.refresh_seconds:
            return cached[0]

        try:
            price = await self.upstream.get_price(symbol)
        except UpstreamUnavailable as e:
            if cached is not None and now - cached[1] <= self.max_age_seconds:
                logger.warning(f"Serving cached {symbol} price after upstream failure: {e}")
                return cached[0]
            raise

        self._cache[symbol] = (price, now)
        return price

    def invalidate(self, symbol: str | None = None) -> None:
        if symbol is None:
            self._cache.clear()
        else:
            self._cache.pop(symbol, None)
