"""HTTP price oracle using aiohttp.

Fetches a JSON document per symbol and reads the price from a dotted
path in it, e.g. ``data.amount`` or ``{symbol}.usd``.
"""
import asyncio
import logging
from typing import Any

import aiohttp

from consensus_trader.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class HttpPriceOracle:
    """Pull-based price oracle over a JSON HTTP endpoint."""

    def __init__(
        self,
        url_template: str,
        price_path: str = "price",
        timeout_seconds: float = 5.0,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the oracle.

        Args:
            url_template: URL with a "{symbol}" placeholder
            price_path: Dotted path to the price in the JSON body; may contain "{symbol}"
            timeout_seconds: Per-request timeout
            session: Optional shared session (created lazily otherwise)
        """
        self.url_template = url_template
        self.price_path = price_path
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

        logger.debug(f"HttpPriceOracle initialized for {url_template} (price at {price_path})")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def get_price(self, symbol: str) -> float:
        url = self.url_template.format(symbol=symbol)
        session = await self._get_session()

        try:
            async with session.get(url, timeout=self.timeout) as response:
                if response.status != 200:
                    raise UpstreamUnavailable(f"Price request for {symbol} failed: HTTP {response.status}")
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    raise UpstreamUnavailable(f"Malformed price response for {symbol}: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamUnavailable(f"Price request for {symbol} failed: {e}") from e

        price = self._extract(body, symbol)
        logger.debug(f"Fetched {symbol} price {price}")
        return price

    def _extract(self, body: Any, symbol: str) -> float:
        value = body
        for key in self.price_path.format(symbol=symbol).split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                raise UpstreamUnavailable(f"No '{self.price_path}' in price response for {symbol}")

        try:
            price = float(value)
        except (TypeError, ValueError) as e:
            raise UpstreamUnavailable(f"Non-numeric price for {symbol}: {value!r}") from e

        if price <= 0:
            raise UpstreamUnavailable(f"Invalid price for {symbol}: {price}")
        return price

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
