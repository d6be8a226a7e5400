"""Fixtures for integration tests."""
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer


PRICES = {"BTC": 45000.0, "ETH": 2500.0, "SOL": 100.0}


@pytest_asyncio.fixture
async def price_server():
    """Serve JSON quotes at /quote/{symbol}; tests may edit ``server.prices``."""
    prices = dict(PRICES)

    async def quote(request):
        symbol = request.match_info["symbol"]
        if symbol not in prices:
            return web.json_response({"error": "unknown symbol"}, status=404)
        return web.json_response({"quote": {"symbol": symbol, "last": prices[symbol]}})

    app = web.Application()
    app.router.add_get("/quote/{symbol}", quote)
    server = TestServer(app)
    await server.start_server()
    server.prices = prices
    server.url_template = f"http://{server.host}:{server.port}/quote/{{symbol}}"
    yield server
    await server.close()


@pytest.fixture
def config_text(tmp_path):
    """Build a YAML config pointing at a price server URL."""
    def build(url_template: str) -> str:
        return f"""
data_store:
  path: "{tmp_path / 'data'}"

price_oracle:
  backend: http
  url: "{url_template}"
  price_path: "quote.last"
  max_age_seconds: 10

conditions:
  backend: static
  snapshots:
    BTC: {{trend: bullish, volatility: medium, volume: high, sentiment: 0.5}}
    ETH: {{trend: bearish, volatility: low, volume: medium, sentiment: -0.6}}
    SOL: {{trend: sideways, volatility: high, volume: low, sentiment: 0.0}}

scheduler:
  symbols: [BTC, ETH, SOL, DOGE]
  interval_seconds: 0.01
  jitter_seconds: 0.01

execution:
  fee_rate: 0.001
  distribution_jitter_seconds: 0.01

accounts:
  - {{id: small, balance: 1000, confidence_threshold: 60}}
  - {{id: large, balance: 50000, risk_multiplier: 5, confidence_threshold: 60, max_position_value: 3000}}
  - {{id: picky, balance: 20000, confidence_threshold: 94}}

strategies:
  - {{id: trend, kind: trend_following, target_symbols: [BTC, ETH, SOL, DOGE]}}
  - {{id: momentum, kind: momentum, target_symbols: [BTC, ETH, SOL, DOGE]}}
  - {{id: sentiment, kind: sentiment, target_symbols: [BTC, ETH, SOL, DOGE]}}
  - {{id: meanrev, kind: mean_reversion, target_symbols: [BTC, ETH], performance_weight: 0.2}}
"""
    return build
