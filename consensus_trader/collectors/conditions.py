"""Market condition snapshot providers.

A provider is asked once per evaluation cycle and returns an immutable
MarketConditions snapshot for the symbol.
"""
import logging
import statistics
from datetime import datetime
from typing import Any, Callable, Protocol, runtime_checkable

from consensus_trader.core.data_store import DataStore
from consensus_trader.core.errors import UpstreamUnavailable
from consensus_trader.models import (
    MarketConditions,
    PriceBar,
    Trend,
    Volatility,
    VolumeLevel,
)

logger = logging.getLogger(__name__)

# Close-to-close return stdev thresholds
LOW_VOLATILITY = 0.01
HIGH_VOLATILITY = 0.03

# Short SMA must differ from long SMA by more than this to call a trend
TREND_BAND = 0.01

# Last volume relative to the lookback mean
LOW_VOLUME_RATIO = 0.8
HIGH_VOLUME_RATIO = 1.2


@runtime_checkable
class ConditionsProvider(Protocol):
    """Protocol for market condition sources."""

    async def snapshot(self, symbol: str) -> MarketConditions:
        """Get the conditions for this cycle. Raises UpstreamUnavailable on failure."""
        ...


@runtime_checkable
class SentimentSource(Protocol):
    """Protocol for crowd-sentiment readings in [-1, 1]."""

    def sentiment(self, symbol: str) -> float:
        ...


class StaticSentimentSource:
    """Sentiment from a fixed table; 0.0 for unknown symbols."""

    def __init__(self, readings: dict[str, float] | None = None):
        self.readings = dict(readings or {})

    def sentiment(self, symbol: str) -> float:
        return max(-1.0, min(1.0, self.readings.get(symbol, 0.0)))


class StaticConditionsProvider:
    """Serves configured snapshots, e.g. for replays and tests."""

    def __init__(
        self,
        snapshots: dict[str, dict[str, Any]] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._snapshots: dict[str, dict[str, Any]] = dict(snapshots or {})
        self.clock = clock

    def set(self, symbol: str, **readings: Any) -> None:
        self._snapshots[symbol] = readings

    async def snapshot(self, symbol: str) -> MarketConditions:
        raw = self._snapshots.get(symbol)
        if raw is None:
            raise UpstreamUnavailable(f"No market conditions configured for {symbol}")
        try:
            return MarketConditions(
                symbol=symbol,
                volatility=Volatility(raw.get("volatility", "medium")),
                trend=Trend(raw.get("trend", "sideways")),
                volume=VolumeLevel(raw.get("volume", "medium")),
                sentiment=float(raw.get("sentiment", 0.0)),
                as_of=self.clock(),
            )
        except ValueError as e:
            raise UpstreamUnavailable(f"Invalid market conditions for {symbol}: {e}") from e


class BarConditionsProvider:
    """Classifies the most recent stored price bars into a snapshot."""

    def __init__(
        self,
        data_store: DataStore,
        lookback_bars: int = 20,
        sentiment: SentimentSource | None = None,
    ):
        """Initialize the provider.

        Args:
            data_store: Store holding the bar history
            lookback_bars: Number of bars to classify
            sentiment: Source of sentiment readings (neutral if omitted)
        """
        if lookback_bars < 2:
            raise ValueError("lookback_bars must be at least 2")
        self.data_store = data_store
        self.lookback_bars = lookback_bars
        self.sentiment = sentiment or StaticSentimentSource()

    async def snapshot(self, symbol: str) -> MarketConditions:
        try:
            bars = self.data_store.latest_bars(symbol, self.lookback_bars)
        except Exception as e:
            raise UpstreamUnavailable(f"Failed to read bars for {symbol}: {e}") from e

        if len(bars) < 2:
            raise UpstreamUnavailable(f"Not enough bars for {symbol} ({len(bars)})")

        return MarketConditions(
            symbol=symbol,
            volatility=classify_volatility(bars),
            trend=classify_trend(bars),
            volume=classify_volume(bars),
            sentiment=self.sentiment.sentiment(symbol),
            as_of=bars[-1].date,
        )


def classify_volatility(bars: list[PriceBar]) -> Volatility:
    returns = [
        (cur.close - prev.close) / prev.close
        for prev, cur in zip(bars, bars[1:])
        if prev.close > 0
    ]
    if len(returns) < 2:
        return Volatility.MEDIUM
    stdev = statistics.stdev(returns)
    if stdev < LOW_VOLATILITY:
        return Volatility.LOW
    if stdev < HIGH_VOLATILITY:
        return Volatility.MEDIUM
    return Volatility.HIGH


def classify_trend(bars: list[PriceBar]) -> Trend:
    closes = [b.close for b in bars]
    short_window = max(1, len(closes) // 4)
    short_sma = statistics.fmean(closes[-short_window:])
    long_sma = statistics.fmean(closes)
    if long_sma <= 0:
        return Trend.SIDEWAYS
    change = (short_sma - long_sma) / long_sma
    if change > TREND_BAND:
        return Trend.BULLISH
    if change < -TREND_BAND:
        return Trend.BEARISH
    return Trend.SIDEWAYS


def classify_volume(bars: list[PriceBar]) -> VolumeLevel:
    mean_volume = statistics.fmean(b.volume for b in bars)
    if mean_volume <= 0:
        return VolumeLevel.MEDIUM
    ratio = bars[-1].volume / mean_volume
    if ratio < LOW_VOLUME_RATIO:
        return VolumeLevel.LOW
    if ratio > HIGH_VOLUME_RATIO:
        return VolumeLevel.HIGH
    return VolumeLevel.MEDIUM
