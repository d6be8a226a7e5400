"""Market data models for the consensus trader."""
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any


class Volatility(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Trend(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


class VolumeLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class PriceBar:
    """OHLCV price bar data."""
    symbol: str
    date: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        d = asdict(self)
        d["date"] = self.date.isoformat()
        return d


@dataclass(frozen=True)
class MarketConditions:
    """Snapshot of market readings for one symbol and one evaluation cycle."""
    symbol: str
    volatility: Volatility
    trend: Trend
    volume: VolumeLevel
    sentiment: float       # -1.0 (bearish crowd) to 1.0 (bullish crowd)
    as_of: datetime

    def __post_init__(self):
        if not -1.0 <= self.sentiment <= 1.0:
            raise ValueError(f"sentiment must be within [-1, 1], got {self.sentiment}")

    def describe(self) -> str:
        """Short human-readable summary used in signal reasoning."""
        return (
            f"trend={self.trend.value}, volatility={self.volatility.value}, "
            f"volume={self.volume.value}, sentiment={self.sentiment:+.2f}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "volatility": self.volatility.value,
            "trend": self.trend.value,
            "volume": self.volume.value,
            "sentiment": self.sentiment,
            "as_of": self.as_of.isoformat(),
        }
