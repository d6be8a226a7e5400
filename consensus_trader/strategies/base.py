"""Confidence models that turn market conditions into directional conviction."""
import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from consensus_trader.models import MarketConditions, Trend, Volatility, VolumeLevel

logger = logging.getLogger(__name__)

MAX_CONFIDENCE = 100.0

TREND_READING = {
    Trend.BULLISH: 1.0,
    Trend.SIDEWAYS: 0.0,
    Trend.BEARISH: -1.0,
}


@runtime_checkable
class ConfidenceModel(Protocol):
    """Protocol for a per-kind confidence model.

    Models are pure: the same conditions always give the same score.
    """

    def score(self, conditions: MarketConditions) -> tuple[float, str]:
        """Score the conditions for one symbol.

        Args:
            conditions: Snapshot for the current cycle

        Returns:
            Tuple of (confidence in [-100, 100], rationale)
        """
        ...


@dataclass(frozen=True)
class Sensitivity:
    """How strongly a strategy kind reacts to each condition dimension.

    trend and sentiment are directional (signed); volatility and volume
    scale the directional score; bias is a constant lean.
    """

    trend: float = 0.0
    sentiment: float = 0.0
    bias: float = 0.0
    volatility: dict[Volatility, float] = field(default_factory=lambda: {
        Volatility.LOW: 1.0, Volatility.MEDIUM: 1.0, Volatility.HIGH: 1.0,
    })
    volume: dict[VolumeLevel, float] = field(default_factory=lambda: {
        VolumeLevel.LOW: 1.0, VolumeLevel.MEDIUM: 1.0, VolumeLevel.HIGH: 1.0,
    })


def _levels(low: float, medium: float, high: float, enum) -> dict:
    return {enum.LOW: low, enum.MEDIUM: medium, enum.HIGH: high}


DEFAULT_SENSITIVITIES: dict[str, Sensitivity] = {
    "trend_following": Sensitivity(
        trend=75, sentiment=15,
        volatility=_levels(1.0, 1.0, 0.8, Volatility),
        volume=_levels(0.8, 1.0, 1.2, VolumeLevel),
    ),
    "mean_reversion": Sensitivity(
        trend=-60, sentiment=-20,
        volatility=_levels(0.7, 1.0, 1.3, Volatility),
        volume=_levels(1.0, 1.0, 0.9, VolumeLevel),
    ),
    "momentum": Sensitivity(
        trend=60, sentiment=30,
        volatility=_levels(0.8, 1.0, 1.2, Volatility),
        volume=_levels(0.7, 1.0, 1.3, VolumeLevel),
    ),
    "breakout": Sensitivity(
        trend=50, sentiment=10,
        volatility=_levels(0.6, 1.0, 1.4, Volatility),
        volume=_levels(0.6, 1.0, 1.4, VolumeLevel),
    ),
    "sentiment": Sensitivity(
        trend=10, sentiment=90,
        volume=_levels(0.9, 1.0, 1.1, VolumeLevel),
    ),
    "scalping": Sensitivity(
        trend=30, sentiment=10,
        volatility=_levels(0.6, 1.0, 1.5, Volatility),
        volume=_levels(0.5, 1.0, 1.3, VolumeLevel),
    ),
    "ml_prediction": Sensitivity(trend=50, sentiment=40),
    "dca": Sensitivity(bias=40),
}

FALLBACK_KIND = "trend_following"


class SensitivityModel:
    """Confidence model driven by a Sensitivity table entry."""

    def __init__(self, kind: str, sensitivity: Sensitivity):
        self.kind = kind
        self.sensitivity = sensitivity

    def score(self, conditions: MarketConditions) -> tuple[float, str]:
        s = self.sensitivity
        directional = (
            s.trend * TREND_READING[conditions.trend]
            + s.sentiment * conditions.sentiment
        )
        amplifier = s.volatility[conditions.volatility] * s.volume[conditions.volume]
        raw = s.bias + directional * amplifier
        confidence = max(-MAX_CONFIDENCE, min(MAX_CONFIDENCE, raw))

        rationale = (
            f"{self.kind}: {conditions.describe()} -> "
            f"directional {directional:+.1f} x{amplifier:.2f}"
        )
        if s.bias:
            rationale += f", bias {s.bias:+.0f}"
        return confidence, rationale


class ConfidenceModelRegistry:
    """Maps strategy kinds to their confidence models.

    Unknown kinds fall back to the trend-following model.
    """

    def __init__(self, models: dict[str, ConfidenceModel] | None = None):
        if models is None:
            models = {
                kind: SensitivityModel(kind, sensitivity)
                for kind, sensitivity in DEFAULT_SENSITIVITIES.items()
            }
        self._models: dict[str, ConfidenceModel] = dict(models)

    def register(self, kind: str, model: ConfidenceModel) -> None:
        """Install or replace the model for a strategy kind."""
        self._models[kind] = model
        logger.debug(f"Registered confidence model for {kind}")

    def get(self, kind: str) -> ConfidenceModel:
        model = self._models.get(kind)
        if model is not None:
            return model
        fallback = self._models.get(FALLBACK_KIND)
        if fallback is None:
            raise KeyError(f"No confidence model for kind {kind!r}")
        logger.debug(f"No confidence model for {kind}, using {FALLBACK_KIND}")
        return fallback

    def kinds(self) -> list[str]:
        return sorted(self._models)
