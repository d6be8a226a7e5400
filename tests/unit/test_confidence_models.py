"""Tests for confidence models and their registry."""
from datetime import datetime
import pytest


def _conditions(trend="bullish", volatility="medium", volume="medium", sentiment=0.0):
    from consensus_trader.models import MarketConditions, Trend, Volatility, VolumeLevel

    return MarketConditions(
        symbol="BTC/USD",
        volatility=Volatility(volatility),
        trend=Trend(trend),
        volume=VolumeLevel(volume),
        sentiment=sentiment,
        as_of=datetime(2026, 1, 5),
    )


def test_trend_following_scores_bullish_trend():
    from consensus_trader.strategies.base import ConfidenceModelRegistry

    model = ConfidenceModelRegistry().get("trend_following")

    confidence, rationale = model.score(_conditions(trend="bullish", sentiment=0.6))

    # 75 * 1.0 + 15 * 0.6
    assert confidence == pytest.approx(84.0)
    assert "trend_following" in rationale


def test_mean_reversion_leans_against_trend():
    from consensus_trader.strategies.base import ConfidenceModelRegistry

    model = ConfidenceModelRegistry().get("mean_reversion")

    confidence, _ = model.score(_conditions(trend="bullish", sentiment=0.6))

    assert confidence == pytest.approx(-72.0)


def test_volatility_and_volume_amplify_score():
    from consensus_trader.strategies.base import ConfidenceModelRegistry

    model = ConfidenceModelRegistry().get("breakout")

    calm, _ = model.score(_conditions(volatility="low", volume="low"))
    wild, _ = model.score(_conditions(volatility="high", volume="high"))

    assert calm == pytest.approx(50 * 0.6 * 0.6)
    assert wild == pytest.approx(min(100.0, 50 * 1.4 * 1.4))


def test_dca_bias_applies_without_trend():
    from consensus_trader.strategies.base import ConfidenceModelRegistry

    model = ConfidenceModelRegistry().get("dca")

    confidence, rationale = model.score(_conditions(trend="sideways"))

    assert confidence == pytest.approx(40.0)
    assert "bias" in rationale


def test_confidence_is_clamped():
    from consensus_trader.strategies.base import Sensitivity, SensitivityModel

    model = SensitivityModel("hot", Sensitivity(trend=500))

    confidence, _ = model.score(_conditions(trend="bearish"))

    assert confidence == -100.0


def test_models_are_deterministic():
    from consensus_trader.strategies.base import ConfidenceModelRegistry

    registry = ConfidenceModelRegistry()
    conditions = _conditions(trend="bearish", volatility="high", sentiment=-0.3)

    for kind in registry.kinds():
        model = registry.get(kind)
        assert model.score(conditions) == model.score(conditions)


def test_unknown_kind_falls_back_to_trend_following():
    from consensus_trader.strategies.base import ConfidenceModelRegistry

    registry = ConfidenceModelRegistry()

    assert registry.get("arbitrage") is registry.get("trend_following")


def test_register_replaces_model():
    from consensus_trader.strategies.base import ConfidenceModelRegistry

    class Fixed:
        def score(self, conditions):
            return 55.0, "fixed"

    registry = ConfidenceModelRegistry()
    registry.register("momentum", Fixed())

    assert registry.get("momentum").score(_conditions()) == (55.0, "fixed")


def test_empty_registry_without_fallback_raises():
    from consensus_trader.strategies.base import ConfidenceModelRegistry

    registry = ConfidenceModelRegistry(models={})

    with pytest.raises(KeyError):
        registry.get("momentum")
