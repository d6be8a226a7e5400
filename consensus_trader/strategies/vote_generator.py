"""Per-strategy vote generation."""
import logging

from consensus_trader.models import MarketConditions, Side, Strategy, Vote
from consensus_trader.strategies.base import ConfidenceModelRegistry

logger = logging.getLogger(__name__)

# Below this absolute confidence a strategy abstains
MIN_VOTE_CONFIDENCE = 30.0

# Track record can at most double a strategy's weight
MAX_TRACK_RECORD_BOOST = 2.0
TRADES_PER_BOOST = 1000.0


def vote_weight(strategy: Strategy) -> float:
    """Weight of a strategy's vote from its performance and track record."""
    boost = min(1.0 + strategy.total_trades / TRADES_PER_BOOST, MAX_TRACK_RECORD_BOOST)
    return max(0.0, strategy.performance_weight * boost)


class VoteGenerator:
    """Produces a Vote for one strategy, symbol and market snapshot."""

    def __init__(self, models: ConfidenceModelRegistry | None = None):
        self.models = models or ConfidenceModelRegistry()

    def evaluate(
        self,
        strategy: Strategy,
        symbol: str,
        conditions: MarketConditions,
    ) -> Vote | None:
        """Evaluate one strategy against a snapshot.

        Args:
            strategy: Strategy state at the start of the cycle
            symbol: Symbol being evaluated
            conditions: Market snapshot for this cycle

        Returns:
            Vote, or None if the strategy abstains
        """
        if not strategy.is_active:
            logger.debug(f"{strategy.name} is {strategy.status.value}, no vote")
            return None

        if symbol not in strategy.target_symbols:
            return None

        model = self.models.get(strategy.kind)
        confidence, rationale = model.score(conditions)

        floor = max(MIN_VOTE_CONFIDENCE, strategy.confidence_threshold)
        if abs(confidence) < floor:
            logger.debug(
                f"{strategy.name} abstains on {symbol}: |{confidence:.1f}| < {floor:.0f}"
            )
            return None

        return Vote(
            strategy_id=strategy.id,
            strategy_kind=strategy.kind,
            direction=Side.BUY if confidence > 0 else Side.SELL,
            confidence=confidence,
            weight=vote_weight(strategy),
            rationale=rationale,
        )
