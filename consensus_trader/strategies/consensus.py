"""Weighted consensus over strategy votes."""
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable

from consensus_trader.core.errors import InsufficientConsensus
from consensus_trader.models import EnsembleSignal, MarketConditions, Side, Vote

logger = logging.getLogger(__name__)

# Tolerance when comparing strength against the threshold, so that an
# exact 0.6 computed in floating point is never rejected
STRENGTH_EPSILON = 1e-9


class ConsensusAggregator:
    """Combines votes for one symbol and cycle into an EnsembleSignal.

    net = (sum(buy conf * w) - sum(|sell conf| * w)) / sum(w), on the
    -100..100 confidence scale. Consensus strength is |net| / 100.
    A signal is emitted only when at least ``min_votes`` distinct
    strategies voted and strength >= ``min_strength``.
    """

    def __init__(
        self,
        min_votes: int = 2,
        min_strength: float = 0.6,
        max_confidence: float = 95.0,
        base_notional: float = 1000.0,
        signal_ttl_seconds: float = 30.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the aggregator.

        Args:
            min_votes: Minimum number of distinct strategies that must vote
            min_strength: Minimum consensus strength (inclusive)
            max_confidence: Cap on emitted signal confidence
            base_notional: Notional traded at full consensus strength
            signal_ttl_seconds: Validity window of emitted signals
            clock: Source of the current time
        """
        self.min_votes = min_votes
        self.min_strength = min_strength
        self.max_confidence = max_confidence
        self.base_notional = base_notional
        self.signal_ttl = timedelta(seconds=signal_ttl_seconds)
        self.clock = clock

    @staticmethod
    def net_weight(votes: list[Vote]) -> float:
        """Weighted net directional confidence in [-100, 100]."""
        total_weight = sum(v.weight for v in votes)
        if total_weight <= 0:
            return 0.0
        buy = sum(v.confidence * v.weight for v in votes if v.confidence > 0)
        sell = sum(abs(v.confidence) * v.weight for v in votes if v.confidence < 0)
        return (buy - sell) / total_weight

    def consensus(self, votes: list[Vote]) -> float:
        """Net weight of a set of votes that reaches consensus.

        Raises:
            InsufficientConsensus: Too few voters, or too divided
        """
        voters = {v.strategy_id for v in votes}
        if len(voters) < self.min_votes:
            raise InsufficientConsensus(f"{len(voters)} voter(s) < {self.min_votes}")

        net = self.net_weight(votes)
        if net == 0:
            raise InsufficientConsensus("votes cancel out")

        strength = abs(net) / 100.0
        if strength + STRENGTH_EPSILON < self.min_strength:
            raise InsufficientConsensus(f"strength {strength:.2f} < {self.min_strength:.2f}")
        return net

    def aggregate(
        self,
        symbol: str,
        votes: list[Vote],
        price: float,
        conditions: MarketConditions | None = None,
    ) -> EnsembleSignal | None:
        """Aggregate votes into a signal.

        Args:
            symbol: Symbol the votes are about
            votes: Votes cast this cycle
            price: Reference price for sizing
            conditions: Snapshot the votes were based on, for reasoning

        Returns:
            EnsembleSignal, or None when consensus is insufficient
        """
        try:
            net = self.consensus(votes)
        except InsufficientConsensus as e:
            logger.debug(f"No consensus for {symbol}: {e}")
            return None

        if price <= 0:
            logger.warning(f"Cannot size signal for {symbol}: invalid price {price}")
            return None

        side = Side.BUY if net > 0 else Side.SELL
        strength = min(abs(net) / 100.0, 1.0)
        confidence = min(strength * 100.0, self.max_confidence)
        size = self.base_notional * strength / price
        now = self.clock()

        signal = EnsembleSignal(
            id=uuid.uuid4().hex,
            symbol=symbol,
            side=side,
            price=price,
            size=size,
            confidence=confidence,
            consensus_strength=strength,
            votes=tuple(votes),
            reasoning=self._reasoning(symbol, side, votes, strength, conditions),
            created_at=now,
            expires_at=now + self.signal_ttl,
        )

        logger.info(
            f"Consensus {side.value.upper()} {symbol} @ {price:.2f}: "
            f"strength={strength:.2f}, confidence={confidence:.0f}, size={size:.6f}"
        )
        return signal

    def _reasoning(
        self,
        symbol: str,
        side: Side,
        votes: list[Vote],
        strength: float,
        conditions: MarketConditions | None,
    ) -> str:
        agreeing = [v for v in votes if v.direction == side]
        kinds = Counter(v.strategy_kind for v in agreeing)
        kinds_text = ", ".join(
            f"{kind} x{count}" if count > 1 else kind for kind, count in sorted(kinds.items())
        )
        parts = [
            f"Ensemble of {len(agreeing)}/{len(votes)} strategies agree on "
            f"{side.value} for {symbol} ({kinds_text})",
            f"consensus {strength:.0%}",
        ]
        if conditions is not None:
            parts.append(conditions.describe())
        return "; ".join(parts)
