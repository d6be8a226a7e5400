"""Strategy and vote models for the consensus trader."""
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any


class StrategyStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


class Side(Enum):
    """Trade direction."""
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class Strategy:
    """A configured strategy evaluator ("bot")."""
    id: str
    name: str
    kind: str                       # "trend_following", "mean_reversion", ...
    target_symbols: frozenset[str]
    status: StrategyStatus = StrategyStatus.ACTIVE
    confidence_threshold: float = 30.0
    performance_weight: float = 1.0
    total_trades: int = 0
    win_rate: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.status == StrategyStatus.ACTIVE

    def with_status(self, status: StrategyStatus) -> "Strategy":
        return replace(self, status=status)

    def get_state(self) -> dict[str, Any]:
        """Mutable part of the strategy, for persistence."""
        return {
            "status": self.status.value,
            "total_trades": self.total_trades,
            "win_rate": self.win_rate,
            "performance_weight": self.performance_weight,
        }


@dataclass(frozen=True)
class Vote:
    """One strategy's directional opinion for one cycle."""
    strategy_id: str
    strategy_kind: str
    direction: Side
    confidence: float   # -100 (strong sell) to 100 (strong buy)
    weight: float       # >= 0
    rationale: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy_id": self.strategy_id,
            "strategy_kind": self.strategy_kind,
            "direction": self.direction.value,
            "confidence": self.confidence,
            "weight": self.weight,
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class EnsembleSignal:
    """The single trade instruction produced from a set of votes."""
    id: str
    symbol: str
    side: Side
    price: float
    size: float
    confidence: float          # 0 to 100
    consensus_strength: float  # 0 to 1
    votes: tuple[Vote, ...]
    reasoning: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "side": self.side.value,
            "price": self.price,
            "size": self.size,
            "confidence": self.confidence,
            "consensus_strength": self.consensus_strength,
            "votes": [v.to_dict() for v in self.votes],
            "reasoning": self.reasoning,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }
