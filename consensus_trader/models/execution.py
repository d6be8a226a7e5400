"""Execution models for the consensus trader."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from consensus_trader.models.strategy import Side


class ExecutionOutcome(Enum):
    FILLED = "filled"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass(frozen=True)
class RiskDecision:
    """Result of an account's risk filter for one signal."""
    accept: bool
    size: float
    reason: str


@dataclass(frozen=True)
class ExecutionRecord:
    """Outcome of one (account, signal) execution attempt."""
    account_id: str
    signal_id: str
    symbol: str
    side: Side
    requested_size: float
    filled_size: float
    fill_price: float
    fee: float
    balance_before: float
    balance_after: float
    outcome: ExecutionOutcome
    reason: str
    timestamp: datetime

    @property
    def key(self) -> tuple[str, str]:
        """Idempotency key."""
        return (self.account_id, self.signal_id)

    @property
    def delta(self) -> float:
        """Signed balance change caused by this attempt."""
        return self.balance_after - self.balance_before

    @property
    def is_filled(self) -> bool:
        return self.outcome == ExecutionOutcome.FILLED

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "signal_id": self.signal_id,
            "symbol": self.symbol,
            "side": self.side.value,
            "requested_size": self.requested_size,
            "filled_size": self.filled_size,
            "fill_price": self.fill_price,
            "fee": self.fee,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ExecutionRecord":
        return cls(
            account_id=d["account_id"],
            signal_id=d["signal_id"],
            symbol=d["symbol"],
            side=Side(d["side"]),
            requested_size=float(d["requested_size"]),
            filled_size=float(d["filled_size"]),
            fill_price=float(d["fill_price"]),
            fee=float(d["fee"]),
            balance_before=float(d["balance_before"]),
            balance_after=float(d["balance_after"]),
            outcome=ExecutionOutcome(d["outcome"]),
            reason=d.get("reason", ""),
            timestamp=datetime.fromisoformat(d["timestamp"]),
        )
