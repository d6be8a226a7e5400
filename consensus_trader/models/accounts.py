"""Account models for the consensus trader."""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class AccountStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"


@dataclass(frozen=True)
class Account:
    """A paper-trading account subscribing to ensemble signals.

    The store owns the live balance; instances handed out are snapshots.
    """
    id: str
    name: str
    balance: float
    initial_balance: float
    risk_multiplier: float = 1.0
    confidence_threshold: float = 60.0
    max_position_value: float = float("inf")
    status: AccountStatus = AccountStatus.ACTIVE
    symbols: frozenset[str] = field(default_factory=frozenset)  # empty = all

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def subscribes_to(self, symbol: str) -> bool:
        return not self.symbols or symbol in self.symbols

    def with_balance(self, balance: float) -> "Account":
        return replace(self, balance=balance)

    def get_state(self) -> dict[str, Any]:
        return {"balance": self.balance, "status": self.status.value}


@dataclass(frozen=True)
class Holding:
    """Quantity of one symbol held by one account."""
    account_id: str
    symbol: str
    quantity: float
    avg_cost: float

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.avg_cost
