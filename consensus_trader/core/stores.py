"""Repository protocols and in-memory implementations.

Stores hand out immutable snapshots. Writes are whole-value replacements
guarded by a lock, so a reader never sees a half-applied update.
"""
import logging
import threading
from dataclasses import replace
from typing import Protocol, runtime_checkable

from consensus_trader.core.errors import UpstreamUnavailable
from consensus_trader.models import (
    Account,
    AccountStatus,
    ExecutionRecord,
    Holding,
    Strategy,
    StrategyStatus,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class AccountStore(Protocol):
    """Protocol for account persistence."""

    def get_account(self, account_id: str) -> Account:
        """Get an account snapshot. Raises UpstreamUnavailable if unknown."""
        ...

    def get_active_accounts(self, symbol: str) -> list[Account]:
        """Get active accounts subscribed to a symbol."""
        ...

    def apply_balance(self, account_id: str, expected: float, new_balance: float) -> Account:
        """Replace the balance if it still equals ``expected``."""
        ...


@runtime_checkable
class StrategyStore(Protocol):
    """Protocol for strategy persistence."""

    def get_active_strategies(self, symbol: str) -> list[Strategy]:
        """Get active strategies targeting a symbol."""
        ...

    def set_status(self, strategy_id: str, status: StrategyStatus) -> Strategy:
        """Change a strategy's status."""
        ...

    def record_trade(self, strategy_id: str) -> Strategy:
        """Credit a strategy with one more traded signal."""
        ...


class InMemoryAccountStore:
    """Dict-backed AccountStore."""

    def __init__(self, accounts: list[Account] | None = None):
        self._accounts: dict[str, Account] = {a.id: a for a in accounts or []}
        self._lock = threading.Lock()

    def add(self, account: Account) -> None:
        with self._lock:
            self._accounts[account.id] = account

    def all(self) -> list[Account]:
        with self._lock:
            return list(self._accounts.values())

    def get_account(self, account_id: str) -> Account:
        with self._lock:
            account = self._accounts.get(account_id)
        if account is None:
            raise UpstreamUnavailable(f"Unknown account {account_id}")
        return account

    def get_active_accounts(self, symbol: str) -> list[Account]:
        with self._lock:
            return [
                a for a in self._accounts.values()
                if a.is_active and a.subscribes_to(symbol)
            ]

    def apply_balance(self, account_id: str, expected: float, new_balance: float) -> Account:
        if new_balance < 0:
            raise ValueError(f"Refusing negative balance {new_balance} for {account_id}")
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise UpstreamUnavailable(f"Unknown account {account_id}")
            if account.balance != expected:
                raise RuntimeError(
                    f"Balance of {account_id} changed underneath execution "
                    f"({account.balance} != {expected})"
                )
            updated = account.with_balance(new_balance)
            self._accounts[account_id] = updated
        return updated

    def set_status(self, account_id: str, status: AccountStatus) -> Account:
        with self._lock:
            account = self._accounts[account_id]
            updated = replace(account, status=status)
            self._accounts[account_id] = updated
        logger.info(f"Account {account_id} is now {status.value}")
        return updated

    def get_state(self) -> dict:
        with self._lock:
            return {a.id: a.get_state() for a in self._accounts.values()}

    def load_state(self, state: dict) -> None:
        """Restore balances and statuses saved by get_state()."""
        with self._lock:
            for account_id, saved in state.items():
                account = self._accounts.get(account_id)
                if account is None:
                    logger.warning(f"Saved state for unknown account {account_id} ignored")
                    continue
                self._accounts[account_id] = replace(
                    account,
                    balance=float(saved["balance"]),
                    status=AccountStatus(saved.get("status", account.status.value)),
                )


class InMemoryStrategyStore:
    """Dict-backed StrategyStore."""

    def __init__(self, strategies: list[Strategy] | None = None):
        self._strategies: dict[str, Strategy] = {s.id: s for s in strategies or []}
        self._lock = threading.Lock()

    def add(self, strategy: Strategy) -> None:
        with self._lock:
            self._strategies[strategy.id] = strategy

    def get(self, strategy_id: str) -> Strategy:
        with self._lock:
            return self._strategies[strategy_id]

    def all(self) -> list[Strategy]:
        with self._lock:
            return list(self._strategies.values())

    def get_active_strategies(self, symbol: str) -> list[Strategy]:
        with self._lock:
            return [
                s for s in self._strategies.values()
                if s.is_active and symbol in s.target_symbols
            ]

    def set_status(self, strategy_id: str, status: StrategyStatus) -> Strategy:
        with self._lock:
            updated = self._strategies[strategy_id].with_status(status)
            self._strategies[strategy_id] = updated
        logger.info(f"Strategy {updated.name} is now {status.value}")
        return updated

    def record_trade(self, strategy_id: str) -> Strategy:
        with self._lock:
            strategy = self._strategies[strategy_id]
            updated = replace(strategy, total_trades=strategy.total_trades + 1)
            self._strategies[strategy_id] = updated
        return updated

    def get_state(self) -> dict:
        with self._lock:
            return {s.id: s.get_state() for s in self._strategies.values()}

    def load_state(self, state: dict) -> None:
        with self._lock:
            for strategy_id, saved in state.items():
                strategy = self._strategies.get(strategy_id)
                if strategy is None:
                    continue
                self._strategies[strategy_id] = replace(
                    strategy,
                    status=StrategyStatus(saved.get("status", strategy.status.value)),
                    total_trades=int(saved.get("total_trades", strategy.total_trades)),
                    win_rate=float(saved.get("win_rate", strategy.win_rate)),
                    performance_weight=float(
                        saved.get("performance_weight", strategy.performance_weight)
                    ),
                )


class HoldingsLedger:
    """Per-account holdings, mutated alongside balance under the account lock."""

    def __init__(self):
        self._holdings: dict[tuple[str, str], Holding] = {}
        self._lock = threading.Lock()

    def get(self, account_id: str, symbol: str) -> Holding:
        with self._lock:
            return self._holdings.get(
                (account_id, symbol),
                Holding(account_id=account_id, symbol=symbol, quantity=0.0, avg_cost=0.0),
            )

    def set(self, holding: Holding) -> None:
        with self._lock:
            self._holdings[(holding.account_id, holding.symbol)] = holding

    def for_account(self, account_id: str) -> list[Holding]:
        with self._lock:
            return [h for (aid, _), h in self._holdings.items() if aid == account_id and h.quantity > 0]

    @staticmethod
    def after_buy(holding: Holding, size: float, price: float) -> Holding:
        quantity = holding.quantity + size
        avg_cost = (holding.cost_basis + size * price) / quantity
        return replace(holding, quantity=quantity, avg_cost=avg_cost)

    @staticmethod
    def after_sell(holding: Holding, size: float) -> Holding:
        quantity = max(0.0, holding.quantity - size)
        return replace(holding, quantity=quantity, avg_cost=holding.avg_cost if quantity else 0.0)


class ExecutionLedger:
    """Execution records indexed by idempotency key."""

    def __init__(self):
        self._records: dict[tuple[str, str], ExecutionRecord] = {}
        self._lock = threading.Lock()

    def get(self, account_id: str, signal_id: str) -> ExecutionRecord | None:
        with self._lock:
            return self._records.get((account_id, signal_id))

    def append(self, record: ExecutionRecord) -> None:
        with self._lock:
            if record.key in self._records:
                raise ValueError(f"Execution {record.key} already recorded")
            self._records[record.key] = record

    def for_account(self, account_id: str) -> list[ExecutionRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.account_id == account_id]

    def all(self) -> list[ExecutionRecord]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
