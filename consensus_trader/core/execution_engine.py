"""Execution coordinator for idempotent paper fills."""
import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable

from consensus_trader.core.audit import AuditRecorder
from consensus_trader.core.errors import (
    AccountInactive,
    DuplicateExecution,
    ExecutionRejected,
    InsufficientBalance,
    InsufficientHoldings,
    InvalidSize,
    LockTimeout,
    StaleSignal,
    UpstreamUnavailable,
)
from consensus_trader.core.event_bus import EventBus
from consensus_trader.core.notifications import Notifier
from consensus_trader.core.stores import AccountStore, ExecutionLedger, HoldingsLedger
from consensus_trader.models import (
    Account,
    EnsembleSignal,
    Event,
    ExecutionOutcome,
    ExecutionRecord,
    Holding,
    Side,
)
from consensus_trader.models.events import EXECUTION_ATTEMPTED

logger = logging.getLogger(__name__)

# Slack when comparing held quantity against a sell size
QUANTITY_EPSILON = 1e-12


class ExecutionCoordinator:
    """Turns accepted (account, signal) pairs into paper fills.

    Each account has its own asyncio.Lock; the whole read-validate-write-
    append sequence for an account runs under it, so executions for one
    account never interleave while different accounts run concurrently.
    The (account_id, signal_id) pair is the idempotency key.
    """

    def __init__(
        self,
        account_store: AccountStore,
        audit: AuditRecorder,
        ledger: ExecutionLedger | None = None,
        holdings: HoldingsLedger | None = None,
        event_bus: EventBus | None = None,
        notifier: Notifier | None = None,
        fee_rate: float = 0.001,
        lock_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the coordinator.

        Args:
            account_store: Source of truth for balances
            audit: Audit recorder; every outcome is recorded before returning
            ledger: Execution records by idempotency key
            holdings: Companion holdings ledger used for sells
            event_bus: Bus for the execution record stream
            notifier: Fire-and-forget notification dispatch
            fee_rate: Fee charged as a fraction of notional
            lock_timeout_seconds: Bound on waiting for an account's lock
            clock: Source of the current time
        """
        self.account_store = account_store
        self.audit = audit
        self.ledger = ledger or ExecutionLedger()
        self.holdings = holdings or HoldingsLedger()
        self.event_bus = event_bus
        self.notifier = notifier or Notifier()
        self.fee_rate = fee_rate
        self.lock_timeout_seconds = lock_timeout_seconds
        self.clock = clock

        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock_for(self, account_id: str) -> asyncio.Lock:
        return self._locks[account_id]

    async def execute(self, account_id: str, signal: EnsembleSignal, size: float) -> ExecutionRecord:
        """Execute one signal for one account.

        Args:
            account_id: Account to trade
            signal: Signal being acted on
            size: Size accepted by the account's risk filter

        Returns:
            ExecutionRecord with outcome filled, rejected or error
        """
        lock = self.lock_for(account_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout_seconds)
        except asyncio.TimeoutError:
            reason = f"{LockTimeout.__name__}: lock not acquired within {self.lock_timeout_seconds:g}s"
            logger.warning(f"Execution of {signal.id} for {account_id} aborted: {reason}")
            record = self._unfilled(account_id, signal, size, None, ExecutionOutcome.ERROR, reason)
            await self._audit_quietly(record)
            self._publish(record)
            return record

        try:
            return await self._execute_locked(account_id, signal, size)
        finally:
            lock.release()

    async def _execute_locked(self, account_id: str, signal: EnsembleSignal, size: float) -> ExecutionRecord:
        existing = self.ledger.get(account_id, signal.id)
        if existing is not None:
            reason = (
                f"{DuplicateExecution.__name__}: signal {signal.id} already executed "
                f"for {account_id} ({existing.outcome.value})"
            )
            logger.warning(f"Duplicate execution rejected: {reason}")
            record = self._unfilled(account_id, signal, size, None,
                                    ExecutionOutcome.REJECTED, reason)
            await self._audit_quietly(record)
            self._publish(record)
            return record

        try:
            account = self.account_store.get_account(account_id)
        except UpstreamUnavailable as e:
            record = self._unfilled(account_id, signal, size, None, ExecutionOutcome.ERROR, str(e))
            return await self._finish_unfilled(record)

        holding = self.holdings.get(account_id, signal.symbol)
        try:
            new_balance, new_holding, fee = self._validate(account, holding, signal, size)
        except ExecutionRejected as e:
            record = self._unfilled(account_id, signal, size, account.balance,
                                    ExecutionOutcome.REJECTED, f"{type(e).__name__}: {e}")
            return await self._finish_unfilled(record)

        self.account_store.apply_balance(account_id, account.balance, new_balance)
        self.holdings.set(new_holding)

        record = ExecutionRecord(
            account_id=account_id,
            signal_id=signal.id,
            symbol=signal.symbol,
            side=signal.side,
            requested_size=size,
            filled_size=size,
            fill_price=signal.price,
            fee=fee,
            balance_before=account.balance,
            balance_after=new_balance,
            outcome=ExecutionOutcome.FILLED,
            reason=f"{signal.side.value} {size:.6f} @ {signal.price:.2f}",
            timestamp=self.clock(),
        )

        try:
            await asyncio.to_thread(self.audit.execution_attempted, record)
        except Exception as e:
            # Not durable, so not done: put the account back
            self.account_store.apply_balance(account_id, new_balance, account.balance)
            self.holdings.set(holding)
            logger.error(f"Audit write failed for {account_id}/{signal.id}, fill rolled back: {e}")
            record = self._unfilled(account_id, signal, size, account.balance,
                                    ExecutionOutcome.ERROR, f"audit write failed: {e}")
            self._publish(record)
            return record

        self.ledger.append(record)
        logger.info(
            f"Filled {account_id}: {signal.side.value.upper()} {size:.6f} {signal.symbol} "
            f"@ {signal.price:.2f} (fee {fee:.2f}), balance {account.balance:.2f} -> {new_balance:.2f}"
        )
        self._publish(record)
        self.notifier.send(account_id, record)
        return record

    def _validate(
        self,
        account: Account,
        holding: Holding,
        signal: EnsembleSignal,
        size: float,
    ) -> tuple[float, Holding, float]:
        """Check preconditions and compute the post-trade state.

        Returns:
            Tuple of (new_balance, new_holding, fee)

        Raises:
            ExecutionRejected: If any precondition fails
        """
        if not account.is_active:
            raise AccountInactive(f"account is {account.status.value}")

        now = self.clock()
        if signal.is_expired(now):
            age = (now - signal.created_at).total_seconds()
            raise StaleSignal(f"signal is {age:.1f}s old, expired at {signal.expires_at.isoformat()}")

        if size <= 0:
            raise InvalidSize(f"size must be positive, got {size}")

        notional = size * signal.price
        fee = notional * self.fee_rate

        if signal.side == Side.BUY:
            cost = notional + fee
            if cost > account.balance:
                raise InsufficientBalance(
                    f"cost {cost:,.2f} exceeds balance {account.balance:,.2f}"
                )
            return account.balance - cost, HoldingsLedger.after_buy(holding, size, signal.price), fee

        if holding.quantity + QUANTITY_EPSILON < size:
            raise InsufficientHoldings(
                f"holding {holding.quantity:.6f} {signal.symbol} < size {size:.6f}"
            )
        return account.balance + notional - fee, HoldingsLedger.after_sell(holding, size), fee

    def _unfilled(
        self,
        account_id: str,
        signal: EnsembleSignal,
        size: float,
        balance: float | None,
        outcome: ExecutionOutcome,
        reason: str,
    ) -> ExecutionRecord:
        if balance is None:
            balance = self._known_balance(account_id)
        return ExecutionRecord(
            account_id=account_id,
            signal_id=signal.id,
            symbol=signal.symbol,
            side=signal.side,
            requested_size=size,
            filled_size=0.0,
            fill_price=signal.price,
            fee=0.0,
            balance_before=balance,
            balance_after=balance,
            outcome=outcome,
            reason=reason,
            timestamp=self.clock(),
        )

    def _known_balance(self, account_id: str) -> float:
        try:
            return self.account_store.get_account(account_id).balance
        except UpstreamUnavailable:
            return 0.0

    async def _finish_unfilled(self, record: ExecutionRecord) -> ExecutionRecord:
        # Errors leave the key free for a later attempt
        if record.outcome != ExecutionOutcome.ERROR:
            self.ledger.append(record)
        logger.warning(
            f"Execution {record.outcome.value} for {record.account_id} on {record.signal_id}: {record.reason}"
        )
        await self._audit_quietly(record)
        self._publish(record)
        self.notifier.send(record.account_id, record)
        return record

    async def _audit_quietly(self, record: ExecutionRecord) -> None:
        try:
            await asyncio.to_thread(self.audit.execution_attempted, record)
        except Exception as e:
            logger.error(f"Audit write failed for {record.account_id}/{record.signal_id}: {e}")

    def _publish(self, record: ExecutionRecord) -> None:
        if self.event_bus is None:
            return
        now = self.clock()
        self.event_bus.publish(Event(
            type=EXECUTION_ATTEMPTED,
            symbol=record.symbol,
            timestamp=record.timestamp,
            ingested_at=now,
            source="execution",
            payload={"account_id": record.account_id, "record": record},
        ))

    def restore(self, records: list[ExecutionRecord]) -> int:
        """Rebuild the idempotency ledger and holdings from audited records.

        The first record per key wins; lock timeouts and other errors are
        not part of the ledger.

        Returns:
            Number of records restored
        """
        restored = 0
        for record in sorted(records, key=lambda r: r.timestamp):
            if record.outcome == ExecutionOutcome.ERROR:
                continue
            if self.ledger.get(record.account_id, record.signal_id) is not None:
                continue
            self.ledger.append(record)
            restored += 1

            if record.is_filled:
                holding = self.holdings.get(record.account_id, record.symbol)
                if record.side == Side.BUY:
                    holding = HoldingsLedger.after_buy(holding, record.filled_size, record.fill_price)
                else:
                    holding = HoldingsLedger.after_sell(holding, record.filled_size)
                self.holdings.set(holding)

        logger.info(f"Restored {restored} execution records")
        return restored

    def balance_check(self, account: Account) -> float:
        """Difference between the account balance and its filled-record history.

        Zero when every balance change is accounted for by a filled record.
        """
        filled = sum(r.delta for r in self.ledger.for_account(account.id) if r.is_filled)
        return account.balance - (account.initial_balance + filled)
