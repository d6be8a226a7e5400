"""Tests for the execution coordinator."""
import asyncio
import tempfile
from datetime import datetime, timedelta
from unittest.mock import Mock
import pytest

NOW = datetime(2026, 1, 5, 10, 0, 0)


def _signal(signal_id="sig-1", side="buy", price=30000.0, size=0.1, symbol="BTC/USD"):
    from consensus_trader.models import EnsembleSignal, Side

    return EnsembleSignal(
        id=signal_id,
        symbol=symbol,
        side=Side(side),
        price=price,
        size=size,
        confidence=80.0,
        consensus_strength=0.8,
        votes=(),
        reasoning="test",
        created_at=NOW,
        expires_at=NOW + timedelta(seconds=30),
    )


def _setup(tmpdir, balance=10000.0, fee_rate=0.0, clock=lambda: NOW, **kwargs):
    from consensus_trader.core.audit import AuditRecorder
    from consensus_trader.core.data_store import FileDataStore
    from consensus_trader.core.execution_engine import ExecutionCoordinator
    from consensus_trader.core.stores import InMemoryAccountStore
    from consensus_trader.models import Account

    store = InMemoryAccountStore([
        Account(id="acct-1", name="One", balance=balance, initial_balance=balance, **kwargs),
    ])
    audit = AuditRecorder(FileDataStore(tmpdir), clock=clock)
    coordinator = ExecutionCoordinator(
        account_store=store,
        audit=audit,
        fee_rate=fee_rate,
        lock_timeout_seconds=0.5,
        clock=clock,
    )
    return coordinator, store, audit


@pytest.mark.asyncio
async def test_buy_fills_and_debits_balance():
    from consensus_trader.models import ExecutionOutcome

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir, fee_rate=0.001)

        record = await coordinator.execute("acct-1", _signal(), 0.1)

        assert record.outcome == ExecutionOutcome.FILLED
        assert record.filled_size == 0.1
        assert record.fee == pytest.approx(3.0)
        assert record.balance_after == pytest.approx(10000.0 - 3000.0 - 3.0)
        assert store.get_account("acct-1").balance == pytest.approx(6997.0)
        assert coordinator.holdings.get("acct-1", "BTC/USD").quantity == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_same_signal_executes_once():
    from consensus_trader.models import ExecutionOutcome

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir)
        signal = _signal()

        first = await coordinator.execute("acct-1", signal, 0.1)
        second = await coordinator.execute("acct-1", signal, 0.1)

        assert first.outcome == ExecutionOutcome.FILLED
        assert second.outcome == ExecutionOutcome.REJECTED
        assert "DuplicateExecution" in second.reason
        assert second.delta == 0.0
        assert store.get_account("acct-1").balance == pytest.approx(7000.0)
        assert len(coordinator.ledger) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicates_fill_once():
    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir)
        signal = _signal()

        records = await asyncio.gather(*(coordinator.execute("acct-1", signal, 0.1) for _ in range(5)))

        assert sum(1 for r in records if r.is_filled) == 1
        assert store.get_account("acct-1").balance == pytest.approx(7000.0)


@pytest.mark.asyncio
async def test_concurrent_buys_never_overdraw():
    from consensus_trader.models import ExecutionOutcome

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir)
        signals = [_signal(f"sig-{i}") for i in range(5)]

        records = await asyncio.gather(*(coordinator.execute("acct-1", s, 0.1) for s in signals))

        filled = [r for r in records if r.is_filled]
        rejected = [r for r in records if r.outcome == ExecutionOutcome.REJECTED]
        assert len(filled) == 3
        assert len(rejected) == 2
        assert all("InsufficientBalance" in r.reason for r in rejected)
        assert store.get_account("acct-1").balance == pytest.approx(1000.0)

        # Locks are granted in arrival order, so the first three fill
        assert [r.signal_id for r in filled] == ["sig-0", "sig-1", "sig-2"]
        assert [r.outcome for r in coordinator.ledger.all()] == (
            [ExecutionOutcome.FILLED] * 3 + [ExecutionOutcome.REJECTED] * 2
        )


@pytest.mark.asyncio
async def test_insufficient_balance_leaves_account_untouched():
    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir)

        record = await coordinator.execute("acct-1", _signal(size=1.0), 1.0)

        assert record.outcome.value == "rejected"
        assert "InsufficientBalance" in record.reason
        assert record.balance_before == record.balance_after == 10000.0
        assert store.get_account("acct-1").balance == 10000.0


@pytest.mark.asyncio
async def test_fee_counts_towards_cost():
    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir, balance=3000.0, fee_rate=0.001)

        record = await coordinator.execute("acct-1", _signal(), 0.1)

        assert "InsufficientBalance" in record.reason
        assert store.get_account("acct-1").balance == 3000.0


@pytest.mark.asyncio
async def test_sell_requires_holdings():
    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir)

        record = await coordinator.execute("acct-1", _signal(side="sell"), 0.1)

        assert record.outcome.value == "rejected"
        assert "InsufficientHoldings" in record.reason
        assert store.get_account("acct-1").balance == 10000.0


@pytest.mark.asyncio
async def test_sell_credits_balance_and_reduces_holding():
    from consensus_trader.models import Holding

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir, fee_rate=0.001)
        coordinator.holdings.set(Holding("acct-1", "BTC/USD", quantity=1.0, avg_cost=25000.0))

        record = await coordinator.execute("acct-1", _signal(side="sell", size=0.5), 0.5)

        assert record.is_filled
        assert store.get_account("acct-1").balance == pytest.approx(10000.0 + 15000.0 - 15.0)
        holding = coordinator.holdings.get("acct-1", "BTC/USD")
        assert holding.quantity == pytest.approx(0.5)
        assert holding.avg_cost == 25000.0


@pytest.mark.asyncio
async def test_expired_signal_is_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir, clock=lambda: NOW + timedelta(seconds=31))

        record = await coordinator.execute("acct-1", _signal(), 0.1)

        assert record.outcome.value == "rejected"
        assert "StaleSignal" in record.reason
        assert store.get_account("acct-1").balance == 10000.0


@pytest.mark.asyncio
async def test_inactive_account_is_rejected():
    from consensus_trader.models import AccountStatus

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir, status=AccountStatus.PAUSED)

        record = await coordinator.execute("acct-1", _signal(), 0.1)

        assert "AccountInactive" in record.reason


@pytest.mark.asyncio
async def test_non_positive_size_is_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, _, _ = _setup(tmpdir)

        record = await coordinator.execute("acct-1", _signal(), 0.0)

        assert "InvalidSize" in record.reason


@pytest.mark.asyncio
async def test_unknown_account_is_an_error():
    from consensus_trader.models import ExecutionOutcome

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, _, _ = _setup(tmpdir)

        record = await coordinator.execute("acct-404", _signal(), 0.1)

        assert record.outcome == ExecutionOutcome.ERROR
        assert "acct-404" in record.reason
        assert coordinator.ledger.get("acct-404", "sig-1") is None


@pytest.mark.asyncio
async def test_lock_timeout_aborts_without_recording_key():
    from consensus_trader.models import ExecutionOutcome

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir)
        coordinator.lock_timeout_seconds = 0.05
        lock = coordinator.lock_for("acct-1")
        await lock.acquire()

        try:
            record = await coordinator.execute("acct-1", _signal(), 0.1)
        finally:
            lock.release()

        assert record.outcome == ExecutionOutcome.ERROR
        assert "LockTimeout" in record.reason
        assert coordinator.ledger.get("acct-1", "sig-1") is None

        # The signal can still be executed once the lock is free
        retry = await coordinator.execute("acct-1", _signal(), 0.1)
        assert retry.is_filled
        assert store.get_account("acct-1").balance == pytest.approx(7000.0)


@pytest.mark.asyncio
async def test_audit_failure_rolls_back_fill():
    from consensus_trader.core.audit import AuditRecorder
    from consensus_trader.models import ExecutionOutcome

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, real_audit = _setup(tmpdir)
        audit = Mock(spec=AuditRecorder)
        audit.execution_attempted.side_effect = OSError("disk full")
        coordinator.audit = audit

        record = await coordinator.execute("acct-1", _signal(), 0.1)

        assert record.outcome == ExecutionOutcome.ERROR
        assert "audit write failed" in record.reason
        assert store.get_account("acct-1").balance == 10000.0
        assert coordinator.holdings.get("acct-1", "BTC/USD").quantity == 0.0
        assert coordinator.ledger.get("acct-1", "sig-1") is None

        # Once the audit trail is writable again the same pair can fill
        coordinator.audit = real_audit
        retry = await coordinator.execute("acct-1", _signal(), 0.1)
        assert retry.is_filled
        assert store.get_account("acct-1").balance == pytest.approx(7000.0)


@pytest.mark.asyncio
async def test_every_attempt_is_audited():
    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, _, audit = _setup(tmpdir)
        signal = _signal()

        await coordinator.execute("acct-1", signal, 0.1)
        await coordinator.execute("acct-1", signal, 0.1)
        await coordinator.execute("acct-1", _signal("sig-2", side="sell", size=5.0), 5.0)

        records = audit.execution_records(NOW - timedelta(days=1), NOW + timedelta(days=1))

        assert [r.outcome.value for r in records] == ["filled", "rejected", "rejected"]


@pytest.mark.asyncio
async def test_balance_matches_filled_history():
    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir, fee_rate=0.001)

        await coordinator.execute("acct-1", _signal("sig-1"), 0.1)
        await coordinator.execute("acct-1", _signal("sig-2", price=31000.0), 0.05)
        await coordinator.execute("acct-1", _signal("sig-3", side="sell", price=32000.0), 0.1)
        await coordinator.execute("acct-1", _signal("sig-4", size=10.0), 10.0)

        account = store.get_account("acct-1")
        assert coordinator.balance_check(account) == pytest.approx(0.0, abs=1e-6)
        assert coordinator.holdings.get("acct-1", "BTC/USD").quantity == pytest.approx(0.05)


@pytest.mark.asyncio
async def test_restore_keeps_executions_idempotent():
    from consensus_trader.core.execution_engine import ExecutionCoordinator

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, audit = _setup(tmpdir)
        await coordinator.execute("acct-1", _signal("sig-1"), 0.1)

        restarted = ExecutionCoordinator(account_store=store, audit=audit, fee_rate=0.0, clock=lambda: NOW)
        restored = restarted.restore(audit.execution_records(NOW - timedelta(days=1), NOW + timedelta(days=1)))
        again = await restarted.execute("acct-1", _signal("sig-1"), 0.1)

        assert restored == 1
        assert "DuplicateExecution" in again.reason
        assert restarted.holdings.get("acct-1", "BTC/USD").quantity == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_records_are_published_and_notified():
    from consensus_trader.core.event_bus import EventBus
    from consensus_trader.core.notifications import Notifier

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, _, _ = _setup(tmpdir)
        bus = EventBus()
        sink = Mock()
        coordinator.event_bus = bus
        coordinator.notifier = Notifier(sink)
        received = []
        bus.subscribe(["execution_attempted"], lambda e: received.append(e.payload["record"]))

        record = await coordinator.execute("acct-1", _signal(), 0.1)

        assert received == [record]
        sink.notify.assert_called_once_with("acct-1", record)


@pytest.mark.asyncio
async def test_failing_notification_does_not_affect_execution():
    from consensus_trader.core.notifications import Notifier

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir)
        sink = Mock()
        sink.notify.side_effect = RuntimeError("smtp down")
        coordinator.notifier = Notifier(sink)

        record = await coordinator.execute("acct-1", _signal(), 0.1)

        assert record.is_filled
        assert store.get_account("acct-1").balance == pytest.approx(7000.0)


@pytest.mark.asyncio
async def test_duplicate_rejection_is_published():
    from consensus_trader.core.event_bus import EventBus

    with tempfile.TemporaryDirectory() as tmpdir:
        coordinator, store, _ = _setup(tmpdir)
        bus = EventBus()
        coordinator.event_bus = bus
        received = []
        bus.subscribe(["execution_attempted"], lambda e: received.append(e.payload["record"]))
        signal = _signal()

        await coordinator.execute("acct-1", signal, 0.1)
        await coordinator.execute("acct-1", signal, 0.1)

        assert [r.outcome.value for r in received] == ["filled", "rejected"]
        assert "DuplicateExecution" in received[1].reason
        assert received[1].delta == 0.0
        assert store.get_account("acct-1").balance == pytest.approx(7000.0)
