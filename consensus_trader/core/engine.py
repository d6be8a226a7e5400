"""Evaluation cycle: votes -> consensus -> per-account execution."""
import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from consensus_trader.collectors.conditions import ConditionsProvider
from consensus_trader.core.audit import AuditRecorder
from consensus_trader.core.errors import UpstreamUnavailable
from consensus_trader.core.event_bus import EventBus
from consensus_trader.core.execution_engine import ExecutionCoordinator
from consensus_trader.core.price_oracle import PriceOracle
from consensus_trader.core.risk_filter import AccountRiskFilter
from consensus_trader.core.stores import AccountStore, StrategyStore
from consensus_trader.models import (
    Account,
    EnsembleSignal,
    Event,
    ExecutionRecord,
    MarketConditions,
    Strategy,
    Vote,
)
from consensus_trader.models.events import EXECUTION_ATTEMPTED, SIGNAL_EMITTED
from consensus_trader.strategies.consensus import ConsensusAggregator
from consensus_trader.strategies.vote_generator import VoteGenerator

logger = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """What one (symbol, cycle) evaluation produced."""
    symbol: str
    cycle_id: str
    votes: list[Vote] = field(default_factory=list)
    signal: EnsembleSignal | None = None
    executions: list[ExecutionRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def filled(self) -> list[ExecutionRecord]:
        return [r for r in self.executions if r.is_filled]


class EnsembleEngine:
    """Runs evaluation cycles and exposes the signal and execution streams.

    Failures stay scoped: an upstream failure aborts only the symbol's
    cycle, a failing strategy loses only its vote, and a failing account
    misses only its execution.
    """

    def __init__(
        self,
        strategy_store: StrategyStore,
        account_store: AccountStore,
        price_oracle: PriceOracle,
        conditions: ConditionsProvider,
        audit: AuditRecorder,
        coordinator: ExecutionCoordinator,
        vote_generator: VoteGenerator | None = None,
        aggregator: ConsensusAggregator | None = None,
        risk_filter: AccountRiskFilter | None = None,
        event_bus: EventBus | None = None,
        distribution_jitter_seconds: float = 0.0,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.strategy_store = strategy_store
        self.account_store = account_store
        self.price_oracle = price_oracle
        self.conditions = conditions
        self.audit = audit
        self.coordinator = coordinator
        self.vote_generator = vote_generator or VoteGenerator()
        self.aggregator = aggregator or ConsensusAggregator(clock=clock)
        self.risk_filter = risk_filter or AccountRiskFilter()
        self.event_bus = event_bus or coordinator.event_bus or EventBus()
        self.distribution_jitter_seconds = distribution_jitter_seconds
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.clock = clock

        self._latest: dict[str, EnsembleSignal] = {}

    # =========================================================================
    # Cycle
    # =========================================================================

    async def run_cycle(self, symbol: str) -> CycleResult:
        """Evaluate one symbol once.

        Strategies are read at the start of the cycle; status changes made
        while the cycle runs apply from the next cycle.
        """
        result = CycleResult(symbol=symbol, cycle_id=uuid.uuid4().hex)
        strategies = self.strategy_store.get_active_strategies(symbol)

        try:
            conditions = await self.conditions.snapshot(symbol)
            price = await self.price_oracle.get_price(symbol)
        except UpstreamUnavailable as e:
            logger.warning(f"Cycle for {symbol} aborted: {e}")
            result.error = str(e)
            return result

        result.votes = await self.collect_votes(symbol, strategies, conditions, result.cycle_id)

        signal = self.aggregator.aggregate(symbol, result.votes, price, conditions)
        if signal is None:
            return result

        try:
            await asyncio.to_thread(self.audit.signal_emitted, signal, result.cycle_id)
        except Exception as e:
            logger.error(f"Signal {signal.id} for {symbol} not recorded, dropping it: {e}")
            result.error = f"audit write failed: {e}"
            return result

        result.signal = signal
        self._latest[symbol] = signal
        self._publish_signal(signal)

        result.executions = await self.distribute(signal)
        if result.filled:
            self._credit_strategies(signal)

        logger.info(
            f"Cycle {symbol}: {len(result.votes)} vote(s), signal {signal.side.value} "
            f"{signal.confidence:.0f}%, {len(result.filled)}/{len(result.executions)} filled"
        )
        return result

    async def collect_votes(
        self,
        symbol: str,
        strategies: list[Strategy],
        conditions: MarketConditions,
        cycle_id: str,
    ) -> list[Vote]:
        """Evaluate all strategies concurrently and audit the votes cast."""
        votes = await asyncio.gather(
            *(self._vote(strategy, symbol, conditions, cycle_id) for strategy in strategies)
        )
        return [v for v in votes if v is not None]

    async def _vote(
        self,
        strategy: Strategy,
        symbol: str,
        conditions: MarketConditions,
        cycle_id: str,
    ) -> Vote | None:
        try:
            vote = self.vote_generator.evaluate(strategy, symbol, conditions)
        except Exception as e:
            logger.error(f"Strategy {strategy.name} failed on {symbol}: {e}")
            return None

        if vote is None:
            return None

        try:
            await asyncio.to_thread(self.audit.vote_cast, symbol, cycle_id, vote)
        except Exception as e:
            logger.error(f"Vote from {strategy.name} not recorded, discarding it: {e}")
            return None
        return vote

    async def distribute(self, signal: EnsembleSignal) -> list[ExecutionRecord]:
        """Fan a signal out to every subscribing account."""
        try:
            accounts = self.account_store.get_active_accounts(signal.symbol)
        except UpstreamUnavailable as e:
            logger.warning(f"Cannot distribute {signal.id}: {e}")
            return []

        records = await asyncio.gather(*(self._deliver(account, signal) for account in accounts))
        return [r for r in records if r is not None]

    async def _deliver(self, account: Account, signal: EnsembleSignal) -> ExecutionRecord | None:
        if self.distribution_jitter_seconds > 0:
            await self.sleep(self.rng.uniform(0.0, self.distribution_jitter_seconds))

        decision = self.risk_filter.accept(account, signal)
        if not decision.accept:
            logger.debug(f"Account {account.id} passes on {signal.id}: {decision.reason}")
            return None

        try:
            return await self.coordinator.execute(account.id, signal, decision.size)
        except Exception as e:
            logger.error(f"Execution for {account.id} on {signal.id} failed: {e}")
            return None

    def _credit_strategies(self, signal: EnsembleSignal) -> None:
        for vote in signal.votes:
            if vote.direction != signal.side:
                continue
            try:
                self.strategy_store.record_trade(vote.strategy_id)
            except KeyError:
                logger.debug(f"Strategy {vote.strategy_id} no longer exists, not credited")

    # =========================================================================
    # Streams and queries
    # =========================================================================

    def get_consensus(self, symbol: str) -> EnsembleSignal | None:
        """Latest signal for a symbol, or None if none is still valid."""
        signal = self._latest.get(symbol)
        if signal is None or signal.is_expired(self.clock()):
            return None
        return signal

    def _publish_signal(self, signal: EnsembleSignal) -> None:
        now = self.clock()
        self.event_bus.publish(Event(
            type=SIGNAL_EMITTED,
            symbol=signal.symbol,
            timestamp=signal.created_at,
            ingested_at=now,
            source="engine",
            payload={"signal": signal},
        ))

    def subscribe_signals(
        self,
        callback: Callable[[EnsembleSignal], None],
        symbol: str | None = None,
    ) -> Callable[[Event], None]:
        """Subscribe to emitted signals, optionally for one symbol.

        Returns:
            The bus handler, for EventBus.unsubscribe
        """
        def on_signal(event: Event) -> None:
            callback(event.payload["signal"])

        event_filter = None if symbol is None else (lambda e: e.symbol == symbol)
        self.event_bus.subscribe([SIGNAL_EMITTED], on_signal, event_filter)
        return on_signal

    def subscribe_executions(
        self,
        callback: Callable[[ExecutionRecord], None],
        account_id: str | None = None,
    ) -> Callable[[Event], None]:
        """Subscribe to execution records, for one account or globally.

        Returns:
            The bus handler, for EventBus.unsubscribe
        """
        def on_execution(event: Event) -> None:
            callback(event.payload["record"])

        event_filter = None if account_id is None else (lambda e: e.payload.get("account_id") == account_id)
        self.event_bus.subscribe([EXECUTION_ATTEMPTED], on_execution, event_filter)
        return on_execution
