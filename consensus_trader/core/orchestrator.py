"""Orchestrator for wiring and managing all components."""
import asyncio
import logging
from datetime import datetime
from typing import Callable

from consensus_trader.collectors.conditions import (
    BarConditionsProvider,
    ConditionsProvider,
    StaticConditionsProvider,
    StaticSentimentSource,
)
from consensus_trader.collectors.http_prices import HttpPriceOracle
from consensus_trader.core.audit import AuditRecorder
from consensus_trader.core.config import Config
from consensus_trader.core.data_store import DataStore, FileDataStore
from consensus_trader.core.engine import CycleResult, EnsembleEngine
from consensus_trader.core.event_bus import EventBus
from consensus_trader.core.execution_engine import ExecutionCoordinator
from consensus_trader.core.notifications import LoggingNotificationSink, Notifier
from consensus_trader.core.price_oracle import CachedPriceOracle, PriceOracle, StaticPriceOracle
from consensus_trader.core.scheduler import Ticker, TickerGroup
from consensus_trader.core.stores import InMemoryAccountStore, InMemoryStrategyStore
from consensus_trader.strategies.consensus import ConsensusAggregator

logger = logging.getLogger(__name__)

ACCOUNTS_STATE = "accounts"
STRATEGIES_STATE = "strategies"

# Audit replay window on startup
REPLAY_START = datetime(1970, 1, 1)


class Orchestrator:
    """Wires all components together and manages lifecycle.

    Responsibilities:
    1. Build the stores, audit trail, price oracle and conditions provider
    2. Restore account, strategy and execution state
    3. Run one jittered evaluation ticker per symbol
    4. Save state on shutdown
    """

    def __init__(
        self,
        config: Config,
        data_store: DataStore | None = None,
        price_oracle: PriceOracle | None = None,
        conditions: ConditionsProvider | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the orchestrator.

        Args:
            config: System configuration
            data_store: Overrides the configured file store
            price_oracle: Overrides the configured price oracle
            conditions: Overrides the configured conditions provider
            clock: Source of the current time
        """
        self.config = config
        self.clock = clock
        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._http_oracle: HttpPriceOracle | None = None

        self.event_bus = EventBus()
        self.data_store = data_store or FileDataStore(config.data_store.path)
        self.audit = AuditRecorder(self.data_store, clock=clock)

        self.account_store = InMemoryAccountStore(config.accounts)
        self.strategy_store = InMemoryStrategyStore(config.strategies)

        self.price_oracle = price_oracle or self._build_price_oracle()
        self.conditions = conditions or self._build_conditions()

        self.coordinator = ExecutionCoordinator(
            account_store=self.account_store,
            audit=self.audit,
            event_bus=self.event_bus,
            notifier=Notifier(LoggingNotificationSink()),
            fee_rate=config.execution.fee_rate,
            lock_timeout_seconds=config.execution.lock_timeout_seconds,
            clock=clock,
        )

        self.engine = EnsembleEngine(
            strategy_store=self.strategy_store,
            account_store=self.account_store,
            price_oracle=self.price_oracle,
            conditions=self.conditions,
            audit=self.audit,
            coordinator=self.coordinator,
            aggregator=ConsensusAggregator(
                min_votes=config.consensus.min_votes,
                min_strength=config.consensus.min_strength,
                max_confidence=config.consensus.max_confidence,
                base_notional=config.consensus.base_notional,
                signal_ttl_seconds=config.consensus.signal_ttl_seconds,
                clock=clock,
            ),
            event_bus=self.event_bus,
            distribution_jitter_seconds=config.execution.distribution_jitter_seconds,
            clock=clock,
        )

        self._restore_state()

        self.tickers = TickerGroup()
        for symbol in config.get_symbols():
            self.tickers.add(Ticker(
                name=symbol,
                callback=self._cycle_for(symbol),
                interval_seconds=config.scheduler.interval_seconds,
                jitter_seconds=config.scheduler.jitter_seconds,
            ))

        logger.info(
            f"Orchestrator initialized: {len(config.accounts)} account(s), "
            f"{len(config.strategies)} strateg(ies), symbols {config.get_symbols()}"
        )

    @property
    def is_running(self) -> bool:
        """Check if orchestrator is currently running."""
        return self._running

    def _build_price_oracle(self) -> PriceOracle:
        cfg = self.config.price_oracle
        if cfg.backend == "http":
            self._http_oracle = HttpPriceOracle(
                url_template=cfg.url,
                price_path=cfg.price_path,
                timeout_seconds=cfg.timeout_seconds,
            )
            return CachedPriceOracle(self._http_oracle, max_age_seconds=cfg.max_age_seconds)
        return StaticPriceOracle(cfg.prices)

    def _build_conditions(self) -> ConditionsProvider:
        cfg = self.config.conditions
        if cfg.backend == "bars":
            return BarConditionsProvider(
                self.data_store,
                lookback_bars=cfg.lookback_bars,
                sentiment=StaticSentimentSource(cfg.sentiment),
            )
        return StaticConditionsProvider(cfg.snapshots, clock=self.clock)

    def _cycle_for(self, symbol: str) -> Callable:
        async def cycle() -> None:
            await self.engine.run_cycle(symbol)
        return cycle

    # =========================================================================
    # State
    # =========================================================================

    def _restore_state(self) -> None:
        """Restore saved state and replay execution records from the audit trail."""
        strategy_state = self.data_store.load_state(STRATEGIES_STATE)
        if strategy_state:
            self.strategy_store.load_state(strategy_state)
            logger.info(f"Restored state for {len(strategy_state)} strategies")

        records = self.audit.execution_records(REPLAY_START, datetime.max)
        self.coordinator.restore(records)

        account_state = self.data_store.load_state(ACCOUNTS_STATE)
        if account_state:
            self.account_store.load_state(account_state)
            logger.info(f"Restored state for {len(account_state)} accounts")

        # The audit trail is authoritative: balance = initial + audited fills
        for account in self.account_store.all():
            drift = self.coordinator.balance_check(account)
            if abs(drift) <= 1e-6:
                continue
            rebuilt = account.balance - drift
            if account.id in (account_state or {}):
                logger.warning(
                    f"Saved balance of {account.id} ({account.balance:,.2f}) disagrees with "
                    f"audited fills, rebuilt as {rebuilt:,.2f}"
                )
            else:
                logger.info(f"Replayed fills for {account.id}: balance {account.balance:,.2f} -> {rebuilt:,.2f}")
            self.account_store.apply_balance(account.id, account.balance, rebuilt)

    def save_state(self) -> None:
        """Persist account balances and strategy state."""
        self.data_store.save_state(ACCOUNTS_STATE, self.account_store.get_state())
        self.data_store.save_state(STRATEGIES_STATE, self.strategy_store.get_state())
        logger.info("Saved account and strategy state")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run_once(self) -> list[CycleResult]:
        """Run one evaluation cycle for every symbol concurrently."""
        symbols = self.config.get_symbols()
        outcomes = await asyncio.gather(
            *(self.engine.run_cycle(s) for s in symbols), return_exceptions=True
        )

        results = []
        for symbol, outcome in zip(symbols, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Cycle for {symbol} failed: {outcome}")
                outcome = CycleResult(symbol=symbol, cycle_id="", error=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)
        return results

    async def shutdown(self) -> None:
        """Flush notifications, close network resources and save state."""
        await self.coordinator.notifier.drain()
        if self._http_oracle is not None:
            await self._http_oracle.close()
        self.save_state()

    async def _run_async(self, once: bool = False) -> None:
        """Run the orchestrator asynchronously."""
        self._loop = asyncio.get_running_loop()
        try:
            if once:
                await self.run_once()
            else:
                await self.tickers.run()
        except asyncio.CancelledError:
            logger.info("Orchestrator cancelled")
        finally:
            await self.shutdown()

    def start(self, once: bool = False) -> None:
        """Start the orchestrator and all components.

        This method blocks until stop() is called, or after a single
        round of cycles when ``once`` is set.
        """
        logger.info("Starting orchestrator...")
        self._running = True

        try:
            asyncio.run(self._run_async(once=once))
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
        finally:
            self._running = False
            self._loop = None
            logger.info("Orchestrator stopped")

    def stop(self) -> None:
        """Stop the tickers and save state."""
        logger.info("Stopping orchestrator...")
        self._running = False

        self.tickers.stop()
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self.tickers.cancel)

        self.save_state()
