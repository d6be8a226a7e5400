"""Configuration loading and validation."""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from consensus_trader.models import (
    Account,
    AccountStatus,
    Strategy,
    StrategyStatus,
)

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DataStoreConfig:
    """Data store configuration."""

    path: str = "./data"


@dataclass
class PriceOracleConfig:
    """Price oracle configuration."""

    backend: str = "static"           # "static" or "http"
    url: str | None = None            # template, "{symbol}" is substituted
    price_path: str = "price"         # dotted path to the price in the JSON body
    prices: dict[str, float] = field(default_factory=dict)
    max_age_seconds: float = 10.0
    timeout_seconds: float = 5.0


@dataclass
class ConditionsConfig:
    """Market condition snapshot configuration."""

    backend: str = "static"           # "static" or "bars"
    lookback_bars: int = 20
    snapshots: dict[str, dict[str, Any]] = field(default_factory=dict)
    sentiment: dict[str, float] = field(default_factory=dict)


@dataclass
class SchedulerConfig:
    """Evaluation cadence."""

    symbols: list[str] = field(default_factory=list)
    interval_seconds: float = 12.0
    jitter_seconds: float = 2.0


@dataclass
class ConsensusConfig:
    """Consensus thresholds and signal sizing."""

    min_votes: int = 2
    min_strength: float = 0.6
    max_confidence: float = 95.0
    base_notional: float = 1000.0
    signal_ttl_seconds: float = 30.0


@dataclass
class ExecutionConfig:
    """Paper execution settings."""

    fee_rate: float = 0.001
    lock_timeout_seconds: float = 5.0
    distribution_jitter_seconds: float = 0.25


@dataclass
class Config:
    """Main configuration container."""

    data_store: DataStoreConfig
    price_oracle: PriceOracleConfig
    conditions: ConditionsConfig
    scheduler: SchedulerConfig
    consensus: ConsensusConfig
    execution: ExecutionConfig
    accounts: list[Account]
    strategies: list[Strategy]

    def get_active_strategies(self) -> list[Strategy]:
        """Get list of strategies configured as active."""
        return [s for s in self.strategies if s.is_active]

    def get_symbols(self) -> list[str]:
        """Symbols to evaluate; defaults to every strategy target."""
        if self.scheduler.symbols:
            return list(self.scheduler.symbols)
        symbols: set[str] = set()
        for strategy in self.strategies:
            symbols.update(strategy.target_symbols)
        return sorted(symbols)


def _parse_account(raw: dict[str, Any]) -> Account:
    try:
        balance = float(raw.get("balance", raw.get("initial_balance", 100_000)))
        account = Account(
            id=str(raw["id"]),
            name=raw.get("name", str(raw["id"])),
            balance=balance,
            initial_balance=float(raw.get("initial_balance", balance)),
            risk_multiplier=float(raw.get("risk_multiplier", 1.0)),
            confidence_threshold=float(raw.get("confidence_threshold", 60.0)),
            max_position_value=float(raw.get("max_position_value", float("inf"))),
            status=AccountStatus(raw.get("status", "active")),
            symbols=frozenset(raw.get("symbols", [])),
        )
    except KeyError as e:
        raise ConfigError(f"Account missing required field: {e}") from e
    except ValueError as e:
        raise ConfigError(f"Invalid account {raw.get('id')}: {e}") from e

    if account.balance < 0:
        raise ConfigError(f"Account {account.id} has negative balance")
    if account.risk_multiplier < 0:
        raise ConfigError(f"Account {account.id} has negative risk_multiplier")
    return account


def _parse_strategy(raw: dict[str, Any]) -> Strategy:
    try:
        strategy = Strategy(
            id=str(raw["id"]),
            name=raw.get("name", str(raw["id"])),
            kind=raw["kind"],
            target_symbols=frozenset(raw.get("target_symbols", [])),
            status=StrategyStatus(raw.get("status", "active")),
            confidence_threshold=float(raw.get("confidence_threshold", 30.0)),
            performance_weight=float(raw.get("performance_weight", 1.0)),
            total_trades=int(raw.get("total_trades", 0)),
            win_rate=float(raw.get("win_rate", 0.0)),
        )
    except KeyError as e:
        raise ConfigError(f"Strategy missing required field: {e}") from e
    except ValueError as e:
        raise ConfigError(f"Invalid strategy {raw.get('id')}: {e}") from e

    if strategy.performance_weight < 0:
        raise ConfigError(f"Strategy {strategy.id} has negative performance_weight")
    return strategy


def load_config(path: str) -> Config:
    """Load configuration from YAML file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Config object with validated configuration

    Raises:
        ConfigError: If file not found, invalid YAML, or missing required fields
    """
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML: {e}") from e

    if raw is None:
        raise ConfigError("Configuration file is empty")

    # Validate required sections
    required_sections = ["data_store", "accounts", "strategies"]
    for section in required_sections:
        if section not in raw:
            raise ConfigError(f"Missing required configuration section: {section}")

    ds_raw = raw["data_store"] or {}
    data_store = DataStoreConfig(path=ds_raw.get("path", "./data"))

    po_raw = raw.get("price_oracle") or {}
    price_oracle = PriceOracleConfig(
        backend=po_raw.get("backend", "static"),
        url=po_raw.get("url"),
        price_path=po_raw.get("price_path", "price"),
        prices={k: float(v) for k, v in (po_raw.get("prices") or {}).items()},
        max_age_seconds=float(po_raw.get("max_age_seconds", 10.0)),
        timeout_seconds=float(po_raw.get("timeout_seconds", 5.0)),
    )
    if price_oracle.backend not in ("static", "http"):
        raise ConfigError(f"Unknown price_oracle backend: {price_oracle.backend}")
    if price_oracle.backend == "http" and not price_oracle.url:
        raise ConfigError("price_oracle.url is required for the http backend")

    cond_raw = raw.get("conditions") or {}
    conditions = ConditionsConfig(
        backend=cond_raw.get("backend", "static"),
        lookback_bars=int(cond_raw.get("lookback_bars", 20)),
        snapshots=cond_raw.get("snapshots") or {},
        sentiment={k: float(v) for k, v in (cond_raw.get("sentiment") or {}).items()},
    )
    if conditions.backend not in ("static", "bars"):
        raise ConfigError(f"Unknown conditions backend: {conditions.backend}")

    sched_raw = raw.get("scheduler") or {}
    scheduler = SchedulerConfig(
        symbols=list(sched_raw.get("symbols", [])),
        interval_seconds=float(sched_raw.get("interval_seconds", 12.0)),
        jitter_seconds=float(sched_raw.get("jitter_seconds", 2.0)),
    )

    cons_raw = raw.get("consensus") or {}
    consensus = ConsensusConfig(
        min_votes=int(cons_raw.get("min_votes", 2)),
        min_strength=float(cons_raw.get("min_strength", 0.6)),
        max_confidence=float(cons_raw.get("max_confidence", 95.0)),
        base_notional=float(cons_raw.get("base_notional", 1000.0)),
        signal_ttl_seconds=float(cons_raw.get("signal_ttl_seconds", 30.0)),
    )
    if consensus.min_votes < 2:
        raise ConfigError("consensus.min_votes must be at least 2")

    exec_raw = raw.get("execution") or {}
    execution = ExecutionConfig(
        fee_rate=float(exec_raw.get("fee_rate", 0.001)),
        lock_timeout_seconds=float(exec_raw.get("lock_timeout_seconds", 5.0)),
        distribution_jitter_seconds=float(exec_raw.get("distribution_jitter_seconds", 0.25)),
    )

    accounts = [_parse_account(a) for a in raw.get("accounts") or []]
    strategies = [_parse_strategy(s) for s in raw.get("strategies") or []]

    config = Config(
        data_store=data_store,
        price_oracle=price_oracle,
        conditions=conditions,
        scheduler=scheduler,
        consensus=consensus,
        execution=execution,
        accounts=accounts,
        strategies=strategies,
    )

    logger.info(f"Loaded configuration from {path}")
    logger.debug(f"Price oracle: {price_oracle.backend}, conditions: {conditions.backend}")
    logger.debug(f"Accounts: {[a.id for a in accounts]}")
    logger.debug(f"Strategies: {[s.name for s in strategies]}")

    return config
