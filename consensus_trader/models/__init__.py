"""Data models for the consensus trader."""

from consensus_trader.models.events import Event
from consensus_trader.models.market_data import (
    PriceBar,
    MarketConditions,
    Volatility,
    Trend,
    VolumeLevel,
)
from consensus_trader.models.strategy import Side, Strategy, StrategyStatus, Vote, EnsembleSignal
from consensus_trader.models.accounts import Account, AccountStatus, Holding
from consensus_trader.models.execution import ExecutionOutcome, ExecutionRecord, RiskDecision

__all__ = [
    "Event",
    "PriceBar",
    "MarketConditions",
    "Volatility",
    "Trend",
    "VolumeLevel",
    "Side",
    "Strategy",
    "StrategyStatus",
    "Vote",
    "EnsembleSignal",
    "Account",
    "AccountStatus",
    "Holding",
    "ExecutionOutcome",
    "ExecutionRecord",
    "RiskDecision",
]
