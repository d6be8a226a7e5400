"""Append-only audit trail for votes, signals and executions."""
import logging
from datetime import datetime
from typing import Callable

from consensus_trader.core.data_store import DataStore
from consensus_trader.models import EnsembleSignal, Event, ExecutionRecord, Vote
from consensus_trader.models.events import EXECUTION_ATTEMPTED, SIGNAL_EMITTED, VOTE_CAST

logger = logging.getLogger(__name__)

AUDIT_SOURCE = "consensus_trader"


class AuditRecorder:
    """Durably records every vote, consensus decision and execution outcome.

    ``record`` returns only once the data store has persisted the event;
    callers treat a raised exception as "not recorded".
    """

    def __init__(self, data_store: DataStore, clock: Callable[[], datetime] = datetime.now):
        self.data_store = data_store
        self.clock = clock

    def record(self, event: Event) -> Event:
        self.data_store.write_event(event)
        logger.debug(f"Audited {event.type} for {event.symbol}")
        return event

    def _event(self, event_type: str, symbol: str | None, payload: dict) -> Event:
        now = self.clock()
        return Event(
            type=event_type,
            symbol=symbol,
            timestamp=now,
            ingested_at=now,
            source=AUDIT_SOURCE,
            payload=payload,
        )

    def vote_cast(self, symbol: str, cycle_id: str, vote: Vote) -> Event:
        return self.record(self._event(VOTE_CAST, symbol, {"cycle_id": cycle_id, **vote.to_dict()}))

    def signal_emitted(self, signal: EnsembleSignal, cycle_id: str) -> Event:
        return self.record(self._event(SIGNAL_EMITTED, signal.symbol, {"cycle_id": cycle_id, **signal.to_dict()}))

    def execution_attempted(self, record: ExecutionRecord) -> Event:
        return self.record(self._event(EXECUTION_ATTEMPTED, record.symbol, record.to_dict()))

    def execution_records(self, start: datetime, end: datetime) -> list[ExecutionRecord]:
        """Rebuild execution records from the audit trail."""
        events = self.data_store.read_events(start, end, types=[EXECUTION_ATTEMPTED])
        return [ExecutionRecord.from_dict(e.payload) for e in events]
