"""Event model for the consensus trader."""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any

# Event types carried on the bus and written to the audit log
VOTE_CAST = "vote_cast"
SIGNAL_EMITTED = "signal_emitted"
EXECUTION_ATTEMPTED = "execution_attempted"


@dataclass
class Event:
    """Base event type for all system events."""
    type: str              # "vote_cast", "signal_emitted", "execution_attempted"
    symbol: str | None     # Instrument (None for system events)
    timestamp: datetime    # When event occurred
    ingested_at: datetime  # When we recorded it
    source: str            # "engine", "execution", etc.
    payload: dict[str, Any]  # Actual data

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        d["ingested_at"] = self.ingested_at.isoformat()
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Event":
        """Rebuild an event from its serialized form."""
        return cls(
            type=d["type"],
            symbol=d.get("symbol"),
            timestamp=datetime.fromisoformat(d["timestamp"]),
            ingested_at=datetime.fromisoformat(d["ingested_at"]),
            source=d.get("source", ""),
            payload=d.get("payload", {}),
        )
