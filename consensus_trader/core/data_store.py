"""Data store protocol and implementations."""
import json
import logging
import os
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

import pyarrow as pa
import pyarrow.parquet as pq

from consensus_trader.models import Event, PriceBar

logger = logging.getLogger(__name__)


@runtime_checkable
class DataStore(Protocol):
    """Protocol for data persistence backends."""

    # Price data
    def write_bars(self, symbol: str, bars: list[PriceBar]) -> None:
        """Write price bars to storage."""
        ...

    def read_bars(self, symbol: str, start: datetime, end: datetime) -> list[PriceBar]:
        """Read price bars from storage within date range."""
        ...

    def latest_bars(self, symbol: str, count: int) -> list[PriceBar]:
        """Read the most recent ``count`` bars, oldest first."""
        ...

    # Events (audit trail)
    def write_event(self, event: Event) -> None:
        """Durably append an event. Returns only once it is on disk."""
        ...

    def read_events(self, start: datetime, end: datetime, types: list[str] | None = None) -> list[Event]:
        """Read events from storage within date range, optionally filtered by type."""
        ...

    # State
    def save_state(self, name: str, state: dict) -> None:
        """Save a named state document."""
        ...

    def load_state(self, name: str) -> dict | None:
        """Load a named state document. Returns None if not found."""
        ...


class FileDataStore:
    """File-based implementation of DataStore using Parquet and JSON."""

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self._event_lock = threading.Lock()
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """Create directory structure if it doesn't exist."""
        dirs = [
            "prices",
            "events",
            "state",
        ]
        for d in dirs:
            (self.base_path / d).mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # Price Bar Storage (Parquet)
    # =========================================================================

    def write_bars(self, symbol: str, bars: list[PriceBar]) -> None:
        """Write price bars to Parquet files, partitioned by month."""
        if not bars:
            return

        symbol_dir = self.base_path / "prices" / symbol
        symbol_dir.mkdir(parents=True, exist_ok=True)

        bars_by_month: dict[str, list[PriceBar]] = {}
        for bar in bars:
            bars_by_month.setdefault(bar.date.strftime("%Y-%m"), []).append(bar)

        for month_key, month_bars in bars_by_month.items():
            file_path = symbol_dir / f"{month_key}.parquet"

            existing: list[PriceBar] = []
            if file_path.exists():
                existing = self._read_parquet_bars(file_path)

            # Merge and dedupe by timestamp (newer data wins)
            merged = {b.date: b for b in existing}
            for bar in month_bars:
                merged[bar.date] = bar

            ordered = sorted(merged.values(), key=lambda b: b.date)
            self._write_parquet_bars(file_path, ordered)
            logger.debug(f"Wrote {len(ordered)} bars to {file_path}")

    def read_bars(self, symbol: str, start: datetime, end: datetime) -> list[PriceBar]:
        """Read price bars from Parquet files within date range."""
        filtered = [b for b in self._all_bars(symbol) if start <= b.date <= end]
        return sorted(filtered, key=lambda b: b.date)

    def latest_bars(self, symbol: str, count: int) -> list[PriceBar]:
        bars = sorted(self._all_bars(symbol), key=lambda b: b.date)
        return bars[-count:] if count > 0 else []

    def _all_bars(self, symbol: str) -> list[PriceBar]:
        symbol_dir = self.base_path / "prices" / symbol
        if not symbol_dir.exists():
            return []

        all_bars: list[PriceBar] = []
        for parquet_file in symbol_dir.glob("*.parquet"):
            all_bars.extend(self._read_parquet_bars(parquet_file))
        return all_bars

    def _write_parquet_bars(self, path: Path, bars: list[PriceBar]) -> None:
        """Write bars to a Parquet file."""
        table = pa.table({
            "symbol": [b.symbol for b in bars],
            "date": pa.array([_as_datetime(b.date) for b in bars], type=pa.timestamp("us")),
            "open": [b.open for b in bars],
            "high": [b.high for b in bars],
            "low": [b.low for b in bars],
            "close": [b.close for b in bars],
            "volume": [float(b.volume) for b in bars],
        })
        pq.write_table(table, path)

    def _read_parquet_bars(self, path: Path) -> list[PriceBar]:
        """Read bars from a Parquet file."""
        table = pq.read_table(path)
        rows = table.to_pylist()
        return [
            PriceBar(
                symbol=row["symbol"],
                date=row["date"],
                open=float(row["open"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
                volume=float(row["volume"]),
            )
            for row in rows
        ]

    # =========================================================================
    # Event Storage (JSONL, one file per day)
    # =========================================================================

    def write_event(self, event: Event) -> None:
        """Append event to the day's JSONL file and fsync it."""
        file_path = self.base_path / "events" / f"{event.timestamp.strftime('%Y-%m-%d')}.jsonl"
        line = json.dumps(event.to_dict(), default=str) + "\n"

        with self._event_lock:
            with open(file_path, "a") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())

    def read_events(self, start: datetime, end: datetime, types: list[str] | None = None) -> list[Event]:
        """Read events between start and end (inclusive)."""
        events: list[Event] = []
        first_day = start.strftime("%Y-%m-%d")
        last_day = end.strftime("%Y-%m-%d")

        for file_path in sorted((self.base_path / "events").glob("*.jsonl")):
            if not first_day <= file_path.stem <= last_day:
                continue
            with open(file_path) as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        event = Event.from_dict(json.loads(line))
                    except (ValueError, KeyError) as e:
                        # A torn final line from a crash mid-write
                        logger.warning(f"Skipping unreadable event {file_path.name}:{line_no}: {e}")
                        continue
                    if not start <= event.timestamp <= end:
                        continue
                    if types is not None and event.type not in types:
                        continue
                    events.append(event)

        return events

    # =========================================================================
    # State Storage (JSON)
    # =========================================================================

    def save_state(self, name: str, state: dict) -> None:
        """Save state to JSON file via a temp file and atomic rename."""
        file_path = self.base_path / "state" / f"{name}.json"
        tmp_path = file_path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(state, f, indent=2)
        os.replace(tmp_path, file_path)
        logger.debug(f"Saved state to {file_path}")

    def load_state(self, name: str) -> dict | None:
        """Load state from JSON file."""
        file_path = self.base_path / "state" / f"{name}.json"
        if not file_path.exists():
            return None
        with open(file_path) as f:
            return json.load(f)


def _as_datetime(d) -> datetime:
    if isinstance(d, datetime):
        return d
    if isinstance(d, date):
        return datetime.combine(d, datetime.min.time())
    raise TypeError(f"Unsupported bar date {d!r}")
