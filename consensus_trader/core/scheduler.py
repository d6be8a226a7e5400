"""Periodic, jittered tickers driving evaluation cycles."""
import asyncio
import logging
import random
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class Ticker:
    """Calls an async callback on a fixed cadence with bounded jitter.

    Each tick waits ``interval_seconds`` plus a uniform jitter in
    [0, jitter_seconds], then awaits the callback. A failing callback is
    logged and the ticker keeps going. ``stop()`` takes effect at the next
    wait; a callback already running is allowed to finish.
    """

    def __init__(
        self,
        name: str,
        callback: Callable[[], Awaitable[None]],
        interval_seconds: float,
        jitter_seconds: float = 0.0,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
        max_ticks: int | None = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if jitter_seconds < 0:
            raise ValueError("jitter_seconds must not be negative")

        self.name = name
        self.callback = callback
        self.interval_seconds = interval_seconds
        self.jitter_seconds = jitter_seconds
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.max_ticks = max_ticks

        self.ticks = 0
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def next_delay(self) -> float:
        """Delay before the next tick."""
        jitter = self.rng.uniform(0.0, self.jitter_seconds) if self.jitter_seconds else 0.0
        return self.interval_seconds + jitter

    def stop(self) -> None:
        self._running = False

    async def run(self) -> None:
        """Run until stopped, cancelled, or max_ticks is reached."""
        self._running = True
        logger.info(f"Ticker {self.name} started: every {self.interval_seconds:g}s (+{self.jitter_seconds:g}s jitter)")

        try:
            while self._running:
                await self.sleep(self.next_delay())
                if not self._running:
                    break

                try:
                    await self.callback()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Ticker {self.name} callback failed: {e}")

                self.ticks += 1
                if self.max_ticks is not None and self.ticks >= self.max_ticks:
                    break

        except asyncio.CancelledError:
            logger.info(f"Ticker {self.name} cancelled")
            raise
        finally:
            self._running = False
            logger.info(f"Ticker {self.name} stopped after {self.ticks} tick(s)")


class TickerGroup:
    """Owns one ticker per symbol and runs them as tasks."""

    def __init__(self):
        self.tickers: dict[str, Ticker] = {}
        self._tasks: list[asyncio.Task] = []

    def add(self, ticker: Ticker) -> None:
        self.tickers[ticker.name] = ticker

    async def run(self) -> None:
        self._tasks = [asyncio.create_task(t.run(), name=f"ticker-{name}") for name, t in self.tickers.items()]
        try:
            await asyncio.gather(*self._tasks)
        finally:
            self._tasks = []

    def stop(self) -> None:
        for ticker in self.tickers.values():
            ticker.stop()

    def cancel(self) -> None:
        for task in self._tasks:
            task.cancel()
