"""Best-effort notification of execution outcomes."""
import asyncio
import inspect
import logging
from typing import Protocol, runtime_checkable

from consensus_trader.models import ExecutionRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """Protocol for delivering execution outcomes to account owners."""

    def notify(self, account_id: str, record: ExecutionRecord) -> None:
        """Deliver a record. May be a coroutine function."""
        ...


class LoggingNotificationSink:
    """Writes notifications to the log."""

    def notify(self, account_id: str, record: ExecutionRecord) -> None:
        logger.info(
            f"[notify {account_id}] {record.outcome.value} {record.side.value} "
            f"{record.filled_size:.6f} {record.symbol} @ {record.fill_price:.2f}: {record.reason}"
        )


class Notifier:
    """Fire-and-forget dispatch to a NotificationSink.

    Failures are logged and never reach the caller.
    """

    def __init__(self, sink: NotificationSink | None = None):
        self.sink = sink
        self._tasks: set[asyncio.Task] = set()

    def send(self, account_id: str, record: ExecutionRecord) -> None:
        if self.sink is None:
            return
        try:
            result = self.sink.notify(account_id, record)
        except Exception as e:
            logger.warning(f"Notification for {account_id} failed: {e}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Notification failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for in-flight notifications; used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
