"""Event bus for routing events to subscribers."""
import logging
import threading
from collections import defaultdict
from typing import Callable

from consensus_trader.models import Event

logger = logging.getLogger(__name__)

EventFilter = Callable[[Event], bool]


class EventBus:
    """Thread-safe pub/sub event bus for signals and execution records."""

    def __init__(self):
        self._subscribers: dict[str, list[tuple[Callable[[Event], None], EventFilter | None]]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(
        self,
        event_types: list[str],
        callback: Callable[[Event], None],
        event_filter: EventFilter | None = None,
    ) -> None:
        """Register callback for specific event types.

        Args:
            event_types: List of event types to subscribe to. Use ["*"] for all events.
            callback: Function to call when matching event is published.
            event_filter: Optional predicate; the callback only sees events it accepts.
        """
        with self._lock:
            for event_type in event_types:
                self._subscribers[event_type].append((callback, event_filter))
                logger.debug(f"Subscribed {_name(callback)} to {event_type}")

    def unsubscribe(self, callback: Callable[[Event], None]) -> None:
        """Remove callback from all subscriptions.

        Args:
            callback: The callback function to remove.
        """
        with self._lock:
            for event_type in list(self._subscribers.keys()):
                kept = [(cb, f) for cb, f in self._subscribers[event_type] if cb is not callback]
                if len(kept) != len(self._subscribers[event_type]):
                    self._subscribers[event_type] = kept
                    logger.debug(f"Unsubscribed {_name(callback)} from {event_type}")

    def publish(self, event: Event) -> None:
        """Send event to all subscribers of its type.

        Args:
            event: The event to publish.
        """
        with self._lock:
            # Get specific type subscribers + wildcard subscribers
            subscribers = list(
                self._subscribers.get(event.type, []) +
                self._subscribers.get("*", [])
            )

        for callback, event_filter in subscribers:
            try:
                if event_filter is not None and not event_filter(event):
                    continue
                callback(event)
            except Exception as e:
                logger.error(f"Error in subscriber {_name(callback)}: {e}")


def _name(callback: Callable) -> str:
    return getattr(callback, "__name__", repr(callback))
