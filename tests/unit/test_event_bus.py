"""Tests for EventBus."""
from datetime import datetime
import threading
import pytest


def _event(event_type="signal_emitted", symbol="BTC/USD", **payload):
    from consensus_trader.models import Event

    return Event(
        type=event_type,
        symbol=symbol,
        timestamp=datetime(2026, 1, 5),
        ingested_at=datetime(2026, 1, 5),
        source="test",
        payload=payload,
    )


def test_subscribe_and_publish():
    from consensus_trader.core.event_bus import EventBus
    from consensus_trader.models import Event

    bus = EventBus()
    received = []

    def handler(event: Event):
        received.append(event)

    bus.subscribe(["signal_emitted"], handler)

    bus.publish(_event())

    assert len(received) == 1
    assert received[0].symbol == "BTC/USD"


def test_subscriber_not_called_for_other_types():
    from consensus_trader.core.event_bus import EventBus

    bus = EventBus()
    received = []

    bus.subscribe(["signal_emitted"], lambda e: received.append(e))

    bus.publish(_event("execution_attempted"))

    assert len(received) == 0


def test_multiple_subscribers():
    from consensus_trader.core.event_bus import EventBus

    bus = EventBus()
    received_a = []
    received_b = []

    bus.subscribe(["signal_emitted"], lambda e: received_a.append(e))
    bus.subscribe(["signal_emitted"], lambda e: received_b.append(e))

    bus.publish(_event())

    assert len(received_a) == 1
    assert len(received_b) == 1


def test_unsubscribe():
    from consensus_trader.core.event_bus import EventBus
    from consensus_trader.models import Event

    bus = EventBus()
    received = []

    def handler(event: Event):
        received.append(event)

    bus.subscribe(["signal_emitted", "execution_attempted"], handler)
    bus.unsubscribe(handler)

    bus.publish(_event())
    bus.publish(_event("execution_attempted"))

    assert len(received) == 0


def test_wildcard_subscription():
    from consensus_trader.core.event_bus import EventBus

    bus = EventBus()
    received = []

    bus.subscribe(["*"], lambda e: received.append(e))

    bus.publish(_event("signal_emitted"))
    bus.publish(_event("execution_attempted"))

    assert len(received) == 2


def test_filtered_subscription():
    from consensus_trader.core.event_bus import EventBus

    bus = EventBus()
    received = []

    bus.subscribe(
        ["execution_attempted"],
        lambda e: received.append(e),
        event_filter=lambda e: e.payload.get("account_id") == "acct-1",
    )

    bus.publish(_event("execution_attempted", account_id="acct-1"))
    bus.publish(_event("execution_attempted", account_id="acct-2"))

    assert len(received) == 1
    assert received[0].payload["account_id"] == "acct-1"


def test_thread_safe_publish():
    from consensus_trader.core.event_bus import EventBus
    from consensus_trader.models import Event

    bus = EventBus()
    received = []
    lock = threading.Lock()

    def handler(event: Event):
        with lock:
            received.append(event)

    bus.subscribe(["signal_emitted"], handler)

    def publish_events():
        for i in range(100):
            bus.publish(_event(symbol=f"SYM{i}", i=i))

    threads = [threading.Thread(target=publish_events) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(received) == 500


def test_subscriber_error_does_not_stop_others():
    from consensus_trader.core.event_bus import EventBus
    from consensus_trader.models import Event

    bus = EventBus()
    received = []

    def failing_handler(event: Event):
        raise ValueError("Test error")

    def good_handler(event: Event):
        received.append(event)

    bus.subscribe(["signal_emitted"], failing_handler)
    bus.subscribe(["signal_emitted"], good_handler)

    bus.publish(_event())

    assert len(received) == 1
