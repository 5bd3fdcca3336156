import pytest

from core.schemas.events import EventType
from core.streaming import EventBus


@pytest.mark.asyncio
async def test_handlers_run_in_subscription_order():
    bus = EventBus()
    seen = []

    async def async_handler(payload):
        seen.append(("async", payload))

    bus.subscribe(EventType.MARKET_TICK, lambda payload: seen.append(("sync", payload)))
    bus.subscribe(EventType.MARKET_TICK, async_handler)

    delivered = await bus.publish(EventType.MARKET_TICK, 1)

    assert delivered == 2
    assert seen == [("sync", 1), ("async", 1)]


@pytest.mark.asyncio
async def test_failing_handler_is_isolated():
    bus = EventBus()
    seen = []

    def broken(payload):
        raise RuntimeError("subscriber bug")

    bus.subscribe(EventType.TRADE_EXECUTED, broken)
    bus.subscribe(EventType.TRADE_EXECUTED, seen.append)

    delivered = await bus.publish(EventType.TRADE_EXECUTED, "fill")

    assert delivered == 1
    assert seen == ["fill"]


@pytest.mark.asyncio
async def test_unsubscribe_and_duplicate_subscribe():
    bus = EventBus()
    seen = []

    bus.subscribe(EventType.CRITICAL_ERROR, seen.append)
    bus.subscribe(EventType.CRITICAL_ERROR, seen.append)
    assert bus.subscriber_count(EventType.CRITICAL_ERROR) == 1

    bus.unsubscribe(EventType.CRITICAL_ERROR, seen.append)
    assert await bus.publish(EventType.CRITICAL_ERROR, "x") == 0
    assert seen == []
