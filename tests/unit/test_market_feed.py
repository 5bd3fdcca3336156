from datetime import datetime, timedelta, timezone

import pytest

from core.schemas.events import EventType
from core.utils.exceptions import ValidationError
from services.market_feed.formatter import TickFormatter


def test_formatter_normalizes_symbol_and_rounds():
    tick = TickFormatter().format(" infy ", 1520.123456, volume=10.556)

    assert tick.symbol == "INFY"
    assert tick.price == 1520.1235
    assert tick.volume == 10.56
    assert tick.timestamp.tzinfo is not None


def test_formatter_accepts_feed_field_names():
    ts = datetime(2024, 1, 2, 9, 15, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    tick = TickFormatter().format_tick({
        "tradingsymbol": "TCS",
        "last_price": 3500.5,
        "volume_traded": 1200,
        "exchange_timestamp": ts,
    })

    assert tick.symbol == "TCS"
    assert tick.price == 3500.5
    assert tick.volume == 1200
    assert tick.timestamp == datetime(2024, 1, 2, 3, 45, tzinfo=timezone.utc)


@pytest.mark.parametrize("timestamp,expected", [
    (1704186900000, datetime(2024, 1, 2, 9, 15, tzinfo=timezone.utc)),
    ("2024-01-02T09:15:00Z", datetime(2024, 1, 2, 9, 15, tzinfo=timezone.utc)),
    (datetime(2024, 1, 2, 9, 15), datetime(2024, 1, 2, 9, 15, tzinfo=timezone.utc)),
])
def test_formatter_timestamps_are_utc(timestamp, expected):
    assert TickFormatter().format("ACME", 10, timestamp=timestamp).timestamp == expected


@pytest.mark.parametrize("symbol,price,volume", [
    ("", 10, 0),
    ("ACME", 0, 0),
    ("ACME", -5, 0),
    ("ACME", float("inf"), 0),
    ("ACME", 10, -1),
])
def test_formatter_rejects_bad_ticks(symbol, price, volume):
    with pytest.raises(ValidationError):
        TickFormatter().format(symbol, price, volume)


def test_formatter_rejects_unparseable_timestamp():
    with pytest.raises(ValidationError):
        TickFormatter().format("ACME", 10, timestamp="yesterday-ish")


@pytest.mark.asyncio
async def test_update_tick_caches_and_publishes(market_feed, event_collector):
    tick = await market_feed.update_tick("acme", 101.5, volume=300)

    assert market_feed.get_tick("ACME") == tick
    published = event_collector.of_type(EventType.MARKET_TICK)
    assert published == [tick]


@pytest.mark.asyncio
async def test_snapshot_holds_latest_tick_per_symbol(market_feed):
    await market_feed.update_tick("TCS", 3500)
    await market_feed.update_tick("ACME", 100)
    await market_feed.update_tick("ACME", 102)

    snapshot = market_feed.get_snapshot()
    assert [t.symbol for t in snapshot.ticks] == ["ACME", "TCS"]
    assert snapshot.get_tick("acme").price == 102

    filtered = market_feed.get_snapshot(["tcs"])
    assert [t.symbol for t in filtered.ticks] == ["TCS"]


@pytest.mark.asyncio
async def test_ingest_raw_tick(market_feed):
    tick = await market_feed.ingest({"symbol": "wipro", "price": 455.25})

    assert tick.symbol == "WIPRO"
    assert market_feed.get_tick("WIPRO").price == 455.25


@pytest.mark.asyncio
async def test_invalid_tick_is_not_published(market_feed, event_collector):
    with pytest.raises(ValidationError):
        await market_feed.update_tick("ACME", -1)

    assert market_feed.get_tick("ACME") is None
    assert event_collector.of_type(EventType.MARKET_TICK) == []
