import pytest

from core.config.settings import Settings, TradingSettings
from core.trading.models import BrokerOrderRequest, ExecutionStatus, OrderSide, OrderType
from core.utils.exceptions import BrokerConnectionError, BrokerOrderError, ConfigurationError
from services.trading_engine import PaperBroker, VenueFactory


def _market(side, symbol="ACME", quantity=10, price=None):
    return BrokerOrderRequest(symbol=symbol, side=side, quantity=quantity, type=OrderType.MARKET, price=price)


@pytest.mark.asyncio
async def test_orders_require_connection(paper_broker):
    with pytest.raises(BrokerConnectionError):
        await paper_broker.place_order(_market(OrderSide.BUY, price=100))


@pytest.mark.asyncio
async def test_limit_order_fills_at_limit_price(paper_broker):
    await paper_broker.connect()

    execution = await paper_broker.place_order(BrokerOrderRequest(
        symbol="acme", side=OrderSide.BUY, quantity=5, type=OrderType.LIMIT, price=99.5, tag="T-1",
    ))

    assert execution.status is ExecutionStatus.FILLED
    assert execution.filled_quantity == 5
    assert execution.average_price == 99.5
    positions = await paper_broker.get_positions()
    assert [(t.id, t.symbol, t.notes) for t in positions] == [(execution.id, "ACME", "T-1")]


@pytest.mark.asyncio
async def test_market_order_prices_from_latest_tick(paper_broker, market_feed):
    await paper_broker.connect()
    await market_feed.update_tick("ACME", 250)

    execution = await paper_broker.place_order(_market(OrderSide.SELL))

    assert execution.average_price == 250


@pytest.mark.asyncio
async def test_market_order_slippage_moves_against_order(market_feed):
    settings = Settings(trading=TradingSettings(paper_slippage_bps=10))
    broker = PaperBroker(settings, market_feed)
    await broker.connect()

    buy = await broker.place_order(_market(OrderSide.BUY, price=100))
    sell = await broker.place_order(_market(OrderSide.SELL, price=100))

    assert buy.average_price == 100.1
    assert sell.average_price == 99.9


@pytest.mark.asyncio
async def test_market_order_falls_back_to_last_same_side_fill(paper_broker):
    await paper_broker.connect()
    await paper_broker.place_order(BrokerOrderRequest(
        symbol="ACME", side=OrderSide.BUY, quantity=1, type=OrderType.LIMIT, price=42,
    ))

    execution = await paper_broker.place_order(_market(OrderSide.BUY))
    unreferenced = await paper_broker.place_order(_market(OrderSide.BUY, symbol="NEW"))

    assert execution.average_price == 42
    assert 50 <= unreferenced.average_price <= 150


@pytest.mark.asyncio
async def test_invalid_orders_rejected(paper_broker):
    await paper_broker.connect()

    with pytest.raises(BrokerOrderError):
        await paper_broker.place_order(_market(OrderSide.BUY, quantity=0))
    with pytest.raises(BrokerOrderError):
        await paper_broker.place_order(BrokerOrderRequest(
            symbol="ACME", side=OrderSide.BUY, quantity=1, type=OrderType.LIMIT,
        ))
    with pytest.raises(BrokerOrderError):
        await paper_broker.cancel_order("unknown")


@pytest.mark.asyncio
async def test_quote_reflects_market(paper_broker, market_feed):
    await market_feed.update_tick("ACME", 75)

    quote = await paper_broker.get_quote("acme", OrderSide.BUY)

    assert quote.symbol == "ACME"
    assert quote.price == 75


def test_factory_builds_paper_venues_and_rejects_unknown(test_settings, market_feed):
    factory = VenueFactory(test_settings, market_feed)

    primary = factory.create_primary()
    fallback = factory.create_fallback()

    assert isinstance(primary, PaperBroker)
    assert primary is not fallback
    with pytest.raises(ConfigurationError):
        factory.create("ib")


def test_factory_accepts_registered_adapters(test_settings):
    factory = VenueFactory(test_settings)
    factory.register("sandbox", lambda settings, market_data: PaperBroker(settings, market_data))

    assert isinstance(factory.create("sandbox"), PaperBroker)
