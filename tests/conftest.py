"""
Pytest configuration and shared fixtures for Sentinel Trader tests.
"""
from datetime import datetime, timedelta, timezone
from functools import partial

import pytest

from core.config.settings import (
    LoggingSettings,
    PersistenceSettings,
    Settings,
    TradingLoopSettings,
    TradingSettings,
)
from core.schemas.events import EventType
from core.streaming import EventBus
from core.trading.models import OrderSide, Trade
from services.market_feed.service import MarketFeedService
from services.portfolio_manager.persistence import InMemoryPortfolioRepository
from services.portfolio_manager.service import PortfolioService
from services.risk_manager.service import RiskManagerService
from services.risk_manager.state import InMemorySettingsRepository
from services.stop_loss.repository import InMemoryStopLossRepository
from services.trading_engine.traders.paper_trader import PaperBroker
from tests.mocks.venues import RecordingVenue


class EventCollector:
    def __init__(self, bus: EventBus):
        self.events = []
        for event_type in EventType:
            bus.subscribe(event_type, partial(self._record, event_type))

    def _record(self, event_type, payload):
        self.events.append((event_type, payload))

    def of_type(self, event_type):
        return [payload for et, payload in self.events if et is event_type]


@pytest.fixture
def test_settings():
    """Test settings configuration: in-memory stores, no slippage."""
    return Settings(
        environment="testing",
        trading=TradingSettings(paper_slippage_bps=0.0),
        trading_loop=TradingLoopSettings(mode="sequential", slow_threshold_ms=10_000),
        persistence=PersistenceSettings(backend="memory"),
        logging=LoggingSettings(level="WARNING", file_enabled=False),
    )


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def event_collector(event_bus):
    """Record every published event as (event_type, payload)."""
    return EventCollector(event_bus)


@pytest.fixture
def portfolio_repository():
    return InMemoryPortfolioRepository()


@pytest.fixture
def portfolio_service(portfolio_repository):
    return PortfolioService(portfolio_repository)


@pytest.fixture
def settings_repository(test_settings, event_bus):
    return InMemorySettingsRepository(test_settings.risk.to_limits(), event_bus)


@pytest.fixture
def risk_manager(test_settings, settings_repository, event_bus):
    return RiskManagerService(test_settings, settings_repository, event_bus)


@pytest.fixture
def stop_loss_repository(event_bus):
    return InMemoryStopLossRepository(event_bus)


@pytest.fixture
def market_feed(event_bus):
    return MarketFeedService(event_bus)


@pytest.fixture
def paper_broker(test_settings, market_feed):
    return PaperBroker(test_settings, market_feed)


@pytest.fixture
def recording_venue():
    return RecordingVenue("recording")


@pytest.fixture
def trade_factory():
    """Build trades with increasing execution times so folds are ordered."""
    base = datetime(2024, 1, 2, 9, 15, tzinfo=timezone.utc)
    counter = {"n": 0}

    def make(symbol: str, side: str, quantity: float, price: float, trade_id: str = None) -> Trade:
        counter["n"] += 1
        return Trade(
            id=trade_id or f"t-{counter['n']:03d}",
            symbol=symbol,
            side=OrderSide(side),
            quantity=quantity,
            price=price,
            executed_at=base + timedelta(minutes=counter["n"]),
        )

    return make
