from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from core.logging import get_market_data_logger_safe
from core.schemas.events import EventType
from core.streaming import EventBus
from core.trading.interfaces import MarketDataFeed
from core.trading.models import MarketSnapshot, MarketTick, utc_now
from core.trading.portfolio_models import normalize_symbol
from .formatter import TickFormatter


class MarketFeedService(MarketDataFeed):
    """
    Latest-price cache for every symbol, publishing each update as a
    ``market-tick`` event. Venue tick adapters push into ``update_tick``.
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self.formatter = TickFormatter()
        self._ticks: Dict[str, MarketTick] = {}
        self.logger = get_market_data_logger_safe("market_feed")

    async def update_tick(self, symbol: str, price: float, volume: float = 0.0,
                          timestamp: Optional[datetime] = None) -> MarketTick:
        tick = self.formatter.format(symbol, price, volume, timestamp)
        self._ticks[tick.symbol] = tick
        self.logger.debug("Tick received", symbol=tick.symbol, price=tick.price, volume=tick.volume)
        await self.event_bus.publish(EventType.MARKET_TICK, tick)
        return tick

    async def ingest(self, raw_tick: Dict[str, Any]) -> MarketTick:
        tick = self.formatter.format_tick(raw_tick)
        return await self.update_tick(tick.symbol, tick.price, tick.volume, tick.timestamp)

    def get_tick(self, symbol: str) -> Optional[MarketTick]:
        return self._ticks.get(normalize_symbol(symbol))

    def get_snapshot(self, symbols: Optional[Sequence[str]] = None) -> MarketSnapshot:
        if symbols is None:
            ticks = list(self._ticks.values())
        else:
            wanted = {normalize_symbol(s) for s in symbols}
            ticks = [tick for symbol, tick in self._ticks.items() if symbol in wanted]
        return MarketSnapshot(ticks=sorted(ticks, key=lambda t: t.symbol), as_of=utc_now())
