from typing import Dict, List, Optional

from core.logging import get_logger
from core.trading.interfaces import PortfolioRepository
from core.trading.models import Stock, Trade
from core.trading.portfolio_models import normalize_symbol, sort_trades
from core.utils.exceptions import ConflictError, PersistenceError


class InMemoryPortfolioRepository(PortfolioRepository):
    """Dict-backed stock registry and trade store.

    Subclasses persist the store by overriding ``_load`` and ``_persist``.
    Every mutation is applied in memory first, so a failed write raises
    ``PersistenceError`` but leaves the change visible to readers.
    """

    def __init__(self):
        self._stocks: Dict[str, Stock] = {}
        self._trades: Dict[str, Trade] = {}
        self._initialized = False
        self.logger = get_logger("portfolio_repository", component="persistence")

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self._load()
        self._initialized = True

    async def reset(self) -> None:
        self._stocks.clear()
        self._trades.clear()
        await self._flush()
        self.logger.warning("Portfolio store reset")

    async def list_stocks(self) -> List[Stock]:
        await self.initialize()
        return sorted(self._stocks.values(), key=lambda s: s.symbol)

    async def find_stock(self, symbol: str) -> Optional[Stock]:
        await self.initialize()
        return self._stocks.get(normalize_symbol(symbol))

    async def create_stock(self, stock: Stock) -> Stock:
        await self.initialize()
        symbol = normalize_symbol(stock.symbol)
        if symbol in self._stocks:
            raise ConflictError(f"Stock {symbol} already exists", resource="stock", key=symbol)
        stored = stock.model_copy(update={"symbol": symbol, "name": stock.name.strip()})
        self._stocks[symbol] = stored
        await self._flush()
        return stored

    async def ensure_stock(self, symbol: str, name: str) -> Stock:
        existing = await self.find_stock(symbol)
        if existing:
            return existing
        return await self.create_stock(Stock(symbol=symbol, name=name))

    async def list_trades(self) -> List[Trade]:
        await self.initialize()
        return sort_trades(self._trades.values())

    async def create_trade(self, trade: Trade) -> Trade:
        await self.initialize()
        if trade.id in self._trades:
            raise ConflictError(f"Trade {trade.id} already exists", resource="trade", key=trade.id)
        return await self._store_trade(trade)

    async def create_trade_if_missing(self, trade: Trade) -> bool:
        await self.initialize()
        if trade.id in self._trades:
            return False
        await self._store_trade(trade)
        return True

    async def _store_trade(self, trade: Trade) -> Trade:
        stored = trade.model_copy(update={"symbol": normalize_symbol(trade.symbol)})
        self._trades[stored.id] = stored
        await self._flush()
        return stored

    async def _flush(self) -> None:
        try:
            await self._persist()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to persist portfolio store: {e}", operation="persist") from e

    async def _load(self) -> None:
        """Nothing to load for the in-memory store."""

    async def _persist(self) -> None:
        """Nothing to persist for the in-memory store."""
