import math
from typing import List, Optional

from core.logging import get_trading_logger_safe, get_audit_logger_safe
from core.trading.interfaces import PortfolioRepository
from core.trading.models import (
    PortfolioSnapshot,
    PositionSnapshot,
    Stock,
    Trade,
    TradeInput,
    TradeSummary,
    utc_now,
)
from core.trading.portfolio_models import fold_positions, normalize_symbol, sort_trades
from core.utils.exceptions import NotFoundError, PersistenceError, ValidationError
from core.utils.ids import generate_prefixed_id


class PortfolioService:
    """Position ledger: trade history plus derived per-symbol positions.

    Positions are never stored; every summary is folded from the trade
    history in execution-time order, so the ledger cannot drift from its
    own trades.
    """

    def __init__(self, repository: PortfolioRepository):
        self.repository = repository
        self.logger = get_trading_logger_safe("portfolio_service")
        self.audit_logger = get_audit_logger_safe("portfolio_audit")

    async def initialize(self) -> None:
        await self.repository.initialize()

    # --- Registry ---

    async def add_stock(self, symbol: str, name: str) -> Stock:
        symbol = normalize_symbol(symbol or "")
        if not symbol:
            raise ValidationError("Symbol is required", field="symbol", value=symbol)
        if not name or not name.strip():
            raise ValidationError("Name is required", field="name", value=name)
        stock = await self.repository.create_stock(Stock(symbol=symbol, name=name.strip()))
        self.logger.info("Stock registered", symbol=stock.symbol)
        return stock

    async def list_stocks(self) -> List[Stock]:
        return await self.repository.list_stocks()

    async def list_trades(self) -> List[Trade]:
        return await self.repository.list_trades()

    # --- Trades ---

    async def add_trade(self, trade_input: TradeInput) -> Trade:
        """Record a manually entered trade for a registered symbol."""
        symbol = normalize_symbol(trade_input.symbol)
        self._validate_fill(trade_input.quantity, trade_input.price)

        stock = await self.repository.find_stock(symbol)
        if stock is None:
            raise NotFoundError(f"Stock {symbol} is not registered", resource="stock", key=symbol)

        trade = Trade(
            id=trade_input.id or generate_prefixed_id("trade"),
            symbol=symbol,
            side=trade_input.side,
            quantity=trade_input.quantity,
            price=trade_input.price,
            executed_at=trade_input.executed_at or utc_now(),
            notes=trade_input.notes,
        )
        stored = await self.repository.create_trade(trade)
        self.audit_logger.info(
            "Trade recorded",
            trade_id=stored.id,
            symbol=stored.symbol,
            side=stored.side.value,
            quantity=stored.quantity,
            price=stored.price,
        )
        return stored

    async def record_external_trade(self, trade: Trade) -> Trade:
        """Record a venue-confirmed fill.

        Unknown symbols are registered on the fly, and a fill whose id is
        already stored is accepted without being recorded twice. A storage
        failure raises ``PersistenceError`` once the fill is booked in memory.
        """
        self._validate_fill(trade.quantity, trade.price)
        symbol = normalize_symbol(trade.symbol)
        persist_error: Optional[PersistenceError] = None
        try:
            await self.repository.ensure_stock(symbol, symbol)
        except PersistenceError as e:
            persist_error = e

        trade = trade.model_copy(update={"symbol": symbol})
        try:
            created = await self.repository.create_trade_if_missing(trade)
        except PersistenceError as e:
            persist_error, created = e, True
        if created:
            self.audit_logger.info(
                "External trade recorded",
                trade_id=trade.id,
                symbol=symbol,
                side=trade.side.value,
                quantity=trade.quantity,
                price=trade.price,
            )
        else:
            self.logger.debug("External trade already recorded", trade_id=trade.id, symbol=symbol)
        if persist_error is not None:
            raise persist_error
        return trade

    @staticmethod
    def _validate_fill(quantity: float, price: float) -> None:
        if not math.isfinite(quantity) or quantity <= 0:
            raise ValidationError(
                f"Quantity must be a positive number, got {quantity}", field="quantity", value=quantity
            )
        if not math.isfinite(price) or price <= 0:
            raise ValidationError(
                f"Price must be a positive number, got {price}", field="price", value=price
            )

    # --- Derived positions ---

    async def get_trade_summaries(self) -> List[TradeSummary]:
        trades = await self.repository.list_trades()
        return await self._summaries_from(trades)

    async def _summaries_from(self, trades: List[Trade]) -> List[TradeSummary]:
        names = {stock.symbol: stock.name for stock in await self.repository.list_stocks()}
        summaries = []
        for symbol, state in sorted(fold_positions(trades).items()):
            summaries.append(TradeSummary(
                symbol=symbol,
                name=names.get(symbol, symbol),
                net_quantity=state.net_quantity,
                average_entry_price=round(state.average_entry_price, 4),
                realized_pnl=round(state.realized_pnl, 2),
                position=state.position,
            ))
        return summaries

    async def get_snapshot(self) -> PortfolioSnapshot:
        """Summaries marked to the most recent trade price per symbol."""
        trades = sort_trades(await self.repository.list_trades())
        last_price = {trade.symbol: trade.price for trade in trades}

        positions = []
        for summary in await self._summaries_from(trades):
            mark_price = last_price.get(summary.symbol, summary.average_entry_price)
            unrealized = summary.net_quantity * (mark_price - summary.average_entry_price)
            positions.append(PositionSnapshot(
                **summary.model_dump(),
                mark_price=mark_price,
                unrealized_pnl=round(unrealized, 2),
            ))

        return PortfolioSnapshot(positions=positions, total_trades=len(trades))

    async def get_position(self, symbol: str) -> Optional[TradeSummary]:
        symbol = normalize_symbol(symbol)
        return next((s for s in await self.get_trade_summaries() if s.symbol == symbol), None)

    async def get_open_positions_count(self) -> int:
        return (await self.get_snapshot()).open_positions_count

    async def get_total_realized_pnl(self) -> float:
        return round(sum(s.realized_pnl for s in await self.get_trade_summaries()), 2)

    async def get_total_unrealized_pnl(self) -> float:
        return (await self.get_snapshot()).total_unrealized_pnl
