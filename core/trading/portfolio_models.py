from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable

from core.trading.models import OrderSide, PositionSide, Trade

# Quantities closer to zero than this are treated as flat
QUANTITY_EPSILON = 1e-9


@dataclass
class PositionState:
    """Running cost-basis state for one symbol.

    Long positions carry a positive total cost, short positions a negative
    one (sale proceeds). Closing fills realize P&L against the average cost
    before the close and shrink the cost basis proportionally.
    """
    net_quantity: float = 0.0
    total_cost: float = 0.0
    realized_pnl: float = 0.0

    @property
    def average_entry_price(self) -> float:
        if abs(self.net_quantity) <= QUANTITY_EPSILON:
            return 0.0
        return abs(self.total_cost / self.net_quantity)

    @property
    def position(self) -> PositionSide:
        if self.net_quantity > QUANTITY_EPSILON:
            return PositionSide.LONG
        if self.net_quantity < -QUANTITY_EPSILON:
            return PositionSide.SHORT
        return PositionSide.FLAT

    def apply(self, side: OrderSide, quantity: float, price: float) -> None:
        if side is OrderSide.BUY:
            self._buy(quantity, price)
        else:
            self._sell(quantity, price)
        if abs(self.net_quantity) <= QUANTITY_EPSILON:
            self.net_quantity = 0.0
            self.total_cost = 0.0

    def _buy(self, quantity: float, price: float) -> None:
        if self.net_quantity < -QUANTITY_EPSILON:
            # Cover the short first
            average_cost = self.average_entry_price
            closing = min(quantity, -self.net_quantity)
            self.realized_pnl += closing * (average_cost - price)
            self.total_cost += closing * average_cost
            self.net_quantity += closing
            quantity -= closing
        if quantity > QUANTITY_EPSILON:
            self.net_quantity += quantity
            self.total_cost += quantity * price

    def _sell(self, quantity: float, price: float) -> None:
        if self.net_quantity > QUANTITY_EPSILON:
            average_cost = self.average_entry_price
            closing = min(quantity, self.net_quantity)
            self.realized_pnl += closing * (price - average_cost)
            self.total_cost -= closing * average_cost
            self.net_quantity -= closing
            quantity -= closing
        if quantity > QUANTITY_EPSILON:
            # Residual opens (or extends) a short
            self.net_quantity -= quantity
            self.total_cost -= quantity * price


def sort_trades(trades: Iterable[Trade]) -> list[Trade]:
    """Execution-time order, ties broken by id so folds are deterministic."""
    return sorted(trades, key=lambda t: (t.executed_at, t.id))


def fold_positions(trades: Iterable[Trade]) -> Dict[str, PositionState]:
    states: Dict[str, PositionState] = {}
    for trade in sort_trades(trades):
        states.setdefault(trade.symbol, PositionState()).apply(trade.side, trade.quantity, trade.price)
    return states


def fold_net_quantities(trades: Iterable[Trade], tolerance: float = 0.001) -> Dict[str, float]:
    """Net quantity per symbol (BUY adds, SELL subtracts); near-zero entries dropped."""
    net: Dict[str, float] = {}
    for trade in trades:
        symbol = normalize_symbol(trade.symbol)
        delta = trade.quantity if trade.side is OrderSide.BUY else -trade.quantity
        net[symbol] = net.get(symbol, 0.0) + delta
    return {symbol: qty for symbol, qty in net.items() if abs(qty) > tolerance}


def normalize_symbol(symbol: str) -> str:
    return symbol.strip().upper()
