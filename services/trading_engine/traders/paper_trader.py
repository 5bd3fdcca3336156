import random
from datetime import timedelta
from typing import Dict, List, Optional

from core.config.settings import Settings
from core.logging import get_logger
from core.trading.interfaces import ExecutionVenue, MarketDataFeed
from core.trading.models import (
    BrokerOrderExecution,
    BrokerOrderRequest,
    ExecutionStatus,
    OrderSide,
    OrderType,
    Quote,
    Trade,
    utc_now,
)
from core.trading.portfolio_models import normalize_symbol
from core.utils.exceptions import BrokerConnectionError, BrokerOrderError
from core.utils.ids import generate_prefixed_id


class PaperBroker(ExecutionVenue):
    """
    Simulated execution venue.

    Every accepted order fills completely. LIMIT orders fill at their limit
    price; MARKET orders fill at the best reference price available (the
    order's price hint, the latest market tick, or the last fill on the same
    side) moved against the order by the configured slippage. With no
    reference at all a random price is used. The fills it has produced are
    its authoritative position record.
    """

    name = "paper"

    def __init__(self, settings: Settings, market_data: Optional[MarketDataFeed] = None):
        self.settings = settings
        self.market_data = market_data
        self.slippage_bps = settings.trading.paper_slippage_bps
        self.logger = get_logger(__name__, component="paper_broker")
        self._connected = False
        self._fills: List[Trade] = []
        self._executions: Dict[str, BrokerOrderExecution] = {}

    async def connect(self) -> None:
        if not self._connected:
            self._connected = True
            self.logger.info("Paper broker connected")

    async def disconnect(self) -> None:
        if self._connected:
            self._connected = False
            self.logger.info("Paper broker disconnected")

    def is_connected(self) -> bool:
        return self._connected

    async def get_positions(self) -> List[Trade]:
        self._ensure_connected()
        return [trade.model_copy() for trade in self._fills]

    async def place_order(self, request: BrokerOrderRequest) -> BrokerOrderExecution:
        self._ensure_connected()

        symbol = normalize_symbol(request.symbol)
        if request.quantity <= 0:
            raise BrokerOrderError(f"Invalid quantity {request.quantity}", broker=self.name)

        if request.type is OrderType.LIMIT:
            if request.price is None or request.price <= 0:
                raise BrokerOrderError("LIMIT order requires a positive price", broker=self.name)
            fill_price = request.price
        else:
            fill_price = self._market_price(symbol, request.side, request.price)

        execution = BrokerOrderExecution(
            id=generate_prefixed_id(self.name),
            request=request,
            status=ExecutionStatus.FILLED,
            filled_quantity=request.quantity,
            average_price=round(fill_price, 4),
            executed_at=utc_now(),
            message="Simulated fill",
        )
        self._executions[execution.id] = execution
        self._fills.append(Trade(
            id=execution.id,
            symbol=symbol,
            side=request.side,
            quantity=execution.filled_quantity,
            price=execution.average_price,
            executed_at=execution.executed_at,
            notes=request.tag,
        ))

        self.logger.info(
            "PAPER TRADE (SIMULATED)",
            order_id=execution.id,
            symbol=symbol,
            side=request.side.value,
            quantity=request.quantity,
            fill_price=execution.average_price,
            tag=request.tag,
        )
        return execution

    async def cancel_order(self, order_id: str) -> None:
        self._ensure_connected()
        if order_id not in self._executions:
            raise BrokerOrderError(f"Unknown order {order_id}", broker=self.name, order_id=order_id)
        # Simulated orders fill on placement, so there is never anything left to cancel
        self.logger.info("Cancel requested for filled paper order", order_id=order_id)

    async def get_quote(self, symbol: str, side: OrderSide) -> Quote:
        symbol = normalize_symbol(symbol)
        return Quote(
            symbol=symbol,
            side=side,
            price=round(self._market_price(symbol, side, None), 4),
            valid_until=utc_now() + timedelta(seconds=60),
        )

    def reset(self) -> None:
        self._fills.clear()
        self._executions.clear()
        self.logger.info("Paper broker reset")

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise BrokerConnectionError("Paper broker is not connected", broker=self.name)

    def _market_price(self, symbol: str, side: OrderSide, hint: Optional[float]) -> float:
        base = hint if hint and hint > 0 else None
        if base is None and self.market_data is not None:
            tick = self.market_data.get_tick(symbol)
            base = tick.price if tick else None
        if base is None:
            last_fill = next(
                (t for t in reversed(self._fills) if t.symbol == symbol and t.side is side),
                None,
            )
            base = last_fill.price if last_fill else None
        if base is None:
            return round(random.uniform(50, 150), 2)

        slippage = base * self.slippage_bps / 10_000
        return base + slippage if side is OrderSide.BUY else base - slippage
