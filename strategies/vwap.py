# VWAP mean-reversion strategy
from typing import List

from core.trading.models import BrokerOrderRequest, OrderSide, OrderType, StrategySignal
from core.utils.exceptions import StrategyError
from core.utils.ids import generate_order_tag
from .base import BaseStrategy, StrategyContext


class VWAPStrategy(BaseStrategy):
    """Fades moves away from a volume-weighted blend of the tick price and the position's cost basis"""

    def __init__(self, threshold: float = 0.01, default_size: float = 10):
        if threshold <= 0 or default_size <= 0:
            raise StrategyError(
                "VWAP threshold and default size must be positive",
                strategy_id="vwap",
                details={"threshold": threshold, "default_size": default_size},
            )
        super().__init__(
            "vwap",
            "VWAP Mean Reversion",
            "Trades when price deviates materially from VWAP",
            parameters={"threshold": threshold, "default_size": default_size},
        )
        self.threshold = threshold
        self.default_size = default_size

    async def generate_signals(self, context: StrategyContext) -> List[StrategySignal]:
        signals: List[StrategySignal] = []

        for tick in context.market.ticks:
            position = context.portfolio.get_position(tick.symbol)
            position_size = position.net_quantity if position else 0.0
            anchor_price = (position.average_entry_price if position else 0.0) or tick.price

            reference_volume = max(abs(position_size), 1)
            denominator = tick.volume + reference_volume
            vwap = (tick.price * tick.volume + anchor_price * reference_volume) / denominator

            deviation = (tick.price - vwap) / vwap
            if abs(deviation) < self.threshold:
                continue

            side = OrderSide.SELL if deviation > 0 else OrderSide.BUY
            size = max(self.default_size, abs(position_size))
            signals.append(StrategySignal(
                strategy_id=self.strategy_id,
                description=(
                    f"{side.value} {size:g} {tick.symbol} @ {tick.price:.2f} based on "
                    f"{deviation * 100:.2f}% deviation from VWAP"
                ),
                requested_orders=[BrokerOrderRequest(
                    symbol=tick.symbol,
                    side=side,
                    quantity=size,
                    type=OrderType.MARKET,
                    price=tick.price,
                    tag=generate_order_tag("VWAP"),
                )],
            ))

        return signals
