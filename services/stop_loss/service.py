# Stop-Loss Monitor Service - protective exits driven by market ticks
import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set

from core.config.settings import Settings
from core.logging.service_logger import get_service_logger
from core.schemas.events import (
    EventType,
    StopLossExecutedEvent,
    StopLossFailedEvent,
    StopLossTriggeredEvent,
)
from core.streaming import EventBus
from core.trading.interfaces import StopLossRepository
from core.trading.models import (
    BrokerOrderRequest,
    MarketTick,
    OrderSide,
    OrderType,
    StopLossConfig,
    StopLossType,
    StrategySignal,
    Trade,
    utc_now,
)
from core.trading.portfolio_models import normalize_symbol
from core.utils.exceptions import ValidationError
from core.utils.ids import generate_order_tag
from services.risk_manager.service import RiskManagerService
from services.trading_engine.service import TradingEngineService

STOP_LOSS_STRATEGY_ID = "stop-loss-monitor"


class StopLossMonitorService:
    """
    Per-symbol protective exit state machine.

    BUY fills create or enlarge a long's stop-loss, SELL fills shrink or
    remove it. While monitoring, each tick may ratchet a trailing stop up
    or trigger a risk-gated MARKET SELL of the remaining quantity through
    the trading engine. A failed exit leaves the config in place so the
    next tick retries.
    """

    def __init__(
        self,
        settings: Settings,
        repository: StopLossRepository,
        risk: RiskManagerService,
        engine: TradingEngineService,
        event_bus: EventBus,
    ):
        self.settings = settings
        self.repository = repository
        self.risk = risk
        self.engine = engine
        self.event_bus = event_bus

        self.loggers = get_service_logger("stop_loss", "core")
        self.logger = self.loggers.main
        self.audit_logger = self.loggers.audit
        self.error_logger = self.loggers.error

        self._monitoring = False
        self._processing_symbols: Set[str] = set()
        self._symbol_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._consecutive_failures: Dict[str, int] = defaultdict(int)

        # Config bookkeeping follows fills even while tick monitoring is off
        self.event_bus.subscribe(EventType.TRADE_EXECUTED, self._on_trade_executed)

    # --- Lifecycle ---

    def start(self) -> None:
        if self._monitoring:
            self.logger.info("Stop-loss monitor already running")
            return
        self._monitoring = True
        self.event_bus.subscribe(EventType.MARKET_TICK, self._on_tick)
        self.logger.info("Stop-loss monitor started")

    def stop(self) -> None:
        if not self._monitoring:
            return
        self._monitoring = False
        self.event_bus.unsubscribe(EventType.MARKET_TICK, self._on_tick)
        self.logger.info("Stop-loss monitor stopped")

    def is_running(self) -> bool:
        return self._monitoring

    # --- Queries ---

    async def get_all(self) -> List[StopLossConfig]:
        return await self.repository.get_all()

    async def get(self, symbol: str) -> Optional[StopLossConfig]:
        return await self.repository.get(symbol)

    async def get_status(self) -> Dict[str, Any]:
        stop_losses = await self.repository.get_all()
        return {
            "monitoring": self._monitoring,
            "active_stop_losses": len(stop_losses),
            "stop_losses": stop_losses,
        }

    # --- Configuration ---

    async def set_stop_loss(
        self,
        symbol: str,
        entry_price: float,
        quantity: float,
        stop_loss_price: Optional[float] = None,
        type: Optional[StopLossType] = None,
        trailing_percent: Optional[float] = None,
    ) -> StopLossConfig:
        """Create or replace the stop-loss for ``symbol``.

        Without an explicit ``stop_loss_price`` the stop sits
        ``stop_loss_percent`` below entry, using the risk governor's current
        limits.
        """
        symbol = normalize_symbol(symbol or "")
        if not symbol:
            raise ValidationError("Symbol is required", field="symbol", value=symbol)
        if entry_price <= 0:
            raise ValidationError(f"Entry price must be positive, got {entry_price}",
                                  field="entry_price", value=entry_price)
        if quantity <= 0:
            raise ValidationError(f"Quantity must be positive, got {quantity}", field="quantity", value=quantity)

        stop_type = StopLossType(type or self.settings.stop_loss.default_type)
        if stop_loss_price is None:
            stop_loss_price = entry_price * (1 - self.risk.limits.stop_loss_percent / 100)
        elif stop_loss_price <= 0:
            raise ValidationError(f"Stop-loss price must be positive, got {stop_loss_price}",
                                  field="stop_loss_price", value=stop_loss_price)

        trailing = stop_type is StopLossType.TRAILING
        config = StopLossConfig(
            symbol=symbol,
            entry_price=entry_price,
            stop_loss_price=round(stop_loss_price, 2),
            quantity=quantity,
            type=stop_type,
            trailing_percent=(trailing_percent or self.settings.stop_loss.trailing_percent) if trailing else None,
            high_water_mark=entry_price if trailing else None,
        )
        saved = await self.repository.save(config)
        self.logger.info(
            "Stop-loss set",
            symbol=saved.symbol,
            entry_price=saved.entry_price,
            stop_loss_price=saved.stop_loss_price,
            quantity=saved.quantity,
            type=saved.type.value,
        )
        return saved

    async def remove_stop_loss(self, symbol: str) -> bool:
        symbol = normalize_symbol(symbol)
        removed = await self.repository.delete(symbol)
        self._consecutive_failures.pop(symbol, None)
        if removed:
            self.logger.info("Stop-loss removed", symbol=symbol)
        return removed

    # --- Fill handling ---

    async def _on_trade_executed(self, trade: Trade) -> None:
        # Serialized per symbol so concurrent fills apply in arrival order
        async with self._symbol_locks[normalize_symbol(trade.symbol)]:
            if trade.side is OrderSide.BUY:
                await self._on_position_opened(trade)
            else:
                await self._on_position_reduced(trade)

    async def _on_position_opened(self, trade: Trade) -> None:
        existing = await self.repository.get(trade.symbol)
        if existing is None:
            quantity = await self._long_quantity_after(trade)
            if quantity <= 0:
                self.logger.debug("Buy did not open a long, no stop-loss set", symbol=trade.symbol)
                return
            await self.set_stop_loss(trade.symbol, entry_price=trade.price, quantity=quantity)
            return

        quantity = existing.quantity + trade.quantity
        entry_price = (existing.entry_price * existing.quantity + trade.price * trade.quantity) / quantity
        if existing.type is StopLossType.TRAILING:
            # Averaging in never lowers a trailing stop that already ratcheted up
            stop_loss_price = max(
                entry_price * (1 - self.risk.limits.stop_loss_percent / 100),
                existing.stop_loss_price,
            )
            saved = await self.repository.save(existing.model_copy(update={
                "entry_price": entry_price,
                "quantity": quantity,
                "stop_loss_price": round(stop_loss_price, 2),
                "high_water_mark": max(existing.high_water_mark or entry_price, entry_price),
                "updated_at": utc_now(),
            }))
            self.logger.info("Trailing stop-loss enlarged", symbol=saved.symbol,
                             quantity=saved.quantity, stop_loss_price=saved.stop_loss_price)
            return

        await self.set_stop_loss(
            trade.symbol,
            entry_price=entry_price,
            quantity=quantity,
            type=existing.type,
        )

    async def _long_quantity_after(self, trade: Trade) -> float:
        """Long quantity a BUY left open; covering a short opens nothing to protect."""
        position = await self.engine.portfolio.get_position(trade.symbol)
        if position is None:
            return trade.quantity
        return min(trade.quantity, max(position.net_quantity, 0.0))

    async def _on_position_reduced(self, trade: Trade) -> None:
        existing = await self.repository.get(trade.symbol)
        if existing is None:
            return

        remaining = existing.quantity - trade.quantity
        if remaining <= 0:
            await self.remove_stop_loss(existing.symbol)
            self.logger.info("Position closed, stop-loss removed", symbol=existing.symbol)
        else:
            await self.repository.save(existing.model_copy(update={"quantity": remaining, "updated_at": utc_now()}))

    # --- Tick handling ---

    async def _on_tick(self, tick: MarketTick) -> None:
        if not self._monitoring or tick.symbol in self._processing_symbols:
            return

        config = await self.repository.get(tick.symbol)
        if config is None:
            return

        self._processing_symbols.add(tick.symbol)
        try:
            if config.type is StopLossType.TRAILING and tick.price > (config.high_water_mark or config.entry_price):
                # A rising price cannot breach a stop priced below it
                await self._update_trailing_stop(config, tick.price)
                return

            if tick.price <= config.stop_loss_price:
                await self._execute_stop_loss(config, tick)
        except Exception as e:
            self.error_logger.error("Error processing stop-loss tick", symbol=tick.symbol, error=str(e), exc_info=True)
        finally:
            self._processing_symbols.discard(tick.symbol)

    async def _update_trailing_stop(self, config: StopLossConfig, price: float) -> None:
        trailing_percent = config.trailing_percent or self.settings.stop_loss.trailing_percent
        candidate = price * (1 - trailing_percent / 100)
        if candidate <= config.stop_loss_price:
            return

        updated = await self.repository.save(config.model_copy(update={
            "high_water_mark": price,
            "stop_loss_price": round(candidate, 2),
            "updated_at": utc_now(),
        }))
        self.logger.debug(
            "Trailing stop raised",
            symbol=updated.symbol,
            high_water_mark=updated.high_water_mark,
            stop_loss_price=updated.stop_loss_price,
        )

    async def _execute_stop_loss(self, config: StopLossConfig, tick: MarketTick) -> None:
        triggered = StopLossTriggeredEvent(config=config, trigger_price=tick.price, trigger_time=tick.timestamp)
        await self.event_bus.publish(EventType.STOP_LOSS_TRIGGERED, triggered)
        self.audit_logger.warning(
            "STOP-LOSS TRIGGERED - submitting market sell",
            symbol=config.symbol,
            stop_loss_price=config.stop_loss_price,
            trigger_price=tick.price,
            quantity=config.quantity,
        )

        signal = StrategySignal(
            strategy_id=STOP_LOSS_STRATEGY_ID,
            description=f"Stop-loss triggered at {tick.price} (stop: {config.stop_loss_price})",
            requested_orders=[BrokerOrderRequest(
                symbol=config.symbol,
                side=OrderSide.SELL,
                quantity=config.quantity,
                type=OrderType.MARKET,
                tag=generate_order_tag("STOP-LOSS"),
            )],
        )

        try:
            result = await self.engine.submit_signal(signal)
        except Exception as e:
            await self._record_failure(triggered, [], str(e))
            return

        fills = [execution for execution in result.executions if execution.is_fill]
        if fills:
            self._consecutive_failures.pop(config.symbol, None)
            # The SELL fill already shrank the config; anything left is still open
            remaining = await self.repository.get(config.symbol)
            if remaining is not None and remaining.quantity <= 0:
                await self.repository.delete(config.symbol)
            elif remaining is not None:
                self.logger.info("Position still open after stop-loss exit, stop-loss kept",
                                 symbol=remaining.symbol, quantity=remaining.quantity,
                                 stop_loss_price=remaining.stop_loss_price)
            self.audit_logger.info(
                "Stop-loss executed",
                symbol=config.symbol,
                execution_id=fills[0].id,
                fill_price=fills[0].average_price,
            )
            await self.event_bus.publish(
                EventType.STOP_LOSS_EXECUTED,
                StopLossExecutedEvent(**triggered.model_dump(), execution=fills[0]),
            )
            return

        error = "; ".join(failure.error for failure in result.failures) or "Stop-loss order was not filled"
        await self._record_failure(triggered, result.failures, error)

    async def _record_failure(self, triggered: StopLossTriggeredEvent, failures: list, error: str) -> None:
        symbol = triggered.config.symbol
        self._consecutive_failures[symbol] += 1
        count = self._consecutive_failures[symbol]

        self.error_logger.error("Stop-loss order failed", symbol=symbol, error=error, consecutive_failures=count)
        await self.event_bus.publish(
            EventType.STOP_LOSS_FAILED,
            StopLossFailedEvent(**triggered.model_dump(), failures=failures, error=error, consecutive_failures=count),
        )

        if count == self.settings.stop_loss.max_consecutive_failures:
            await self.risk.report_critical_error(
                source="stop_loss",
                reason=f"Protective exit for {symbol} failed {count} times in a row",
                details={"symbol": symbol, "last_error": error, "stop_loss_price": triggered.config.stop_loss_price},
            )

    def get_consecutive_failures(self, symbol: str) -> int:
        return self._consecutive_failures.get(normalize_symbol(symbol), 0)
