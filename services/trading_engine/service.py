import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

from core.config.settings import Settings
from core.logging import (
    bind_venue_context,
    get_error_logger_safe,
    get_performance_logger_safe,
    get_trading_logger_safe,
)
from core.schemas.events import EventType
from core.streaming import EventBus
from core.trading.interfaces import ExecutionVenue, MarketDataFeed
from core.trading.models import (
    BrokerOrderExecution,
    BrokerOrderFailure,
    BrokerOrderRequest,
    ExecutionStatus,
    OrderSide,
    OrderType,
    PortfolioSnapshot,
    StrategySignal,
    Trade,
    utc_now,
)
from core.trading.portfolio_models import fold_net_quantities, normalize_symbol
from core.utils.exceptions import (
    NotFoundError,
    PersistenceError,
    StrategyError,
    ValidationError,
    create_error_context,
)
from core.utils.ids import generate_order_tag, generate_prefixed_id
from services.portfolio_manager.service import PortfolioService
from services.risk_manager.service import RiskManagerService
from strategies.base import BaseStrategy, StrategyContext
from .models import (
    EvaluationError,
    EvaluationSnapshot,
    EvaluationStage,
    SellAllResult,
    StrategyEvaluationResult,
    StrategyExecutionResult,
)


class TradingEngineService:
    """Execution orchestrator: venue selection, strategy evaluation and order flow.

    The venue chosen by ``connect_with_fallback`` is passed down explicitly to
    every order placed in that call; the lock keeps one call's choice from
    interleaving with another's orders.
    """

    def __init__(
        self,
        settings: Settings,
        portfolio: PortfolioService,
        risk: RiskManagerService,
        market_data: MarketDataFeed,
        event_bus: EventBus,
        primary_venue: ExecutionVenue,
        fallback_venue: ExecutionVenue,
        strategies: Optional[Iterable[BaseStrategy]] = None,
    ):
        self.settings = settings
        self.portfolio = portfolio
        self.risk = risk
        self.market_data = market_data
        self.event_bus = event_bus
        self.primary_venue = primary_venue
        self.fallback_venue = fallback_venue

        self.logger = get_trading_logger_safe("trading_engine")
        self.perf_logger = get_performance_logger_safe("trading_engine_performance")
        self.error_logger = get_error_logger_safe("trading_engine_errors")

        self._lock = asyncio.Lock()

        # Metrics
        self.evaluation_count = 0
        self.fill_count = 0

        self._strategies: Dict[str, BaseStrategy] = {}
        for strategy in strategies or []:
            self.register_strategy(strategy)

    @property
    def dry_run(self) -> bool:
        return self.settings.trading.dry_run

    # --- Strategy registry ---

    def register_strategy(self, strategy: BaseStrategy) -> None:
        self._strategies[strategy.strategy_id] = strategy
        self.logger.info("Strategy registered", strategy_id=strategy.strategy_id, name=strategy.name)

    def get_strategies(self) -> List[BaseStrategy]:
        return list(self._strategies.values())

    def get_strategy(self, strategy_id: str) -> Optional[BaseStrategy]:
        return self._strategies.get(strategy_id)

    # --- Venue selection ---

    async def connect_with_fallback(self) -> Tuple[Optional[ExecutionVenue], List[EvaluationError]]:
        """Connect the primary venue, falling back once to the simulated venue.

        Returns the venue to use for this call (None when both are
        unreachable) and one BROKER_CONNECTION error per failed attempt.
        """
        errors: List[EvaluationError] = []
        for venue, role in ((self.primary_venue, "primary"), (self.fallback_venue, "fallback")):
            try:
                if not venue.is_connected():
                    await venue.connect()
                if errors:
                    self.logger.warning("Using fallback venue", venue=venue.name)
                return venue, errors
            except Exception as e:
                errors.append(EvaluationError(
                    stage=EvaluationStage.BROKER_CONNECTION,
                    message=str(e) or f"Failed to connect {role} venue",
                    details=create_error_context(e, "connect", {"venue": venue.name, "role": role}),
                ))
                self.error_logger.error(
                    f"{role.capitalize()} venue connection failed",
                    venue=venue.name,
                    error=str(e),
                )
        return None, errors

    # --- Evaluation ---

    async def evaluate(self, strategy_id: str) -> StrategyEvaluationResult:
        strategy = self._strategies.get(strategy_id)
        if strategy is None:
            raise NotFoundError(f"Unknown strategy {strategy_id}", resource="strategy", key=strategy_id)

        async with self._lock:
            started = asyncio.get_running_loop().time()
            result = await self._evaluate(strategy)
            self.evaluation_count += 1
            self.perf_logger.debug(
                "Strategy evaluated",
                strategy_id=strategy_id,
                venue=result.venue,
                duration_ms=round((asyncio.get_running_loop().time() - started) * 1000, 2),
                fills=result.fill_count,
                errors=len(result.errors),
            )
            return result

    async def _evaluate(self, strategy: BaseStrategy) -> StrategyEvaluationResult:
        venue, errors = await self.connect_with_fallback()

        snapshot = EvaluationSnapshot(
            market=self.market_data.get_snapshot(),
            portfolio=await self.portfolio.get_snapshot(),
        )
        result = StrategyEvaluationResult(
            strategy_id=strategy.strategy_id,
            venue=venue.name if venue else None,
            snapshot=snapshot,
            errors=errors,
        )
        if venue is None:
            self.error_logger.error("No execution venue reachable, skipping evaluation",
                                    strategy_id=strategy.strategy_id)
            return result

        logger = bind_venue_context(self.logger, venue.name, strategy.strategy_id)
        logger.debug("Evaluating strategy",
                     tick_count=len(snapshot.market.ticks),
                     open_positions=snapshot.portfolio.open_positions_count)

        signals: List[StrategySignal] = []
        try:
            signals = await strategy.generate_signals(StrategyContext(
                market=snapshot.market,
                portfolio=snapshot.portfolio,
                venue=venue,
            ))
        except Exception as e:
            error = e if isinstance(e, StrategyError) else StrategyError(
                str(e) or "Failed to generate strategy signals",
                strategy_id=strategy.strategy_id,
                details={"cause": type(e).__name__},
            )
            result.errors.append(EvaluationError(
                stage=EvaluationStage.SIGNAL_GENERATION,
                message=error.message,
                details=create_error_context(error, "generate_signals"),
            ))
            self.error_logger.error("Strategy signal generation failed",
                                    strategy_id=strategy.strategy_id, error=str(e), exc_info=True)
            signals = []

        for signal in signals:
            try:
                executed = await self.execute_signal(venue, signal)
            except Exception as e:
                result.errors.append(EvaluationError(
                    stage=EvaluationStage.EXECUTION,
                    message=str(e) or "Failed to execute strategy signal",
                    details=create_error_context(e, "execute_signal", {"strategy_id": signal.strategy_id}),
                ))
                self.error_logger.error("Strategy execution failed",
                                        strategy_id=signal.strategy_id, error=str(e), exc_info=True)
                continue

            result.executions.append(executed)
            for failure in executed.failures:
                result.errors.append(EvaluationError(
                    stage=EvaluationStage.EXECUTION,
                    message=failure.error,
                    details={"request": failure.request.model_dump(mode="json")},
                ))

        return result

    # --- Order flow ---

    async def execute_signal(self, venue: ExecutionVenue, signal: StrategySignal) -> StrategyExecutionResult:
        """Run every order of a signal; one order's failure never blocks its siblings."""
        result = StrategyExecutionResult(signal=signal)

        if self.dry_run:
            self.logger.info(
                "DRY RUN: orders validated, not sent",
                strategy_id=signal.strategy_id,
                orders=[order.model_dump(mode="json") for order in signal.requested_orders],
            )
            for order in signal.requested_orders:
                result.executions.append(BrokerOrderExecution(
                    id=generate_prefixed_id("dry-run"),
                    request=order,
                    status=ExecutionStatus.SIMULATED,
                    filled_quantity=0,
                    average_price=order.price or 0.0,
                    executed_at=utc_now(),
                    message="Dry run, no order sent",
                ))
            return result

        for order in signal.requested_orders:
            try:
                self._validate_order(order)
                snapshot = await self.portfolio.get_snapshot()
                risk_result = await self.risk.check_order_allowed(
                    order,
                    unrealized_pnl=snapshot.total_unrealized_pnl,
                    open_positions_count=snapshot.open_positions_count,
                    opens_new_position=self._opens_new_position(snapshot, order.symbol),
                    reference_price=self._reference_price(order.symbol),
                )
                if not risk_result.allowed:
                    result.failures.append(BrokerOrderFailure(
                        request=order,
                        error=f"Risk check failed: {risk_result.reason}",
                        details={"rule": risk_result.rule_name, "venue": venue.name},
                    ))
                    continue

                execution = await venue.place_order(order)
                result.executions.append(execution)
                await self._book_fill(execution, venue.name)
            except Exception as e:
                result.failures.append(self._order_failure(order, e, venue.name))

        return result

    async def submit_signal(self, signal: StrategySignal) -> StrategyExecutionResult:
        """Risk-gated execution of an out-of-band signal (protective exits)."""
        async with self._lock:
            venue, errors = await self.connect_with_fallback()
            if venue is None:
                messages = "; ".join(error.message for error in errors)
                return StrategyExecutionResult(
                    signal=signal,
                    failures=[
                        BrokerOrderFailure(
                            request=order,
                            error=f"No execution venue reachable: {messages}",
                            details={"errors": [error.model_dump(mode="json") for error in errors]},
                        )
                        for order in signal.requested_orders
                    ],
                )
            return await self.execute_signal(venue, signal)

    async def sell_all_positions(self) -> SellAllResult:
        """Close every position the venue reports, one MARKET order per symbol."""
        async with self._lock:
            venue, errors = await self.connect_with_fallback()
            result = SellAllResult(venue=venue.name if venue else None, errors=errors)
            if venue is None:
                return result

            try:
                positions = fold_net_quantities(
                    await venue.get_positions(), self.settings.reconciliation.tolerance
                )
            except Exception as e:
                result.errors.append(EvaluationError(
                    stage=EvaluationStage.BROKER_CONNECTION,
                    message=str(e) or "Failed to fetch venue positions",
                    details=create_error_context(e, "get_positions", {"venue": venue.name}),
                ))
                self.error_logger.error("Failed to fetch positions for liquidation", venue=venue.name, error=str(e))
                return result

            self.logger.warning("Liquidating all positions", venue=venue.name, positions=positions)
            for symbol, quantity in sorted(positions.items()):
                order = BrokerOrderRequest(
                    symbol=symbol,
                    side=self._closing_side(quantity),
                    quantity=abs(quantity),
                    type=OrderType.MARKET,
                    tag=generate_order_tag("LIQUIDATE"),
                )
                try:
                    self._validate_order(order)
                    execution = await venue.place_order(order)
                    result.executions.append(execution)
                    await self._book_fill(execution, venue.name)
                except Exception as e:
                    result.failures.append(self._order_failure(order, e, venue.name))

            return result

    async def shutdown(self) -> None:
        for venue in {id(v): v for v in (self.primary_venue, self.fallback_venue)}.values():
            try:
                if venue.is_connected():
                    await venue.disconnect()
            except Exception as e:
                self.error_logger.error("Venue disconnect failed", venue=venue.name, error=str(e))
        self.logger.info("Trading engine stopped",
                         evaluations=self.evaluation_count, fills=self.fill_count)

    # --- Helpers ---

    @staticmethod
    def _validate_order(order: BrokerOrderRequest) -> None:
        if order.quantity <= 0:
            raise ValidationError(f"Invalid quantity: {order.quantity} (must be > 0)",
                                  field="quantity", value=order.quantity)
        if order.type is OrderType.LIMIT and (order.price is None or order.price <= 0):
            raise ValidationError(f"Invalid price: {order.price} (must be > 0)",
                                  field="price", value=order.price)

    @staticmethod
    def _closing_side(net_quantity: float) -> OrderSide:
        return OrderSide.SELL if net_quantity > 0 else OrderSide.BUY

    @staticmethod
    def _opens_new_position(snapshot: PortfolioSnapshot, symbol: str) -> bool:
        position = snapshot.get_position(symbol)
        return position is None or position.net_quantity == 0

    def _reference_price(self, symbol: str) -> Optional[float]:
        tick = self.market_data.get_tick(symbol)
        return tick.price if tick else None

    async def _book_fill(self, execution: BrokerOrderExecution, venue_name: str) -> None:
        """Book a venue fill into the ledger, publish it and feed the risk governor.

        The venue already executed the order, so a storage failure is logged
        on its own and the fill still flows to subscribers and risk.
        """
        if not execution.is_fill:
            await self.risk.record_execution(execution)
            return

        symbol = normalize_symbol(execution.request.symbol)
        before = await self.portfolio.get_position(symbol)
        trade = Trade(
            id=execution.id,
            symbol=symbol,
            side=execution.request.side,
            quantity=execution.filled_quantity,
            price=execution.average_price,
            executed_at=execution.executed_at,
            notes=execution.request.tag,
        )
        try:
            await self.portfolio.record_external_trade(trade)
        except PersistenceError as e:
            self.error_logger.error(
                "Fill booked in memory but not persisted",
                execution_id=execution.id,
                venue=venue_name,
                symbol=symbol,
                error=str(e),
            )
        after = await self.portfolio.get_position(symbol)
        self.fill_count += 1

        self.logger.info(
            "Order filled",
            execution_id=execution.id,
            venue=venue_name,
            symbol=symbol,
            side=trade.side.value,
            quantity=trade.quantity,
            price=trade.price,
            tag=execution.request.tag,
        )
        await self.event_bus.publish(EventType.TRADE_EXECUTED, trade)

        realized_before = before.realized_pnl if before else 0.0
        realized_after = after.realized_pnl if after else 0.0
        snapshot = await self.portfolio.get_snapshot()
        await self.risk.update_pnl(unrealized=snapshot.total_unrealized_pnl)
        await self.risk.record_execution(execution, round(realized_after - realized_before, 2))

    def _order_failure(self, order: BrokerOrderRequest, error: Exception, venue_name: str) -> BrokerOrderFailure:
        message = str(error) or "Order execution failed"
        self.error_logger.error(
            "Order execution failed",
            venue=venue_name,
            symbol=order.symbol,
            side=order.side.value,
            quantity=order.quantity,
            error=message,
        )
        return BrokerOrderFailure(
            request=order,
            error=message,
            details=create_error_context(error, "place_order", {"venue": venue_name, "symbol": order.symbol}),
        )
