# Risk Manager Service - pre-trade gate and circuit breaker
import asyncio
from typing import Any, Dict, Iterable, Optional

from core.config.settings import Settings
from core.logging.service_logger import get_service_logger
from core.schemas.events import EventType, CircuitBreakerTrippedEvent, CriticalErrorEvent
from core.streaming import EventBus
from core.trading.interfaces import SettingsRepository
from core.trading.models import BrokerOrderExecution, BrokerOrderRequest, RiskLimits
from .models import RiskCheckResult, RiskContext, RiskState, RiskStatus
from .rules import RiskRuleEngine


class RiskManagerService:
    """Judges each proposed order against the configured limits.

    The circuit breaker is sticky: once tripped it is persisted with the
    limits and only an explicit reset clears it.
    """

    def __init__(self, settings: Settings, settings_repository: SettingsRepository, event_bus: EventBus):
        self.settings = settings
        self.settings_repository = settings_repository
        self.event_bus = event_bus

        self.loggers = get_service_logger("risk_manager", "core")
        self.logger = self.loggers.main
        self.audit_logger = self.loggers.audit
        self.error_logger = self.loggers.error

        self.rule_engine = RiskRuleEngine()
        self.state = RiskState()
        self.limits = settings.risk.to_limits()
        self.manual_review_symbols: set[str] = set()
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Load persisted limits (including a tripped breaker) and follow updates."""
        if self._initialized:
            return
        self.limits = await self.settings_repository.get_risk_limits()
        self.event_bus.subscribe(EventType.RISK_LIMITS_UPDATED, self._on_limits_updated)
        self._initialized = True
        self.logger.info(
            "Risk manager initialized",
            circuit_broken=self.limits.circuit_broken,
            limits=self.limits.model_dump(),
        )

    def _on_limits_updated(self, limits: RiskLimits) -> None:
        self.limits = limits
        self.logger.info("Risk limits updated", limits=limits.model_dump())

    @property
    def circuit_broken(self) -> bool:
        return self.limits.circuit_broken

    async def check_order_allowed(
        self,
        order: BrokerOrderRequest,
        unrealized_pnl: float,
        open_positions_count: int,
        opens_new_position: bool = True,
        reference_price: Optional[float] = None,
    ) -> RiskCheckResult:
        context = RiskContext(
            limits=self.limits,
            daily_realized_pnl=self.state.daily_realized_pnl,
            unrealized_pnl=unrealized_pnl,
            open_positions_count=open_positions_count,
            opens_new_position=opens_new_position,
            account_capital=self.settings.risk.account_capital,
            reference_price=reference_price,
            manual_review_symbols=self.manual_review_symbols,
            block_on_manual_review=self.settings.risk.block_on_manual_review,
        )
        result, rule = self.rule_engine.evaluate(order, context)

        if not result.allowed:
            if rule is not None and rule.trips_circuit_breaker:
                await self._trip_circuit_breaker(result.reason, context.daily_pnl)
            self.logger.warning(
                "Order rejected by risk check",
                symbol=order.symbol,
                side=order.side.value,
                quantity=order.quantity,
                rule=result.rule_name,
                reason=result.reason,
            )
        return result

    async def record_execution(self, execution: BrokerOrderExecution, realized_pnl_delta: float = 0.0) -> None:
        """Fold a fill's realized P&L into today's running loss."""
        async with self._lock:
            self.state.execution_count += 1
            self.state.daily_realized_pnl += realized_pnl_delta
            total = self.state.daily_realized_pnl + self.state.daily_unrealized_pnl
        self.logger.debug(
            "Execution recorded",
            execution_id=execution.id,
            realized_pnl_delta=realized_pnl_delta,
            daily_pnl=total,
        )
        await self._check_daily_loss(total, source="execution")

    async def update_pnl(self, realized: Optional[float] = None, unrealized: Optional[float] = None) -> None:
        """Overwrite today's P&L figures; a figure left as None keeps its current value."""
        async with self._lock:
            if realized is not None:
                self.state.daily_realized_pnl = realized
            if unrealized is not None:
                self.state.daily_unrealized_pnl = unrealized
            total = self.state.daily_realized_pnl + self.state.daily_unrealized_pnl
        await self._check_daily_loss(total, source="pnl_update")

    async def _check_daily_loss(self, total: float, source: str) -> None:
        if self.limits.circuit_broken:
            return
        percent_limit = self.settings.risk.account_capital * self.limits.max_daily_loss_percent / 100
        if total <= -min(self.limits.max_daily_loss, percent_limit):
            await self._trip_circuit_breaker(f"Daily loss limit hit via {source}: {total:.2f}", total)

    async def _trip_circuit_breaker(self, reason: str, daily_pnl: float) -> None:
        if self.limits.circuit_broken:
            return
        self.limits = self.limits.model_copy(update={"circuit_broken": True})
        self.error_logger.error("CIRCUIT BREAKER TRIGGERED - TRADING HALTED", reason=reason, daily_pnl=daily_pnl)
        self.audit_logger.warning("Circuit breaker tripped", reason=reason, daily_pnl=daily_pnl)
        try:
            await self.settings_repository.save_risk_limits(self.limits)
        except Exception as e:
            # The in-memory breaker stays tripped even if persisting fails
            self.error_logger.error("Failed to persist circuit breaker state", error=str(e))
        await self.event_bus.publish(
            EventType.CIRCUIT_BREAKER_TRIPPED,
            CircuitBreakerTrippedEvent(reason=reason, daily_pnl=daily_pnl),
        )

    async def reset_daily_counters(self) -> RiskStatus:
        """Start a new trading day: clear P&L bookkeeping and the circuit breaker."""
        async with self._lock:
            self.state = RiskState()
        self.limits = self.limits.model_copy(update={"circuit_broken": False})
        await self.settings_repository.save_risk_limits(self.limits)
        self.audit_logger.info("Daily risk counters reset")
        return self.get_status()

    async def update_limits(self, **changes: Any) -> RiskLimits:
        updated = RiskLimits(**{**self.limits.model_dump(), **changes})
        self.limits = await self.settings_repository.save_risk_limits(updated)
        self.audit_logger.info("Risk limits changed", changes=changes)
        return self.limits

    def set_manual_review_symbols(self, symbols: Iterable[str]) -> None:
        self.manual_review_symbols = {s.strip().upper() for s in symbols}
        if self.manual_review_symbols:
            self.logger.warning(
                "Symbols awaiting manual reconciliation review",
                symbols=sorted(self.manual_review_symbols),
                blocking=self.settings.risk.block_on_manual_review,
            )

    async def report_critical_error(self, source: str, reason: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Operator notification hook for conditions the core cannot recover from."""
        event = CriticalErrorEvent(source=source, reason=reason, details=details or {})
        self.error_logger.critical("Critical error reported", source=source, reason=reason, details=event.details)
        self.audit_logger.error("Critical error reported", source=source, reason=reason)
        await self.event_bus.publish(EventType.CRITICAL_ERROR, event)

    def get_status(self) -> RiskStatus:
        return RiskStatus(
            circuit_broken=self.limits.circuit_broken,
            daily_pnl=round(self.state.daily_realized_pnl + self.state.daily_unrealized_pnl, 2),
            daily_realized_pnl=round(self.state.daily_realized_pnl, 2),
            daily_unrealized_pnl=round(self.state.daily_unrealized_pnl, 2),
            execution_count=self.state.execution_count,
            limits=self.limits.model_copy(),
            manual_review_symbols=sorted(self.manual_review_symbols),
            last_reset=self.state.last_reset,
        )
