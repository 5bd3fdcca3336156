# Reconciliation Service - ledger versus venue position audit
from typing import Dict, List, Optional

from core.config.settings import Settings
from core.logging import get_monitoring_logger_safe, get_audit_logger_safe
from core.schemas.events import EventType
from core.streaming import EventBus
from core.trading.interfaces import ExecutionVenue
from core.trading.models import Trade
from core.trading.portfolio_models import fold_net_quantities, normalize_symbol
from services.portfolio_manager.service import PortfolioService
from services.risk_manager.service import RiskManagerService
from .models import Discrepancy, ReconciliationAction, ReconciliationResult


class ReconciliationService:
    """
    Compares the ledger's net positions with the venue's fill history.

    Symbols the ledger has never seen are replayed from the venue during
    startup reconciliation. Every other mismatch is flagged for manual
    review and handed to the risk governor; nothing local is resized or
    deleted without venue confirmation. Only one run is in flight at a
    time.
    """

    def __init__(
        self,
        settings: Settings,
        portfolio: PortfolioService,
        venue: ExecutionVenue,
        risk: RiskManagerService,
        event_bus: EventBus,
    ):
        self.settings = settings
        self.portfolio = portfolio
        self.venue = venue
        self.risk = risk
        self.event_bus = event_bus
        self.tolerance = settings.reconciliation.tolerance

        self._last_result: Optional[ReconciliationResult] = None
        self._is_reconciling = False

        self.logger = get_monitoring_logger_safe("reconciliation")
        self.audit_logger = get_audit_logger_safe("reconciliation_audit")

    @property
    def is_reconciling(self) -> bool:
        return self._is_reconciling

    async def reconcile_on_startup(self) -> ReconciliationResult:
        self.logger.info("Starting position reconciliation on startup")
        return await self._reconcile(is_startup=True)

    async def reconcile_periodic(self) -> ReconciliationResult:
        if self._is_reconciling:
            self.logger.debug("Reconciliation already in progress, skipping")
            return self._last_result or ReconciliationResult()
        return await self._reconcile(is_startup=False)

    def get_last_result(self) -> Optional[ReconciliationResult]:
        return self._last_result.model_copy(deep=True) if self._last_result else None

    def get_discrepancies(self) -> List[Discrepancy]:
        return list(self._last_result.discrepancies) if self._last_result else []

    async def sync_symbol_from_broker(self, symbol: str) -> ReconciliationResult:
        """Replay the venue's fills for one symbol, then refresh the cached result."""
        symbol = normalize_symbol(symbol)
        if not self.venue.is_connected():
            await self.venue.connect()
        synced = await self._sync_from_broker(symbol, await self.venue.get_positions())
        self.audit_logger.info("Manual sync from broker", symbol=symbol, trades_synced=synced)
        return await self.reconcile_periodic()

    async def _reconcile(self, is_startup: bool) -> ReconciliationResult:
        self._is_reconciling = True
        try:
            if not self.venue.is_connected():
                try:
                    await self.venue.connect()
                except Exception as e:
                    self.logger.warning("Could not connect to venue for reconciliation",
                                        venue=self.venue.name, error=str(e))
                    return ReconciliationResult()

            try:
                broker_trades = await self.venue.get_positions()
            except Exception as e:
                self.logger.error("Failed to fetch venue positions for reconciliation",
                                  venue=self.venue.name, error=str(e))
                return ReconciliationResult()

            broker_map = fold_net_quantities(broker_trades, self.tolerance)
            local_map = self._local_positions(await self.portfolio.get_trade_summaries())

            discrepancies: List[Discrepancy] = []
            synced_symbols: List[str] = []
            for symbol in sorted(set(broker_map) | set(local_map)):
                broker_qty = broker_map.get(symbol, 0.0)
                local_qty = local_map.get(symbol, 0.0)
                difference = broker_qty - local_qty
                if abs(difference) <= self.tolerance:
                    continue

                discrepancy = Discrepancy(
                    symbol=symbol,
                    local_quantity=local_qty,
                    broker_quantity=broker_qty,
                    difference=round(difference, 6),
                    action=self._classify(local_qty, broker_qty),
                )
                discrepancies.append(discrepancy)
                self.logger.warning(
                    "Position discrepancy detected",
                    symbol=symbol,
                    local_quantity=local_qty,
                    broker_quantity=broker_qty,
                    difference=discrepancy.difference,
                    action=discrepancy.action.value,
                )

                if is_startup and discrepancy.action is ReconciliationAction.SYNC_FROM_BROKER \
                        and self.settings.reconciliation.auto_sync_on_startup:
                    await self._sync_from_broker(symbol, broker_trades)
                    synced_symbols.append(symbol)

            result = ReconciliationResult(
                has_discrepancies=bool(discrepancies),
                discrepancies=discrepancies,
                broker_position_count=len(broker_map),
                local_position_count=len(local_map),
                synced_symbols=synced_symbols,
            )
            self._last_result = result

            if discrepancies:
                self.logger.warning(
                    "Position reconciliation complete with discrepancies",
                    discrepancy_count=len(discrepancies),
                    synced_count=len(synced_symbols),
                )
            else:
                self.logger.info(
                    "Position reconciliation complete - no discrepancies",
                    broker_positions=len(broker_map),
                    local_positions=len(local_map),
                )

            self.risk.set_manual_review_symbols(result.manual_review_symbols)
            await self.event_bus.publish(EventType.RECONCILIATION_COMPLETED, result.model_copy(deep=True))
            return result
        finally:
            self._is_reconciling = False

    def _local_positions(self, summaries) -> Dict[str, float]:
        return {s.symbol: s.net_quantity for s in summaries if abs(s.net_quantity) > self.tolerance}

    @staticmethod
    def _classify(local_qty: float, broker_qty: float) -> ReconciliationAction:
        if local_qty == 0 and broker_qty != 0:
            return ReconciliationAction.SYNC_FROM_BROKER
        # Venue flat while ledger holds a position, or both hold different sizes
        return ReconciliationAction.MANUAL_REVIEW

    async def _sync_from_broker(self, symbol: str, broker_trades: List[Trade]) -> int:
        synced = 0
        for trade in broker_trades:
            if normalize_symbol(trade.symbol) != symbol:
                continue
            try:
                await self.portfolio.record_external_trade(trade)
                synced += 1
                self.audit_logger.info(
                    "Synced trade from venue",
                    symbol=symbol,
                    trade_id=trade.id,
                    side=trade.side.value,
                    quantity=trade.quantity,
                    price=trade.price,
                )
            except Exception as e:
                self.logger.warning("Failed to sync trade from venue", symbol=symbol, trade_id=trade.id, error=str(e))
        return synced
