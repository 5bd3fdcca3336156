from unittest.mock import AsyncMock

import pytest

from core.schemas.events import EventType
from core.trading.models import (
    BrokerOrderExecution,
    BrokerOrderRequest,
    ExecutionStatus,
    OrderSide,
    OrderType,
)


def _order(symbol="ACME", quantity=10, price=100.0, type=OrderType.LIMIT, side=OrderSide.BUY):
    return BrokerOrderRequest(symbol=symbol, side=side, quantity=quantity, type=type, price=price)


def _execution(order):
    return BrokerOrderExecution(id="x-1", request=order, status=ExecutionStatus.FILLED,
                                filled_quantity=order.quantity, average_price=order.price or 0)


@pytest.mark.asyncio
async def test_allows_order_within_limits(risk_manager):
    result = await risk_manager.check_order_allowed(_order(), unrealized_pnl=0, open_positions_count=0)
    assert result.allowed
    assert result.reason is None


@pytest.mark.asyncio
async def test_rejects_oversized_order(risk_manager):
    result = await risk_manager.check_order_allowed(_order(quantity=2000, price=100), 0, 0)
    assert not result.allowed
    assert result.rule_name == "MaxPositionSize"
    assert "exceeds max position size" in result.reason


@pytest.mark.asyncio
async def test_market_order_sized_with_reference_price(risk_manager):
    order = _order(quantity=2000, price=None, type=OrderType.MARKET)

    unpriced = await risk_manager.check_order_allowed(order, 0, 0)
    priced = await risk_manager.check_order_allowed(order, 0, 0, reference_price=100)

    assert unpriced.allowed
    assert not priced.allowed


@pytest.mark.asyncio
async def test_open_positions_limit_only_for_new_symbols(risk_manager):
    new_symbol = await risk_manager.check_order_allowed(_order(), 0, open_positions_count=5)
    existing_symbol = await risk_manager.check_order_allowed(_order(), 0, open_positions_count=5,
                                                             opens_new_position=False)

    assert not new_symbol.allowed
    assert new_symbol.rule_name == "MaxOpenPositions"
    assert existing_symbol.allowed


@pytest.mark.asyncio
async def test_daily_loss_rejection_trips_sticky_breaker(risk_manager, settings_repository, event_collector):
    rejected = await risk_manager.check_order_allowed(_order(), unrealized_pnl=-6000, open_positions_count=0)

    assert not rejected.allowed
    assert rejected.rule_name == "DailyLoss"
    assert risk_manager.circuit_broken
    assert (await settings_repository.get_risk_limits()).circuit_broken
    assert len(event_collector.of_type(EventType.CIRCUIT_BREAKER_TRIPPED)) == 1

    # Losses recovering does not clear the breaker
    again = await risk_manager.check_order_allowed(_order(), unrealized_pnl=0, open_positions_count=0)
    assert not again.allowed
    assert again.rule_name == "CircuitBreaker"

    status = await risk_manager.reset_daily_counters()
    assert not status.circuit_broken
    assert (await risk_manager.check_order_allowed(_order(), 0, 0)).allowed


@pytest.mark.asyncio
async def test_percent_loss_limit_uses_account_capital(test_settings, settings_repository, event_bus):
    from services.risk_manager.service import RiskManagerService

    test_settings.risk.account_capital = 100_000
    risk = RiskManagerService(test_settings, settings_repository, event_bus)

    # 2% of 100k is tighter than the 5000 absolute limit
    result = await risk.check_order_allowed(_order(), unrealized_pnl=-2500, open_positions_count=0)
    assert not result.allowed
    assert "of capital" in result.reason


@pytest.mark.asyncio
async def test_record_execution_accumulates_realized_loss(risk_manager, event_collector):
    order = _order()
    await risk_manager.record_execution(_execution(order), realized_pnl_delta=-3000)
    assert not risk_manager.circuit_broken

    await risk_manager.record_execution(_execution(order), realized_pnl_delta=-2500)

    status = risk_manager.get_status()
    assert status.execution_count == 2
    assert status.daily_realized_pnl == -5500
    assert status.circuit_broken
    assert len(event_collector.of_type(EventType.CIRCUIT_BREAKER_TRIPPED)) == 1


@pytest.mark.asyncio
async def test_manual_review_blocks_only_when_enabled(test_settings, settings_repository, event_bus):
    from services.risk_manager.service import RiskManagerService

    risk = RiskManagerService(test_settings, settings_repository, event_bus)
    risk.set_manual_review_symbols(["acme"])
    assert (await risk.check_order_allowed(_order(), 0, 0)).allowed

    test_settings.risk.block_on_manual_review = True
    blocked = await risk.check_order_allowed(_order(), 0, 0)
    assert not blocked.allowed
    assert blocked.rule_name == "ManualReview"
    assert (await risk.check_order_allowed(_order(symbol="TCS"), 0, 0)).allowed


@pytest.mark.asyncio
async def test_limits_follow_repository_updates(risk_manager):
    await risk_manager.initialize()
    await risk_manager.update_limits(max_position_size=500)

    assert risk_manager.limits.max_position_size == 500
    result = await risk_manager.check_order_allowed(_order(quantity=10, price=100), 0, 0)
    assert not result.allowed


@pytest.mark.asyncio
async def test_invalid_order_parameters_rejected_as_data(risk_manager):
    zero = await risk_manager.check_order_allowed(_order(quantity=0), 0, 0)
    unpriced_limit = await risk_manager.check_order_allowed(_order(price=None), 0, 0)

    assert not zero.allowed and "quantity" in zero.reason
    assert not unpriced_limit.allowed and "price" in unpriced_limit.reason


@pytest.mark.asyncio
async def test_critical_error_is_published(risk_manager, event_collector):
    await risk_manager.report_critical_error("stop_loss", "exit failing", {"symbol": "ACME"})

    events = event_collector.of_type(EventType.CRITICAL_ERROR)
    assert len(events) == 1
    assert events[0].source == "stop_loss"
    assert events[0].details == {"symbol": "ACME"}


@pytest.mark.asyncio
async def test_update_pnl_trips_breaker_on_combined_loss(risk_manager):
    await risk_manager.update_pnl(realized=-2000, unrealized=-2000)
    assert not risk_manager.circuit_broken

    await risk_manager.update_pnl(realized=-2000, unrealized=-3000)
    assert risk_manager.circuit_broken
    assert risk_manager.get_status().daily_pnl == -5000


@pytest.mark.asyncio
async def test_unrealized_update_keeps_realized_pnl(risk_manager):
    await risk_manager.update_pnl(realized=-1500)
    await risk_manager.update_pnl(unrealized=-250)

    status = risk_manager.get_status()
    assert status.daily_realized_pnl == -1500
    assert status.daily_unrealized_pnl == -250
    assert status.daily_pnl == -1750


@pytest.mark.asyncio
async def test_breaker_stays_tripped_when_persisting_fails(test_settings, event_bus):
    from services.risk_manager.service import RiskManagerService

    repository = AsyncMock()
    repository.save_risk_limits.side_effect = OSError("disk full")
    risk = RiskManagerService(test_settings, repository, event_bus)

    result = await risk.check_order_allowed(_order(), unrealized_pnl=-9000, open_positions_count=0)

    assert not result.allowed
    assert risk.circuit_broken
    repository.save_risk_limits.assert_awaited_once()
