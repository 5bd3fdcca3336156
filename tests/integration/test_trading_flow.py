"""
Integration tests for the wired trading core.

Runs the real container (paper venues, in-process event bus) through:
- Startup reconciliation and service start-up
- Fills flowing into the ledger and stop-loss bookkeeping
- A protective exit triggered by a market tick
- Shutdown backups for the file-backed ledger
"""

import pytest
import pytest_asyncio
from dependency_injector import providers

from app.containers import AppContainer
from app.main import ApplicationOrchestrator
from core.config.settings import (
    LoggingSettings,
    PersistenceSettings,
    ReconciliationSettings,
    Settings,
    TradingLoopSettings,
    TradingSettings,
)
from core.schemas.events import EventType
from core.trading.models import BrokerOrderRequest, OrderSide, OrderType, PositionSide, StrategySignal
from services.portfolio_manager.persistence import JsonFilePortfolioRepository


def _settings(**overrides):
    values = dict(
        environment="testing",
        trading=TradingSettings(paper_slippage_bps=0.0),
        trading_loop=TradingLoopSettings(mode="sequential", slow_threshold_ms=10_000),
        reconciliation=ReconciliationSettings(interval_seconds=3600),
        persistence=PersistenceSettings(backend="memory"),
        logging=LoggingSettings(level="WARNING", console_enabled=False),
    )
    values.update(overrides)
    return Settings(**values)


def _container(settings):
    container = AppContainer()
    container.settings.override(providers.Object(settings))
    return container


@pytest.mark.integration
class TestTradingFlow:
    """End-to-end flow over the paper venue."""

    @pytest_asyncio.fixture
    async def app(self):
        app = ApplicationOrchestrator(_container(_settings()))
        await app.startup()
        yield app
        await app.shutdown()

    @pytest.mark.asyncio
    async def test_startup_starts_monitoring_services(self, app):
        assert app.stop_loss.is_running()
        assert app.trading_loop.get_status()["running"] is True
        assert app.reconciliation.get_last_result() is not None
        assert [s.strategy_id for s in app.engine.get_strategies()] == ["vwap"]

    @pytest.mark.asyncio
    async def test_stop_loss_exit_flattens_position(self, app):
        events = []
        app.event_bus.subscribe(EventType.STOP_LOSS_EXECUTED, events.append)
        market_feed = app.container.market_feed_service()

        result = await app.engine.submit_signal(StrategySignal(
            strategy_id="manual",
            requested_orders=[BrokerOrderRequest(
                symbol="ACME", side=OrderSide.BUY, quantity=10, type=OrderType.LIMIT, price=100,
            )],
        ))
        assert result.failures == []
        assert (await app.stop_loss.get("ACME")).stop_loss_price == 97

        await market_feed.update_tick("ACME", 96)

        assert len(events) == 1
        assert events[0].execution.average_price == 96
        position = await app.portfolio.get_position("ACME")
        assert position.position is PositionSide.FLAT
        assert position.realized_pnl == -40
        assert await app.stop_loss.get("ACME") is None
        assert app.risk.get_status().daily_realized_pnl == -40

        # Ledger and venue agree after the exit
        reconciliation = await app.reconciliation.reconcile_periodic()
        assert not reconciliation.has_discrepancies

    @pytest.mark.asyncio
    async def test_sell_all_closes_every_paper_position(self, app):
        for symbol, side in (("ACME", OrderSide.BUY), ("TCS", OrderSide.SELL)):
            await app.engine.submit_signal(StrategySignal(
                strategy_id="manual",
                requested_orders=[BrokerOrderRequest(
                    symbol=symbol, side=side, quantity=5, type=OrderType.LIMIT, price=50,
                )],
            ))

        result = await app.engine.sell_all_positions()

        assert result.failures == [] and result.errors == []
        assert len(result.executions) == 2
        snapshot = await app.portfolio.get_snapshot()
        assert snapshot.open_positions_count == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_file_backend_backs_up_on_shutdown(tmp_path):
    settings = _settings(persistence=PersistenceSettings(backend="file", data_dir=str(tmp_path)))
    app = ApplicationOrchestrator(_container(settings))

    assert isinstance(app.portfolio.repository, JsonFilePortfolioRepository)
    await app.startup()
    await app.engine.submit_signal(StrategySignal(
        strategy_id="manual",
        requested_orders=[BrokerOrderRequest(
            symbol="ACME", side=OrderSide.BUY, quantity=1, type=OrderType.LIMIT, price=10,
        )],
    ))
    await app.shutdown()

    assert len(app.backup.list_backups()) == 1
    assert (tmp_path / "portfolio.json").exists()
    # The BUY's protective stop is on disk for the next process
    restarted = ApplicationOrchestrator(_container(settings))
    assert [c.symbol for c in await restarted.stop_loss.get_all()] == ["ACME"]
