import asyncio

import pytest

from services.trading_engine import TradingEngineService
from services.trading_loop import TradingLoopService
from tests.mocks.strategies import ScriptedStrategy
from tests.mocks.venues import RecordingVenue


class GatedStrategy(ScriptedStrategy):
    """Holds signal generation open until released."""

    def __init__(self, strategy_id="gated"):
        super().__init__(strategy_id)
        self.gate = asyncio.Event()

    async def generate_signals(self, context):
        signals = await super().generate_signals(context)
        await self.gate.wait()
        return signals


@pytest.fixture
def engine(test_settings, portfolio_service, risk_manager, market_feed, event_bus):
    return TradingEngineService(
        settings=test_settings,
        portfolio=portfolio_service,
        risk=risk_manager,
        market_data=market_feed,
        event_bus=event_bus,
        primary_venue=RecordingVenue("primary"),
        fallback_venue=RecordingVenue("fallback"),
    )


@pytest.fixture
def loop(test_settings, engine, event_bus):
    return TradingLoopService(test_settings, engine, event_bus)


@pytest.mark.asyncio
async def test_ticks_during_evaluation_are_dropped(loop, engine, market_feed):
    strategy = GatedStrategy()
    engine.register_strategy(strategy)
    loop.start()

    await market_feed.update_tick("ACME", 100)
    assert loop.get_status()["evaluating"] is True

    await market_feed.update_tick("ACME", 101)
    await market_feed.update_tick("TCS", 55)
    assert loop.ticks_skipped == 2

    strategy.gate.set()
    await loop.stop()

    assert strategy.calls == 1
    assert loop.cycles_completed == 1
    assert loop.get_status() == {"running": False, "mode": "sequential", "evaluating": False}


@pytest.mark.asyncio
async def test_next_tick_after_cycle_starts_new_evaluation(loop, engine, market_feed):
    strategy = ScriptedStrategy()
    engine.register_strategy(strategy)
    loop.start()

    await market_feed.update_tick("ACME", 100)
    while loop.get_status()["evaluating"]:
        await asyncio.sleep(0)
    await market_feed.update_tick("ACME", 101)
    await loop.stop()

    assert strategy.calls == 2
    assert loop.ticks_skipped == 0


@pytest.mark.asyncio
async def test_stopped_loop_ignores_ticks(loop, engine, market_feed):
    strategy = ScriptedStrategy()
    engine.register_strategy(strategy)

    await market_feed.update_tick("ACME", 100)

    assert strategy.calls == 0
    assert loop.cycles_completed == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["parallel", "sequential"])
async def test_run_cycle_evaluates_every_strategy(loop, engine, mode):
    engine.register_strategy(ScriptedStrategy("first"))
    engine.register_strategy(ScriptedStrategy("second"))
    loop.set_mode(mode)

    results = await loop.run_cycle()

    assert sorted(r.strategy_id for r in results) == ["first", "second"]
    assert engine.evaluation_count == 2


@pytest.mark.asyncio
async def test_failing_strategy_does_not_break_cycle(loop, engine):
    engine.register_strategy(ScriptedStrategy("broken", error=RuntimeError("boom")))
    engine.register_strategy(ScriptedStrategy("healthy"))

    results = await loop.run_cycle()

    assert len(results) == 2
    assert results[0].errors[0].message == "boom"
    assert results[1].errors == []


def test_unknown_mode_rejected(loop):
    with pytest.raises(ValueError):
        loop.set_mode("turbo")
