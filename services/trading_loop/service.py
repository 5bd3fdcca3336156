# Trading Loop Service - evaluates every strategy on incoming ticks
import asyncio
import time
from typing import Any, Dict, List, Optional

from core.config.settings import Settings
from core.logging import get_performance_logger_safe, get_error_logger_safe
from core.schemas.events import EventType
from core.streaming import EventBus
from core.trading.models import MarketTick
from services.trading_engine.models import StrategyEvaluationResult
from services.trading_engine.service import TradingEngineService


class TradingLoopService:
    """Tick-driven strategy evaluation with a single cycle in flight.

    A tick that arrives while a cycle is still running is dropped, not
    queued. Cycles run as background tasks so the tick stream itself is
    never held up by order placement.
    """

    def __init__(self, settings: Settings, engine: TradingEngineService, event_bus: EventBus):
        self.settings = settings
        self.engine = engine
        self.event_bus = event_bus
        self.mode = settings.trading_loop.mode
        self.slow_threshold_ms = settings.trading_loop.slow_threshold_ms

        self._running = False
        self._evaluating = False
        self._current_cycle: Optional[asyncio.Task] = None
        self.cycles_completed = 0
        self.ticks_skipped = 0

        self.logger = get_performance_logger_safe("trading_loop")
        self.error_logger = get_error_logger_safe("trading_loop_errors")

    def start(self) -> None:
        if self._running:
            self.logger.info("Trading loop already running")
            return
        self._running = True
        self.event_bus.subscribe(EventType.MARKET_TICK, self.on_tick)
        self.logger.info("Trading loop started", mode=self.mode)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.event_bus.unsubscribe(EventType.MARKET_TICK, self.on_tick)
        if self._current_cycle is not None and not self._current_cycle.done():
            # Let the in-flight cycle finish its orders
            await asyncio.gather(self._current_cycle, return_exceptions=True)
        self.logger.info("Trading loop stopped", cycles=self.cycles_completed, skipped=self.ticks_skipped)

    def set_mode(self, mode: str) -> None:
        if mode not in ("parallel", "sequential"):
            raise ValueError(f"Unknown evaluation mode: {mode}")
        self.mode = mode
        self.logger.info("Evaluation mode changed", mode=mode)

    def get_status(self) -> Dict[str, Any]:
        return {"running": self._running, "mode": self.mode, "evaluating": self._evaluating}

    async def on_tick(self, tick: MarketTick) -> None:
        if not self._running:
            return
        if self._evaluating:
            self.ticks_skipped += 1
            self.logger.debug("Skipping tick - evaluation in progress", symbol=tick.symbol)
            return

        self._evaluating = True
        self._current_cycle = asyncio.create_task(self._guarded_cycle(tick))

    async def _guarded_cycle(self, tick: Optional[MarketTick]) -> List[StrategyEvaluationResult]:
        started = time.perf_counter()
        strategies = self.engine.get_strategies()
        try:
            return await self._evaluate_all()
        except Exception as e:
            self.error_logger.error("Error in trading loop",
                                    symbol=tick.symbol if tick else None, error=str(e), exc_info=True)
            return []
        finally:
            self._evaluating = False
            self.cycles_completed += 1
            elapsed_ms = (time.perf_counter() - started) * 1000
            if elapsed_ms > self.slow_threshold_ms:
                self.logger.warning(
                    "Slow strategy evaluation",
                    symbol=tick.symbol if tick else None,
                    elapsed_ms=round(elapsed_ms, 2),
                    strategy_count=len(strategies),
                )

    async def run_cycle(self) -> List[StrategyEvaluationResult]:
        """Evaluate every registered strategy once, unless a cycle is already running."""
        if self._evaluating:
            self.ticks_skipped += 1
            return []
        self._evaluating = True
        return await self._guarded_cycle(None)

    async def _evaluate_all(self) -> List[StrategyEvaluationResult]:
        strategy_ids = [strategy.strategy_id for strategy in self.engine.get_strategies()]
        if self.mode == "parallel":
            return list(await asyncio.gather(*(self.engine.evaluate(sid) for sid in strategy_ids)))

        results = []
        for strategy_id in strategy_ids:
            results.append(await self.engine.evaluate(strategy_id))
        return results
