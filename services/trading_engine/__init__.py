"""
Trading Engine Service

Execution orchestration over a primary venue with a simulated fallback:
strategy evaluation, risk-gated order placement and liquidation.
"""

from .service import TradingEngineService
from .models import EvaluationError, EvaluationStage, StrategyEvaluationResult, StrategyExecutionResult
from .traders.trader_factory import VenueFactory
from .traders.paper_trader import PaperBroker

__all__ = [
    "TradingEngineService",
    "EvaluationError",
    "EvaluationStage",
    "StrategyEvaluationResult",
    "StrategyExecutionResult",
    "VenueFactory",
    "PaperBroker",
]
