from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from core.trading.models import (
    BrokerOrderExecution,
    BrokerOrderFailure,
    MarketSnapshot,
    PortfolioSnapshot,
    SentinelBaseModel,
    StrategySignal,
    utc_now,
)


class EvaluationStage(str, Enum):
    BROKER_CONNECTION = "BROKER_CONNECTION"
    SIGNAL_GENERATION = "SIGNAL_GENERATION"
    EXECUTION = "EXECUTION"


class EvaluationError(SentinelBaseModel):
    stage: EvaluationStage
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class StrategyExecutionResult(SentinelBaseModel):
    """Outcome of one signal: fills and per-order failures side by side"""
    signal: StrategySignal
    executions: List[BrokerOrderExecution] = Field(default_factory=list)
    failures: List[BrokerOrderFailure] = Field(default_factory=list)


class EvaluationSnapshot(SentinelBaseModel):
    market: MarketSnapshot
    portfolio: PortfolioSnapshot


class StrategyEvaluationResult(SentinelBaseModel):
    strategy_id: str
    venue: Optional[str] = None
    snapshot: Optional[EvaluationSnapshot] = None
    executions: List[StrategyExecutionResult] = Field(default_factory=list)
    errors: List[EvaluationError] = Field(default_factory=list)
    evaluated_at: datetime = Field(default_factory=utc_now)

    @property
    def fill_count(self) -> int:
        return sum(1 for result in self.executions for e in result.executions if e.is_fill)


class SellAllResult(SentinelBaseModel):
    venue: Optional[str] = None
    executions: List[BrokerOrderExecution] = Field(default_factory=list)
    failures: List[BrokerOrderFailure] = Field(default_factory=list)
    errors: List[EvaluationError] = Field(default_factory=list)
