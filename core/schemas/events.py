# In-process event names and payloads published on the event bus
from pydantic import Field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

from core.trading.models import (
    SentinelBaseModel,
    BrokerOrderExecution,
    BrokerOrderFailure,
    StopLossConfig,
    utc_now,
)


class EventType(str, Enum):
    MARKET_TICK = "market-tick"
    TRADE_EXECUTED = "trade-executed"
    STOP_LOSS_TRIGGERED = "stop-loss-triggered"
    STOP_LOSS_EXECUTED = "stop-loss-executed"
    STOP_LOSS_FAILED = "stop-loss-failed"
    STOP_LOSS_UPDATED = "stop-loss-updated"
    STOP_LOSS_REMOVED = "stop-loss-removed"
    RISK_LIMITS_UPDATED = "risk-limits-updated"
    CIRCUIT_BREAKER_TRIPPED = "circuit-breaker-tripped"
    RECONCILIATION_COMPLETED = "reconciliation-completed"
    CRITICAL_ERROR = "critical_error"


class StopLossTriggeredEvent(SentinelBaseModel):
    config: StopLossConfig
    trigger_price: float
    trigger_time: datetime


class StopLossExecutedEvent(StopLossTriggeredEvent):
    execution: BrokerOrderExecution


class StopLossFailedEvent(StopLossTriggeredEvent):
    failures: List[BrokerOrderFailure] = Field(default_factory=list)
    error: Optional[str] = None
    consecutive_failures: int = 1


class StopLossRemovedEvent(SentinelBaseModel):
    symbol: str
    removed_at: datetime = Field(default_factory=utc_now)


class CircuitBreakerTrippedEvent(SentinelBaseModel):
    reason: str
    daily_pnl: float
    tripped_at: datetime = Field(default_factory=utc_now)


class CriticalErrorEvent(SentinelBaseModel):
    source: str
    reason: str
    details: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utc_now)
