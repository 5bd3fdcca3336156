# Risk Manager Service Models
from dataclasses import dataclass, field
from pydantic import BaseModel, Field
from typing import Optional, List, Set
from datetime import datetime

from core.trading.models import RiskLimits, utc_now


class RiskCheckResult(BaseModel):
    """Outcome of a pre-trade risk check; a rejection is data, not an error"""
    allowed: bool
    reason: Optional[str] = None
    rule_name: Optional[str] = None

    @classmethod
    def allow(cls) -> "RiskCheckResult":
        return cls(allowed=True)

    @classmethod
    def reject(cls, reason: str, rule_name: Optional[str] = None) -> "RiskCheckResult":
        return cls(allowed=False, reason=reason, rule_name=rule_name)


class RiskStatus(BaseModel):
    circuit_broken: bool
    daily_pnl: float
    daily_realized_pnl: float
    daily_unrealized_pnl: float
    execution_count: int
    limits: RiskLimits
    manual_review_symbols: List[str] = Field(default_factory=list)
    last_reset: datetime


@dataclass
class RiskContext:
    """Everything a rule may look at when judging one order"""
    limits: RiskLimits
    daily_realized_pnl: float
    unrealized_pnl: float
    open_positions_count: int
    opens_new_position: bool
    account_capital: float
    reference_price: Optional[float] = None
    manual_review_symbols: Set[str] = field(default_factory=set)
    block_on_manual_review: bool = False

    @property
    def daily_pnl(self) -> float:
        return self.daily_realized_pnl + self.unrealized_pnl


@dataclass
class RiskState:
    """Intraday bookkeeping, cleared by a daily reset"""
    daily_realized_pnl: float = 0.0
    daily_unrealized_pnl: float = 0.0
    execution_count: int = 0
    last_reset: datetime = field(default_factory=utc_now)
