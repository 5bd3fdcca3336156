from datetime import datetime
from enum import Enum
from typing import List

from pydantic import Field

from core.trading.models import SentinelBaseModel, utc_now


class ReconciliationAction(str, Enum):
    SYNC_FROM_BROKER = "SYNC_FROM_BROKER"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    OK = "OK"


class Discrepancy(SentinelBaseModel):
    """Venue and ledger disagree on a symbol's net quantity"""
    symbol: str
    local_quantity: float
    broker_quantity: float
    difference: float
    action: ReconciliationAction


class ReconciliationResult(SentinelBaseModel):
    timestamp: datetime = Field(default_factory=utc_now)
    has_discrepancies: bool = False
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    broker_position_count: int = 0
    local_position_count: int = 0
    synced_symbols: List[str] = Field(default_factory=list)

    @property
    def manual_review_symbols(self) -> List[str]:
        return [d.symbol for d in self.discrepancies if d.action is ReconciliationAction.MANUAL_REVIEW]
