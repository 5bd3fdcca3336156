# Shared trading data models - the vocabulary every service speaks
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SentinelBaseModel(BaseModel):
    """Base model for all Sentinel Trader schemas (Pydantic v2)."""

    model_config = ConfigDict(
        use_enum_values=False,
        populate_by_name=True,
    )


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class ExecutionStatus(str, Enum):
    """Venue fill status, plus SIMULATED for dry-run records"""
    FILLED = "FILLED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    REJECTED = "REJECTED"
    SIMULATED = "SIMULATED"


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    FLAT = "FLAT"


class StopLossType(str, Enum):
    FIXED = "FIXED"
    TRAILING = "TRAILING"


# --- Ledger ---

class Stock(SentinelBaseModel):
    """Tradable instrument registry entry"""
    symbol: str
    name: str
    created_at: datetime = Field(default_factory=utc_now)


class Trade(SentinelBaseModel):
    """Immutable fill record"""
    id: str
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    executed_at: datetime = Field(default_factory=utc_now)
    notes: Optional[str] = None


class TradeInput(SentinelBaseModel):
    """Manual trade entry; id is assigned by the ledger when omitted"""
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    executed_at: Optional[datetime] = None
    notes: Optional[str] = None
    id: Optional[str] = None


class TradeSummary(SentinelBaseModel):
    symbol: str
    name: str
    net_quantity: float
    average_entry_price: float
    realized_pnl: float
    position: PositionSide


class PositionSnapshot(TradeSummary):
    mark_price: float
    unrealized_pnl: float


class PortfolioSnapshot(SentinelBaseModel):
    generated_at: datetime = Field(default_factory=utc_now)
    positions: List[PositionSnapshot] = Field(default_factory=list)
    total_trades: int = 0

    def get_position(self, symbol: str) -> Optional[PositionSnapshot]:
        symbol = symbol.strip().upper()
        return next((p for p in self.positions if p.symbol == symbol), None)

    @property
    def total_unrealized_pnl(self) -> float:
        return round(sum(p.unrealized_pnl for p in self.positions), 2)

    @property
    def total_realized_pnl(self) -> float:
        return round(sum(p.realized_pnl for p in self.positions), 2)

    @property
    def open_positions_count(self) -> int:
        return sum(1 for p in self.positions if p.position is not PositionSide.FLAT)


# --- Market data ---

class MarketTick(SentinelBaseModel):
    symbol: str
    price: float
    volume: float = 0.0
    timestamp: datetime = Field(default_factory=utc_now)


class MarketSnapshot(SentinelBaseModel):
    ticks: List[MarketTick] = Field(default_factory=list)
    as_of: datetime = Field(default_factory=utc_now)

    def get_tick(self, symbol: str) -> Optional[MarketTick]:
        symbol = symbol.strip().upper()
        return next((t for t in self.ticks if t.symbol == symbol), None)


# --- Orders ---

class BrokerOrderRequest(SentinelBaseModel):
    symbol: str
    side: OrderSide
    quantity: float
    type: OrderType = OrderType.MARKET
    price: Optional[float] = None
    tag: Optional[str] = None


class BrokerOrderExecution(SentinelBaseModel):
    id: str
    request: BrokerOrderRequest
    status: ExecutionStatus
    filled_quantity: float
    average_price: float
    executed_at: datetime = Field(default_factory=utc_now)
    message: Optional[str] = None

    @property
    def is_fill(self) -> bool:
        return self.filled_quantity > 0 and self.status is not ExecutionStatus.REJECTED


class BrokerOrderFailure(SentinelBaseModel):
    request: BrokerOrderRequest
    error: str
    details: Optional[dict] = None


class Quote(SentinelBaseModel):
    symbol: str
    side: OrderSide
    price: float
    valid_until: datetime


class StrategySignal(SentinelBaseModel):
    strategy_id: str
    description: str = ""
    requested_orders: List[BrokerOrderRequest] = Field(default_factory=list)


# --- Risk and protection ---

class RiskLimits(SentinelBaseModel):
    max_daily_loss: float = 5000.0
    max_daily_loss_percent: float = 2.0
    max_position_size: float = 100000.0
    max_open_positions: int = 5
    stop_loss_percent: float = 3.0
    circuit_broken: bool = False


class StopLossConfig(SentinelBaseModel):
    symbol: str
    entry_price: float
    stop_loss_price: float
    quantity: float
    type: StopLossType = StopLossType.FIXED
    trailing_percent: Optional[float] = None
    high_water_mark: Optional[float] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
