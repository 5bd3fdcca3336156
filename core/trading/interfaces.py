from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence

from core.trading.models import (
    BrokerOrderExecution,
    BrokerOrderRequest,
    MarketSnapshot,
    MarketTick,
    OrderSide,
    Quote,
    RiskLimits,
    Stock,
    StopLossConfig,
    Trade,
)


class ExecutionVenue(ABC):
    """Order execution venue (a live broker adapter or the paper simulator).

    Implementations own transport concerns: timeouts, reconnect/backoff and
    authentication all live behind this surface.
    """

    name: str

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def get_positions(self) -> List[Trade]:
        """Authoritative fill list held by the venue."""
        ...

    @abstractmethod
    async def place_order(self, request: BrokerOrderRequest) -> BrokerOrderExecution:
        ...

    @abstractmethod
    async def cancel_order(self, order_id: str) -> None:
        ...

    @abstractmethod
    async def get_quote(self, symbol: str, side: OrderSide) -> Quote:
        ...


class MarketDataFeed(ABC):
    """Latest-price view of the market; ticks are delivered on the event bus."""

    @abstractmethod
    def get_snapshot(self, symbols: Optional[Sequence[str]] = None) -> MarketSnapshot:
        ...

    @abstractmethod
    def get_tick(self, symbol: str) -> Optional[MarketTick]:
        ...


class PortfolioRepository(ABC):
    """Stock registry and trade store backing the position ledger."""

    @abstractmethod
    async def initialize(self) -> None:
        ...

    @abstractmethod
    async def reset(self) -> None:
        ...

    @abstractmethod
    async def list_stocks(self) -> List[Stock]:
        ...

    @abstractmethod
    async def find_stock(self, symbol: str) -> Optional[Stock]:
        ...

    @abstractmethod
    async def create_stock(self, stock: Stock) -> Stock:
        """Raises ConflictError when the symbol is already registered."""
        ...

    @abstractmethod
    async def ensure_stock(self, symbol: str, name: str) -> Stock:
        ...

    @abstractmethod
    async def list_trades(self) -> List[Trade]:
        ...

    @abstractmethod
    async def create_trade(self, trade: Trade) -> Trade:
        """Raises ConflictError on a duplicate trade id."""
        ...

    @abstractmethod
    async def create_trade_if_missing(self, trade: Trade) -> bool:
        """Store the trade unless its id exists; True when it was stored."""
        ...


class StopLossRepository(ABC):
    """One protective-exit configuration per symbol."""

    @abstractmethod
    async def get_all(self) -> List[StopLossConfig]:
        ...

    @abstractmethod
    async def get(self, symbol: str) -> Optional[StopLossConfig]:
        ...

    @abstractmethod
    async def save(self, config: StopLossConfig) -> StopLossConfig:
        ...

    @abstractmethod
    async def delete(self, symbol: str) -> bool:
        ...


class SettingsRepository(ABC):
    """Persisted risk limits, including the sticky circuit-breaker flag."""

    @abstractmethod
    async def get_risk_limits(self) -> RiskLimits:
        ...

    @abstractmethod
    async def save_risk_limits(self, limits: RiskLimits) -> RiskLimits:
        ...

    @abstractmethod
    async def reset_to_defaults(self) -> RiskLimits:
        ...


class BackupCapable(ABC):
    """Optional capability: point-in-time copies of a repository's store."""

    @abstractmethod
    async def create_backup(self) -> Path:
        ...

    @abstractmethod
    async def restore_from_backup(self, backup_path: Path) -> None:
        ...

    @abstractmethod
    def list_backups(self) -> List[Path]:
        ...


def resolve_backup_capability(repository: object) -> Optional[BackupCapable]:
    """Resolve the backup capability once, when the repository is wired."""
    if isinstance(repository, BackupCapable):
        return repository
    return None
