# Pure, decoupled strategy logic - no I/O dependencies
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict

from core.trading.interfaces import ExecutionVenue
from core.trading.models import MarketSnapshot, PortfolioSnapshot, SentinelBaseModel, StrategySignal


class StrategyContext(SentinelBaseModel):
    """Everything a strategy may look at when generating signals"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    market: MarketSnapshot
    portfolio: PortfolioSnapshot
    venue: Optional[ExecutionVenue] = None


class BaseStrategy(ABC):
    """Base class for all trading strategies - pure logic, no I/O"""

    def __init__(self, strategy_id: str, name: str, description: str = "",
                 parameters: Optional[Dict[str, Any]] = None):
        self.strategy_id = strategy_id
        self.name = name
        self.description = description
        self.parameters = parameters or {}

    @abstractmethod
    async def generate_signals(self, context: StrategyContext) -> List[StrategySignal]:
        """
        Turn a market and portfolio snapshot into trading signals.

        Args:
            context: Snapshots taken just before evaluation plus the active venue

        Returns:
            Signals to execute; an empty list means no action
        """
        ...

    def get_parameter(self, key: str, default: Any = None) -> Any:
        return self.parameters.get(key, default)

    def describe(self) -> Dict[str, Any]:
        return {
            "strategy_id": self.strategy_id,
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters),
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(strategy_id='{self.strategy_id}')"
