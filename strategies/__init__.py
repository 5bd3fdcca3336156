"""
Sentinel Trader strategies

Strategies are pure signal generators: they see a market snapshot, a
portfolio snapshot and the active venue, and return signals. Order
placement, risk checks and ledger updates belong to the trading engine.
"""

from .base import BaseStrategy, StrategyContext
from .vwap import VWAPStrategy

__all__ = ["BaseStrategy", "StrategyContext", "VWAPStrategy"]
