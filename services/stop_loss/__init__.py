from .repository import InMemoryStopLossRepository
from .service import StopLossMonitorService, STOP_LOSS_STRATEGY_ID

__all__ = ["InMemoryStopLossRepository", "StopLossMonitorService", "STOP_LOSS_STRATEGY_ID"]
