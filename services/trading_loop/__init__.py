from .service import TradingLoopService

__all__ = ["TradingLoopService"]
