# Structured logging with multi-channel support
from typing import Optional, Dict, Any
import structlog

from core.config.settings import Settings
from .channels import LogChannel
from .enhanced_logging import (
    configure_enhanced_logging,
    get_enhanced_logger,
    get_channel_logger,
    get_logging_statistics,
    get_trading_logger,
    get_market_data_logger,
    get_audit_logger,
    get_performance_logger,
    get_monitoring_logger,
    get_error_logger,
)


def configure_logging(settings: Settings) -> None:
    """Configure the logging system once per process."""
    configure_enhanced_logging(settings)


def get_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return get_enhanced_logger(name, component)


def bind_venue_context(logger: structlog.BoundLogger, venue: str, strategy_id: Optional[str] = None) -> structlog.BoundLogger:
    """Bind venue context consistently to a logger.

    Adds `venue` and, when given, `strategy_id`. Returns a new BoundLogger.
    """
    ctx: Dict[str, Any] = {"venue": venue}
    if strategy_id:
        ctx["strategy_id"] = strategy_id
    return logger.bind(**ctx)


def get_statistics() -> Dict[str, Any]:
    """Get logging system statistics."""
    return get_logging_statistics()


# Channel-specific logger functions
def get_trading_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a trading logger safely."""
    return get_trading_logger(name)


def get_market_data_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a market data logger safely."""
    return get_market_data_logger(name)


def get_audit_logger_safe(name: str) -> structlog.BoundLogger:
    """Get an audit logger safely."""
    return get_audit_logger(name)


def get_performance_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a performance logger safely."""
    return get_performance_logger(name)


def get_monitoring_logger_safe(name: str) -> structlog.BoundLogger:
    """Get a monitoring logger safely."""
    return get_monitoring_logger(name)


def get_error_logger_safe(name: str) -> structlog.BoundLogger:
    """Get an error logger safely."""
    return get_error_logger(name)


__all__ = [
    "LogChannel",
    "configure_logging",
    "get_logger",
    "get_channel_logger",
    "bind_venue_context",
    "get_statistics",
    "get_trading_logger_safe",
    "get_market_data_logger_safe",
    "get_audit_logger_safe",
    "get_performance_logger_safe",
    "get_monitoring_logger_safe",
    "get_error_logger_safe",
]
