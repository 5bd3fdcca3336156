# Structured exception hierarchy for Sentinel Trader

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class SentinelError(Exception):
    """Base exception for all Sentinel Trader specific errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id
        self.timestamp = datetime.now(timezone.utc)


class TransientError(SentinelError):
    """Base class for errors that may clear on a later attempt"""
    pass


class PermanentError(SentinelError):
    """Base class for errors that will not clear by retrying"""
    pass


# Input Errors
class ValidationError(PermanentError):
    """Data validation errors - non-positive price/quantity, malformed input"""

    def __init__(self, message: str, field: str, value: Any, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value


class NotFoundError(PermanentError):
    """Lookup of an unknown resource (symbol, strategy, backup)"""

    def __init__(self, message: str, resource: str, key: Any, **kwargs):
        super().__init__(message, **kwargs)
        self.resource = resource
        self.key = key


class ConflictError(PermanentError):
    """Duplicate identifiers - trade ids, registered symbols"""

    def __init__(self, message: str, resource: str, key: Any, **kwargs):
        super().__init__(message, **kwargs)
        self.resource = resource
        self.key = key


# Venue Errors
class BrokerError(TransientError):
    """Base class for execution venue errors"""

    def __init__(self, message: str, broker: str, **kwargs):
        super().__init__(message, **kwargs)
        self.broker = broker


class BrokerConnectionError(BrokerError):
    """Venue unreachable or not connected"""
    pass


class BrokerOrderError(BrokerError):
    """Venue refused or failed an order operation"""

    def __init__(self, message: str, broker: str, order_id: Optional[str] = None, **kwargs):
        super().__init__(message, broker, **kwargs)
        self.order_id = order_id


# Strategy Errors
class StrategyError(SentinelError):
    """Strategy signal generation failures"""

    def __init__(self, message: str, strategy_id: str, **kwargs):
        super().__init__(message, **kwargs)
        self.strategy_id = strategy_id


# Infrastructure Errors
class PersistenceError(TransientError):
    """Storage read/write failures"""

    def __init__(self, message: str, operation: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.path = path


class ConfigurationError(PermanentError):
    """Configuration validation errors"""

    def __init__(self, message: str, config_field: str, config_value: Any, **kwargs):
        super().__init__(message, **kwargs)
        self.config_field = config_field
        self.config_value = config_value


def is_retryable_error(error: Exception) -> bool:
    """Transient errors may succeed on a later cycle; everything else will not."""
    return isinstance(error, TransientError)


def create_error_context(error: Exception, operation: str,
                         additional_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create structured error context for logging and result records

    Args:
        error: The exception that occurred
        operation: The operation that failed
        additional_context: Additional context information

    Returns:
        Structured error context dictionary
    """
    context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "retryable": is_retryable_error(error)
    }

    if isinstance(error, SentinelError):
        if error.correlation_id:
            context["correlation_id"] = error.correlation_id
        if error.details:
            context["error_details"] = error.details

        if isinstance(error, BrokerError):
            context["broker"] = error.broker

        if isinstance(error, StrategyError):
            context["strategy_id"] = error.strategy_id

        if isinstance(error, ValidationError):
            context["field"] = error.field
            context["value"] = error.value

        if isinstance(error, (NotFoundError, ConflictError)):
            context["resource"] = error.resource
            context["key"] = error.key

    if additional_context:
        context.update(additional_context)

    return context
