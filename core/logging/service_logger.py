"""
Standardized service logger initialization for Sentinel Trader services.
Provides consistent logging patterns across all service components.
"""

from typing import Optional

from .enhanced_logging import (
    get_trading_logger,
    get_performance_logger,
    get_error_logger,
    get_audit_logger,
    get_monitoring_logger,
)


class ServiceLogger:
    """Standardized logger collection for services"""

    def __init__(self, service_name: str, component: Optional[str] = None):
        """
        Initialize service logger collection.

        Args:
            service_name: Name of the service (e.g., 'risk_manager', 'trading_engine')
            component: Optional component within service (e.g., 'rules')
        """
        self.service_name = service_name
        self.component = component

        base_name = f"{service_name}_{component}" if component else service_name

        service_context = {
            "service": service_name,
            "component": component
        }

        self.main = get_trading_logger(base_name).bind(**service_context)
        self.performance = get_performance_logger(f"{base_name}_performance").bind(**service_context)
        self.error = get_error_logger(f"{base_name}_errors").bind(**service_context)
        self.audit = get_audit_logger(f"{base_name}_audit").bind(**service_context)
        self.monitoring = get_monitoring_logger(f"{base_name}_monitoring").bind(**service_context)


def get_service_logger(service_name: str, component: Optional[str] = None) -> ServiceLogger:
    """
    Get a standardized service logger collection.

    Args:
        service_name: Name of the service
        component: Optional component within service

    Returns:
        ServiceLogger instance with all logger types initialized
    """
    return ServiceLogger(service_name, component)
