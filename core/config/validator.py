"""
Configuration validation at application startup.

Checks venue names, risk limits and storage paths before services start,
so a misconfigured deployment fails with a clear message instead of at
the first order.
"""

from pathlib import Path
from typing import List, Dict, Any
from dataclasses import dataclass

from core.logging import get_logger
from .settings import Settings

logger = get_logger(__name__, component="application")

SUPPORTED_VENUES = {"paper"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class ValidationResult:
    """Result of a configuration validation check"""
    is_valid: bool
    component: str
    message: str
    severity: str = "error"  # "error", "warning"


class ConfigurationValidator:
    """Validates critical configuration values before services start."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.validation_results: List[ValidationResult] = []

    def validate_all(self) -> bool:
        """
        Run all validation checks.

        Returns:
            bool: True if no check produced an error
        """
        self.validation_results = []
        self._validate_venues()
        self._validate_risk_settings()
        self._validate_stop_loss_settings()
        self._validate_persistence()
        self._validate_logging_settings()

        errors = [r for r in self.validation_results if r.severity == "error"]
        warnings = [r for r in self.validation_results if r.severity == "warning"]

        for result in errors:
            logger.error("Configuration error", component_name=result.component, message=result.message)
        for result in warnings:
            logger.warning("Configuration warning", component_name=result.component, message=result.message)

        if not errors:
            logger.info("Configuration validation passed", warnings=len(warnings))
        return len(errors) == 0

    def _add(self, component: str, message: str, severity: str = "error") -> None:
        self.validation_results.append(ValidationResult(
            is_valid=False,
            component=component,
            message=message,
            severity=severity,
        ))

    def _validate_venues(self):
        trading = self.settings.trading
        for label, name in (("primary_venue", trading.primary_venue), ("fallback_venue", trading.fallback_venue)):
            if name not in SUPPORTED_VENUES:
                self._add("Trading", f"Unsupported {label} '{name}'. Supported: {sorted(SUPPORTED_VENUES)}")
        if trading.dry_run:
            self._add("Trading", "Dry-run mode is enabled; no orders will reach a venue", severity="warning")

    def _validate_risk_settings(self):
        risk = self.settings.risk
        if risk.max_daily_loss <= 0:
            self._add("Risk", "max_daily_loss must be positive")
        if not 0 < risk.max_daily_loss_percent <= 100:
            self._add("Risk", "max_daily_loss_percent must be in (0, 100]")
        if risk.max_position_size <= 0:
            self._add("Risk", "max_position_size must be positive")
        if risk.max_open_positions < 1:
            self._add("Risk", "max_open_positions must be at least 1")
        if risk.account_capital <= 0:
            self._add("Risk", "account_capital must be positive")

    def _validate_stop_loss_settings(self):
        if not 0 < self.settings.risk.stop_loss_percent < 100:
            self._add("Stop Loss", "stop_loss_percent must be in (0, 100)")
        if not 0 < self.settings.stop_loss.trailing_percent < 100:
            self._add("Stop Loss", "trailing_percent must be in (0, 100)")
        if self.settings.stop_loss.max_consecutive_failures < 1:
            self._add("Stop Loss", "max_consecutive_failures must be at least 1")

    def _validate_persistence(self):
        if self.settings.persistence.backend != "file":
            return
        data_dir = Path(self.settings.persistence.data_dir)
        if data_dir.exists() and not data_dir.is_dir():
            self._add("Persistence", f"data_dir is not a directory: {data_dir}")

    def _validate_logging_settings(self):
        if self.settings.logging.level.upper() not in VALID_LOG_LEVELS:
            self._add("Logging", f"Invalid log level: {self.settings.logging.level}")

    def get_validation_summary(self) -> Dict[str, Any]:
        """Get a summary of validation results"""
        errors = [r for r in self.validation_results if r.severity == "error"]
        warnings = [r for r in self.validation_results if r.severity == "warning"]

        return {
            "total_checks": len(self.validation_results),
            "errors": len(errors),
            "warnings": len(warnings),
            "is_valid": len(errors) == 0,
            "error_details": [{"component": r.component, "message": r.message} for r in errors],
            "warning_details": [{"component": r.component, "message": r.message} for r in warnings]
        }


def validate_startup_configuration(settings: Settings) -> bool:
    """Convenience function to run startup configuration validation."""
    return ConfigurationValidator(settings).validate_all()
