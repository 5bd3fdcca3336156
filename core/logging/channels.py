"""
Logging channel definitions for Sentinel Trader.
Each channel can be written to its own file so fills, audits and errors
can be retained and inspected independently.
"""

from enum import Enum
from typing import Dict, Optional
from pathlib import Path
from dataclasses import dataclass


class LogChannel(str, Enum):
    """Logging channels for different components."""

    APPLICATION = "application"  # Bootstrap, container, CLI
    TRADING = "trading"          # Orders, fills, risk decisions
    MARKET_DATA = "market_data"  # Price ticks
    AUDIT = "audit"              # Fills, breaker trips, stop-loss exits, syncs
    PERFORMANCE = "performance"  # Evaluation cycle timings
    ERROR = "error"              # Errors from every channel
    MONITORING = "monitoring"    # Reconciliation and status


@dataclass
class ChannelConfig:
    """Configuration for a logging channel."""

    name: str
    filename: str
    level: str = "INFO"
    max_bytes: str = "50MB"
    backup_count: int = 5
    retention_days: Optional[int] = None

    def get_file_path(self, logs_dir: str) -> Path:
        """Get the full file path for this channel."""
        return Path(logs_dir) / self.filename


CHANNEL_CONFIGS: Dict[LogChannel, ChannelConfig] = {
    LogChannel.APPLICATION: ChannelConfig(
        name="application",
        filename="application.log",
        backup_count=10,
        retention_days=30,
    ),
    LogChannel.TRADING: ChannelConfig(
        name="trading",
        filename="trading.log",
        backup_count=20,
        retention_days=365,
    ),
    LogChannel.MARKET_DATA: ChannelConfig(
        name="market_data",
        filename="market_data.log",
        max_bytes="200MB",  # High volume
        retention_days=7,
    ),
    LogChannel.AUDIT: ChannelConfig(
        name="audit",
        filename="audit.log",
        max_bytes="100MB",
        backup_count=50,
        retention_days=365,
    ),
    LogChannel.PERFORMANCE: ChannelConfig(
        name="performance",
        filename="performance.log",
        retention_days=30,
    ),
    LogChannel.ERROR: ChannelConfig(
        name="error",
        filename="error.log",
        level="ERROR",
        backup_count=20,
        retention_days=90,
    ),
    LogChannel.MONITORING: ChannelConfig(
        name="monitoring",
        filename="monitoring.log",
        retention_days=30,
    ),
}


def get_channel_for_component(component: str) -> LogChannel:
    """Get the appropriate logging channel for a component."""
    component_mapping = {
        "market_data": LogChannel.MARKET_DATA,
        "portfolio": LogChannel.TRADING,
        "risk_manager": LogChannel.TRADING,
        "trading_engine": LogChannel.TRADING,
        "paper_broker": LogChannel.TRADING,
        "stop_loss": LogChannel.TRADING,
        "trading_loop": LogChannel.PERFORMANCE,
        "reconciliation": LogChannel.MONITORING,
        "persistence": LogChannel.APPLICATION,
        "events": LogChannel.APPLICATION,
        "audit": LogChannel.AUDIT,
    }

    return component_mapping.get(component, LogChannel.APPLICATION)


def get_channel_config(channel: LogChannel) -> ChannelConfig:
    """Get configuration for a specific channel."""
    return CHANNEL_CONFIGS[channel]
