# Complete settings with ALL required sections
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, AliasChoices, field_validator, model_validator
from enum import Enum
from typing import Literal, Optional
from pathlib import Path

from core.trading.models import RiskLimits


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class TradingSettings(BaseModel):
    # Dry-run validates strategy logic without touching venues or the ledger
    dry_run: bool = False
    primary_venue: str = "paper"
    fallback_venue: str = "paper"
    paper_slippage_bps: float = 5.0


class RiskSettings(BaseModel):
    """Default risk limits, used until limits are saved to the settings repository"""
    max_daily_loss: float = 5000.0
    max_daily_loss_percent: float = 2.0
    max_position_size: float = 100000.0
    max_open_positions: int = 5
    stop_loss_percent: float = 3.0
    # Capital base for the percentage daily-loss limit
    account_capital: float = 250000.0
    # Reject orders for symbols the last reconciliation flagged for manual review
    block_on_manual_review: bool = False

    def to_limits(self) -> RiskLimits:
        return RiskLimits(
            max_daily_loss=self.max_daily_loss,
            max_daily_loss_percent=self.max_daily_loss_percent,
            max_position_size=self.max_position_size,
            max_open_positions=self.max_open_positions,
            stop_loss_percent=self.stop_loss_percent,
        )


class StopLossSettings(BaseModel):
    default_type: Literal["FIXED", "TRAILING"] = "FIXED"
    trailing_percent: float = 3.0
    max_consecutive_failures: int = 3
    auto_start: bool = True


class ReconciliationSettings(BaseModel):
    enabled: bool = True
    interval_seconds: int = 300
    tolerance: float = 0.001
    auto_sync_on_startup: bool = True


class TradingLoopSettings(BaseModel):
    enabled: bool = True
    mode: Literal["parallel", "sequential"] = "parallel"
    slow_threshold_ms: float = 50.0


class PersistenceSettings(BaseModel):
    backend: Literal["memory", "file"] = "memory"
    data_dir: str = "data"
    backup_retention: int = 7

    @field_validator("backup_retention")
    @classmethod
    def validate_retention(cls, v):
        if v < 1:
            raise ValueError("backup_retention must be at least 1")
        return v


class LoggingSettings(BaseModel):
    # Core logging settings
    level: str = "INFO"
    json_format: bool = True

    # Console logging
    console_enabled: bool = True
    console_json_format: bool = False  # Plain text for console by default

    # File logging
    file_enabled: bool = False
    logs_dir: str = "logs"
    file_max_size: str = "50MB"
    file_backup_count: int = 5

    # Multi-channel logging (requires file logging)
    multi_channel_enabled: bool = True


class Settings(BaseSettings):
    """Main application settings, loaded from environment variables"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = "Sentinel Trader"
    version: str = "1.0.0"
    environment: Environment = Environment.DEVELOPMENT

    trading: TradingSettings = TradingSettings()
    risk: RiskSettings = RiskSettings()
    stop_loss: StopLossSettings = StopLossSettings()
    reconciliation: ReconciliationSettings = ReconciliationSettings()
    trading_loop: TradingLoopSettings = TradingLoopSettings()
    persistence: PersistenceSettings = PersistenceSettings()
    logging: LoggingSettings = LoggingSettings()

    # --- Legacy flat variables, folded into the nested sections ---
    legacy_dry_run: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("DRY_RUN"),
        description="Legacy DRY_RUN flag; overrides trading.dry_run when set",
    )
    legacy_max_position_size: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("MAX_POSITION_SIZE"),
        description="Legacy MAX_POSITION_SIZE; overrides risk.max_position_size when set",
    )

    @model_validator(mode="after")
    def apply_legacy_overrides(self):
        if self.legacy_dry_run is not None:
            self.trading.dry_run = bool(self.legacy_dry_run)
        if self.legacy_max_position_size is not None:
            if self.legacy_max_position_size <= 0:
                raise ValueError("MAX_POSITION_SIZE must be positive")
            self.risk.max_position_size = float(self.legacy_max_position_size)
        return self

    @property
    def logs_dir(self) -> str:
        """Get logs directory"""
        return self.logging.logs_dir

    @property
    def data_dir(self) -> Path:
        return Path(self.persistence.data_dir)


# No global settings instance - use dependency injection instead
