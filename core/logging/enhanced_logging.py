# Structured logging with multi-channel file support
import sys
import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Optional, Any
import structlog

from core.config.settings import Settings
from .channels import (
    LogChannel,
    get_channel_for_component,
    get_channel_config,
)

# Global logger manager instance
_logger_manager: Optional['EnhancedLoggerManager'] = None

_FOREIGN_PRE_CHAIN = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
]


class ChannelFilter(logging.Filter):
    """Route records to a handler only when their `channel` matches."""

    def __init__(self, expected_channel: str):
        super().__init__()
        self.expected_channel = expected_channel

    def filter(self, record: logging.LogRecord) -> bool:
        event = record.msg if isinstance(record.msg, dict) else {}
        channel = event.get("channel", getattr(record, "channel", None))
        return channel is not None and str(channel) == self.expected_channel


class EnhancedLoggerManager:
    """Logging manager with console, file and per-channel handlers."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.channel_handlers: Dict[LogChannel, logging.Handler] = {}
        self.configured_loggers: Dict[str, structlog.BoundLogger] = {}

        self._setup_logging()

    def _setup_logging(self) -> None:
        level = getattr(logging, self.settings.logging.level.upper(), logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(level)

        if self.settings.logging.console_enabled:
            self._setup_console_logging(level)

        if self.settings.logging.file_enabled:
            Path(self.settings.logs_dir).mkdir(parents=True, exist_ok=True)
            self._setup_file_logging(level)
            if self.settings.logging.multi_channel_enabled:
                self._setup_multi_channel_logging()

        self._configure_structlog()

    def _file_renderer(self):
        if self.settings.logging.json_format:
            return structlog.processors.JSONRenderer()
        return structlog.processors.KeyValueRenderer(key_order=["event", "level", "timestamp"])

    def _setup_console_logging(self, level: int) -> None:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers:
            if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) == sys.stdout:
                return

        console_processor = (
            structlog.processors.JSONRenderer()
            if self.settings.logging.console_json_format
            else structlog.dev.ConsoleRenderer()
        )
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=console_processor,
                foreign_pre_chain=_FOREIGN_PRE_CHAIN,
            )
        )
        root_logger.addHandler(console_handler)

    def _setup_file_logging(self, level: int) -> None:
        log_file = Path(self.settings.logs_dir) / "sentinel_trader.log"
        root_logger = logging.getLogger()

        for handler in root_logger.handlers:
            if (isinstance(handler, logging.handlers.RotatingFileHandler) and
                    Path(handler.baseFilename) == log_file.resolve()):
                return

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=self._parse_size(self.settings.logging.file_max_size),
            backupCount=self.settings.logging.file_backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=self._file_renderer(),
                foreign_pre_chain=_FOREIGN_PRE_CHAIN,
            )
        )
        root_logger.addHandler(file_handler)

    def _setup_multi_channel_logging(self) -> None:
        """Attach one rotating file per channel to the root logger."""
        root_logger = logging.getLogger()
        for channel in LogChannel:
            config = get_channel_config(channel)
            handler = logging.handlers.RotatingFileHandler(
                filename=config.get_file_path(self.settings.logs_dir),
                maxBytes=self._parse_size(config.max_bytes),
                backupCount=config.backup_count,
                encoding="utf-8"
            )
            handler.setLevel(getattr(logging, config.level))
            handler.setFormatter(
                structlog.stdlib.ProcessorFormatter(
                    processor=self._file_renderer(),
                    foreign_pre_chain=_FOREIGN_PRE_CHAIN,
                )
            )
            # The error channel collects ERROR+ from everywhere
            if channel != LogChannel.ERROR:
                handler.addFilter(ChannelFilter(expected_channel=channel.value))
            root_logger.addHandler(handler)
            self.channel_handlers[channel] = handler

    def _parse_size(self, size_str: str) -> int:
        """Parse size string (e.g., '100MB') to bytes."""
        size_str = size_str.upper()

        if size_str.endswith("B"):
            size_str = size_str[:-1]

        multipliers = {
            "K": 1024,
            "M": 1024 * 1024,
            "G": 1024 * 1024 * 1024,
        }

        for suffix, multiplier in multipliers.items():
            if size_str.endswith(suffix):
                return int(float(size_str[:-1]) * multiplier)

        return int(size_str)

    def _configure_structlog(self) -> None:
        settings = self.settings

        def add_standard_context(logger, name, event_dict):
            """Bind standard context fields from settings."""
            event_dict.setdefault("service", settings.app_name)
            event_dict.setdefault("env", settings.environment.value)
            return event_dict

        def normalize_error(logger, name, event_dict):
            """Map `error` to a normalized `error_message` field."""
            if "error" in event_dict and not event_dict.get("error_message"):
                event_dict["error_message"] = str(event_dict["error"])
            return event_dict

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                add_standard_context,
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                normalize_error,
                structlog.processors.UnicodeDecoder(),
                # Defer final rendering to handlers via ProcessorFormatter
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str, component: Optional[str] = None) -> structlog.BoundLogger:
        """Get a structured logger for a component."""
        key = f"{name}:{component}" if component else name
        if key in self.configured_loggers:
            return self.configured_loggers[key]

        logger = structlog.get_logger(name)
        if component:
            channel = get_channel_for_component(component)
            logger = logger.bind(component=component, channel=channel.value)

        self.configured_loggers[key] = logger
        return logger

    def get_channel_logger(self, name: str, channel: LogChannel) -> structlog.BoundLogger:
        """Get a logger for a specific channel."""
        return structlog.get_logger(name).bind(channel=channel.value)

    def get_statistics(self) -> Dict[str, Any]:
        """Get logging statistics."""
        return {
            "total_loggers": len(self.configured_loggers),
            "multi_channel_enabled": self.settings.logging.multi_channel_enabled,
            "file_logging_enabled": self.settings.logging.file_enabled,
            "console_logging_enabled": self.settings.logging.console_enabled,
            "logs_directory": self.settings.logs_dir,
            "channel_handlers": [channel.value for channel in self.channel_handlers],
        }


def configure_enhanced_logging(settings: Settings) -> None:
    """Configure enhanced logging system."""
    global _logger_manager

    if _logger_manager is not None:
        return

    _logger_manager = EnhancedLoggerManager(settings)


def get_enhanced_logger(name: str, component: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    if _logger_manager is None:
        # Not configured yet (tests, library use): plain structlog defaults
        logger = structlog.get_logger(name)
        if component:
            logger = logger.bind(component=component, channel=get_channel_for_component(component).value)
        return logger

    return _logger_manager.get_logger(name, component)


def get_channel_logger(name: str, channel: LogChannel) -> structlog.BoundLogger:
    """Get a logger for a specific channel."""
    if _logger_manager is None:
        return structlog.get_logger(name).bind(channel=channel.value)

    return _logger_manager.get_channel_logger(name, channel)


def get_logging_statistics() -> Dict[str, Any]:
    """Get logging system statistics."""
    if _logger_manager is None:
        return {"error": "Logger manager not initialized"}

    return _logger_manager.get_statistics()


# Convenience functions for specific channels
def get_trading_logger(name: str) -> structlog.BoundLogger:
    """Get a trading-specific logger."""
    return get_channel_logger(name, LogChannel.TRADING)


def get_market_data_logger(name: str) -> structlog.BoundLogger:
    """Get a market data logger."""
    return get_channel_logger(name, LogChannel.MARKET_DATA)


def get_audit_logger(name: str) -> structlog.BoundLogger:
    """Get an audit logger."""
    return get_channel_logger(name, LogChannel.AUDIT)


def get_performance_logger(name: str) -> structlog.BoundLogger:
    """Get a performance logger."""
    return get_channel_logger(name, LogChannel.PERFORMANCE)


def get_monitoring_logger(name: str) -> structlog.BoundLogger:
    """Get a monitoring logger."""
    return get_channel_logger(name, LogChannel.MONITORING)


def get_error_logger(name: str) -> structlog.BoundLogger:
    """Get an error logger."""
    return get_channel_logger(name, LogChannel.ERROR)
