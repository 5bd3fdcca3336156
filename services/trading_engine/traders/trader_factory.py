from typing import Callable, Dict, Optional

from core.config.settings import Settings
from core.logging import get_logger
from core.trading.interfaces import ExecutionVenue, MarketDataFeed
from core.utils.exceptions import ConfigurationError
from .paper_trader import PaperBroker

logger = get_logger(__name__)

VenueBuilder = Callable[[Settings, Optional[MarketDataFeed]], ExecutionVenue]


class VenueFactory:
    """Builds execution venues by name from settings."""

    def __init__(self, settings: Settings, market_data: Optional[MarketDataFeed] = None):
        self._settings = settings
        self._market_data = market_data
        self._builders: Dict[str, VenueBuilder] = {
            "paper": lambda s, md: PaperBroker(s, md),
        }

    def register(self, name: str, builder: VenueBuilder) -> None:
        """Add a venue adapter (a live broker client) under ``name``."""
        self._builders[name] = builder

    def create(self, name: str) -> ExecutionVenue:
        builder = self._builders.get(name)
        if builder is None:
            raise ConfigurationError(
                f"No execution venue registered as '{name}'",
                config_field="trading.venue",
                config_value=name,
            )
        venue = builder(self._settings, self._market_data)
        logger.info("Execution venue created", venue=name)
        return venue

    def create_primary(self) -> ExecutionVenue:
        return self.create(self._settings.trading.primary_venue)

    def create_fallback(self) -> ExecutionVenue:
        return self.create(self._settings.trading.fallback_venue)
