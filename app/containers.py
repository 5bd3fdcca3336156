# Application DI container - every component built once and passed explicitly
from pathlib import Path

from dependency_injector import containers, providers

from core.config.settings import Settings
from core.streaming import EventBus
from core.trading.interfaces import ExecutionVenue, resolve_backup_capability
from core.trading.models import RiskLimits
from services.market_feed.service import MarketFeedService
from services.portfolio_manager.persistence import InMemoryPortfolioRepository, JsonFilePortfolioRepository
from services.portfolio_manager.service import PortfolioService
from services.reconciliation.service import ReconciliationService
from services.risk_manager.service import RiskManagerService
from services.risk_manager.state import InMemorySettingsRepository, JsonFileSettingsRepository
from services.stop_loss.repository import InMemoryStopLossRepository, JsonFileStopLossRepository
from services.stop_loss.service import StopLossMonitorService
from services.trading_engine.service import TradingEngineService
from services.trading_engine.traders.trader_factory import VenueFactory
from services.trading_loop.service import TradingLoopService
from strategies.vwap import VWAPStrategy


def _portfolio_file(settings: Settings) -> Path:
    return settings.data_dir / "portfolio.json"


def _settings_file(settings: Settings) -> Path:
    return settings.data_dir / "settings.json"


def _stop_loss_file(settings: Settings) -> Path:
    return settings.data_dir / "stop_losses.json"


def _default_risk_limits(settings: Settings) -> RiskLimits:
    return settings.risk.to_limits()


def _create_primary_venue(factory: VenueFactory) -> ExecutionVenue:
    return factory.create_primary()


def _create_fallback_venue(factory: VenueFactory) -> ExecutionVenue:
    return factory.create_fallback()


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    # Configuration
    settings = providers.Singleton(Settings)

    # In-process event channel shared by every service
    event_bus = providers.Singleton(EventBus)

    # --- Persistence ---
    portfolio_repository = providers.Selector(
        settings.provided.persistence.backend,
        memory=providers.Singleton(InMemoryPortfolioRepository),
        file=providers.Singleton(
            JsonFilePortfolioRepository,
            file_path=providers.Callable(_portfolio_file, settings),
            backup_retention=settings.provided.persistence.backup_retention,
        ),
    )

    # Resolved once; None when the configured backend cannot back up
    backup_capability = providers.Singleton(resolve_backup_capability, portfolio_repository)

    settings_repository = providers.Selector(
        settings.provided.persistence.backend,
        memory=providers.Singleton(
            InMemorySettingsRepository,
            defaults=providers.Callable(_default_risk_limits, settings),
            event_bus=event_bus,
        ),
        file=providers.Singleton(
            JsonFileSettingsRepository,
            file_path=providers.Callable(_settings_file, settings),
            defaults=providers.Callable(_default_risk_limits, settings),
            event_bus=event_bus,
        ),
    )

    stop_loss_repository = providers.Selector(
        settings.provided.persistence.backend,
        memory=providers.Singleton(InMemoryStopLossRepository, event_bus=event_bus),
        file=providers.Singleton(
            JsonFileStopLossRepository,
            file_path=providers.Callable(_stop_loss_file, settings),
            event_bus=event_bus,
        ),
    )

    # --- Market data and venues ---
    market_feed_service = providers.Singleton(MarketFeedService, event_bus=event_bus)

    venue_factory = providers.Singleton(VenueFactory, settings=settings, market_data=market_feed_service)
    primary_venue = providers.Singleton(_create_primary_venue, venue_factory)
    fallback_venue = providers.Singleton(_create_fallback_venue, venue_factory)

    # --- Core services ---
    portfolio_service = providers.Singleton(PortfolioService, repository=portfolio_repository)

    risk_manager_service = providers.Singleton(
        RiskManagerService,
        settings=settings,
        settings_repository=settings_repository,
        event_bus=event_bus,
    )

    strategies = providers.List(
        providers.Singleton(VWAPStrategy),
    )

    trading_engine_service = providers.Singleton(
        TradingEngineService,
        settings=settings,
        portfolio=portfolio_service,
        risk=risk_manager_service,
        market_data=market_feed_service,
        event_bus=event_bus,
        primary_venue=primary_venue,
        fallback_venue=fallback_venue,
        strategies=strategies,
    )

    stop_loss_monitor = providers.Singleton(
        StopLossMonitorService,
        settings=settings,
        repository=stop_loss_repository,
        risk=risk_manager_service,
        engine=trading_engine_service,
        event_bus=event_bus,
    )

    reconciliation_service = providers.Singleton(
        ReconciliationService,
        settings=settings,
        portfolio=portfolio_service,
        venue=primary_venue,
        risk=risk_manager_service,
        event_bus=event_bus,
    )

    trading_loop_service = providers.Singleton(
        TradingLoopService,
        settings=settings,
        engine=trading_engine_service,
        event_bus=event_bus,
    )
