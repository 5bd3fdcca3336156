# sentinel/app/main.py

import asyncio
import signal
import sys
from typing import Optional

from core.logging import configure_logging, get_logger
from core.config.settings import Settings
from core.config.validator import validate_startup_configuration
from core.schemas.events import EventType
from app.containers import AppContainer


class ApplicationOrchestrator:
    """Boots the trading core, keeps it running and shuts it down cleanly."""

    def __init__(self, container: Optional[AppContainer] = None):
        self.container = container or AppContainer()
        self._shutdown_event = asyncio.Event()
        self._reconcile_task: Optional[asyncio.Task] = None
        self._started = False

        self.settings: Settings = self.container.settings()
        configure_logging(self.settings)
        # Route main application logs to the application channel for structured routing
        self.logger = get_logger("sentinel.main", component="application")

        self.event_bus = self.container.event_bus()
        self.portfolio = self.container.portfolio_service()
        self.risk = self.container.risk_manager_service()
        self.engine = self.container.trading_engine_service()
        # Constructed up front so fills are tracked from the first trade
        self.stop_loss = self.container.stop_loss_monitor()
        self.reconciliation = self.container.reconciliation_service()
        self.trading_loop = self.container.trading_loop_service()
        self.backup = self.container.backup_capability()

        self.event_bus.subscribe(EventType.CRITICAL_ERROR, self._on_critical_error)
        self.event_bus.subscribe(EventType.CIRCUIT_BREAKER_TRIPPED, self._on_circuit_breaker)

    def _on_critical_error(self, event) -> None:
        self.logger.critical("OPERATOR ATTENTION REQUIRED", source=event.source, reason=event.reason)

    def _on_circuit_breaker(self, event) -> None:
        self.logger.critical("Trading halted by circuit breaker", reason=event.reason, daily_pnl=event.daily_pnl)

    async def initialize(self) -> None:
        """Validate configuration and load persisted state; no trading starts here."""
        if not validate_startup_configuration(self.settings):
            self.logger.error("Configuration validation failed - cannot proceed with startup")
            sys.exit(1)
        self.logger.info("Configuration validation passed")

        await self.portfolio.initialize()
        await self.risk.initialize()
        self.logger.info(
            "Core services initialized",
            dry_run=self.settings.trading.dry_run,
            primary_venue=self.settings.trading.primary_venue,
            fallback_venue=self.settings.trading.fallback_venue,
            persistence=self.settings.persistence.backend,
            backup_supported=self.backup is not None,
            stop_losses=len(await self.stop_loss.get_all()),
        )

    async def startup(self) -> None:
        self.logger.info(f"Starting {self.settings.app_name} v{self.settings.version}",
                         environment=self.settings.environment.value)
        await self.initialize()

        if self.settings.reconciliation.enabled:
            result = await self.reconciliation.reconcile_on_startup()
            self.logger.info(
                "Startup reconciliation finished",
                discrepancies=len(result.discrepancies),
                synced=result.synced_symbols,
            )
            self._reconcile_task = asyncio.create_task(self._periodic_reconciliation())

        if self.settings.stop_loss.auto_start:
            self.stop_loss.start()
        if self.settings.trading_loop.enabled:
            self.trading_loop.start()

        self._started = True
        self.logger.info("All services started", strategies=[s.strategy_id for s in self.engine.get_strategies()])

    async def _periodic_reconciliation(self) -> None:
        interval = self.settings.reconciliation.interval_seconds
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.reconciliation.reconcile_periodic()
            except Exception as e:
                self.logger.error("Periodic reconciliation failed", error=str(e), exc_info=True)

    async def shutdown(self) -> None:
        """Gracefully shuts down all application services."""
        self.logger.info(f"Shutting down {self.settings.app_name}...")
        self._shutdown_event.set()

        if self._reconcile_task is not None:
            self._reconcile_task.cancel()
            await asyncio.gather(self._reconcile_task, return_exceptions=True)
            self._reconcile_task = None

        await self.trading_loop.stop()
        self.stop_loss.stop()
        await self.engine.shutdown()

        if self.backup is not None and self._started:
            try:
                path = await self.backup.create_backup()
                self.logger.info("Shutdown backup created", path=str(path))
            except Exception as e:
                self.logger.error("Shutdown backup failed", error=str(e))

        self._started = False
        self.logger.info(f"{self.settings.app_name} shutdown complete.")

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        self.logger.info(f"Received shutdown signal: {signal.strsignal(signum)}")
        self._shutdown_event.set()

    async def run(self):
        """Run the application until shutdown."""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            await self.startup()
            self.logger.info("Application is now running. Press Ctrl+C to exit.")
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()


async def main():
    """Application entry point"""
    app = ApplicationOrchestrator()
    await app.run()


if __name__ == "__main__":
    asyncio.run(main())
