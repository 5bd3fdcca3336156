# Risk limits persistence
import asyncio
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from core.logging import get_logger
from core.schemas.events import EventType
from core.streaming import EventBus
from core.trading.interfaces import SettingsRepository
from core.trading.models import RiskLimits
from core.utils.json_store import read_document, write_document


class InMemorySettingsRepository(SettingsRepository):
    """Holds the active risk limits and announces every change."""

    def __init__(self, defaults: RiskLimits, event_bus: Optional[EventBus] = None):
        self._defaults = defaults.model_copy()
        self._limits = defaults.model_copy()
        self.event_bus = event_bus
        self.logger = get_logger("settings_repository", component="persistence")

    async def get_risk_limits(self) -> RiskLimits:
        await self._load_once()
        return self._limits.model_copy()

    async def save_risk_limits(self, limits: RiskLimits) -> RiskLimits:
        await self._load_once()
        self._limits = limits.model_copy()
        await self._persist()
        self.logger.info("Risk limits saved", **self._limits.model_dump())
        if self.event_bus is not None:
            await self.event_bus.publish(EventType.RISK_LIMITS_UPDATED, self._limits.model_copy())
        return self._limits.model_copy()

    async def reset_to_defaults(self) -> RiskLimits:
        return await self.save_risk_limits(self._defaults)

    async def _load_once(self) -> None:
        """Nothing to load for the in-memory store."""

    async def _persist(self) -> None:
        """Nothing to persist for the in-memory store."""


class SettingsStoreData(BaseModel):
    """On-disk layout of the settings store"""
    version: int = 1
    risk_limits: RiskLimits


class JsonFileSettingsRepository(InMemorySettingsRepository):
    """Risk limits kept in a JSON document so a tripped breaker survives restarts.

    Limits already on disk win over the configured defaults; the defaults
    only seed a fresh store and back ``reset_to_defaults``.
    """

    def __init__(self, file_path: Path, defaults: RiskLimits, event_bus: Optional[EventBus] = None):
        super().__init__(defaults, event_bus)
        self.file_path = Path(file_path)
        self._loaded = False

    async def _load_once(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.file_path.exists():
            return
        store = await asyncio.to_thread(read_document, self.file_path, SettingsStoreData, "settings")
        self._limits = store.risk_limits
        self.logger.info("Risk limits loaded", path=str(self.file_path),
                         circuit_broken=self._limits.circuit_broken)

    async def _persist(self) -> None:
        store = SettingsStoreData(risk_limits=self._limits)
        await asyncio.to_thread(write_document, self.file_path, store, "settings")
