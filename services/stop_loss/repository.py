# Stop-loss configuration store
import asyncio
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from core.logging import get_logger
from core.schemas.events import EventType, StopLossRemovedEvent
from core.streaming import EventBus
from core.trading.interfaces import StopLossRepository
from core.trading.models import StopLossConfig
from core.trading.portfolio_models import normalize_symbol
from core.utils.json_store import read_document, write_document


class InMemoryStopLossRepository(StopLossRepository):
    """One config per symbol; every save and delete is announced on the bus."""

    def __init__(self, event_bus: Optional[EventBus] = None):
        self._configs: Dict[str, StopLossConfig] = {}
        self.event_bus = event_bus
        self.logger = get_logger("stop_loss_repository", component="persistence")

    async def get_all(self) -> List[StopLossConfig]:
        await self._load_once()
        return [config.model_copy() for _, config in sorted(self._configs.items())]

    async def get(self, symbol: str) -> Optional[StopLossConfig]:
        await self._load_once()
        config = self._configs.get(normalize_symbol(symbol))
        return config.model_copy() if config else None

    async def save(self, config: StopLossConfig) -> StopLossConfig:
        await self._load_once()
        stored = config.model_copy(update={"symbol": normalize_symbol(config.symbol)})
        self._configs[stored.symbol] = stored
        await self._persist()
        self.logger.debug("Stop-loss saved", symbol=stored.symbol, stop_loss_price=stored.stop_loss_price)
        if self.event_bus is not None:
            await self.event_bus.publish(EventType.STOP_LOSS_UPDATED, stored.model_copy())
        return stored.model_copy()

    async def delete(self, symbol: str) -> bool:
        await self._load_once()
        symbol = normalize_symbol(symbol)
        if self._configs.pop(symbol, None) is None:
            return False
        await self._persist()
        self.logger.debug("Stop-loss deleted", symbol=symbol)
        if self.event_bus is not None:
            await self.event_bus.publish(EventType.STOP_LOSS_REMOVED, StopLossRemovedEvent(symbol=symbol))
        return True

    async def _load_once(self) -> None:
        """Nothing to load for the in-memory store."""

    async def _persist(self) -> None:
        """Nothing to persist for the in-memory store."""


class StopLossStoreData(BaseModel):
    """On-disk layout of the stop-loss store"""
    version: int = 1
    stop_losses: List[StopLossConfig] = Field(default_factory=list)


class JsonFileStopLossRepository(InMemoryStopLossRepository):
    """Stop-loss configs kept in a JSON document so open positions stay protected across restarts."""

    def __init__(self, file_path: Path, event_bus: Optional[EventBus] = None):
        super().__init__(event_bus)
        self.file_path = Path(file_path)
        self._loaded = False
        self._write_lock = asyncio.Lock()

    async def _load_once(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.file_path.exists():
            return
        store = await asyncio.to_thread(read_document, self.file_path, StopLossStoreData, "stop-loss")
        self._configs = {config.symbol: config for config in store.stop_losses}
        self.logger.info("Stop-loss store loaded", path=str(self.file_path), stop_losses=len(self._configs))

    async def _persist(self) -> None:
        store = StopLossStoreData(stop_losses=[config for _, config in sorted(self._configs.items())])
        async with self._write_lock:
            await asyncio.to_thread(write_document, self.file_path, store, "stop-loss")
