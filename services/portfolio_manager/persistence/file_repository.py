import asyncio
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List
from uuid import uuid4

from pydantic import BaseModel, Field

from core.trading.interfaces import BackupCapable
from core.trading.models import Stock, Trade
from core.utils.exceptions import NotFoundError, PersistenceError
from core.utils.json_store import read_document, write_document
from .memory_repository import InMemoryPortfolioRepository

CURRENT_VERSION = 1


class PortfolioStoreData(BaseModel):
    """On-disk layout of the portfolio store"""
    version: int = CURRENT_VERSION
    stocks: List[Stock] = Field(default_factory=list)
    trades: List[Trade] = Field(default_factory=list)


class JsonFilePortfolioRepository(InMemoryPortfolioRepository, BackupCapable):
    """Portfolio store kept in a single JSON document with rolling backups.

    Writes go to a temporary file that replaces the store atomically, so a
    crash mid-write leaves the previous version intact.
    """

    def __init__(self, file_path: Path, backup_retention: int = 7):
        super().__init__()
        self.file_path = Path(file_path)
        self.backup_dir = self.file_path.parent / "backups"
        self.backup_retention = backup_retention
        self._write_lock = asyncio.Lock()

    async def _load(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.file_path.exists():
            await self._persist()
            return

        store = await asyncio.to_thread(read_document, self.file_path, PortfolioStoreData, "portfolio")
        self._stocks = {stock.symbol: stock for stock in store.stocks}
        self._trades = {trade.id: trade for trade in store.trades}
        self.logger.info(
            "Portfolio store loaded",
            path=str(self.file_path),
            stocks=len(self._stocks),
            trades=len(self._trades),
        )

    async def _persist(self) -> None:
        store = PortfolioStoreData(
            stocks=sorted(self._stocks.values(), key=lambda s: s.symbol),
            trades=list(self._trades.values()),
        )
        async with self._write_lock:
            await asyncio.to_thread(write_document, self.file_path, store, "portfolio")

    # --- BackupCapable ---

    async def create_backup(self) -> Path:
        await self.initialize()
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        backup_path = self.backup_dir / f"portfolio-{timestamp}-{uuid4().hex[:6]}.json"
        async with self._write_lock:
            await asyncio.to_thread(self._copy_store, backup_path)
        self._prune_backups()
        self.logger.info("Portfolio backup created", path=str(backup_path))
        return backup_path

    async def restore_from_backup(self, backup_path: Path) -> None:
        backup_path = Path(backup_path)
        if not backup_path.is_file():
            raise NotFoundError(f"Backup not found: {backup_path}", resource="backup", key=str(backup_path))

        store = await asyncio.to_thread(read_document, backup_path, PortfolioStoreData, "portfolio")
        self._stocks = {stock.symbol: stock for stock in store.stocks}
        self._trades = {trade.id: trade for trade in store.trades}
        self._initialized = True
        await self._persist()
        self.logger.warning(
            "Portfolio restored from backup",
            path=str(backup_path),
            stocks=len(self._stocks),
            trades=len(self._trades),
        )

    def list_backups(self) -> List[Path]:
        """Backups, newest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob("portfolio-*.json"), reverse=True)

    def _copy_store(self, backup_path: Path) -> None:
        backup_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(self.file_path, backup_path)
        except OSError as e:
            raise PersistenceError(
                f"Failed to create backup: {e}", operation="backup", path=str(backup_path)
            ) from e

    def _prune_backups(self) -> None:
        for stale in self.list_backups()[self.backup_retention:]:
            stale.unlink(missing_ok=True)
            self.logger.debug("Pruned old backup", path=str(stale))
