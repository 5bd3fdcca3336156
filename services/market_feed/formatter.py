# Tick normalization for raw feed payloads
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from core.trading.models import MarketTick
from core.trading.portfolio_models import normalize_symbol
from core.utils.exceptions import ValidationError


class TickFormatter:
    """Normalizes raw price updates into MarketTick objects"""

    def format(self, symbol: str, price: float, volume: float = 0.0,
               timestamp: Optional[Union[datetime, str, int, float]] = None) -> MarketTick:
        symbol = normalize_symbol(symbol or "")
        if not symbol:
            raise ValidationError("Tick symbol is required", field="symbol", value=symbol)
        price = float(price)
        if not math.isfinite(price) or price <= 0:
            raise ValidationError(f"Tick price must be positive, got {price}", field="price", value=price)
        volume = float(volume or 0.0)
        if not math.isfinite(volume) or volume < 0:
            raise ValidationError(f"Tick volume must be non-negative, got {volume}", field="volume", value=volume)

        return MarketTick(
            symbol=symbol,
            price=round(price, 4),
            volume=round(volume, 2),
            timestamp=self._format_timestamp(timestamp),
        )

    def format_tick(self, raw_tick: Dict[str, Any]) -> MarketTick:
        """Format a raw feed dict (``symbol``/``price``/``volume``/``timestamp``)."""
        return self.format(
            raw_tick.get("symbol") or raw_tick.get("tradingsymbol", ""),
            raw_tick.get("price", raw_tick.get("last_price", 0)),
            raw_tick.get("volume", raw_tick.get("volume_traded", 0)),
            raw_tick.get("timestamp") or raw_tick.get("exchange_timestamp"),
        )

    def _format_timestamp(self, timestamp: Optional[Union[datetime, str, int, float]]) -> datetime:
        """UTC-aware timestamp; epoch numbers are milliseconds"""
        if timestamp is None:
            return datetime.now(timezone.utc)
        if isinstance(timestamp, datetime):
            parsed = timestamp
        elif isinstance(timestamp, (int, float)):
            parsed = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
        else:
            try:
                parsed = datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
            except ValueError as e:
                raise ValidationError(f"Unparseable tick timestamp {timestamp!r}",
                                      field="timestamp", value=timestamp) from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
