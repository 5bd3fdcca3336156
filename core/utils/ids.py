"""
Centralized identifier generation.

Ids are a millisecond timestamp prefix plus a uuid4 suffix, so they sort
roughly by creation time within a process and stay globally unique.
"""

from __future__ import annotations

import time
from typing import Optional
from uuid import uuid4


def generate_prefixed_id(prefix: str, ts_ms: Optional[int] = None) -> str:
    """Generate an id such as ``paper-<ms>-<hex>`` for orders and fills."""
    ts_ms = ts_ms if ts_ms is not None else int(time.time() * 1000)
    return f"{prefix}-{ts_ms}-{uuid4().hex[:8]}"


def generate_order_tag(prefix: str) -> str:
    """Order tag like ``VWAP-1718000000000``."""
    return f"{prefix}-{int(time.time() * 1000)}"
