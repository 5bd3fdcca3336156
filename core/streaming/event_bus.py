"""In-process publish/subscribe channel.

Publishers never see subscriber failures: a handler that raises is logged
and the remaining handlers still run. Handlers run in subscription order
and are awaited before ``publish`` returns, so event ordering per
publisher is preserved.
"""

import inspect
from typing import Any, Awaitable, Callable, Dict, List, Union

from core.logging import get_logger
from core.schemas.events import EventType

EventHandler = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """Explicit observer registry keyed by event type."""

    def __init__(self):
        self._subscribers: Dict[EventType, List[EventHandler]] = {}
        self.logger = get_logger("event_bus", component="events")

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers.get(event_type, []))

    async def publish(self, event_type: EventType, payload: Any = None) -> int:
        """Deliver ``payload`` to every handler; returns how many succeeded."""
        delivered = 0
        # Copy: handlers may unsubscribe while we iterate
        for handler in list(self._subscribers.get(event_type, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                self.logger.error(
                    "Event handler failed",
                    event_type=event_type.value,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )
        return delivered
