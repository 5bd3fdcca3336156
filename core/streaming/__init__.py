"""Event delivery between services.

Components publish on an :class:`EventBus` instance handed to them by the
application container; nothing here is a process-wide singleton.
"""

from .event_bus import EventBus, EventHandler

__all__ = ["EventBus", "EventHandler"]
