from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .models import Item

logger = logging.getLogger(__name__)


class Event(str, Enum):
    FEED_REGISTERED = "feed:registered"
    FEED_UPDATED = "feed:updated"
    FEED_REMOVED = "feed:removed"
    ITEM_NEW = "item:new"


@dataclass(frozen=True)
class EventPayload:
    event: Event
    feed_id: str
    item: Optional[Item] = None
    data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


Handler = Callable[[EventPayload], None]


class EventBus:
    """
    Synchronous observer registry.

    Handlers run on the emitting thread, in registration order, before
    ``emit`` returns. A handler that raises is logged and skipped; the rest
    still run and the triggering operation is unaffected.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Event, List[Handler]] = {}
        self._lock = threading.Lock()

    def on(self, event: Union[Event, str], handler: Handler) -> "EventBus":
        ev = Event(event)
        with self._lock:
            self._handlers.setdefault(ev, []).append(handler)
        return self

    def off(self, event: Union[Event, str], handler: Handler) -> bool:
        ev = Event(event)
        with self._lock:
            handlers = self._handlers.get(ev, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def handlers(self, event: Union[Event, str]) -> List[Handler]:
        with self._lock:
            return list(self._handlers.get(Event(event), []))

    def emit(self, event: Union[Event, str], feed_id: str, item: Optional[Item] = None, **data: Any) -> EventPayload:
        payload = EventPayload(Event(event), feed_id, item, MappingProxyType(dict(data)))
        for handler in self.handlers(payload.event):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler %r failed on %s for feed %s", handler, payload.event.value, feed_id)
        return payload
