import logging
from datetime import datetime
from typing import Callable, NamedTuple

logger = logging.getLogger(__name__)

DATA_CHANGED = "DATA_CHANGED"
STAGING_CHANGED = "STAGING_CHANGED"
TRANSACTIONS_COMMITTED = "TRANSACTIONS_COMMITTED"
BACKUP_RESTORED = "BACKUP_RESTORED"


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


Handler = Callable[[Event], None]


class EventBus:
    """In-process change notification for the service layer."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        handlers = self._subscribers.setdefault(name, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, name: str, **payload: object) -> int:
        """Deliver to every subscriber; a failing handler does not stop the others."""
        handlers = list(self._subscribers.get(name, []))
        if not handlers:
            return 0
        event = Event(name=name, ts=datetime.now().isoformat(), payload=payload)
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception(f"event_handler_failed: event={name}")
        return delivered


event_bus = EventBus()


def notify_changed(entity: str, **payload: object) -> None:
    event_bus.publish(DATA_CHANGED, entity=entity, **payload)
