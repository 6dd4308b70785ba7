from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Protocol

from awe_prwatch.domain.events import event_payload, normalize_event_type
from awe_prwatch.observability import get_logger

_log = get_logger('awe_prwatch.bus')


@dataclass(frozen=True)
class Event:
    type: str
    payload: dict
    created_at: datetime


Handler = Callable[[Event], None]


class EventBus(Protocol):
    def publish(self, event_type: str, payload: object) -> None:
        ...


class InMemoryEventBus:
    """Synchronous in-process bus that also keeps a history for inspection."""

    def __init__(self):
        self._lock = Lock()
        self._subscribers: dict[str, list[Handler]] = {}
        self.events: list[Event] = []

    def subscribe(self, event_type: str, handler: Handler) -> None:
        key = normalize_event_type(event_type)
        with self._lock:
            self._subscribers.setdefault(key, []).append(handler)

    def publish(self, event_type: str, payload: object) -> None:
        event = Event(
            type=normalize_event_type(event_type),
            payload=event_payload(payload),
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self.events.append(event)
            handlers = list(self._subscribers.get(event.type, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                _log.debug('event_handler_failed type=%s', event.type, exc_info=True)
        _log.debug('event_published type=%s handlers=%s', event.type, len(handlers))

    def of_type(self, event_type: str) -> list[Event]:
        key = normalize_event_type(event_type)
        with self._lock:
            return [event for event in self.events if event.type == key]
