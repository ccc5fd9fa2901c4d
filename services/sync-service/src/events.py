"""Process-local signals: data changes and auth changes."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, NamedTuple

from records import utc_now_iso

DATA_CHANGED = "finance:data:changed"
AUTH_CHANGED = "finance:auth:changed"


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


Handler = Callable[[Event], Any]


class EventBus:
    """Synchronous pub/sub; handlers run in subscription order on the publisher's stack."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        handlers = self._subscribers.setdefault(name, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(name)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def publish(self, name: str, payload: dict | None = None) -> List[Any]:
        handlers = list(self._subscribers.get(name, ()))
        if not handlers:
            return []

        event = Event(name=name, ts=utc_now_iso(), payload=dict(payload or {}))
        return [handler(event) for handler in handlers]

    def subscriber_count(self, name: str) -> int:
        return len(self._subscribers.get(name, ()))
