"""In-process event bus carrying reconciler progress to the front end."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from localchat.types import ChatEvent, EventType

_logger = logging.getLogger(__name__)

WILDCARD = "*"

Handler = Callable[[ChatEvent], Any]


class EventBus:
    """Ordered async pub/sub.

    Handlers (plain functions or coroutines) run one after another in
    subscription order: handlers for the exact event type first, then
    wildcard ``"*"`` handlers.  A stream's deltas therefore reach every
    subscriber in the order they were emitted.  A handler that raises is
    logged and skipped.

    Parameters
    ----------
    max_history:
        Number of recent events kept in ``history``; ``0`` keeps none.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._history: list[ChatEvent] = []
        self._max_history = max_history

    def subscribe(self, event_type: EventType | str, handler: Handler) -> Callable[[], None]:
        """Register *handler*; the returned callable undoes the subscription."""
        key = _key(event_type)
        self._handlers.setdefault(key, []).append(handler)
        return lambda: self.unsubscribe(key, handler)

    def unsubscribe(self, event_type: EventType | str, handler: Handler) -> None:
        handlers = self._handlers.get(_key(event_type))
        if handlers and handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: ChatEvent) -> None:
        if self._max_history > 0:
            self._history.append(event)
            del self._history[:-self._max_history]

        targets = [
            *self._handlers.get(_key(event.type), ()),
            *self._handlers.get(WILDCARD, ()),
        ]
        for handler in targets:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _logger.exception(
                    "Event handler %s failed on %s",
                    getattr(handler, "__name__", handler), event.type.value,
                )

    @property
    def history(self) -> list[ChatEvent]:
        return list(self._history)

    def clear(self) -> None:
        self._handlers.clear()
        self._history.clear()


def _key(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)
