from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from src.flowbatch.application.broadcaster import BatchEventBroadcaster
from src.flowbatch.domain.events.batch_event import BatchEvent, EventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[BatchEvent], Awaitable[None]]


class EventRouter(BatchEventBroadcaster):
    """In-process fan-out of batch events to subscribed handlers."""

    def __init__(self) -> None:
        self._handlers: dict[EventType | None, list[EventHandler]] = {}

    def subscribe(self, handler: EventHandler, event_type: EventType | None = None) -> None:
        """Register ``handler`` for ``event_type``, or for every event when None."""
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, handler: EventHandler, event_type: EventType | None = None) -> None:
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def get_handlers(self, event_type: EventType) -> list[EventHandler]:
        return [*self._handlers.get(event_type, []), *self._handlers.get(None, [])]

    async def broadcast(self, event: BatchEvent) -> None:
        for handler in self.get_handlers(event.type):
            try:
                await handler(event)
            except Exception:
                # A failing subscriber must not affect task state.
                logger.exception(
                    "Event handler failed",
                    extra={"type": event.type.value, "event_task_id": event.task_id},
                )
