"""Synchronous in-process bus for reservation and schedule events."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class EventBus:
    """In-process fan-out of domain events to subscribed handlers.

    A handler subscribed to a base class also receives every subclass event.
    Handlers for the concrete event type run first, then those of its bases,
    each group in registration order, on the publisher's thread.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._subscribers[event_type].append(handler)

    def handlers_for(self, event_type: type) -> list[Handler]:
        return [
            handler
            for cls in event_type.__mro__
            for handler in self._subscribers.get(cls, [])
        ]

    def publish(self, event: Any) -> None:
        handlers = self.handlers_for(type(event))
        logger.debug("Publishing %s to %d handler(s)", type(event).__name__, len(handlers))
        for handler in handlers:
            handler(event)
