"""In-process publish/subscribe channel for connection lifecycle events."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from rccarctl.core.model import Event

Subscriber = Callable[[Event], None]

LOGGER = logging.getLogger(__name__)


class EventBroadcaster:
    """Delivers each event once, synchronously, to the current subscribers.

    Delivery is best effort: there is no queueing and no replay for late
    subscribers, and a failing subscriber does not prevent delivery to the
    others.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(subscriber)
        return lambda: self.unsubscribe(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            try:
                self._subscribers.remove(subscriber)
            except ValueError:
                pass

    def publish(self, event: Event) -> None:
        with self._lock:
            subscribers = tuple(self._subscribers)
        LOGGER.debug("Publishing %s to %d subscriber(s)", event.kind.value, len(subscribers))
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                LOGGER.exception("Subscriber %r failed handling %s", subscriber, event.kind.value)
