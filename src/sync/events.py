"""In-process publish/subscribe for sync notifications.

Renderers and other consumers subscribe to topics instead of the engine
calling into any UI layer directly.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Event = dict[str, Any]
Handler = Callable[[Event], None]

CHANGE = "change"
REPLAY_COMPLETE = "replay_complete"
CONNECTIVITY = "connectivity"
NOTIFICATION = "notification"
SYNC_REJECTED = "sync_rejected"

ALL = "*"


class EventBus:
    """Topic-routed event bus. Subscribe to "*" to receive every event."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Subscribe a handler to a topic.

        Returns:
            A callable that removes the subscription.
        """
        self._subscribers[topic].append(handler)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: str, event: Event) -> None:
        """Publish an event. A failing handler never breaks the publisher."""
        handlers = list(self._subscribers.get(topic, []))
        if topic != ALL:
            handlers.extend(self._subscribers.get(ALL, []))
        for handler in handlers:
            try:
                handler({"topic": topic, **event})
            except Exception as exc:
                logger.error("Event handler failed for topic '%s': %s", topic, exc)
