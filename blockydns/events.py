"""A small synchronous publish/subscribe bus for application events."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable

BLOCKING_ENABLED_EVENT = "blocking:enabled"
BLOCKING_CACHE_GROUP_CHANGED = "blocking:cachingGroupChanged"
CACHING_DOMAIN_PREFETCHED = "caching:prefetched"
CACHING_RESULT_CACHE_CHANGED = "caching:resultCacheChanged"
CACHING_PREFETCH_CACHE_HIT = "caching:prefetchHit"
CACHING_RESULT_CACHE_HIT = "caching:cacheHit"
CACHING_RESULT_CACHE_MISS = "caching:cacheMiss"
CACHING_DOMAINS_TO_PREFETCH_COUNT_CHANGED = "caching:domainsToPrefetchCountChanged"
CACHING_FAILED_DOWNLOAD_CHANGED = "caching:failedDownload"
APPLICATION_STARTED = "application:started"

Handler = Callable[..., Any]


@dataclass
class _Subscription:
    handler: Handler
    once: bool


class EventBus:
    """Delivers published arguments to every handler subscribed to a topic."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, handler: Handler) -> None:
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(_Subscription(handler, False))

    def subscribe_once(self, topic: str, handler: Handler) -> None:
        with self._lock:
            self._subscriptions.setdefault(topic, []).append(_Subscription(handler, True))

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        """Remove a handler; raises ValueError if the topic has no handlers."""
        with self._lock:
            subscriptions = self._subscriptions.get(topic)
            if not subscriptions:
                raise ValueError(f"topic {topic} doesn't exist")
            for subscription in subscriptions:
                if subscription.handler == handler:
                    subscriptions.remove(subscription)
                    break
            if not subscriptions:
                del self._subscriptions[topic]

    def publish(self, topic: str, *args: Any) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions.get(topic, ()))
            remaining = [s for s in subscriptions if not s.once]
            if len(remaining) != len(subscriptions):
                if remaining:
                    self._subscriptions[topic] = remaining
                else:
                    self._subscriptions.pop(topic, None)
        for subscription in subscriptions:
            subscription.handler(*args)


_BUS = EventBus()


def bus() -> EventBus:
    """Return the application-wide event bus."""
    return _BUS