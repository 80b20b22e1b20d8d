"""
Realtime listeners

A Subscription re-runs its fetch whenever the hub is told that its topic
(a collection name) changed, and pushes the full current result to the
callback when it differs from the last delivery. Nothing here knows about
MongoDB; the store only has to call ``hub.publish(collection)`` after writes.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

_NOTHING = object()


class Subscription:
    def __init__(
        self,
        hub: "SubscriptionHub",
        topic: str,
        fetch: Callable[[], Any],
        callback: Callable[[Any], None],
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        self.topic = topic
        self._hub = hub
        self._fetch = fetch
        self._callback = callback
        self._on_error = on_error
        self._last: Any = _NOTHING
        self._lock = threading.RLock()
        self.active = True

    def deliver(self) -> None:
        # fetch and callback share the lock so deliveries leave in fetch order;
        # reentrant for callbacks that write to the collection they watch
        with self._lock:
            if not self.active:
                return
            try:
                result = self._fetch()
            except Exception as e:
                logger.exception("Listener on %s failed to fetch", self.topic)
                if self._on_error is not None:
                    self._on_error(e)
                return
            if result == self._last:
                return
            self._last = result
            try:
                self._callback(result)
            except Exception:
                logger.exception("Listener callback on %s raised", self.topic)

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._hub.remove(self)

    def __call__(self) -> None:
        self.unsubscribe()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class SubscriptionHub:
    def __init__(self):
        self._subs: Dict[str, List[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, fetch, callback, on_error=None) -> Subscription:
        sub = Subscription(self, topic, fetch, callback, on_error)
        with self._lock:
            self._subs[topic].append(sub)
        # initial snapshot, like any realtime query listener
        sub.deliver()
        return sub

    def remove(self, sub: Subscription) -> None:
        with self._lock:
            try:
                self._subs[sub.topic].remove(sub)
            except ValueError:
                pass

    def publish(self, topic: str) -> None:
        with self._lock:
            subs = list(self._subs.get(topic, []))
        for sub in subs:
            sub.deliver()

    def count(self, topic: Optional[str] = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._subs.get(topic, []))
            return sum(len(v) for v in self._subs.values())

    def clear(self) -> None:
        with self._lock:
            subs = [s for v in self._subs.values() for s in v]
            self._subs.clear()
        for sub in subs:
            sub.active = False
