# gallery/live.py
"""
Change feed behind the live query surface.

The record store publishes after every committed insert/patch/delete; each
subscriber callback re-runs its own query (see service.list_recent) and pushes
the fresh list to its client. Callbacks run on the publishing thread, so
websocket subscribers hand off to their event loop themselves.
"""

import itertools
import threading
from typing import Callable, Dict

from gallery import monitoring


class LiveQueryBroker:
    """Thread-safe fan-out of 'records changed' notifications."""

    def __init__(self):
        self._subscribers: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            sub_id = next(self._ids)
            self._subscribers[sub_id] = callback
            monitoring.set_live_subscribers(len(self._subscribers))

        def unsubscribe():
            with self._lock:
                self._subscribers.pop(sub_id, None)
                monitoring.set_live_subscribers(len(self._subscribers))

        return unsubscribe

    def publish(self):
        with self._lock:
            callbacks = list(self._subscribers.values())
        for cb in callbacks:
            try:
                cb()
            except Exception:
                # one broken client must not block the others
                monitoring.logger.exception("Live subscriber callback failed")

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


broker = LiveQueryBroker()
