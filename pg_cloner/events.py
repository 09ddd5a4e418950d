"""In-process event delivery for progress and log events.

Events are pushed to subscribers synchronously on the emitting run's
thread. There is no back-pressure: a slow subscriber slows the run, a
failing one is logged and skipped.

Event names:
    clone-progress  -> CloneProgress
    clone-log       -> str
    schema-progress -> SchemaProgress
    schema-log      -> str
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Callable

from pg_cloner.logging import get_logger

log = get_logger(source=__name__, tags=["events"])

CLONE_PROGRESS = "clone-progress"
CLONE_LOG = "clone-log"
SCHEMA_PROGRESS = "schema-progress"
SCHEMA_LOG = "schema-log"

Listener = Callable[[Any], None]


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it again."""
        with self._lock:
            self._listeners[event].append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(event, listener)

        return _unsubscribe

    def unsubscribe(self, event: str, listener: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

    def emit(self, event: str, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(payload)
            except Exception as error:
                log.warning(f"Listener for {event} raised: {error}")

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._listeners.get(event, ()))


default_bus = EventBus()
