"""Per-event observer registration for device callbacks."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

LOGGER = logging.getLogger(__name__)

Handler = Callable[..., None]


class EventSource:
    """A list of handlers for one kind of event.

    Handler failures are logged and never reach the code that fired the event.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler] = []
        self._lock = threading.Lock()

    def __iadd__(self, handler: Handler) -> EventSource:
        return self.add(handler)

    def __isub__(self, handler: Handler) -> EventSource:
        return self.remove(handler)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def add(self, handler: Handler) -> EventSource:
        with self._lock:
            self._handlers.append(handler)
        return self

    def remove(self, handler: Handler) -> EventSource:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)
        return self

    def fire(self, *args: Any, **kwargs: Any) -> None:
        with self._lock:
            handlers = tuple(self._handlers)
        for handler in handlers:
            try:
                handler(*args, **kwargs)
            except Exception:
                LOGGER.exception("Handler for '%s' event failed", self.name)


@dataclass
class DeviceEvents:
    identify: EventSource = field(default_factory=lambda: EventSource("identify"))
    characteristic_changed: EventSource = field(default_factory=lambda: EventSource("characteristic_changed"))
    subscribed: EventSource = field(default_factory=lambda: EventSource("subscribed"))
    unsubscribed: EventSource = field(default_factory=lambda: EventSource("unsubscribed"))
    pairing_state_changed: EventSource = field(default_factory=lambda: EventSource("pairing_state_changed"))
