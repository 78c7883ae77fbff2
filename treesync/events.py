"""Minimal observer fan-out used by the queue, channels and manager."""
import threading
from typing import Any, Callable, List

from treesync.logging_conf import logger


class EventBus:
    """Calls every subscribed handler; a failing handler never stops the others."""

    def __init__(self, name: str = "events"):
        self.name = name
        self._handlers: List[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Callable[..., Any]) -> Callable[[], None]:
        """Register a handler and return a function that removes it."""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def emit(self, *args, **kwargs) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(*args, **kwargs)
            except Exception as e:
                logger.error(f"{self.name} handler failed: {e}", exc_info=True)

    def clear(self) -> None:
        with self._lock:
            self._handlers = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)
