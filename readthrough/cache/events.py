"""
Per-key sync notifications.
"""
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger("cache.events")

Handler = Callable[[Any], None]


def get_sync_success_event(key: str) -> str:
    return f"sync:success:{key}"


def get_sync_error_event(key: str) -> str:
    return f"sync:error:{key}"


class EventEmitter:
    """
    Minimal channel-based notification sink.

    Handlers run synchronously on the emitting thread, in subscription
    order. A failing handler is logged and does not stop the others.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def on(self, channel: str, handler: Handler) -> None:
        with self._lock:
            self._handlers[channel].append(handler)

    def off(self, channel: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(channel, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(channel, None)

    def emit(self, channel: str, payload: Any = None) -> int:
        """Deliver payload to every handler of channel. Returns the handler count."""
        with self._lock:
            handlers = list(self._handlers.get(channel, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                logger.warning(f"Handler for {channel} failed: {e}")
        return len(handlers)
