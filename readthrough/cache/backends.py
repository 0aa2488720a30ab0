"""
Persistent key-value backends the store is built on.
"""
import threading
import logging
from typing import Dict, List, Optional, Protocol

from .core import QuotaExceededError

logger = logging.getLogger("cache.backends")


class Backend(Protocol):
    """String key-value store with a full-clear operation."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def clear(self) -> None: ...

    def keys(self) -> List[str]: ...


def item_size(key: str, value: str) -> int:
    """Size an item counts against a quota."""
    return len(key) + len(value)


class MemoryBackend:
    """
    Process-local backend with an optional capacity quota.

    Raises QuotaExceededError when a write would push the total size of
    stored items past ``quota_bytes``.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}
        self._used = 0
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            previous = self._items.get(key)
            freed = item_size(key, previous) if previous is not None else 0
            needed = self._used - freed + item_size(key, value)
            if self.quota_bytes is not None and needed > self.quota_bytes:
                raise QuotaExceededError(
                    f"Writing {key} needs {needed} bytes, quota is {self.quota_bytes}"
                )
            self._items[key] = value
            self._used = needed

    def remove_item(self, key: str) -> None:
        with self._lock:
            previous = self._items.pop(key, None)
            if previous is not None:
                self._used -= item_size(key, previous)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
            self._used = 0

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._items.keys())

    @property
    def used_bytes(self) -> int:
        with self._lock:
            return self._used


def create_backend(
    kind: str = "memory",
    database_url: Optional[str] = None,
    quota_bytes: Optional[int] = None,
) -> Backend:
    """Build a backend by name ("memory" or "sql")."""
    kind = kind.strip().lower()
    if kind == "memory":
        return MemoryBackend(quota_bytes=quota_bytes)
    if kind == "sql":
        from readthrough.db import create_session_factory
        from .sql_backend import SqlBackend

        if not database_url:
            raise ValueError("The sql backend needs a database URL")
        logger.info(f"Using SQL cache backend at {database_url}")
        return SqlBackend(create_session_factory(database_url), quota_bytes=quota_bytes)
    raise ValueError(f"Unknown cache backend '{kind}'")
