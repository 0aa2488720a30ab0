"""
Two-tier (data + metadata) cache store over a persistent backend.
"""
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from .backends import Backend
from .core import (
    BackendError,
    CacheEntry,
    CacheMiss,
    Metadata,
    QuotaExceededError,
    StoreWriteFailed,
)

logger = logging.getLogger("cache.store")

# (clear epoch, per-key invalidation count)
Generation = Tuple[int, int]


class ResponseStore(Protocol):
    """Operations Control relies on."""

    def get(self, key: str) -> CacheEntry: ...

    def set(self, key: str, entry: CacheEntry, generation: Optional[Generation] = None) -> bool: ...

    def invalidate(self, key: str) -> bool: ...

    def generation(self, key: str) -> Generation: ...


class _Namespace:
    """JSON values under a key prefix of a shared backend."""

    def __init__(self, backend: Backend, prefix: str):
        self._backend = backend
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _read(self, key: str) -> Optional[str]:
        return self._backend.get_item(self._key(key))

    def _decode(self, key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError as e:
            raise BackendError(f"Corrupt value for {self._key(key)}: {e}") from e

    def _write(self, key: str, value: Any) -> None:
        self._backend.set_item(self._key(key), json.dumps(value))

    def contains(self, key: str) -> bool:
        return self._read(key) is not None

    def remove(self, key: str) -> None:
        self._backend.remove_item(self._key(key))

    def keys(self) -> List[str]:
        return [k[len(self.prefix):] for k in self._backend.keys() if k.startswith(self.prefix)]


class DataStore(_Namespace):
    """Raw response payloads."""

    def get(self, key: str) -> Any:
        """Return the stored payload or raise CacheMiss."""
        raw = self._read(key)
        if raw is None:
            raise CacheMiss(key)
        return self._decode(key, raw)

    def set(self, key: str, data: Any) -> None:
        self._write(key, data)


class MetaStore(_Namespace):
    """Metadata deciding whether a data entry is still valid."""

    def get(self, key: str) -> Optional[Metadata]:
        raw = self._read(key)
        if raw is None:
            return None
        value = self._decode(key, raw)
        if not isinstance(value, dict):
            raise BackendError(f"Corrupt metadata for {self._key(key)}: {value!r}")
        return Metadata.from_dict(value)

    def set(self, key: str, meta: Metadata) -> None:
        self._write(key, meta.to_dict())


class Store:
    """
    Data and metadata stored together under one key.

    - get: hit only if data exists and its metadata is not expired.
      Data without metadata counts as a hit that never expires.
      Expired entries are removed before the miss is raised.
    - set: writes data then metadata. On QuotaExceededError the whole
      backend is cleared and the write retried exactly once. A failed
      set leaves neither half behind.
    - invalidate: removes both halves, idempotent.

    Every invalidate and clear moves the key to a new generation. A set
    carrying an older generation is skipped.
    """

    def __init__(
        self,
        backend: Backend,
        data_prefix: str = "data:",
        meta_prefix: str = "meta:",
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.data_store = DataStore(backend, data_prefix)
        self.meta_store = MetaStore(backend, meta_prefix)
        self._clock = clock
        self._lock = threading.RLock()
        self._epoch = 0
        self._generations: Dict[str, int] = {}

    def get(self, key: str) -> CacheEntry:
        with self._lock:
            data = self.data_store.get(key)
            meta = self.meta_store.get(key)
            if meta is not None and meta.is_expired(self._clock()):
                logger.info(f"CACHE EXPIRED: {key}")
                self._remove(key)
                raise CacheMiss(key)
            return CacheEntry(data=data, meta=meta)

    def generation(self, key: str) -> Generation:
        with self._lock:
            return (self._epoch, self._generations.get(key, 0))

    def set(self, key: str, entry: CacheEntry, generation: Optional[Generation] = None) -> bool:
        """
        Store entry under key.

        Returns:
            False if the write was skipped because key was invalidated
            or the store cleared since generation was taken.

        Raises:
            StoreWriteFailed: the backend rejected the write
        """
        with self._lock:
            if generation is not None and generation != self.generation(key):
                logger.info(f"Skipped superseded cache write: {key}")
                return False
            try:
                self._write(key, entry)
            except QuotaExceededError as e:
                logger.warning(f"Backend quota exceeded writing {key}, clearing cache and retrying: {e}")
                try:
                    self.clear()
                    self._write(key, entry)
                except BackendError as retry_error:
                    logger.error(f"Retry after clear failed for {key}: {retry_error}")
                    self._discard(key)
                    raise StoreWriteFailed(key, str(retry_error)) from retry_error
            except BackendError as e:
                self._discard(key)
                raise StoreWriteFailed(key, str(e)) from e
            except (TypeError, ValueError) as e:
                # Payload is not JSON serializable
                self._discard(key)
                raise StoreWriteFailed(key, str(e)) from e
            return True

    def invalidate(self, key: str) -> bool:
        """Remove key. Returns whether anything was stored under it."""
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            existed = self.data_store.contains(key) or self.meta_store.contains(key)
            self._remove(key)
            logger.info(f"Invalidated cache: {key}")
            return existed

    def clear(self) -> None:
        """Remove every item in the backend."""
        with self._lock:
            self._epoch += 1
            self._generations.clear()
            self.backend.clear()
            logger.info("Cleared cache backend")

    def keys(self) -> List[str]:
        with self._lock:
            return self.data_store.keys()

    def _write(self, key: str, entry: CacheEntry) -> None:
        self.data_store.set(key, entry.data)
        if entry.meta is not None:
            self.meta_store.set(key, entry.meta)
        else:
            self.meta_store.remove(key)

    def _remove(self, key: str) -> None:
        self.data_store.remove(key)
        self.meta_store.remove(key)

    def _discard(self, key: str) -> None:
        try:
            self._remove(key)
        except BackendError as e:
            logger.error(f"Could not remove partial entry {key}: {e}")
