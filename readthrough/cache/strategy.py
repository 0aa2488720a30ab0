"""
Post-fetch sync handling: store on success, invalidate on error.
"""
import logging
import threading
from concurrent.futures import Executor, Future
from typing import Any, Callable, Optional

from .core import BackendError, CacheEntry, FetchRequest, PolicyError, StoreWriteFailed, SyncResult
from .events import EventEmitter, get_sync_error_event, get_sync_success_event
from .policies import MetadataPolicy
from .store import Generation, ResponseStore

logger = logging.getLogger("cache.strategy")


class SyncStrategy:
    """
    Builds completion hooks for underlying fetches.

    Hooks run after every caller has already observed the fetch outcome,
    so nothing here can change what the caller sees:
    - read success: store the response (on the store executor), emit sync:success:<key>
    - write success: invalidate, emit sync:success:<key>
    - any error: invalidate, emit sync:error:<key>

    Every fetch a hook follows must be announced with begin() when it
    starts; the hook marks it finished. Cache-layer failures are logged
    and counted, never raised.
    """

    def __init__(
        self,
        policy: MetadataPolicy,
        store: ResponseStore,
        events: EventEmitter,
        executor: Executor,
    ):
        self.policy = policy
        self.store = store
        self.events = events
        self._executor = executor
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0
        self.store_failures = 0

    def for_read(self, request: FetchRequest, key: str) -> Callable[[Future], None]:
        """
        Hook that caches a successful read.

        Build it before the fetch starts: the store generation is taken
        here, so an invalidation while the fetch or its queued write is
        pending keeps the response out of the cache.
        """
        generation = self.store.generation(key)

        def on_settled(source: Future) -> None:
            try:
                result = SyncResult.from_future(source)
                if result.ok:
                    self._cache_response(request, key, result.value, generation)
                else:
                    self._invalidate_after_error(key, result.error)
            finally:
                self._end()

        return on_settled

    def for_write(self, request: FetchRequest, key: str) -> Callable[[Future], None]:
        """Hook that drops the cached read after a write, whatever its outcome."""

        def on_settled(source: Future) -> None:
            try:
                result = SyncResult.from_future(source)
                if result.ok:
                    self._invalidate(key)
                    self.events.emit(get_sync_success_event(key), result.value)
                else:
                    self._invalidate_after_error(key, result.error)
            finally:
                self._end()

        return on_settled

    def begin(self) -> None:
        """Mark one hook as pending. Call when starting the fetch the hook will follow."""
        self._begin()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every hook, including queued store writes, has finished."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    def _cache_response(
        self, request: FetchRequest, key: str, response: Any, generation: Generation
    ) -> None:
        try:
            meta = self.policy.get_metadata(key, response, request.options)
        except PolicyError as e:
            logger.error(f"Not caching {key}: {e}")
        else:
            self._submit_write(key, CacheEntry(data=response, meta=meta), generation)
        self.events.emit(get_sync_success_event(key), response)

    def _submit_write(self, key: str, entry: CacheEntry, generation: Generation) -> None:
        self._begin()
        try:
            write = self._executor.submit(self._persist, key, entry, generation)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Dropped cache write for {key}: {e}")
            self._end()
        else:
            write.add_done_callback(lambda _: self._end())

    def _persist(self, key: str, entry: CacheEntry, generation: Generation) -> None:
        try:
            if self.store.set(key, entry, generation=generation):
                logger.debug(f"Cached response for {key}")
        except StoreWriteFailed as e:
            with self._lock:
                self.store_failures += 1
            logger.error(f"{e}")

    def _invalidate_after_error(self, key: str, error: BaseException) -> None:
        self._invalidate(key)
        logger.info(f"Fetch failed for {key}, entry invalidated: {error}")
        self.events.emit(get_sync_error_event(key), error)

    def _invalidate(self, key: str) -> None:
        try:
            self.store.invalidate(key)
        except BackendError as e:
            logger.error(f"Failed to invalidate {key}: {e}")

    def _begin(self) -> None:
        with self._lock:
            self._pending += 1

    def _end(self) -> None:
        with self._idle:
            self._pending -= 1
            if self._pending == 0:
                self._idle.notify_all()
