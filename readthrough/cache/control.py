"""
Read-through cache orchestration.
"""
import threading
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Mapping, Optional

from .backends import Backend, MemoryBackend
from .coalescer import RequestCoalescer
from .core import (
    BackendError,
    CacheMiss,
    FetchRequest,
    Metadata,
    Operation,
    PolicyError,
    SyncResult,
)
from .events import EventEmitter
from .policies import Policy
from .store import Store
from .strategy import SyncStrategy

logger = logging.getLogger("cache.control")

# (operation, target, options) -> response payload
Fetcher = Callable[[Operation, str, Dict[str, Any]], Any]


class Cache:
    """
    Shared cache state: the two-tier store and the in-flight fetch map.

    Build one per independent cache and hand it to Control.
    """

    def __init__(
        self,
        backend: Optional[Backend] = None,
        data_prefix: str = "data:",
        meta_prefix: str = "meta:",
        clock: Callable[[], float] = time.time,
    ):
        self.store = Store(
            backend if backend is not None else MemoryBackend(),
            data_prefix=data_prefix,
            meta_prefix=meta_prefix,
            clock=clock,
        )
        self.coalescer = RequestCoalescer()


def _settled(result: SyncResult) -> Future:
    future: Future = Future()
    future.set_running_or_notify_cancel()
    result.apply_to(future)
    return future


class Control:
    """
    Main cache orchestration with:
    - Store lookup before every read, hits never reach the fetcher
    - Request coalescing for concurrent reads of the same key
    - Store-on-success / invalidate-on-error after each fetch
    - Per-key sync:success / sync:error notifications

    Reads and writes return futures. The target is resolved when the call
    is made, so later changes to the object it came from are ignored.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        cache: Optional[Cache] = None,
        policy: Optional[Policy] = None,
        events: Optional[EventEmitter] = None,
        fetch_workers: int = 8,
        store_workers: int = 2,
    ):
        """
        Initialize the control.

        Args:
            fetcher: Underlying fetch against the remote source
            cache: Shared store and in-flight map (a fresh in-memory one by default)
            policy: Key and metadata policy
            events: Notification sink for sync events
            fetch_workers: Thread pool size for underlying fetches
            store_workers: Thread pool size for background cache writes
        """
        self._fetcher = fetcher
        self.cache = cache if cache is not None else Cache()
        self.policy = policy if policy is not None else Policy()
        self.events = events if events is not None else EventEmitter()

        self._fetch_pool = ThreadPoolExecutor(
            max_workers=fetch_workers,
            thread_name_prefix="cache-fetch",
        )
        self._store_pool = ThreadPoolExecutor(
            max_workers=store_workers,
            thread_name_prefix="cache-store",
        )
        self._strategy = SyncStrategy(self.policy, self.store, self.events, self._store_pool)

        # Stats tracking
        self._stats_lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "fetches": 0,
            "writes": 0,
        }

    @property
    def store(self) -> Store:
        return self.cache.store

    @property
    def coalescer(self) -> RequestCoalescer:
        return self.cache.coalescer

    def read(self, target: Any, options: Optional[Mapping[str, Any]] = None) -> Future:
        """
        Serve target from the cache, or fetch it once for all concurrent callers.

        Returns:
            A future resolving with the response payload. Fetch errors are
            propagated unchanged. PolicyError if no key can be derived.
        """
        try:
            request, key = self._prepare(Operation.READ, target, options)
        except PolicyError as e:
            return _settled(SyncResult(error=e))

        try:
            entry = self.store.get(key)
        except CacheMiss:
            logger.info(f"CACHE MISS: {key}")
        except BackendError as e:
            logger.warning(f"Cache lookup failed for {key}, fetching: {e}")
        else:
            logger.debug(f"CACHE HIT: {key}")
            self._count("hits")
            return _settled(SyncResult(value=entry.data))

        self._count("misses")

        def start_fetch() -> Future:
            self._strategy.begin()
            self._count("fetches")
            return self._fetch_pool.submit(self._fetch, request)

        return self.coalescer.fetch_or_join(
            key,
            start_fetch,
            on_settled=self._strategy.for_read(request, key),
        )

    def write(
        self,
        target: Any,
        payload: Any = None,
        operation: Operation = Operation.UPDATE,
        options: Optional[Mapping[str, Any]] = None,
    ) -> Future:
        """
        Send a write straight to the fetcher, never served from the cache.

        The cached read for the same key is invalidated once the write
        settles, whether it succeeded or failed.
        """
        if operation is Operation.READ:
            raise ValueError("Use read() for read operations")
        options = dict(options or {})
        if payload is not None:
            options["data"] = payload
        try:
            request, key = self._prepare(operation, target, options)
        except PolicyError as e:
            return _settled(SyncResult(error=e))

        self._strategy.begin()
        self._count("writes")
        try:
            source = self._fetch_pool.submit(self._fetch, request)
        except RuntimeError as e:
            source = _settled(SyncResult(error=e))

        follower: Future = Future()
        follower.set_running_or_notify_cancel()
        source.add_done_callback(lambda done: SyncResult.from_future(done).apply_to(follower))
        source.add_done_callback(self._strategy.for_write(request, key))
        return follower

    def key_for(self, target: Any, operation: Operation = Operation.READ) -> str:
        """Cache key a call with this target would use."""
        return self._prepare(operation, target, None)[1]

    def invalidate(self, key: str) -> bool:
        """Drop the entry for key. Returns whether one was stored."""
        return self.store.invalidate(key)

    def get_cached_metadata(self, key: str) -> Optional[Metadata]:
        return self.store.meta_store.get(key)

    def set_cached_metadata(self, key: str, meta: Metadata) -> None:
        self.store.meta_store.set(key, meta)

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        count = len(self.store.keys())
        self.store.clear()
        return count

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for outstanding fetch hooks and cache writes."""
        return self._strategy.drain(timeout)

    def close(self) -> None:
        self._fetch_pool.shutdown(wait=True)
        self.drain()
        self._store_pool.shutdown(wait=True)

    def __enter__(self) -> "Control":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        lookups = stats["hits"] + stats["misses"]
        hit_rate = (stats["hits"] / lookups * 100) if lookups > 0 else 0

        return {
            "entries": len(self.store.keys()),
            "hits": stats["hits"],
            "misses": stats["misses"],
            "fetches": stats["fetches"],
            "writes": stats["writes"],
            "hit_rate_percent": round(hit_rate, 1),
            "store_failures": self._strategy.store_failures,
            "pending_syncs": self._strategy.pending,
            "coalescer": self.coalescer.get_stats(),
        }

    def _prepare(
        self,
        operation: Operation,
        target: Any,
        options: Optional[Mapping[str, Any]],
    ):
        try:
            request = FetchRequest.build(operation, target, options)
        except ValueError as e:
            raise PolicyError(str(e)) from e
        return request, self.policy.get_key(request)

    def _fetch(self, request: FetchRequest) -> Any:
        return self._fetcher(request.operation, request.target, dict(request.options))

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1
