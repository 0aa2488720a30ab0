"""
Request coalescing to prevent duplicate upstream fetches.

When multiple concurrent requests ask for the same key, only one
underlying fetch is started and all requesters share its outcome.
"""
import threading
import time
import logging
from concurrent.futures import Future
from typing import Dict, List, Optional, Callable, Any
from dataclasses import dataclass, field

from .core import SyncResult

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress underlying fetch."""
    key: str
    followers: List[Future] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same cache key share one fetch.

    Pattern:
    - First request for a key registers an in-flight entry and starts the fetch
    - Subsequent requests for the same key join the entry
    - When the fetch settles, the entry is removed first, then every
      caller's future settles with the same value or error
    - Check-then-register is one critical section under a lock

    Usage:
        coalescer = RequestCoalescer()
        future = coalescer.fetch_or_join(
            "/items/1",
            lambda: executor.submit(fetch_item, 1),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._lock = threading.Lock()
        self._joined_total = 0

    def fetch_or_join(
        self,
        key: str,
        start_fetch: Callable[[], Future],
        on_settled: Optional[Callable[[Future], None]] = None,
    ) -> Future:
        """
        Either join an existing in-flight fetch or start a new one.

        Args:
            key: Cache key identifying the fetch
            start_fetch: Starts the underlying fetch and returns its future
            on_settled: Completion hook for the fetch, only registered by
                the caller that starts it

        Returns:
            A future private to this caller that settles with the shared outcome
        """
        follower: Future = Future()
        follower.set_running_or_notify_cancel()

        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                self._joined_total += 1
                in_flight.followers.append(follower)
                logger.debug(
                    f"Coalescing request for {key} "
                    f"(waiters: {in_flight.waiter_count})"
                )
                return follower

            in_flight = InFlightRequest(key=key, followers=[follower])
            self._in_flight[key] = in_flight
            logger.debug(f"Initiating fetch for {key}")

        try:
            source = start_fetch()
        except Exception as e:
            logger.warning(f"Fetch failed to start for {key}: {e}")
            source = Future()
            source.set_exception(e)

        source.add_done_callback(
            lambda done: self._settle(in_flight, SyncResult.from_future(done))
        )
        # Runs after the entry is gone and every caller has settled
        if on_settled is not None:
            source.add_done_callback(on_settled)
        return follower

    def _settle(self, in_flight: InFlightRequest, result: SyncResult) -> None:
        with self._lock:
            if self._in_flight.get(in_flight.key) is in_flight:
                del self._in_flight[in_flight.key]
            followers = list(in_flight.followers)

        if not result.ok:
            logger.debug(f"Fetch failed for {in_flight.key}: {result.error}")
        for follower in followers:
            result.apply_to(follower)

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight fetches."""
        with self._lock:
            return len(self._in_flight)

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
                "coalesced_total": self._joined_total,
                "waiters": {
                    key: entry.waiter_count for key, entry in self._in_flight.items()
                },
            }
