"""
Core cache data structures and errors.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from concurrent.futures import Future


class Operation(Enum):
    """Kinds of operations routed through the cache."""
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    PATCH = "patch"
    DELETE = "delete"


# ===== ERRORS =====

class CacheError(Exception):
    """Base class for cache-layer errors."""


class CacheMiss(CacheError):
    """Raised by Store.get when a key is absent or expired."""

    def __init__(self, key: str):
        super().__init__(f"Cache miss: {key}")
        self.key = key


class FetchFailed(CacheError):
    """The underlying fetch against the remote source failed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Any = None,
        target: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload
        self.target = target


class StoreWriteFailed(CacheError):
    """A cache write failed even after clearing the cache and retrying."""

    def __init__(self, key: str, reason: str = ""):
        message = f"Cache write failed for {key}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.key = key


class PolicyError(CacheError):
    """Key or metadata computation failed."""


class BackendError(CacheError):
    """The persistent backend rejected an operation."""


class QuotaExceededError(BackendError):
    """The persistent backend is out of capacity."""


# ===== DATA =====

@dataclass(frozen=True)
class FetchRequest:
    """
    A pending operation with its target resolved at dispatch time.

    Later mutation of the object the target was derived from does not
    affect an already built request.
    """
    operation: Operation
    target: str
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        operation: Operation,
        target: Any,
        options: Optional[Mapping[str, Any]] = None,
    ) -> "FetchRequest":
        """
        Freeze a request from a URL string or a resource object.

        Resource objects expose either a callable ``url()`` or a ``url``
        attribute.
        """
        if isinstance(target, str):
            url = target
        else:
            url = getattr(target, "url", None)
            if callable(url):
                url = url()
        if not isinstance(url, str) or not url:
            raise ValueError(f"Cannot resolve a target URL from {target!r}")
        return cls(operation=operation, target=url, options=dict(options or {}))


@dataclass
class Metadata:
    """Classification of a cached entry. ``expires`` is epoch seconds."""
    expires: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires is not None and self.expires <= now

    def to_dict(self) -> dict:
        return {"expires": self.expires}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Metadata":
        return cls(expires=raw.get("expires"))


@dataclass
class CacheEntry:
    """A cached response payload with its metadata."""
    data: Any
    meta: Optional[Metadata] = None


@dataclass
class SyncResult:
    """Outcome of a settled fetch: either a value or an error."""
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def from_future(cls, future: Future) -> "SyncResult":
        error = future.exception()
        if error is not None:
            return cls(error=error)
        return cls(value=future.result())

    def apply_to(self, future: Future) -> None:
        """Settle ``future`` with this outcome."""
        if self.error is not None:
            future.set_exception(self.error)
        else:
            future.set_result(self.value)
