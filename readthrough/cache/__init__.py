"""
Read-through response cache with request coalescing and quota recovery.
"""
from .core import (
    BackendError,
    CacheEntry,
    CacheError,
    CacheMiss,
    FetchFailed,
    FetchRequest,
    Metadata,
    Operation,
    PolicyError,
    QuotaExceededError,
    StoreWriteFailed,
    SyncResult,
)
from .policies import KeyPolicy, MetadataPolicy, Policy, TTLRule, rules_from_config
from .backends import Backend, MemoryBackend, create_backend
from .store import DataStore, MetaStore, Store
from .coalescer import RequestCoalescer
from .events import EventEmitter, get_sync_error_event, get_sync_success_event
from .strategy import SyncStrategy
from .control import Cache, Control

__all__ = [
    # Core types
    "CacheEntry",
    "FetchRequest",
    "Metadata",
    "Operation",
    "SyncResult",
    # Errors
    "CacheError",
    "CacheMiss",
    "FetchFailed",
    "StoreWriteFailed",
    "PolicyError",
    "BackendError",
    "QuotaExceededError",
    # Policies
    "KeyPolicy",
    "MetadataPolicy",
    "Policy",
    "TTLRule",
    "rules_from_config",
    # Storage
    "Backend",
    "MemoryBackend",
    "create_backend",
    "DataStore",
    "MetaStore",
    "Store",
    # Coalescing
    "RequestCoalescer",
    # Notifications
    "EventEmitter",
    "get_sync_success_event",
    "get_sync_error_event",
    # Orchestration
    "SyncStrategy",
    "Cache",
    "Control",
]
