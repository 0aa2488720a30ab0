"""
Pydantic schemas for API request/response models
"""
from pydantic import BaseModel
from typing import Any, Dict, List, Optional


# ===== CACHE ENTRY SCHEMAS =====

class MetadataPayload(BaseModel):
    """Entry metadata - expires is epoch seconds, null means never"""
    expires: Optional[float] = None


class CacheEntryResponse(BaseModel):
    """A cached payload with its metadata"""
    key: str
    data: Any = None
    meta: Optional[MetadataPayload] = None


class InvalidateResponse(BaseModel):
    """Result of dropping one or all entries"""
    key: Optional[str] = None
    cleared: int = 0


# ===== STATS SCHEMAS =====

class CoalescerStats(BaseModel):
    """In-flight fetch bookkeeping"""
    active_requests: int
    active_keys: List[str]
    coalesced_total: int
    waiters: Dict[str, int]


class CacheStats(BaseModel):
    """Cache statistics"""
    entries: int
    hits: int
    misses: int
    fetches: int
    writes: int
    hit_rate_percent: float
    store_failures: int
    pending_syncs: int
    coalescer: CoalescerStats
