"""
Readthrough - Main FastAPI Application
Read-through caching proxy in front of a remote JSON source
"""
import logging
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request

from readthrough.cache import (
    Cache,
    CacheMiss,
    Control,
    FetchFailed,
    Metadata,
    Policy,
    PolicyError,
    create_backend,
    rules_from_config,
)
from readthrough.http_client import HttpFetcher
from readthrough.schemas import (
    CacheEntryResponse,
    CacheStats,
    InvalidateResponse,
    MetadataPayload,
)
from config.settings import Settings, settings

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.3.0"
APP_NAME = "Readthrough"


def create_control(config: Settings = settings, fetcher=None) -> Control:
    """Build a Control wired from configuration."""
    backend = create_backend(
        config.cache_backend,
        database_url=config.cache_database_url,
        quota_bytes=config.cache_quota_bytes,
    )
    cache = Cache(
        backend,
        data_prefix=config.cache_data_prefix,
        meta_prefix=config.cache_meta_prefix,
    )
    policy = Policy(
        default_ttl_seconds=config.cache_default_ttl_seconds,
        rules=rules_from_config(config.cache_ttl_rules),
        key_prefix=config.cache_key_prefix,
    )
    if fetcher is None:
        fetcher = HttpFetcher(
            base_url=config.remote_base_url,
            timeout=config.request_timeout_seconds,
        )
    return Control(
        fetcher,
        cache=cache,
        policy=policy,
        fetch_workers=config.fetch_workers,
        store_workers=config.store_workers,
    )


def get_control(request: Request) -> Control:
    return request.app.state.control


def create_app(control: Optional[Control] = None, config: Settings = settings) -> FastAPI:
    """Create the API around an existing Control, or one built from settings."""
    owns_control = control is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_control:
            app.state.control.close()

    app = FastAPI(
        title=APP_NAME,
        description="Read-through response cache for a remote data source",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.control = control if control is not None else create_control(config)
    proxy_timeout = config.request_timeout_seconds * 2

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok", "mode": "read-through"}

    @app.get("/version")
    def version_info():
        """Version information endpoint."""
        return {"name": APP_NAME, "version": APP_VERSION}

    @app.get("/cache/stats", response_model=CacheStats)
    def cache_stats(control: Control = Depends(get_control)):
        """Get cache statistics."""
        return control.get_stats()

    @app.get("/cache/entries", response_model=CacheEntryResponse)
    def get_entry(key: str = Query(..., min_length=1), control: Control = Depends(get_control)):
        """Get a cached entry without touching the remote source."""
        try:
            entry = control.store.get(key)
        except CacheMiss:
            raise HTTPException(status_code=404, detail=f"No cached entry for {key}")
        meta = MetadataPayload(**entry.meta.to_dict()) if entry.meta else None
        return CacheEntryResponse(key=key, data=entry.data, meta=meta)

    @app.delete("/cache/entries", response_model=InvalidateResponse)
    def invalidate_entry(key: str = Query(..., min_length=1), control: Control = Depends(get_control)):
        """Invalidate one cached entry. Succeeds even if it was absent."""
        existed = control.invalidate(key)
        return InvalidateResponse(key=key, cleared=int(existed))

    @app.delete("/cache", response_model=InvalidateResponse)
    def clear_cache(control: Control = Depends(get_control)):
        """Clear every cached entry."""
        return InvalidateResponse(cleared=control.clear())

    @app.get("/cache/meta", response_model=MetadataPayload)
    def get_meta(key: str = Query(..., min_length=1), control: Control = Depends(get_control)):
        """Get the metadata stored for a key."""
        meta = control.get_cached_metadata(key)
        if meta is None:
            raise HTTPException(status_code=404, detail=f"No metadata for {key}")
        return MetadataPayload(**meta.to_dict())

    @app.put("/cache/meta", response_model=MetadataPayload)
    def set_meta(
        payload: MetadataPayload,
        key: str = Query(..., min_length=1),
        control: Control = Depends(get_control),
    ):
        """Overwrite the metadata for a key (e.g. to force expiry)."""
        control.set_cached_metadata(key, Metadata(expires=payload.expires))
        return payload

    @app.get("/proxy/{path:path}")
    def proxy(path: str, request: Request, control: Control = Depends(get_control)):
        """
        Read a resource through the cache.

        Upstream errors keep their status code, transport errors map to 502
        and a fetch outliving the proxy timeout maps to 504.
        """
        target = f"/{path}"
        if request.url.query:
            target = f"{target}?{request.url.query}"
        try:
            return control.read(target).result(timeout=proxy_timeout)
        except FetchFailed as e:
            raise HTTPException(status_code=e.status_code or 502, detail=e.payload or str(e))
        except PolicyError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except FutureTimeout:
            raise HTTPException(status_code=504, detail=f"Timed out reading {target}")

    return app


app = create_app()
