"""
SQLAlchemy-backed persistent backend.
"""
import logging
import threading
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from readthrough.models import CacheItem
from .backends import item_size
from .core import BackendError, QuotaExceededError

logger = logging.getLogger("cache.sql_backend")


class SqlBackend:
    """
    Stores backend items as rows of the ``cache_items`` table.

    Each call runs in its own session. Writes are serialized so the quota
    check and the insert see a consistent total size.
    """

    def __init__(self, session_factory: sessionmaker, quota_bytes: Optional[int] = None):
        self._session_factory = session_factory
        self.quota_bytes = quota_bytes
        self._write_lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as db:
                item = db.get(CacheItem, key)
                return item.value if item is not None else None
        except SQLAlchemyError as e:
            raise BackendError(f"Failed to read {key}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        size = item_size(key, value)
        with self._write_lock:
            try:
                with self._session_factory() as db:
                    if self.quota_bytes is not None:
                        used = self._used_bytes(db, exclude=key)
                        if used + size > self.quota_bytes:
                            raise QuotaExceededError(
                                f"Writing {key} needs {used + size} bytes, quota is {self.quota_bytes}"
                            )
                    item = db.get(CacheItem, key)
                    if item is None:
                        db.add(CacheItem(key=key, value=value, size=size))
                    else:
                        item.value = value
                        item.size = size
                    db.commit()
            except SQLAlchemyError as e:
                raise BackendError(f"Failed to write {key}: {e}") from e

    def remove_item(self, key: str) -> None:
        with self._write_lock:
            try:
                with self._session_factory() as db:
                    db.query(CacheItem).filter(CacheItem.key == key).delete()
                    db.commit()
            except SQLAlchemyError as e:
                raise BackendError(f"Failed to remove {key}: {e}") from e

    def clear(self) -> None:
        with self._write_lock:
            try:
                with self._session_factory() as db:
                    count = db.query(CacheItem).delete()
                    db.commit()
                    logger.info(f"Cleared {count} backend items")
            except SQLAlchemyError as e:
                raise BackendError(f"Failed to clear backend: {e}") from e

    def keys(self) -> List[str]:
        try:
            with self._session_factory() as db:
                return [row.key for row in db.query(CacheItem.key).all()]
        except SQLAlchemyError as e:
            raise BackendError(f"Failed to list keys: {e}") from e

    def _used_bytes(self, db: Session, exclude: str) -> int:
        total = (
            db.query(func.coalesce(func.sum(CacheItem.size), 0))
            .filter(CacheItem.key != exclude)
            .scalar()
        )
        return int(total)
