"""
Database models for the persistent cache backend
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class CacheItem(Base):
    """
    One backend item - a namespaced cache key and its serialized value
    Size is tracked per row so quota checks don't re-read every value
    """
    __tablename__ = "cache_items"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    size = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<CacheItem(key='{self.key}', size={self.size})>"
