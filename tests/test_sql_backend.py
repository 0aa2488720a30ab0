"""
Tests for the SQLAlchemy-backed persistent backend.
"""
import pytest

from readthrough.cache import CacheEntry, CacheMiss, Metadata, QuotaExceededError, Store, create_backend
from readthrough.cache.sql_backend import SqlBackend
from readthrough.db import create_session_factory


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'cache.db'}"


@pytest.fixture
def sql_backend(database_url):
    return SqlBackend(create_session_factory(database_url))


class TestSqlBackend:
    """Backend contract on top of SQLite."""

    def test_set_get_remove(self, sql_backend):
        sql_backend.set_item("a", "1")
        assert sql_backend.get_item("a") == "1"

        sql_backend.set_item("a", "2")
        assert sql_backend.get_item("a") == "2"

        sql_backend.remove_item("a")
        assert sql_backend.get_item("a") is None

    def test_remove_missing_key(self, sql_backend):
        sql_backend.remove_item("never")

    def test_clear_and_keys(self, sql_backend):
        sql_backend.set_item("a", "1")
        sql_backend.set_item("b", "2")
        assert sorted(sql_backend.keys()) == ["a", "b"]

        sql_backend.clear()
        assert sql_backend.keys() == []

    def test_quota(self, database_url):
        backend = SqlBackend(create_session_factory(database_url), quota_bytes=10)
        backend.set_item("k", "12345")

        with pytest.raises(QuotaExceededError):
            backend.set_item("j", "1234567")
        # overwriting an item only counts its new size
        backend.set_item("k", "123456789")
        assert backend.get_item("k") == "123456789"

    def test_persists_across_factories(self, database_url):
        SqlBackend(create_session_factory(database_url)).set_item("a", "kept")

        assert SqlBackend(create_session_factory(database_url)).get_item("a") == "kept"


class TestStoreOnSql:
    """The store works unchanged on the SQL backend."""

    def test_store_round_trip_and_quota_recovery(self, database_url):
        store = Store(create_backend("sql", database_url=database_url, quota_bytes=80))
        store.set("filler", CacheEntry(data="x" * 40))

        store.set("/items/1", CacheEntry(data={"value": 2}, meta=Metadata(expires=None)))

        assert store.get("/items/1").data == {"value": 2}
        with pytest.raises(CacheMiss):
            store.get("filler")

    def test_create_backend_requires_url(self):
        with pytest.raises(ValueError):
            create_backend("sql")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_backend("floppy")
