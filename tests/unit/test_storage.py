"""Tests for the SQLite storage layer."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path

import pytest

from proxyrun.errors import StorageLockedError
from proxyrun.session.models import Profile


def run_async(coro):
    """Helper to run async functions in sync tests."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
    return loop.run_until_complete(coro)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path: Path):
    from proxyrun.storage.db import get_db

    conn = run_async(get_db(db_path))
    yield conn
    run_async(conn.close())


class TestProfileRepo:
    def test_create_and_get(self, db):
        from proxyrun.storage.repos import ProfileRepo

        repo = ProfileRepo(db)
        profile_id = run_async(
            repo.create(Profile(host="1.2.3.4", password="pw", route="gfwlist", udpdns=True))
        )
        row = run_async(repo.get(profile_id))

        assert row is not None
        assert row["host"] == "1.2.3.4"
        assert row["route"] == "gfwlist"
        assert Profile.from_row(row).udpdns is True

    def test_add_traffic(self, db):
        from proxyrun.storage.repos import ProfileRepo

        repo = ProfileRepo(db)
        profile_id = run_async(repo.create(Profile(host="h", password="p")))
        run_async(repo.add_traffic(profile_id, 100, 200))
        run_async(repo.add_traffic(profile_id, 1, 2))

        row = run_async(repo.get(profile_id))
        assert (row["tx"], row["rx"]) == (101, 202)

    def test_delete_and_list(self, db):
        from proxyrun.storage.repos import ProfileRepo

        repo = ProfileRepo(db)
        first = run_async(repo.create(Profile(host="a", password="p")))
        run_async(repo.create(Profile(host="b", password="p")))

        assert run_async(repo.delete(first)) is True
        assert run_async(repo.delete(first)) is False
        assert [row["host"] for row in run_async(repo.list_all())] == ["b"]


class TestProfileStore:
    def test_blocking_crud(self, db_path):
        from proxyrun.storage.store import ProfileStore

        store = ProfileStore(db_path)
        try:
            created = store.create(Profile(host="1.2.3.4", password="pw"))
            assert created.id > 0

            loaded = store.get(created.id)
            loaded.name = "Home"
            loaded.tx = 50
            store.update(loaded)
            store.add_traffic(created.id, 5, 6)

            again = store.get(created.id)
            assert again.name == "Home"
            assert (again.tx, again.rx) == (55, 6)
            assert [p.id for p in store.list_all()] == [created.id]
            assert store.get(9999) is None
        finally:
            store.close()

    def test_locked_database_maps_to_storage_locked(self, db_path):
        from proxyrun.storage.store import ProfileStore

        store = ProfileStore(db_path)

        async def locked() -> None:
            raise sqlite3.OperationalError("database is locked")

        try:
            with pytest.raises(StorageLockedError):
                store._call(locked())
        finally:
            store.close()

    def test_other_operational_errors_propagate(self, db_path):
        from proxyrun.storage.store import ProfileStore

        store = ProfileStore(db_path)

        async def broken() -> None:
            raise sqlite3.OperationalError("no such table: nope")

        try:
            with pytest.raises(sqlite3.OperationalError):
                store._call(broken())
        finally:
            store.close()


class TestDeviceProfileStore:
    def test_stage_accumulates(self, tmp_path):
        from proxyrun.storage.device import DeviceProfileStore

        device = DeviceProfileStore(tmp_path)
        device.stage(1, 10, 20)
        device.stage(1, 5, 5)

        assert device.load() == {"1": {"tx": 15, "rx": 25, "dirty": True}}

    def test_flush_merges_into_store(self, tmp_path, store):
        from proxyrun.storage.device import DeviceProfileStore

        device = DeviceProfileStore(tmp_path)
        device.stage(1, 10, 20)

        assert device.flush(store) is True
        assert (store.profiles[1].tx, store.profiles[1].rx) == (10, 20)
        assert not device.path.exists()

    def test_flush_while_locked_keeps_record(self, tmp_path, store):
        from proxyrun.storage.device import DeviceProfileStore

        device = DeviceProfileStore(tmp_path)
        device.stage(1, 10, 20)
        store.locked = True

        assert device.flush(store) is False
        assert device.load()["1"]["dirty"] is True

    def test_corrupt_record_discarded(self, tmp_path):
        from proxyrun.storage.device import DeviceProfileStore

        device = DeviceProfileStore(tmp_path)
        device.path.write_text("{not json")
        assert device.load() == {}
