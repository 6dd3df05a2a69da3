"""Repository classes for async CRUD operations on SQLite."""

from __future__ import annotations

import time

import aiosqlite

from proxyrun.session.models import Profile


class ProfileRepo:
    """CRUD for connection profiles."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def create(self, profile: Profile) -> int:
        cursor = await self._db.execute(
            "INSERT INTO profiles "
            "(name, host, remote_port, password, method, plugin, route, "
            "udpdns, tx, rx, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                profile.name,
                profile.host,
                profile.remote_port,
                profile.password,
                profile.method,
                profile.plugin,
                profile.route,
                int(profile.udpdns),
                profile.tx,
                profile.rx,
                time.time(),
            ),
        )
        await self._db.commit()
        return cursor.lastrowid

    async def update(self, profile: Profile) -> None:
        await self._db.execute(
            "UPDATE profiles SET name = ?, host = ?, remote_port = ?, "
            "password = ?, method = ?, plugin = ?, route = ?, udpdns = ?, "
            "tx = ?, rx = ? WHERE id = ?",
            (
                profile.name,
                profile.host,
                profile.remote_port,
                profile.password,
                profile.method,
                profile.plugin,
                profile.route,
                int(profile.udpdns),
                profile.tx,
                profile.rx,
                profile.id,
            ),
        )
        await self._db.commit()

    async def add_traffic(self, profile_id: int, tx: int, rx: int) -> None:
        await self._db.execute(
            "UPDATE profiles SET tx = tx + ?, rx = rx + ? WHERE id = ?",
            (tx, rx, profile_id),
        )
        await self._db.commit()

    async def delete(self, profile_id: int) -> bool:
        cursor = await self._db.execute(
            "DELETE FROM profiles WHERE id = ?", (profile_id,)
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def get(self, profile_id: int) -> dict | None:
        cursor = await self._db.execute(
            "SELECT * FROM profiles WHERE id = ?", (profile_id,)
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        cursor = await self._db.execute("SELECT * FROM profiles ORDER BY id")
        return [dict(row) async for row in cursor]
