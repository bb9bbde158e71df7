"""
The persisted-session port.

SessionStore only depends on the ``SessionStorage`` protocol; the SQLite-backed
implementation is what the client uses at runtime, the in-memory one is for
tests and throwaway sessions.
"""
from pathlib import Path
from typing import Protocol

from config.config import SESSION_DB_PATH
from database import queries as db_queries
from database.db import init_db


class SessionStorage(Protocol):
    async def get_items(self, keys: list[str]) -> dict[str, str]: ...

    async def set_items(self, items: dict[str, str]) -> None: ...

    async def remove_items(self, keys: list[str]) -> None: ...


class SqliteSessionStorage:
    """Local storage kept in an SQLite file, surviving client restarts."""

    def __init__(self, db_path: Path | str = SESSION_DB_PATH):
        self.db_path = db_path
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await init_db(self.db_path)
            self._initialized = True

    async def get_items(self, keys: list[str]) -> dict[str, str]:
        await self._ensure_initialized()
        return await db_queries.get_items(keys, db_path=self.db_path)

    async def set_items(self, items: dict[str, str]) -> None:
        await self._ensure_initialized()
        await db_queries.set_items(items, db_path=self.db_path)

    async def remove_items(self, keys: list[str]) -> None:
        await self._ensure_initialized()
        await db_queries.remove_items(keys, db_path=self.db_path)


class MemorySessionStorage:
    """Process-local storage. Nothing survives a restart."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get_items(self, keys: list[str]) -> dict[str, str]:
        return {key: self.data[key] for key in keys if key in self.data}

    async def set_items(self, items: dict[str, str]) -> None:
        self.data.update(items)

    async def remove_items(self, keys: list[str]) -> None:
        for key in keys:
            self.data.pop(key, None)
