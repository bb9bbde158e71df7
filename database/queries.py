import aiosqlite
from config.config import SESSION_DB_PATH
from datetime import datetime
from pathlib import Path
from loguru import logger

# --- Connection helper ---
def _get_db(db_path: Path | str = SESSION_DB_PATH):
    """Returns an async connection to the local storage database."""
    return aiosqlite.connect(db_path)

# --- Local storage ---

async def get_items(keys: list[str], db_path: Path | str = SESSION_DB_PATH) -> dict[str, str]:
    """Reads several values at once. Missing keys are absent from the result."""
    if not keys:
        return {}
    placeholders = ", ".join("?" for _ in keys)
    async with _get_db(db_path) as db:
        cursor = await db.execute(
            f"SELECT key, value FROM local_storage WHERE key IN ({placeholders})", tuple(keys)
        )
        return {key: value for key, value in await cursor.fetchall()}

async def set_items(items: dict[str, str], db_path: Path | str = SESSION_DB_PATH):
    """Writes several values in one transaction (last writer wins)."""
    async with _get_db(db_path) as db:
        now = datetime.now().isoformat()
        await db.executemany(
            """
            INSERT INTO local_storage (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            [(key, value, now) for key, value in items.items()]
        )
        await db.commit()
    logger.trace(f"Local storage keys written: {sorted(items)}")

async def remove_items(keys: list[str], db_path: Path | str = SESSION_DB_PATH):
    """Deletes several keys in one transaction."""
    if not keys:
        return
    placeholders = ", ".join("?" for _ in keys)
    async with _get_db(db_path) as db:
        await db.execute(f"DELETE FROM local_storage WHERE key IN ({placeholders})", tuple(keys))
        await db.commit()
