import aiosqlite
import asyncio
from pathlib import Path
from config.config import SESSION_DB_PATH
from loguru import logger

async def _execute_script(cursor, script):
    """Executes a multi-statement SQL script."""
    try:
        await cursor.executescript(script)
    except aiosqlite.Error as e:
        logger.error(f"Error executing script: {e}")
        raise


async def init_db(db_path: Path | str = SESSION_DB_PATH):
    """
    Initializes the local storage database: creates the key-value table
    if it doesn't exist.
    """
    if str(db_path) != ':memory:':
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.cursor()

            # Browser-style local storage: the credential and the role tag live here
            create_tables_script = """
                CREATE TABLE IF NOT EXISTS local_storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """
            await _execute_script(cursor, create_tables_script)

            await db.commit()
            logger.info("Local storage initialized.")

    except aiosqlite.Error as e:
        logger.critical(f"Critical database initialization error: {e}")
        raise

if __name__ == '__main__':
    asyncio.run(init_db())
