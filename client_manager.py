#!/usr/bin/env python3
"""
Single-instance guard for the driver client.

Two clients running against the same session database would share one
credential: both would send presence heartbeats and location reports, and a
logout in one would silently end the other. The lock file sits next to the
session database and holds the PID of the client that owns it.
"""
import os
from pathlib import Path

import psutil
from loguru import logger

from config.config import SESSION_DB_PATH


def _default_lock_file() -> Path:
    return Path(SESSION_DB_PATH).with_suffix('.lock')


class ClientManager:
    """Owns the lock on one session database."""

    def __init__(self, lock_file: Path | str | None = None):
        self.lock_file = Path(lock_file) if lock_file else _default_lock_file()

    def is_running(self) -> bool:
        return self.lock_file.exists()

    def get_pid(self) -> int | None:
        """PID of the client holding the session database, or None if unknown."""
        if not self.is_running():
            return None
        try:
            return int(self.lock_file.read_text().strip())
        except (OSError, ValueError) as e:
            logger.error(f"Unreadable session lock {self.lock_file}: {e}")
            return None

    def create_lock(self) -> bool:
        """
        Claims the session database for this process. A lock left behind by a
        client that died without cleaning up (dead PID or garbage content) is
        taken over.
        """
        pid = self.get_pid()
        if pid and psutil.pid_exists(pid):
            logger.warning(f"Session database is in use by driver client PID {pid}.")
            return False
        if pid:
            logger.warning(f"Taking over the session lock of exited driver client PID {pid}.")
            self.remove_lock()
        elif self.is_running():
            logger.warning(f"Session lock {self.lock_file} is corrupted; replacing it.")
            self.remove_lock()

        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            self.lock_file.write_text(str(os.getpid()))
        except OSError as e:
            logger.error(f"Could not claim the session database: {e}")
            return False
        logger.info(f"Session database claimed by PID {os.getpid()}")
        return True

    def remove_lock(self):
        try:
            self.lock_file.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Could not release session lock {self.lock_file}: {e}")


client_manager = ClientManager()


async def safe_client_start(start_func, manager: ClientManager | None = None) -> bool:
    """
    Runs the driver client while it owns the session database.
    Returns False without running anything when another client owns it.
    """
    manager = manager or client_manager
    if not manager.create_lock():
        return False

    try:
        logger.info("Starting driver client...")
        await start_func()
    except KeyboardInterrupt:
        logger.info("Stop signal received")
    except Exception as e:
        logger.error(f"Driver client crashed: {e}")
        raise
    finally:
        manager.remove_lock()
        logger.info("Driver client stopped; session database released")

    return True
