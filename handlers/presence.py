from dataclasses import dataclass

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from api.client import PedicabAPI
from api.exceptions import AuthenticationRejected, PedicabAPIError
from config.config import LOCATION_INTERVAL, PRESENCE_INTERVAL
from handlers.scheduler import SessionScheduledTask
from handlers.session_store import Session, SessionStore
from handlers.shared_state import DriverStateStore, SessionKey
from utils.geocoder import LocationProvider

ONLINE_MESSAGE = "Anda sekarang online dan dapat menerima pesanan."
OFFLINE_MESSAGE = "Anda sekarang offline."
TOGGLE_FAILED_MESSAGE = "Gagal mengubah status online. Silakan coba lagi."
NO_DRIVER_SESSION_MESSAGE = "Hanya driver yang sedang login yang dapat mengubah status online."


@dataclass(frozen=True)
class ToggleResult:
    ok: bool
    is_online: bool | None
    message: str | None = None
    retryable: bool = False
    # The authority accepted the request, but a newer toggle now owns the local state
    superseded: bool = False


class PresenceManager:
    """
    Online/offline status and location reporting for a driver session.

    Toggles are numbered; only the answer to the newest toggle may touch the
    local presence, and a heartbeat answer is dropped if any toggle was issued
    while it was in flight.
    """

    def __init__(
        self,
        api: PedicabAPI,
        sessions: SessionStore,
        store: DriverStateStore,
        scheduler: AsyncIOScheduler,
        location_provider: LocationProvider | None = None,
        presence_interval: float = PRESENCE_INTERVAL,
        location_interval: float = LOCATION_INTERVAL,
    ):
        self._api = api
        self._sessions = sessions
        self._store = store
        self._location_provider = location_provider
        self._toggle_seq = 0
        self.heartbeat = SessionScheduledTask(scheduler, 'presence-heartbeat', self._heartbeat_tick, presence_interval)
        self.location_task = SessionScheduledTask(scheduler, 'location-report', self._location_tick, location_interval)

    # --- Lifecycle ---

    def start(self, session: Session) -> None:
        if not session.is_driver:
            self.stop()
            return
        self.heartbeat.start(session.key)
        if self._store.state.presence.is_online:
            self._start_location(session.key)

    def stop(self) -> None:
        self.heartbeat.stop()
        self.location_task.stop()

    async def on_session_changed(self, session: Session | None) -> None:
        if session is None:
            self.stop()
        else:
            self.start(session)

    def _start_location(self, key: SessionKey) -> None:
        if self._location_provider is None:
            return
        self.location_task.start(key)

    def _apply_online(self, key: SessionKey, is_online: bool) -> bool:
        if not self._store.set_online(key, is_online):
            return False
        if is_online:
            self._start_location(key)
        else:
            self.location_task.stop()
        return True

    # --- Status ---

    async def get_status(self) -> bool | None:
        """Current status at the authority, or None when it cannot be determined."""
        session = self._sessions.session
        if session is None or not session.is_driver:
            return None
        seq = self._toggle_seq
        try:
            is_online = await self._api.get_online_status()
        except PedicabAPIError as e:
            logger.warning(f"Could not fetch online status: {e}")
            return None
        if seq == self._toggle_seq:
            self._apply_online(session.key, is_online)
        return is_online

    async def toggle(self, online: bool) -> ToggleResult:
        session = self._sessions.session
        if session is None or not session.is_driver:
            return ToggleResult(ok=False, is_online=None, message=NO_DRIVER_SESSION_MESSAGE)
        key = session.key

        self._toggle_seq += 1
        seq = self._toggle_seq
        logger.info(f"Requesting status {'online' if online else 'offline'} (#{seq})")

        try:
            confirmed = await self._api.set_online_status(online)
        except AuthenticationRejected as e:
            logger.warning(f"Status change rejected: {e}")
            return ToggleResult(ok=False, is_online=self._store.state.presence.is_online, message=TOGGLE_FAILED_MESSAGE)
        except PedicabAPIError as e:
            logger.error(f"Status change #{seq} failed: {e}")
            return ToggleResult(
                ok=False,
                is_online=self._store.state.presence.is_online,
                message=TOGGLE_FAILED_MESSAGE,
                retryable=True,
            )

        if seq != self._toggle_seq:
            logger.debug(f"Status change #{seq} superseded by #{self._toggle_seq}")
            return ToggleResult(ok=True, is_online=self._store.state.presence.is_online, superseded=True)

        if not self._apply_online(key, confirmed):
            return ToggleResult(ok=True, is_online=None, superseded=True)
        if confirmed:
            # Report the position right away instead of waiting for the first tick
            await self.location_task.run_once()
        return ToggleResult(ok=True, is_online=confirmed, message=ONLINE_MESSAGE if confirmed else OFFLINE_MESSAGE)

    # --- Background ticks ---

    async def _heartbeat_tick(self, key: SessionKey) -> None:
        seq = self._toggle_seq
        is_online = await self._api.get_online_status()
        if seq != self._toggle_seq:
            logger.debug("Heartbeat answer dropped: a status change was requested meanwhile")
            return
        previous = self._store.state.presence.is_online
        if self._apply_online(key, is_online) and previous is not None and previous != is_online:
            logger.info(f"Status changed outside this client: now {'online' if is_online else 'offline'}")

    async def _location_tick(self, key: SessionKey) -> None:
        if not self._store.state.presence.is_online or self._location_provider is None:
            return
        location = await self._location_provider.current_location()
        if location is None:
            return
        await self._api.update_location(location)
        self._store.set_location(key, location)
        logger.debug(f"Location reported: {location.latitude:.5f}, {location.longitude:.5f}")
