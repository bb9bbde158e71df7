"""
Owns the driver's (or admin's) authenticated session.

The credential and the role tag are persisted through a SessionStorage port
under two keys; everything else is derived from the authority's profile.
"""
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from api.client import PedicabAPI
from api.exceptions import DecodeError, InvalidCredentials, PedicabAPIError
from api.schemas import Role, UserProfile
from database.storage import SessionStorage
from handlers.shared_state import SessionKey

TOKEN_KEY = 'authToken'
ROLE_KEY = 'userType'

LOGIN_SURFACES = {
    Role.DRIVER: '/login-driver',
    Role.ADMIN: '/login-admin',
}


@dataclass(frozen=True)
class Session:
    token: str
    role: Role
    user_id: str
    display_name: str
    driver_id: str | None = None

    @property
    def key(self) -> SessionKey:
        return (self.user_id, self.token)

    @property
    def is_driver(self) -> bool:
        return self.role == Role.DRIVER

    @property
    def own_ids(self) -> frozenset[str]:
        """Identifiers the authority may use for this driver in `driver_id` fields."""
        return frozenset(value for value in (self.user_id, self.driver_id) if value)


SessionListener = Callable[[Session | None], Awaitable[None]]
RedirectListener = Callable[[str], Awaitable[None]]


def _parse_role(value: str | None) -> Role | None:
    try:
        return Role(value) if value else None
    except ValueError:
        return None


class SessionStore:

    def __init__(self, api: PedicabAPI, storage: SessionStorage):
        self._api = api
        self._storage = storage
        self._session: Session | None = None
        self._session_listeners: list[SessionListener] = []
        self._redirect_listeners: list[RedirectListener] = []

    @property
    def session(self) -> Session | None:
        return self._session

    def add_session_listener(self, listener: SessionListener) -> None:
        """`listener` is awaited with the new Session on establish and with None on destroy."""
        self._session_listeners.append(listener)

    def add_redirect_listener(self, listener: RedirectListener) -> None:
        """`listener` is awaited with the login surface path after an authentication rejection."""
        self._redirect_listeners.append(listener)

    async def _notify_session(self, session: Session | None) -> None:
        for listener in list(self._session_listeners):
            try:
                await listener(session)
            except Exception as e:
                logger.error(f"Session listener {listener!r} failed: {e}")

    async def _establish(self, session: Session) -> None:
        self._session = session
        self._api.set_credential(session.token, session.driver_id or session.user_id)
        await self._notify_session(session)

    async def _clear(self) -> bool:
        # The session is dropped before the first await so concurrent rejections see it gone
        had_session = self._session is not None
        self._session = None
        self._api.set_credential(None)
        try:
            await self._storage.remove_items([TOKEN_KEY, ROLE_KEY])
        except Exception as e:
            logger.error(f"Failed to clear persisted session: {e}")
        if had_session:
            await self._notify_session(None)
        return had_session

    @staticmethod
    def _build_session(token: str, role: Role, profile: UserProfile) -> Session:
        return Session(
            token=token,
            role=role,
            user_id=profile.id,
            display_name=profile.display_name,
            driver_id=profile.driver_id,
        )

    async def restore(self) -> Session | None:
        """
        Restores the persisted session and validates it against the profile
        endpoint. Returns None, with storage cleared, when there is nothing to
        restore or the credential does not hold up. Never raises.
        """
        try:
            stored = await self._storage.get_items([TOKEN_KEY, ROLE_KEY])
        except Exception as e:
            logger.error(f"Failed to read persisted session: {e}")
            await self._clear()
            return None

        token = stored.get(TOKEN_KEY)
        if not token:
            if stored:
                await self._clear()
            logger.info("No persisted session to restore")
            return None

        stored_role = _parse_role(stored.get(ROLE_KEY))
        self._api.set_credential(token)
        try:
            profile = await self._api.get_profile()
        except PedicabAPIError as e:
            logger.warning(f"Persisted session could not be validated: {e}")
            await self._clear()
            return None

        role = profile.role or stored_role
        if role is None:
            logger.warning(f"No usable role for user {profile.id}; discarding persisted session")
            await self._clear()
            return None

        if role != stored_role:
            try:
                await self._storage.set_items({ROLE_KEY: role.value})
            except Exception as e:
                logger.error(f"Failed to update persisted role tag: {e}")

        session = self._build_session(token, role, profile)
        await self._establish(session)
        logger.info(f"Session restored for {session.display_name} ({role.value})")
        return session

    async def login(self, role: Role, username: str, password: str) -> Session:
        """
        Authenticates with the authority and persists the new credential.

        Raises:
            InvalidCredentials: The authority refused the credentials, or the
                account does not have the requested role.
            NetworkError: The authority could not be reached.
            DecodeError: The authority answered without a token or user.
        """
        response = await self._api.login(username, password)
        profile = response.user
        if profile is None:
            raise DecodeError("No user received from server")
        if profile.role is not None and profile.role != role:
            raise InvalidCredentials(f"Akun ini tidak memiliki akses sebagai {role.value}.")

        await self._storage.set_items({TOKEN_KEY: response.token, ROLE_KEY: role.value})
        session = self._build_session(response.token, role, profile)
        await self._establish(session)
        logger.info(f"Logged in as {session.display_name} ({role.value})")
        return session

    async def logout(self) -> None:
        if await self._clear():
            logger.info("Logged out")

    async def handle_auth_rejection(self) -> None:
        """
        Reacts to the authority rejecting the credential. The redirect to the
        role's login surface is emitted only if a session existed, so repeated
        rejections for the same dead credential produce a single redirect.
        """
        session = self._session
        await self.logout()
        if session is None:
            return

        surface = LOGIN_SURFACES[session.role]
        logger.warning(f"Session for {session.display_name} was rejected; redirecting to {surface}")
        for listener in list(self._redirect_listeners):
            try:
                await listener(surface)
            except Exception as e:
                logger.error(f"Redirect listener {listener!r} failed: {e}")
