"""
Asynchronous REST client for the Becak Jogja backend.

Every call either returns a decoded record or raises one of the typed errors
from ``api.exceptions``; the HTTP status mapping lives in ``_request`` only.
"""
import asyncio
from typing import Any
from urllib.parse import quote

import aiohttp
from loguru import logger

from api.exceptions import (
    AuthenticationRejected, InvalidCredentials, NetworkError, OrderConflict,
    OrderNotFound, PedicabAPIError, ResourceNotFound,
)
from api.middlewares import AuthMiddleware, LoggingMiddleware, RejectionListener
from api.schemas import (
    EarningsPayload, Location, LoginResponse, Order, UserProfile, Withdrawal,
    decode_earnings, decode_login, decode_online_status, decode_orders,
    decode_profile, decode_withdrawals, validate_record,
)
from config.config import API_BASE_URL, REQUEST_TIMEOUT

DEFAULT_HEADERS = {
    'Content-Type': 'application/json',
    'Accept': 'application/json',
    'X-Requested-With': 'XMLHttpRequest',
}

_STATUS_ERRORS: dict[int, type[PedicabAPIError]] = {
    401: AuthenticationRejected,
    404: ResourceNotFound,
    409: OrderConflict,
}

_LOGIN_ERRORS: dict[int, type[PedicabAPIError]] = {
    400: InvalidCredentials,
    401: InvalidCredentials,
    403: InvalidCredentials,
    422: InvalidCredentials,
}

_ORDER_ACTION_ERRORS: dict[int, type[PedicabAPIError]] = {
    404: OrderNotFound,
}


def _order_path(order_id: str, action: str) -> str:
    return f"/driver/orders/{quote(str(order_id), safe='')}/{action}"


class PedicabAPI:
    """
    Owns one aiohttp session, the current bearer credential and the listeners
    interested in credential rejections.
    """

    def __init__(self, base_url: str = API_BASE_URL, timeout: float = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.token: str | None = None
        self.driver_id: str | None = None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None
        self._rejection_listeners: list[RejectionListener] = []

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers=DEFAULT_HEADERS,
                middlewares=(LoggingMiddleware(self), AuthMiddleware(self)),
            )

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> 'PedicabAPI':
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # --- Credential handling ---

    def set_credential(self, token: str | None, driver_id: str | None = None) -> None:
        self.token = token
        self.driver_id = driver_id

    def add_rejection_listener(self, listener: RejectionListener) -> None:
        self._rejection_listeners.append(listener)

    async def notify_unauthorized(self) -> None:
        """Called by AuthMiddleware when a credentialed request comes back with 401."""
        for listener in list(self._rejection_listeners):
            try:
                await listener()
            except Exception as e:
                logger.error(f"Rejection listener {listener!r} failed: {e}")

    # --- Transport ---

    @staticmethod
    async def _read_payload(resp: aiohttp.ClientResponse) -> Any:
        try:
            return await resp.json(content_type=None)
        except ValueError:
            # Empty bodies and HTML error pages from the proxy
            return None

    @staticmethod
    def _error_message(payload: Any, status: int) -> str:
        if isinstance(payload, dict):
            for key in ('message', 'error', 'detail'):
                if isinstance(payload.get(key), str):
                    return payload[key]
        return f"Request failed with status {status}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
        errors: dict[int, type[PedicabAPIError]] | None = None,
    ) -> Any:
        if self._session is None or self._session.closed:
            await self.start()

        url = f"{self.base_url}{path}"
        try:
            async with self._session.request(method, url, json=json, params=params) as resp:
                status = resp.status
                payload = await self._read_payload(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Could not reach the server: {e!r}") from e

        if 200 <= status < 300:
            return payload

        error_class = {**_STATUS_ERRORS, **(errors or {})}.get(status, PedicabAPIError)
        raise error_class(self._error_message(payload, status), status=status)

    # --- Auth ---

    async def login(self, username: str, password: str) -> LoginResponse:
        payload = await self._request(
            'POST', '/auth/login',
            json={'username': username, 'password': password},
            errors=_LOGIN_ERRORS,
        )
        return decode_login(payload)

    async def get_profile(self) -> UserProfile:
        return decode_profile(await self._request('GET', '/profile/'))

    # --- Orders ---

    async def get_driver_orders(self) -> list[Order]:
        return decode_orders(await self._request('GET', '/driver/orders/'))

    async def get_orders_by_driver_id(self, driver_id: str) -> list[Order]:
        path = f"/driver/{quote(str(driver_id), safe='')}/orders/"
        return decode_orders(await self._request('GET', path))

    async def accept_order(self, order_id: str) -> Any:
        return await self._request('PUT', _order_path(order_id, 'accept'), errors=_ORDER_ACTION_ERRORS)

    async def complete_order(self, order_id: str) -> Any:
        return await self._request('PUT', _order_path(order_id, 'complete'), errors=_ORDER_ACTION_ERRORS)

    async def cancel_order(self, order_id: str) -> Any:
        return await self._request(
            'PUT', f"/orders/{quote(str(order_id), safe='')}",
            json={'status': 'cancelled'},
            errors=_ORDER_ACTION_ERRORS,
        )

    # --- Finance ---

    async def get_driver_earnings(self) -> EarningsPayload | None:
        return decode_earnings(await self._request('GET', '/driver/earnings/'))

    async def get_driver_withdrawals(self) -> list[Withdrawal]:
        return decode_withdrawals(await self._request('GET', '/driver/withdrawals/'))

    async def create_withdrawal(
        self, amount: float, bank_name: str, account_number: str, account_name: str, notes: str | None = None
    ) -> Withdrawal | None:
        payload = await self._request('POST', '/driver/withdrawals/', json={
            'amount': amount,
            'bank_name': bank_name,
            'account_number': account_number,
            'account_name': account_name,
            'notes': notes,
        })
        raw = payload.get('withdrawal') if isinstance(payload, dict) else None
        return validate_record(Withdrawal, raw, 'withdrawal record') if isinstance(raw, dict) else None

    # --- Presence ---

    async def get_online_status(self) -> bool:
        return decode_online_status(await self._request('GET', '/driver/online-status/'))

    async def set_online_status(self, is_online: bool) -> bool:
        payload = await self._request('PUT', '/driver/online-status/', json={'is_online': is_online})
        # Some backend versions answer with a bare message; the request itself is then the truth
        if isinstance(payload, dict) and payload.get('is_online') is not None:
            return decode_online_status(payload)
        return is_online

    async def update_location(self, location: Location) -> None:
        await self._request('POST', '/driver/location/', json={
            'latitude': location.latitude,
            'longitude': location.longitude,
            'timestamp': location.timestamp.isoformat(),
        })
