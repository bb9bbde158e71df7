from typing import Awaitable, Callable, Protocol
import time

from aiohttp import ClientHandlerType, ClientRequest, ClientResponse
from loguru import logger

RejectionListener = Callable[[], Awaitable[None]]


class CredentialSource(Protocol):
    token: str | None
    driver_id: str | None

    async def notify_unauthorized(self) -> None: ...


class LoggingMiddleware:
    """
    Binds the driver ID to every log record produced while a request is in flight
    and logs the request outcome with its latency.
    """
    def __init__(self, source: CredentialSource):
        self._source = source

    async def __call__(self, req: ClientRequest, handler: ClientHandlerType) -> ClientResponse:
        driver_id = self._source.driver_id or "System"
        # contextvars keep the binding local to this request's task
        with logger.contextualize(driver_id=driver_id):
            started = time.monotonic()
            try:
                resp = await handler(req)
            except Exception as e:
                logger.warning(f"{req.method} {req.url.path} failed: {e!r}")
                raise
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.debug(f"{req.method} {req.url.path} -> {resp.status} ({elapsed_ms:.0f} ms)")
            return resp


class AuthMiddleware:
    """
    Attaches the bearer credential to outgoing requests and reports a 401 on a
    credentialed request back to the credential owner.

    Requests sent without a credential (login, or anything after the session was
    cleared) never trigger the report, which keeps a rejected session from
    bouncing the driver back to the login surface over and over.
    """
    def __init__(self, source: CredentialSource, public_paths: tuple[str, ...] = ('/auth/login',)):
        self._source = source
        self._public_paths = public_paths

    def _is_public(self, req: ClientRequest) -> bool:
        return any(req.url.path.endswith(path) for path in self._public_paths)

    async def __call__(self, req: ClientRequest, handler: ClientHandlerType) -> ClientResponse:
        token = None if self._is_public(req) else self._source.token
        if token:
            req.headers['Authorization'] = f'Bearer {token}'

        resp = await handler(req)

        if token and resp.status == 401:
            logger.warning(f"Credential rejected by the authority on {req.method} {req.url.path}")
            await self._source.notify_unauthorized()
        return resp

