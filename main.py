import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from api.client import PedicabAPI
from api.exceptions import PedicabAPIError
from api.schemas import Role
from client_manager import safe_client_start
from config.config import DRIVER_PASSWORD, DRIVER_USERNAME, SCHEDULER_TIMEZONE
from config.logging_config import setup_logging
from database.storage import SqliteSessionStorage
from handlers import DriverClient, setup_driver_client
from utils.formatting import format_currency
from utils.geocoder import build_location_provider

# Configure logging as soon as the application starts
setup_logging()


async def graceful_shutdown(client: DriverClient | None, scheduler: AsyncIOScheduler, api: PedicabAPI):
    """Stops the background loops and closes the HTTP session."""
    logger.info("Shutting down the driver client...")

    if client:
        await client.shutdown()

    if scheduler.running:
        try:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        except Exception as e:
            logger.error(f"Error while stopping the scheduler: {e}")

    await api.close()
    logger.info("HTTP session closed")


def _log_dashboard(client: DriverClient) -> None:
    state = client.store.state
    status = {True: 'online', False: 'offline', None: 'unknown'}[state.presence.is_online]
    logger.info(
        f"Status: {status} | available: {len(state.orders.available)} | "
        f"active: {len(state.orders.active)} | today: {format_currency(state.earnings.today_earnings)} "
        f"({state.earnings.today_trip_count} trips) | balance: {format_currency(state.earnings.available_balance)}"
    )


def _watch_banners(client: DriverClient) -> None:
    """Logs every new error banner and notice the components raise."""
    shown = {'error': None, 'notice': None}

    def _on_state(state):
        for name, log in (('error', logger.warning), ('notice', logger.info)):
            value = getattr(state, name)
            if value and value != shown[name]:
                log(value)
            shown[name] = value

    client.store.subscribe(_on_state)


async def run_client():
    api = PedicabAPI()
    scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)
    client = setup_driver_client(api, SqliteSessionStorage(), scheduler, build_location_provider())
    stop_event = asyncio.Event()

    async def _on_redirect(surface: str):
        logger.warning(f"Session ended by the server. Please sign in again at {surface}.")
        stop_event.set()

    client.sessions.add_redirect_listener(_on_redirect)

    # Stop cleanly on SIGINT/SIGTERM
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows does not support SIGTERM here
            pass

    await api.start()
    scheduler.start()
    try:
        session = await client.sessions.restore()
        if session is None and DRIVER_USERNAME and DRIVER_PASSWORD:
            try:
                session = await client.sessions.login(Role.DRIVER, DRIVER_USERNAME, DRIVER_PASSWORD)
            except PedicabAPIError as e:
                logger.critical(f"Login failed: {e}")

        if session is None:
            logger.critical("No driver session. Set DRIVER_USERNAME and DRIVER_PASSWORD in .env.")
            return
        if not session.is_driver:
            logger.critical(f"{session.display_name} is not a driver account.")
            return

        _watch_banners(client)
        await client.refresh_all()
        _log_dashboard(client)

        logger.info("Driver client running. Press Ctrl+C to stop.")
        await stop_event.wait()
    finally:
        await graceful_shutdown(client, scheduler, api)


async def main():
    await safe_client_start(run_client)


if __name__ == '__main__':
    asyncio.run(main())
