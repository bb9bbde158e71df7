# This file makes the 'handlers' directory a Python package.
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .acceptance import AcceptanceCoordinator
    from .earnings import EarningsAggregator
    from .order_sync import OrderSyncEngine
    from .presence import PresenceManager
    from .session_store import SessionStore
    from .shared_state import DriverStateStore
    from .withdrawals import WithdrawalService


@dataclass
class DriverClient:
    sessions: 'SessionStore'
    store: 'DriverStateStore'
    presence: 'PresenceManager'
    orders: 'OrderSyncEngine'
    acceptance: 'AcceptanceCoordinator'
    earnings: 'EarningsAggregator'
    withdrawals: 'WithdrawalService'

    async def refresh_all(self) -> None:
        """Pulls presence, orders, earnings and withdrawals, as the dashboard does when it opens."""
        await self.presence.get_status()
        await self.orders.refresh()
        await self.earnings.refresh()

    async def shutdown(self) -> None:
        self.presence.stop()


def setup_driver_client(api, storage, scheduler, location_provider=None, **intervals) -> DriverClient:
    """
    Creates and wires all driver-side components around one API client.
    Every call builds a fresh, independent set of components.

    Wiring:
    1. Credential rejections reported by the API client end the session.
    2. Every session change rebinds the state store, then (re)starts or stops presence loops.
    """
    from .session_store import SessionStore
    from .shared_state import DriverStateStore
    from .presence import PresenceManager
    from .order_sync import OrderSyncEngine
    from .acceptance import AcceptanceCoordinator
    from .earnings import EarningsAggregator
    from .withdrawals import WithdrawalService

    sessions = SessionStore(api, storage)
    store = DriverStateStore()
    earnings = EarningsAggregator(api, sessions, store)
    orders = OrderSyncEngine(api, sessions, store, earnings)
    acceptance = AcceptanceCoordinator(api, sessions, store, orders, earnings)
    presence = PresenceManager(api, sessions, store, scheduler, location_provider, **intervals)
    withdrawals = WithdrawalService(api, sessions, store, earnings)

    api.add_rejection_listener(sessions.handle_auth_rejection)

    async def _on_session_changed(session):
        if session is None:
            store.reset()
        else:
            store.bind(session.key)
        await presence.on_session_changed(session)

    sessions.add_session_listener(_on_session_changed)

    return DriverClient(
        sessions=sessions,
        store=store,
        presence=presence,
        orders=orders,
        acceptance=acceptance,
        earnings=earnings,
        withdrawals=withdrawals,
    )
