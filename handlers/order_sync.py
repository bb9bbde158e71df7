"""
Pulls the driver's order set from the authority and reconciles it into the
state store. There is no timer: refreshes run on start, after every
acceptance outcome and when the driver asks for one.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from loguru import logger

from api.client import PedicabAPI
from api.exceptions import AuthenticationRejected, PedicabAPIError
from api.schemas import Order, OrderStatus
from handlers.earnings import EarningsAggregator
from handlers.session_store import SessionStore
from handlers.shared_state import DriverStateStore, OrderPartition

ORDERS_UNAVAILABLE_MESSAGE = "Gagal memuat data pesanan. Menampilkan data terakhir."
NO_SESSION_MESSAGE = "Sesi tidak aktif. Silakan login kembali."

_ACTIVE = (OrderStatus.ACCEPTED, OrderStatus.ONGOING)


@dataclass(frozen=True)
class SyncResult:
    ok: bool
    applied: bool = False
    source: str | None = None
    error: str | None = None


def partition_orders(orders: Iterable[Order], own_ids: Iterable[str]) -> OrderPartition:
    """
    Splits an order list into available (pending), active (accepted or
    ongoing) and history (completed). Assigned orders count as the driver's
    own when they carry one of `own_ids`, or no driver at all, which is how
    the driver-scoped endpoint reports them. Cancelled orders and orders held
    by other drivers are dropped. A duplicated id keeps its last record.
    """
    own_ids = set(own_ids)
    unique = {}
    for order in orders:
        unique[order.id] = order

    available, active, history = [], [], []
    for order in unique.values():
        if order.status == OrderStatus.PENDING:
            if order.driver_id is None:
                available.append(order)
            continue
        if order.driver_id is not None and order.driver_id not in own_ids:
            continue
        if order.status in _ACTIVE:
            active.append(order)
        elif order.status == OrderStatus.COMPLETED:
            history.append(order)

    return OrderPartition(available=tuple(available), active=tuple(active), history=tuple(history))


class OrderSyncEngine:

    def __init__(
        self,
        api: PedicabAPI,
        sessions: SessionStore,
        store: DriverStateStore,
        earnings: EarningsAggregator | None = None,
    ):
        self._api = api
        self._sessions = sessions
        self._store = store
        self._earnings = earnings
        # Issue order of refreshes and the newest one whose answer was applied
        self._issued = 0
        self._applied = 0

    async def _fetch(self, driver_lookup_id: str) -> tuple[list[Order], str]:
        try:
            return await self._api.get_driver_orders(), 'primary'
        except AuthenticationRejected:
            raise
        except PedicabAPIError as e:
            logger.warning(f"Driver order list failed ({e}); trying lookup by driver id {driver_lookup_id}")
        return await self._api.get_orders_by_driver_id(driver_lookup_id), 'fallback'

    async def refresh(self) -> SyncResult:
        session = self._sessions.session
        if session is None:
            return SyncResult(ok=False, error=NO_SESSION_MESSAGE)
        key = session.key

        self._issued += 1
        seq = self._issued

        try:
            orders, source = await self._fetch(session.driver_id or session.user_id)
        except AuthenticationRejected as e:
            # The session store has already been told; there is nothing to keep
            logger.warning(f"Order refresh rejected: {e}")
            return SyncResult(ok=False, error=NO_SESSION_MESSAGE)
        except PedicabAPIError as e:
            logger.error(f"Order refresh failed on both lookups: {e}")
            if seq > self._applied:
                self._store.set_error(key, ORDERS_UNAVAILABLE_MESSAGE)
            return SyncResult(ok=False, error=ORDERS_UNAVAILABLE_MESSAGE)

        if seq < self._applied:
            logger.debug(f"Dropping order refresh #{seq}; #{self._applied} was already applied")
            return SyncResult(ok=True, applied=False, source=source)

        previous = self._store.state
        partition = partition_orders(orders, session.own_ids)
        if not self._store.apply_partition(key, partition, datetime.now(timezone.utc)):
            return SyncResult(ok=True, applied=False, source=source)
        self._applied = seq

        logger.info(
            f"Orders synced via {source} lookup: {len(partition.available)} available, "
            f"{len(partition.active)} active, {len(partition.history)} completed"
        )
        self._announce_new_orders(key, previous, partition)

        if self._earnings is not None:
            self._earnings.recompute()
        return SyncResult(ok=True, applied=True, source=source)

    def _announce_new_orders(self, key, previous, partition: OrderPartition) -> None:
        # The first sync of a session only establishes the baseline
        if previous.last_synced_at is None or not previous.presence.is_online:
            return
        known = {order.id for order in previous.orders.available}
        fresh = [order for order in partition.available if order.id not in known]
        if fresh:
            self._store.set_notice(key, f"Ada {len(fresh)} pesanan baru tersedia!")
