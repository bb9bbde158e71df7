from datetime import datetime, tzinfo
from typing import Iterable

from loguru import logger

from api.client import PedicabAPI
from api.exceptions import PedicabAPIError
from api.schemas import EarningsPayload, Order, OrderStatus, Withdrawal, WithdrawalStatus
from config.config import TIMEZONE
from handlers.session_store import SessionStore
from handlers.shared_state import DriverStateStore, EarningsSnapshot

_PAID_OUT = (WithdrawalStatus.APPROVED, WithdrawalStatus.COMPLETED)


def _prefer_server(server_value, local_value):
    # A server figure below what the local records already show is a stale aggregate
    if server_value is None:
        return local_value
    return max(server_value, local_value)


def _local_moment(order: Order, tz: tzinfo) -> datetime | None:
    moment = order.completed_at or order.created_at
    return moment.astimezone(tz) if moment else None


def compute_earnings(
    completed_orders: Iterable[Order],
    withdrawals: Iterable[Withdrawal] = (),
    server: EarningsPayload | None = None,
    now: datetime | None = None,
    tz: tzinfo = TIMEZONE,
) -> EarningsSnapshot:
    """
    Derives the earnings summary from completed orders and withdrawals.

    Server-side aggregates are used where present; missing ones, and ones
    below what the local order records show, are recomputed locally. Day and
    month boundaries are those of `tz`.
    """
    now = (now or datetime.now(tz)).astimezone(tz)
    orders = [order for order in completed_orders if order.status == OrderStatus.COMPLETED]

    today_orders = []
    month_orders = []
    for order in orders:
        moment = _local_moment(order, tz)
        if moment is None:
            continue
        if (moment.year, moment.month) == (now.year, now.month):
            month_orders.append(order)
            if moment.date() == now.date():
                today_orders.append(order)

    server = server or EarningsPayload()
    server_trip_count = server.completed_orders if server.completed_orders is not None else server.total_trips

    total = _prefer_server(server.total_earnings, sum(order.price for order in orders))
    trip_count = _prefer_server(server_trip_count, len(orders))

    withdrawals = list(withdrawals)
    pending = sum(w.amount for w in withdrawals if w.status == WithdrawalStatus.PENDING)
    paid_out = sum(w.amount for w in withdrawals if w.status in _PAID_OUT)

    return EarningsSnapshot(
        total_earnings=float(total),
        today_earnings=float(_prefer_server(server.today_earnings, sum(o.price for o in today_orders))),
        monthly_earnings=float(_prefer_server(server.monthly_earnings, sum(o.price for o in month_orders))),
        completed_trip_count=int(trip_count),
        today_trip_count=int(_prefer_server(server.today_trips, len(today_orders))),
        monthly_trip_count=int(_prefer_server(server.monthly_trips, len(month_orders))),
        average_per_trip=float(total) / trip_count if trip_count else 0.0,
        pending_withdrawals=float(pending),
        completed_withdrawals=float(paid_out),
        available_balance=max(float(total) - pending - paid_out, 0.0),
    )


class EarningsAggregator:
    """Keeps the earnings snapshot in the state store in line with orders and withdrawals."""

    def __init__(self, api: PedicabAPI, sessions: SessionStore, store: DriverStateStore):
        self._api = api
        self._sessions = sessions
        self._store = store

    def recompute(self) -> EarningsSnapshot:
        state = self._store.state
        snapshot = compute_earnings(state.orders.history, state.withdrawals, state.server_earnings)
        self._store.set_earnings(state.session_key, snapshot)
        return snapshot

    async def refresh(self) -> EarningsSnapshot:
        """
        Re-fetches the server aggregates and the withdrawal list, then recomputes.
        Both sources are optional: a failed fetch keeps what the store already has.
        """
        session = self._sessions.session
        if session is None:
            return self._store.state.earnings
        key = session.key

        try:
            payload = await self._api.get_driver_earnings()
        except PedicabAPIError as e:
            logger.warning(f"Could not fetch earnings summary: {e}")
        else:
            self._store.set_server_earnings(key, payload)

        await self.refresh_withdrawals()
        return self.recompute()

    async def refresh_withdrawals(self) -> None:
        session = self._sessions.session
        if session is None:
            return
        try:
            withdrawals = await self._api.get_driver_withdrawals()
        except PedicabAPIError as e:
            logger.warning(f"Could not fetch withdrawals: {e}")
            return
        self._store.set_withdrawals(session.key, withdrawals)
