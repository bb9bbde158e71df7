# This file contains the state shared by every driver-side component.
# Components never mutate it directly: they call the store's action methods,
# passing the session key they were started for.
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from loguru import logger

from api.schemas import EarningsPayload, Location, Order, Withdrawal
from states.fsm_states import OrderActionMachine, is_status_progression

# (user_id, token): a new login, even for the same user, is a new session
SessionKey = tuple[str, str]


@dataclass(frozen=True)
class OrderPartition:
    available: tuple[Order, ...] = ()
    active: tuple[Order, ...] = ()
    history: tuple[Order, ...] = ()

    def all_orders(self) -> Iterable[Order]:
        yield from self.available
        yield from self.active
        yield from self.history

    def find(self, order_id: str) -> Order | None:
        for order in self.all_orders():
            if order.id == order_id:
                return order
        return None


@dataclass(frozen=True)
class DriverPresence:
    # None means the status could not be determined yet
    is_online: bool | None = None
    last_known_location: Location | None = None


@dataclass(frozen=True)
class EarningsSnapshot:
    total_earnings: float = 0.0
    today_earnings: float = 0.0
    monthly_earnings: float = 0.0
    completed_trip_count: int = 0
    today_trip_count: int = 0
    monthly_trip_count: int = 0
    average_per_trip: float = 0.0
    pending_withdrawals: float = 0.0
    completed_withdrawals: float = 0.0
    available_balance: float = 0.0


def _frozen_mapping(data: dict | None = None) -> Mapping:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class DriverViewState:
    session_key: SessionKey | None = None
    orders: OrderPartition = OrderPartition()
    presence: DriverPresence = DriverPresence()
    earnings: EarningsSnapshot = EarningsSnapshot()
    server_earnings: EarningsPayload | None = None
    withdrawals: tuple[Withdrawal, ...] = ()
    order_states: Mapping[str, OrderActionMachine] = field(default_factory=_frozen_mapping)
    accepting_order_id: str | None = None
    error: str | None = None
    notice: str | None = None
    last_synced_at: datetime | None = None


StateListener = Callable[[DriverViewState], None]


class DriverStateStore:
    """
    Holds the current DriverViewState snapshot.

    Every write names the session it belongs to. Writes for any session other
    than the bound one are dropped, so a late response or a timer tick from a
    previous session can never leak into the current view.
    """

    def __init__(self):
        self._state = DriverViewState()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> DriverViewState:
        return self._state

    @property
    def session_key(self) -> SessionKey | None:
        return self._state.session_key

    def is_current(self, session_key: SessionKey | None) -> bool:
        return session_key is not None and session_key == self._state.session_key

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"State listener {listener!r} failed: {e}")

    def _commit(self, session_key: SessionKey | None, **changes) -> bool:
        if not self.is_current(session_key):
            logger.debug(f"Discarding write of {sorted(changes)} for a stale session")
            return False
        self._state = replace(self._state, **changes)
        self._notify()
        return True

    # --- Session binding ---

    def bind(self, session_key: SessionKey) -> None:
        """Starts a fresh view for `session_key`. A no-op if it is already bound."""
        if self._state.session_key == session_key:
            return
        self._state = DriverViewState(session_key=session_key)
        self._notify()

    def reset(self) -> None:
        self._state = DriverViewState()
        self._notify()

    # --- Orders ---

    def apply_partition(self, session_key: SessionKey, partition: OrderPartition, synced_at: datetime) -> bool:
        """
        Replaces the order lists with the authority's view and rebuilds the
        per-order machines from it. Machines with a request still in flight are
        kept so the pending action can settle; its settlement refreshes again.
        """
        if not self.is_current(session_key):
            logger.debug("Discarding order partition for a stale session")
            return False

        previous = {order.id: order for order in self._state.orders.all_orders()}
        machines = {}
        for order in partition.all_orders():
            old = previous.get(order.id)
            if old is not None and not is_status_progression(old.status, order.status):
                logger.warning(
                    f"Order {order.label} went from '{old.status.value}' back to "
                    f"'{order.status.value}' at the authority. Taking the authority's word."
                )
            machines[order.id] = OrderActionMachine.for_status(order.id, order.status)

        for order_id, machine in self._state.order_states.items():
            if machine.is_pending:
                machines[order_id] = machine

        return self._commit(
            session_key,
            orders=partition,
            order_states=_frozen_mapping(machines),
            error=None,
            last_synced_at=synced_at,
        )

    def set_order_state(self, session_key: SessionKey, machine: OrderActionMachine) -> bool:
        machines = dict(self._state.order_states)
        machines[machine.order_id] = machine
        return self._commit(session_key, order_states=_frozen_mapping(machines))

    def set_accepting(self, session_key: SessionKey, order_id: str | None) -> bool:
        return self._commit(session_key, accepting_order_id=order_id)

    # --- Banners ---

    def set_error(self, session_key: SessionKey, message: str | None) -> bool:
        return self._commit(session_key, error=message)

    def set_notice(self, session_key: SessionKey, message: str | None) -> bool:
        return self._commit(session_key, notice=message)

    # --- Presence ---

    def set_online(self, session_key: SessionKey, is_online: bool | None) -> bool:
        return self._commit(session_key, presence=replace(self._state.presence, is_online=is_online))

    def set_location(self, session_key: SessionKey, location: Location) -> bool:
        return self._commit(session_key, presence=replace(self._state.presence, last_known_location=location))

    # --- Finance ---

    def set_earnings(self, session_key: SessionKey, snapshot: EarningsSnapshot) -> bool:
        return self._commit(session_key, earnings=snapshot)

    def set_server_earnings(self, session_key: SessionKey, payload: EarningsPayload | None) -> bool:
        return self._commit(session_key, server_earnings=payload)

    def set_withdrawals(self, session_key: SessionKey, withdrawals: Iterable[Withdrawal]) -> bool:
        return self._commit(session_key, withdrawals=tuple(withdrawals))
