"""
Optimistic accept / complete / cancel of orders against the authority.

The client never locks anything itself. Each action moves the order's
machine into a pending state, sends one request, and settles on whatever the
authority answers; the follow-up refresh then replaces the optimistic state
with the authoritative one.
"""
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from api.client import PedicabAPI
from api.exceptions import (
    AuthenticationRejected, NetworkError, OrderConflict, PedicabAPIError, ResourceNotFound,
)
from handlers.earnings import EarningsAggregator
from handlers.order_sync import OrderSyncEngine
from handlers.session_store import SessionStore
from handlers.shared_state import DriverStateStore, SessionKey
from states.fsm_states import OrderActionMachine, OrderActionState

ACCEPTED_MESSAGE = "Pesanan berhasil diterima!"
CONFLICT_MESSAGE = "Pesanan sudah diterima driver lain."
NOT_FOUND_MESSAGE = "Pesanan tidak ditemukan."
NETWORK_MESSAGE = "Tidak dapat terhubung ke server. Silakan coba lagi."
ACCEPT_FAILED_MESSAGE = "Gagal menerima pesanan. Silakan coba lagi."
COMPLETED_MESSAGE = "Pesanan telah diselesaikan."
COMPLETE_FAILED_MESSAGE = "Gagal menyelesaikan pesanan. Silakan coba lagi."
CANCELLED_MESSAGE = "Pesanan telah dibatalkan."
CANCEL_FAILED_MESSAGE = "Gagal membatalkan pesanan. Silakan coba lagi."
SESSION_EXPIRED_MESSAGE = "Sesi Anda telah berakhir. Silakan login kembali."
NOT_CONFIRMED_MESSAGE = "Konfirmasi terlebih dahulu sebelum menerima pesanan."
NOT_AVAILABLE_MESSAGE = "Pesanan ini tidak lagi tersedia."
NOT_ACTIVE_MESSAGE = "Pesanan ini bukan pesanan aktif Anda."
BUSY_MESSAGE = "Masih memproses pesanan lain."


class ActionOutcome(str, Enum):
    SUCCESS = 'success'
    CONFLICT = 'conflict'
    NOT_FOUND = 'not_found'
    NETWORK_ERROR = 'network_error'
    FAILED = 'failed'
    SESSION_EXPIRED = 'session_expired'
    REJECTED = 'rejected'
    DISCARDED = 'discarded'


@dataclass(frozen=True)
class ActionResult:
    outcome: ActionOutcome
    order_id: str
    message: str | None = None
    state: OrderActionState | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == ActionOutcome.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.outcome in (ActionOutcome.NETWORK_ERROR, ActionOutcome.FAILED)


@dataclass(frozen=True)
class _Settlement:
    outcome: ActionOutcome
    target: OrderActionState
    message: str | None
    refresh: bool


class AcceptanceCoordinator:

    def __init__(
        self,
        api: PedicabAPI,
        sessions: SessionStore,
        store: DriverStateStore,
        sync: OrderSyncEngine,
        earnings: EarningsAggregator,
    ):
        self._api = api
        self._sessions = sessions
        self._store = store
        self._sync = sync
        self._earnings = earnings
        self._confirmed_order_id: str | None = None

    @property
    def accepting_order_id(self) -> str | None:
        return self._store.state.accepting_order_id

    @property
    def confirmed_order_id(self) -> str | None:
        return self._confirmed_order_id

    def _machine(self, order_id: str) -> OrderActionMachine | None:
        return self._store.state.order_states.get(order_id)

    # --- Confirmation step ---

    def confirm_accept(self, order_id: str) -> bool:
        """Records the driver's confirmation for accepting `order_id`."""
        machine = self._machine(order_id)
        if machine is None or machine.state != OrderActionState.AVAILABLE:
            return False
        self._confirmed_order_id = order_id
        return True

    def dismiss_accept(self) -> None:
        self._confirmed_order_id = None

    # --- Actions ---

    async def accept(self, order_id: str) -> ActionResult:
        session = self._sessions.session
        if session is None:
            return ActionResult(ActionOutcome.REJECTED, order_id, SESSION_EXPIRED_MESSAGE)
        key = session.key

        machine = self._machine(order_id)
        if machine is None or machine.state != OrderActionState.AVAILABLE:
            return ActionResult(ActionOutcome.REJECTED, order_id, NOT_AVAILABLE_MESSAGE,
                                machine.state if machine else None)
        if self._confirmed_order_id != order_id:
            return ActionResult(ActionOutcome.REJECTED, order_id, NOT_CONFIRMED_MESSAGE, machine.state)
        if self._store.state.accepting_order_id is not None:
            return ActionResult(ActionOutcome.REJECTED, order_id, BUSY_MESSAGE, machine.state)

        self._confirmed_order_id = None
        machine = machine.transition(OrderActionState.CLAIMING)
        self._store.set_order_state(key, machine)
        self._store.set_accepting(key, order_id)
        logger.info(f"Claiming order {order_id}")

        try:
            await self._api.accept_order(order_id)
        except OrderConflict:
            settlement = _Settlement(ActionOutcome.CONFLICT, OrderActionState.LOST_TO_OTHER, CONFLICT_MESSAGE, True)
        except ResourceNotFound:
            settlement = _Settlement(ActionOutcome.NOT_FOUND, OrderActionState.GONE, NOT_FOUND_MESSAGE, True)
        except NetworkError:
            settlement = _Settlement(ActionOutcome.NETWORK_ERROR, OrderActionState.ERROR, NETWORK_MESSAGE, False)
        except AuthenticationRejected:
            settlement = _Settlement(ActionOutcome.SESSION_EXPIRED, OrderActionState.ERROR, SESSION_EXPIRED_MESSAGE, False)
        except PedicabAPIError as e:
            logger.error(f"Accepting order {order_id} failed: {e}")
            settlement = _Settlement(ActionOutcome.FAILED, OrderActionState.ERROR, ACCEPT_FAILED_MESSAGE, True)
        else:
            settlement = _Settlement(ActionOutcome.SUCCESS, OrderActionState.MINE, ACCEPTED_MESSAGE, True)
        finally:
            self._store.set_accepting(key, None)

        return await self._settle(key, machine, settlement)

    async def complete(self, order_id: str) -> ActionResult:
        return await self._finish(
            order_id,
            pending=OrderActionState.COMPLETING,
            done=OrderActionState.COMPLETED,
            request=self._api.complete_order,
            done_message=COMPLETED_MESSAGE,
            failed_message=COMPLETE_FAILED_MESSAGE,
        )

    async def cancel(self, order_id: str) -> ActionResult:
        return await self._finish(
            order_id,
            pending=OrderActionState.CANCELLING,
            done=OrderActionState.CANCELLED,
            request=self._api.cancel_order,
            done_message=CANCELLED_MESSAGE,
            failed_message=CANCEL_FAILED_MESSAGE,
        )

    async def _finish(self, order_id, *, pending, done, request, done_message, failed_message) -> ActionResult:
        session = self._sessions.session
        if session is None:
            return ActionResult(ActionOutcome.REJECTED, order_id, SESSION_EXPIRED_MESSAGE)
        key = session.key

        machine = self._machine(order_id)
        if machine is None or machine.state != OrderActionState.MINE:
            return ActionResult(ActionOutcome.REJECTED, order_id, NOT_ACTIVE_MESSAGE,
                                machine.state if machine else None)

        machine = machine.transition(pending)
        self._store.set_order_state(key, machine)
        logger.info(f"Order {order_id}: {pending.value}")

        try:
            await request(order_id)
        except NetworkError:
            settlement = _Settlement(ActionOutcome.NETWORK_ERROR, OrderActionState.MINE, NETWORK_MESSAGE, False)
        except AuthenticationRejected:
            settlement = _Settlement(ActionOutcome.SESSION_EXPIRED, OrderActionState.MINE, SESSION_EXPIRED_MESSAGE, False)
        except PedicabAPIError as e:
            logger.error(f"Order {order_id}: {pending.value} failed: {e}")
            settlement = _Settlement(ActionOutcome.FAILED, OrderActionState.MINE, failed_message, True)
        else:
            settlement = _Settlement(ActionOutcome.SUCCESS, done, done_message, True)

        return await self._settle(key, machine, settlement)

    async def _settle(self, key: SessionKey, machine: OrderActionMachine, settlement: _Settlement) -> ActionResult:
        order_id = machine.order_id
        if not self._store.is_current(key):
            logger.info(f"Order {order_id}: result '{settlement.outcome.value}' arrived after the session changed")
            return ActionResult(ActionOutcome.DISCARDED, order_id)

        succeeded = settlement.outcome == ActionOutcome.SUCCESS
        error = None if succeeded else settlement.message
        machine = machine.transition(settlement.target, error=error)
        if machine.state == OrderActionState.ERROR:
            # A failed claim leaves the order claimable again
            machine = machine.transition(OrderActionState.AVAILABLE, error=error)
        self._store.set_order_state(key, machine)
        logger.info(f"Order {order_id}: {settlement.outcome.value} -> {machine.state.value}")

        if settlement.refresh:
            await self._sync.refresh()
        # After the refresh, which clears the banner when it applies; a failed refresh keeps its own
        if error is not None:
            self._store.set_error(key, error)
        if succeeded and machine.state == OrderActionState.COMPLETED:
            # The cached server aggregates predate this trip
            await self._earnings.refresh()

        return ActionResult(settlement.outcome, order_id, settlement.message, machine.state)
