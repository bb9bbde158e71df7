from dataclasses import dataclass, replace
from enum import Enum

from api.schemas import OrderStatus


class OrderActionState(str, Enum):
    """Client-observed state of a single order, from this driver's point of view."""
    AVAILABLE = 'available'
    CLAIMING = 'claiming'
    MINE = 'mine'
    LOST_TO_OTHER = 'lost_to_other'
    GONE = 'gone'
    ERROR = 'error'
    COMPLETING = 'completing'
    COMPLETED = 'completed'
    CANCELLING = 'cancelling'
    CANCELLED = 'cancelled'


class ActionPhase(str, Enum):
    """Lifecycle of the optimistic action currently attached to an order."""
    IDLE = 'idle'
    PENDING = 'pending'
    COMMITTED = 'committed'
    ROLLED_BACK = 'rolled_back'


# States in which a request to the authority is in flight
PENDING_STATES = frozenset({
    OrderActionState.CLAIMING,
    OrderActionState.COMPLETING,
    OrderActionState.CANCELLING,
})

ORDER_ACTION_TRANSITIONS: dict[OrderActionState, frozenset[OrderActionState]] = {
    OrderActionState.AVAILABLE: frozenset({OrderActionState.CLAIMING}),
    OrderActionState.CLAIMING: frozenset({
        OrderActionState.MINE,
        OrderActionState.LOST_TO_OTHER,
        OrderActionState.GONE,
        OrderActionState.ERROR,
    }),
    OrderActionState.ERROR: frozenset({OrderActionState.AVAILABLE}),
    OrderActionState.MINE: frozenset({OrderActionState.COMPLETING, OrderActionState.CANCELLING}),
    OrderActionState.COMPLETING: frozenset({OrderActionState.COMPLETED, OrderActionState.MINE}),
    OrderActionState.CANCELLING: frozenset({OrderActionState.CANCELLED, OrderActionState.MINE}),
    OrderActionState.LOST_TO_OTHER: frozenset(),
    OrderActionState.GONE: frozenset(),
    OrderActionState.COMPLETED: frozenset(),
    OrderActionState.CANCELLED: frozenset(),
}

# Order status is monotonic at the authority
ORDER_STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.ONGOING, OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.ONGOING: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

_STATE_FOR_STATUS = {
    OrderStatus.PENDING: OrderActionState.AVAILABLE,
    OrderStatus.ACCEPTED: OrderActionState.MINE,
    OrderStatus.ONGOING: OrderActionState.MINE,
    OrderStatus.COMPLETED: OrderActionState.COMPLETED,
    OrderStatus.CANCELLED: OrderActionState.CANCELLED,
}


class InvalidTransition(Exception):
    def __init__(self, order_id: str, current: OrderActionState, target: OrderActionState):
        super().__init__(f"Order {order_id}: cannot go from {current.value} to {target.value}")
        self.order_id = order_id
        self.current = current
        self.target = target


def is_status_progression(old: OrderStatus, new: OrderStatus) -> bool:
    """True if `new` is `old` itself or reachable from it."""
    if old == new:
        return True
    frontier = set(ORDER_STATUS_TRANSITIONS[old])
    seen = set()
    while frontier:
        status = frontier.pop()
        if status == new:
            return True
        seen.add(status)
        frontier |= ORDER_STATUS_TRANSITIONS[status] - seen
    return False


@dataclass(frozen=True)
class OrderActionMachine:
    order_id: str
    state: OrderActionState = OrderActionState.AVAILABLE
    phase: ActionPhase = ActionPhase.IDLE
    last_error: str | None = None

    @classmethod
    def for_status(cls, order_id: str, status: OrderStatus) -> 'OrderActionMachine':
        """Machine for an order whose authoritative status was just received."""
        return cls(order_id=order_id, state=_STATE_FOR_STATUS[status])

    @property
    def is_pending(self) -> bool:
        return self.state in PENDING_STATES

    def can(self, target: OrderActionState) -> bool:
        return target in ORDER_ACTION_TRANSITIONS[self.state]

    def transition(self, target: OrderActionState, error: str | None = None) -> 'OrderActionMachine':
        if not self.can(target):
            raise InvalidTransition(self.order_id, self.state, target)

        if target in PENDING_STATES:
            phase = ActionPhase.PENDING
        elif target in (OrderActionState.COMPLETED, OrderActionState.CANCELLED) or (
            target == OrderActionState.MINE and self.state == OrderActionState.CLAIMING
        ):
            phase = ActionPhase.COMMITTED
        else:
            phase = ActionPhase.ROLLED_BACK

        return replace(self, state=target, phase=phase, last_error=error)
