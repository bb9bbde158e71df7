import pytest

from api.schemas import OrderStatus
from states.fsm_states import (
    ActionPhase, InvalidTransition, OrderActionMachine, OrderActionState, is_status_progression,
)


def test_successful_claim_commits():
    machine = OrderActionMachine('O1')
    claiming = machine.transition(OrderActionState.CLAIMING)
    assert claiming.phase == ActionPhase.PENDING
    assert claiming.is_pending

    mine = claiming.transition(OrderActionState.MINE)
    assert mine.state == OrderActionState.MINE
    assert mine.phase == ActionPhase.COMMITTED
    # Machines are values: the original is untouched
    assert machine.state == OrderActionState.AVAILABLE


@pytest.mark.parametrize("outcome", [OrderActionState.LOST_TO_OTHER, OrderActionState.GONE])
def test_lost_claims_roll_back(outcome):
    machine = OrderActionMachine('O1').transition(OrderActionState.CLAIMING).transition(outcome, error="x")
    assert machine.phase == ActionPhase.ROLLED_BACK
    assert machine.last_error == "x"
    assert not machine.can(OrderActionState.CLAIMING)


def test_network_error_returns_to_available():
    machine = (
        OrderActionMachine('O1')
        .transition(OrderActionState.CLAIMING)
        .transition(OrderActionState.ERROR)
        .transition(OrderActionState.AVAILABLE)
    )
    assert machine.state == OrderActionState.AVAILABLE
    assert machine.phase == ActionPhase.ROLLED_BACK
    assert machine.can(OrderActionState.CLAIMING)


def test_failed_completion_stays_mine():
    mine = OrderActionMachine('O1', state=OrderActionState.MINE)
    back = mine.transition(OrderActionState.COMPLETING).transition(OrderActionState.MINE)
    assert back.state == OrderActionState.MINE
    assert back.phase == ActionPhase.ROLLED_BACK

    done = back.transition(OrderActionState.CANCELLING).transition(OrderActionState.CANCELLED)
    assert done.phase == ActionPhase.COMMITTED


@pytest.mark.parametrize("start, target", [
    (OrderActionState.AVAILABLE, OrderActionState.COMPLETING),
    (OrderActionState.AVAILABLE, OrderActionState.MINE),
    (OrderActionState.COMPLETED, OrderActionState.COMPLETING),
    (OrderActionState.MINE, OrderActionState.CLAIMING),
])
def test_invalid_transitions_raise(start, target):
    with pytest.raises(InvalidTransition):
        OrderActionMachine('O1', state=start).transition(target)


@pytest.mark.parametrize("status, expected", [
    (OrderStatus.PENDING, OrderActionState.AVAILABLE),
    (OrderStatus.ACCEPTED, OrderActionState.MINE),
    (OrderStatus.ONGOING, OrderActionState.MINE),
    (OrderStatus.COMPLETED, OrderActionState.COMPLETED),
    (OrderStatus.CANCELLED, OrderActionState.CANCELLED),
])
def test_machine_for_authoritative_status(status, expected):
    machine = OrderActionMachine.for_status('O1', status)
    assert machine.state == expected
    assert machine.phase == ActionPhase.IDLE


def test_status_progression_is_monotonic():
    assert is_status_progression(OrderStatus.PENDING, OrderStatus.COMPLETED)
    assert is_status_progression(OrderStatus.ACCEPTED, OrderStatus.CANCELLED)
    assert is_status_progression(OrderStatus.ONGOING, OrderStatus.ONGOING)
    assert not is_status_progression(OrderStatus.COMPLETED, OrderStatus.PENDING)
    assert not is_status_progression(OrderStatus.ONGOING, OrderStatus.CANCELLED)
