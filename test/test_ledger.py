"""Tests for leg numbering, open/close and invariant checks."""

from datetime import datetime, timedelta, timezone

import pytest

from handoff import ledger
from handoff.errors import LedgerConsistencyError
from handoff.models import Leg, Order
from handoff.order_state import LegStatus, OrderStatus

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _leg(number: int, status: LegStatus = LegStatus.COMPLETED, rider: str = "r") -> Leg:
    return Leg(
        order_id="o1",
        rider_id=rider,
        leg_number=number,
        status=status,
        started_at=T0,
        finished_at=T0 + timedelta(minutes=1) if status is LegStatus.COMPLETED else None,
    )


def _order(status: OrderStatus, rider: str | None = None) -> Order:
    return Order(order_id="o1", status=status, current_rider_id=rider, created_at=T0, updated_at=T0)


def test_first_leg_is_number_one() -> None:
    leg = ledger.open_leg("o1", "rider-a", [], T0)
    assert leg.leg_number == 1
    assert leg.status is LegStatus.IN_PROGRESS
    assert leg.started_at == T0
    assert leg.finished_at is None


def test_next_leg_follows_max_existing() -> None:
    legs = [_leg(1), _leg(2)]
    assert ledger.next_leg_number(legs) == 3
    assert ledger.open_leg("o1", "rider-c", legs, T0).leg_number == 3


def test_open_leg_refuses_when_one_is_open() -> None:
    with pytest.raises(LedgerConsistencyError):
        ledger.open_leg("o1", "rider-b", [_leg(1, LegStatus.IN_PROGRESS)], T0)


def test_close_leg_completes_the_open_leg() -> None:
    open_leg = _leg(2, LegStatus.IN_PROGRESS, rider="rider-b")
    closed = ledger.close_leg("o1", [_leg(1), open_leg], T0 + timedelta(hours=1))
    assert closed.leg_id == open_leg.leg_id
    assert closed.status is LegStatus.COMPLETED
    assert closed.finished_at == T0 + timedelta(hours=1)
    # Loaded leg is untouched; the closed copy is what gets committed.
    assert open_leg.status is LegStatus.IN_PROGRESS


@pytest.mark.parametrize(
    "legs",
    [
        [],
        [_leg(1)],
        [_leg(1, LegStatus.IN_PROGRESS), _leg(2, LegStatus.IN_PROGRESS)],
    ],
)
def test_close_leg_requires_exactly_one_open(legs: list[Leg]) -> None:
    with pytest.raises(LedgerConsistencyError):
        ledger.close_leg("o1", legs, T0)


def test_invariants_hold_for_consistent_state() -> None:
    ledger.check_invariants(_order(OrderStatus.CREATED), [])
    ledger.check_invariants(_order(OrderStatus.IN_PROGRESS, "r"), [_leg(1, LegStatus.IN_PROGRESS)])
    ledger.check_invariants(_order(OrderStatus.AWAITING_HANDOFF), [_leg(1)])
    ledger.check_invariants(_order(OrderStatus.DELIVERED), [_leg(1), _leg(2)])


@pytest.mark.parametrize(
    ("order", "legs"),
    [
        (_order(OrderStatus.IN_PROGRESS), [_leg(1, LegStatus.IN_PROGRESS)]),
        (_order(OrderStatus.AWAITING_HANDOFF, "r"), [_leg(1)]),
        (_order(OrderStatus.IN_PROGRESS, "r"), [_leg(1)]),
        (_order(OrderStatus.AWAITING_HANDOFF), [_leg(1, LegStatus.IN_PROGRESS)]),
        (_order(OrderStatus.AWAITING_HANDOFF), [_leg(1), _leg(3)]),
        (_order(OrderStatus.AWAITING_HANDOFF), [_leg(1), _leg(1)]),
        (_order(OrderStatus.DELIVERED), []),
    ],
)
def test_invariant_violations_are_detected(order: Order, legs: list[Leg]) -> None:
    with pytest.raises(LedgerConsistencyError):
        ledger.check_invariants(order, legs)
