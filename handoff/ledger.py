"""
Leg ledger: append-only, strictly numbered rider segments per order.
Works on the legs loaded under the order's lock; persistence is the store's job,
committed in the same transaction as the order update.
"""
from datetime import datetime

from handoff.errors import LedgerConsistencyError
from handoff.models import Leg, Order
from handoff.order_state import LegStatus, OrderStatus, is_terminal


def open_legs(legs: list[Leg]) -> list[Leg]:
    return [leg for leg in legs if leg.status is LegStatus.IN_PROGRESS]


def next_leg_number(legs: list[Leg]) -> int:
    return max((leg.leg_number for leg in legs), default=0) + 1


def open_leg(order_id: str, rider_id: str, legs: list[Leg], now: datetime) -> Leg:
    if open_legs(legs):
        raise LedgerConsistencyError(order_id, "start requested while a leg is still in progress")
    return Leg(
        order_id=order_id,
        rider_id=rider_id,
        leg_number=next_leg_number(legs),
        status=LegStatus.IN_PROGRESS,
        started_at=now,
    )


def close_leg(order_id: str, legs: list[Leg], now: datetime) -> Leg:
    """Complete the unique in-progress leg. Zero or several open legs is a consistency failure."""
    current = open_legs(legs)
    if len(current) != 1:
        raise LedgerConsistencyError(order_id, f"expected exactly one leg in progress, found {len(current)}")
    return current[0].model_copy(update={"status": LegStatus.COMPLETED, "finished_at": now})


def check_invariants(order: Order, legs: list[Leg]) -> None:
    """Raise LedgerConsistencyError if the persisted order and its legs disagree."""
    in_progress = order.status is OrderStatus.IN_PROGRESS
    if (order.current_rider_id is not None) != in_progress:
        raise LedgerConsistencyError(
            order.order_id,
            f"current rider {'set' if order.current_rider_id else 'missing'} while {order.status.value}",
        )
    open_count = len(open_legs(legs))
    if open_count > 1 or (open_count == 1) != in_progress:
        raise LedgerConsistencyError(
            order.order_id,
            f"{open_count} legs in progress while order is {order.status.value}",
        )
    if is_terminal(order.status) and not legs:
        raise LedgerConsistencyError(order.order_id, f"{order.status.value} order has no legs")
    numbers = sorted(leg.leg_number for leg in legs)
    if numbers != list(range(1, len(numbers) + 1)):
        raise LedgerConsistencyError(order.order_id, f"leg numbers not contiguous: {numbers}")
    for leg in legs:
        if (leg.finished_at is not None) != (leg.status is LegStatus.COMPLETED):
            raise LedgerConsistencyError(order.order_id, f"leg {leg.leg_number} finished_at does not match status")
