"""
Shared helpers for handoff tests.
In-memory OrderStore with the same atomic-commit and version semantics as PostgresOrderStore,
and a deterministic clock.
"""
import asyncio
from datetime import datetime, timedelta, timezone

from handoff.errors import LedgerConsistencyError, StaleOrderError
from handoff.models import Leg, Order
from handoff.order_state import LegStatus


class InMemoryOrderStore:
    def __init__(self) -> None:
        self.orders: dict[str, Order] = {}
        self.legs: dict[str, dict[str, Leg]] = {}
        self.commits = 0

    async def create_order(self, order: Order) -> None:
        await asyncio.sleep(0)
        self.orders[order.order_id] = order.model_copy()
        self.legs[order.order_id] = {}

    async def load_order(self, order_id: str) -> tuple[Order, list[Leg]] | None:
        await asyncio.sleep(0)
        order = self.orders.get(order_id)
        if order is None:
            return None
        legs = sorted(self.legs[order_id].values(), key=lambda leg: leg.leg_number)
        return order.model_copy(), [leg.model_copy() for leg in legs]

    async def commit_transition(self, order: Order, leg: Leg, expected_version: int) -> None:
        await asyncio.sleep(0)
        # No awaits below: order and leg become visible together.
        current = self.orders[order.order_id]
        if current.version != expected_version:
            raise StaleOrderError(order.order_id, expected_version)
        existing = self.legs[order.order_id].get(leg.leg_id)
        if existing is not None and existing.status is LegStatus.COMPLETED:
            raise LedgerConsistencyError(order.order_id, f"leg {leg.leg_number} already completed")
        self.orders[order.order_id] = order.model_copy()
        self.legs[order.order_id][leg.leg_id] = leg.model_copy()
        self.commits += 1

    def all_legs(self, order_id: str) -> list[Leg]:
        return sorted(self.legs[order_id].values(), key=lambda leg: leg.leg_number)


class StepClock:
    """Each call returns a time one second after the previous one."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now
