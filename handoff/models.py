"""
Order and Leg records plus the response views returned to callers.
"""
import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from handoff.order_state import LegStatus, OrderStatus


def new_id() -> str:
    return uuid.uuid4().hex


class Order(BaseModel):
    order_id: str = Field(default_factory=new_id)
    status: OrderStatus = OrderStatus.CREATED
    current_rider_id: str | None = None
    version: int = 1
    created_at: datetime
    updated_at: datetime


class Leg(BaseModel):
    leg_id: str = Field(default_factory=new_id)
    order_id: str
    rider_id: str
    leg_number: int
    status: LegStatus = LegStatus.IN_PROGRESS
    started_at: datetime
    finished_at: datetime | None = None


class HandoffView(BaseModel):
    """Response for start/finish: resulting order status and the leg affected."""

    order_id: str
    status: OrderStatus
    current_rider_id: str | None
    leg: Leg


class OrderView(BaseModel):
    order_id: str
    status: OrderStatus
    current_rider_id: str | None
    created_at: datetime
    updated_at: datetime
    legs: list[Leg]

    @classmethod
    def build(cls, order: Order, legs: list[Leg]) -> "OrderView":
        return cls(
            order_id=order.order_id,
            status=order.status,
            current_rider_id=order.current_rider_id,
            created_at=order.created_at,
            updated_at=order.updated_at,
            legs=sorted(legs, key=lambda leg: leg.leg_number),
        )


class CachedResponse(BaseModel):
    """Fully materialized response, replayed verbatim for a repeated dedup key."""

    status_code: int
    body: str
