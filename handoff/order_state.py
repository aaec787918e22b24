"""
Order handoff state machine. Explicit (status, action) table; pure, no I/O.
Called only after the orchestrator has loaded the authoritative order state.
"""
from dataclasses import dataclass
from enum import Enum


class OrderStatus(str, Enum):
    CREATED = "CREATED"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_HANDOFF = "AWAITING_HANDOFF"
    DELIVERED = "DELIVERED"


class LegStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class Action(str, Enum):
    START = "start"
    FINISH = "finish"


RIDER_STATE_MISMATCH = "RIDER_STATE_MISMATCH"

# (current status, action, is_final) -> next status. is_final is only meaningful for finish.
VALID_TRANSITIONS: dict[tuple[OrderStatus, Action, bool], OrderStatus] = {
    (OrderStatus.CREATED, Action.START, False): OrderStatus.IN_PROGRESS,
    (OrderStatus.AWAITING_HANDOFF, Action.START, False): OrderStatus.IN_PROGRESS,
    (OrderStatus.IN_PROGRESS, Action.FINISH, False): OrderStatus.AWAITING_HANDOFF,
    (OrderStatus.IN_PROGRESS, Action.FINISH, True): OrderStatus.DELIVERED,
}


@dataclass(frozen=True)
class Rejection:
    code: str
    current_status: OrderStatus
    action: Action

    @property
    def message(self) -> str:
        if self.code == RIDER_STATE_MISMATCH:
            return f"rider assignment does not match status {self.current_status.value}"
        return f"cannot {self.action.value} an order that is {self.current_status.value}"


def rejection_code(current_status: OrderStatus, action: Action) -> str:
    return f"{action.value.upper()}_FROM_{current_status.value}"


def transition(
    current_status: OrderStatus,
    rider_present: bool,
    action: Action,
    is_final: bool = False,
) -> OrderStatus | Rejection:
    """Next status for action, or a Rejection naming the offending (status, action) pair."""
    if rider_present != (current_status is OrderStatus.IN_PROGRESS):
        return Rejection(RIDER_STATE_MISMATCH, current_status, action)
    final_flag = is_final if action is Action.FINISH else False
    next_status = VALID_TRANSITIONS.get((current_status, action, final_flag))
    if next_status is None:
        return Rejection(rejection_code(current_status, action), current_status, action)
    return next_status


def is_terminal(status: OrderStatus) -> bool:
    return status is OrderStatus.DELIVERED
