"""
Caller-visible failure taxonomy. The orchestrator is the only place these are raised
for a request; routes map them to HTTP responses.
"""


class HandoffError(Exception):
    """Base for all handoff failures."""


class OrderNotFoundError(HandoffError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"order {order_id} not found")


class InvalidTransitionError(HandoffError):
    """Requested action is not valid for the order's current status. Not retried by the system."""

    def __init__(self, order_id: str, code: str, current_status: str, action: str, message: str):
        self.order_id = order_id
        self.code = code
        self.current_status = current_status
        self.action = action
        super().__init__(message)


class ConflictError(HandoffError):
    """Nothing was mutated; the identical request may be retried."""


class LockBusyError(ConflictError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"order {order_id} is busy, retry later")


class StaleOrderError(ConflictError):
    """Order changed under us (lock expired and was re-acquired); the commit rolled back."""

    def __init__(self, order_id: str, expected_version: int):
        self.order_id = order_id
        self.expected_version = expected_version
        super().__init__(f"order {order_id} changed since version {expected_version}")


class InternalConsistencyError(HandoffError):
    """Persisted state violates an invariant. Indicates broken lock discipline; must alert."""


class LedgerConsistencyError(InternalConsistencyError):
    def __init__(self, order_id: str, detail: str):
        self.order_id = order_id
        self.detail = detail
        super().__init__(f"ledger invariant violated for order {order_id}: {detail}")
