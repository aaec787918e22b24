"""
Prometheus metrics: committed transitions, rejections, idempotent replays, lock contention, consistency failures.
"""
from prometheus_client import Counter, generate_latest

# Orchestrator: committed transitions
transitions_total = Counter(
    "handoff_transitions_total",
    "Total leg transitions committed",
    ["action", "to_status"],
)
transitions_rejected_total = Counter(
    "handoff_transitions_rejected_total",
    "Total requests rejected due to invalid order status transition",
    ["current_state", "attempted_action"],
)
idempotent_replays_total = Counter(
    "handoff_idempotent_replays_total",
    "Total requests answered from the idempotency cache",
    ["action"],
)

# Lock manager
lock_busy_total = Counter(
    "handoff_lock_busy_total",
    "Total lock acquisitions that gave up after all retries",
)
lock_release_mismatch_total = Counter(
    "handoff_lock_release_mismatch_total",
    "Total releases where the lock had expired or changed hands",
)

# Alert on any increase: indicates broken lock discipline
consistency_errors_total = Counter(
    "handoff_consistency_errors_total",
    "Total internal consistency errors (ledger invariant violations)",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
