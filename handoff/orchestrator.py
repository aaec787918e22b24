"""
Handoff orchestrator: the only component that talks to the lock manager, idempotency
cache, state machine, ledger and store.

Per mutating request:
  idempotency lookup -> acquire order lock -> load order + legs -> validate transition
  -> commit order + leg atomically -> cache response -> release lock.
Rejections are not cached: a retry after a rejection is evaluated again against current state.
"""
import logging
from collections.abc import Callable
from datetime import datetime, timezone

import redis.asyncio as redis

from handoff import ledger
from handoff.db import OrderStore
from handoff.errors import InternalConsistencyError, InvalidTransitionError, OrderNotFoundError
from handoff.idempotency import IdempotencyCache
from handoff.locks import LockManager
from handoff.metrics import (
    consistency_errors_total,
    idempotent_replays_total,
    transitions_rejected_total,
    transitions_total,
)
from handoff.models import CachedResponse, HandoffView, Leg, Order, OrderView
from handoff.order_state import Action, Rejection, transition
from handoff.redis_client import idempotency_key

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HandoffOrchestrator:
    def __init__(
        self,
        store: OrderStore,
        locks: LockManager,
        cache: IdempotencyCache,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.locks = locks
        self.cache = cache
        self.clock = clock

    async def create_order(self) -> OrderView:
        now = self.clock()
        order = Order(created_at=now, updated_at=now)
        await self.store.create_order(order)
        logger.info("Created order_id=%s", order.order_id)
        return OrderView.build(order, [])

    async def get_order(self, order_id: str) -> OrderView:
        """Pure read: no lock, no idempotency."""
        loaded = await self.store.load_order(order_id)
        if loaded is None:
            raise OrderNotFoundError(order_id)
        order, legs = loaded
        return OrderView.build(order, legs)

    async def start_leg(self, order_id: str, rider_id: str, dedup_key: str) -> CachedResponse:
        return await self._handle(order_id, Action.START, dedup_key, rider_id=rider_id)

    async def finish_leg(
        self,
        order_id: str,
        rider_id: str,
        is_final_delivery: bool,
        dedup_key: str,
    ) -> CachedResponse:
        # The finishing rider is trusted; it is not compared with the rider who started the leg.
        return await self._handle(order_id, Action.FINISH, dedup_key, rider_id=rider_id, is_final=is_final_delivery)

    async def _handle(
        self,
        order_id: str,
        action: Action,
        dedup_key: str,
        rider_id: str,
        is_final: bool = False,
    ) -> CachedResponse:
        key = idempotency_key(order_id, action.value, dedup_key)
        cached = await self.cache.lookup(key)
        if cached is not None:
            idempotent_replays_total.labels(action=action.value).inc()
            logger.info("Replaying cached %s for order_id=%s key=%s", action.value, order_id, dedup_key)
            return cached

        async with self.locks.hold(order_id):
            # A duplicate that waited on the lock may find the winner's response by now.
            cached = await self.cache.lookup(key)
            if cached is not None:
                idempotent_replays_total.labels(action=action.value).inc()
                return cached
            try:
                response = await self._apply_locked(order_id, action, rider_id, is_final)
            except InternalConsistencyError:
                consistency_errors_total.inc()
                logger.exception("Consistency failure during %s for order_id=%s", action.value, order_id)
                raise
            try:
                await self.cache.store(key, response)
            except redis.RedisError:
                # Committed already; a retry with this key will be re-evaluated against the new state.
                logger.exception("Failed to cache response for order_id=%s key=%s", order_id, dedup_key)
        return response

    async def _apply_locked(self, order_id: str, action: Action, rider_id: str, is_final: bool) -> CachedResponse:
        loaded = await self.store.load_order(order_id)
        if loaded is None:
            raise OrderNotFoundError(order_id)
        order, legs = loaded
        # Also covers rider/status agreement, so a rejection below is always a client error.
        ledger.check_invariants(order, legs)

        outcome = transition(order.status, order.current_rider_id is not None, action, is_final)
        if isinstance(outcome, Rejection):
            transitions_rejected_total.labels(
                current_state=order.status.value,
                attempted_action=action.value,
            ).inc()
            logger.info("Rejected %s for order_id=%s: %s", action.value, order_id, outcome.code)
            raise InvalidTransitionError(order_id, outcome.code, order.status.value, action.value, outcome.message)

        now = self.clock()
        leg: Leg
        if action is Action.START:
            leg = ledger.open_leg(order_id, rider_id, legs, now)
            current_rider_id = rider_id
        else:
            leg = ledger.close_leg(order_id, legs, now)
            current_rider_id = None

        updated = order.model_copy(
            update={
                "status": outcome,
                "current_rider_id": current_rider_id,
                "version": order.version + 1,
                "updated_at": now,
            }
        )
        await self.store.commit_transition(updated, leg, expected_version=order.version)
        transitions_total.labels(action=action.value, to_status=outcome.value).inc()
        logger.info(
            "Committed %s for order_id=%s leg=%d rider=%s -> %s",
            action.value,
            order_id,
            leg.leg_number,
            rider_id,
            outcome.value,
        )
        view = HandoffView(
            order_id=order_id,
            status=outcome,
            current_rider_id=current_rider_id,
            leg=leg,
        )
        return CachedResponse(status_code=200, body=view.model_dump_json())


def build_orchestrator(store: OrderStore, r: redis.Redis) -> HandoffOrchestrator:
    return HandoffOrchestrator(store=store, locks=LockManager(r), cache=IdempotencyCache(r))
