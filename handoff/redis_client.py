import hashlib

import redis.asyncio as redis
from handoff.config import settings

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def lock_key(order_id: str) -> str:
    # Single variable part after a fixed prefix, so distinct order ids never share a lock.
    return f"lock:order:{order_id}"


def idempotency_key(order_id: str, action: str, dedup_key: str) -> str:
    """
    Dedup keys are scoped per order and action so one client key cannot collide across endpoints.
    The order id is length-prefixed and the client key hashed: either may contain ':'.
    """
    digest = hashlib.sha256(dedup_key.encode()).hexdigest()
    return f"idempotency:{len(order_id)}:{order_id}:{action}:{digest}"
